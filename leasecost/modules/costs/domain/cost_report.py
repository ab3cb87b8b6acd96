import math
from typing import Any, Dict, Iterator, Mapping, Optional


def parse_amount(raw: Any) -> float:
    """
    Parse a Cost Explorer decimal string.

    Missing, unparsable or non-finite amounts count as zero cost.
    """
    if raw is None:
        return 0.0
    try:
        amount = float(raw)
    except (TypeError, ValueError):
        return 0.0
    return amount if math.isfinite(amount) else 0.0


class CostReport:
    """
    Accumulated cost per account.

    A missing account means zero cost. ``merge`` only ever adds, so combining
    reports in any order yields the same totals.
    """

    def __init__(self, costs: Optional[Mapping[str, float]] = None):
        self._costs: Dict[str, float] = {}
        for account_id, amount in (costs or {}).items():
            self.add_cost(account_id, amount)

    def add_cost(self, account_id: str, amount: float) -> None:
        self._costs[account_id] = self._costs.get(account_id, 0.0) + amount

    def get_cost(self, account_id: str) -> float:
        return self._costs.get(account_id, 0.0)

    def merge(self, other: "CostReport") -> "CostReport":
        """Add every entry of ``other`` into this report; ``other`` is untouched."""
        for account_id, amount in other.items():
            self.add_cost(account_id, amount)
        return self

    def total_cost(self) -> float:
        return math.fsum(self._costs.values())

    def items(self) -> Iterator[tuple[str, float]]:
        return iter(list(self._costs.items()))

    def as_dict(self) -> Dict[str, float]:
        return dict(self._costs)

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._costs

    def __len__(self) -> int:
        return len(self._costs)

    def __repr__(self) -> str:
        return f"CostReport(accounts={len(self._costs)}, total={self.total_cost():.2f})"
