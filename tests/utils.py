from datetime import datetime, timezone
from typing import Dict, Optional

from leasecost.schemas.costs import CostGroup, CostResultBucket


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_bucket(start: str, amounts: Dict[str, Optional[str]]) -> CostResultBucket:
    """Build a result bucket from ``{account_id: amount}``."""
    return CostResultBucket(
        bucket_start=start,
        groups=[CostGroup(account_id=a, amount=amount) for a, amount in amounts.items()],
    )


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
