from typing import Iterable, Iterator, List, Sequence, TypeVar

from leasecost.core.exceptions import ConfigurationError

T = TypeVar("T")

# One below the 200-value filter limit of GetCostAndUsage.
MAX_ACCOUNTS_IN_FILTER = 199


def batch(items: Iterable[T], size: int = MAX_ACCOUNTS_IN_FILTER) -> Iterator[List[T]]:
    """Yield contiguous slices of ``items``, each at most ``size`` long."""
    if size < 1:
        raise ConfigurationError("Batch size must be at least 1.", details={"size": size})
    ordered: Sequence[T] = items if isinstance(items, Sequence) else list(items)
    for offset in range(0, len(ordered), size):
        yield list(ordered[offset:offset + size])
