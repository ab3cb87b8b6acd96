from abc import ABC, abstractmethod
from typing import Collection, List, Optional

from leasecost.schemas.costs import (
    CostResultBucket,
    FormattedTimeRange,
    Granularity,
    TagFilter,
)


class CostQueryClient(ABC):
    """
    Abstract Base Class for the Cost Query Service.

    Implementations own retries, pagination and credentials. An empty list is
    a valid answer meaning no billed usage in the window.
    """

    @abstractmethod
    async def query_grouped_cost(
        self,
        time_range: FormattedTimeRange,
        granularity: Granularity,
        account_filter: Collection[str],
        tag_filter: Optional[TagFilter] = None,
    ) -> List[CostResultBucket]:
        """Return time-bucketed cost grouped by linked account."""
        raise NotImplementedError()
