"""
Throttled Daily Cost Fetching

Builds an ``account -> date -> cost`` matrix for an arbitrary list of
accounts. Batches are consumed from a queue by a fixed pool of workers; every
dispatch passes through a rolling-window rate limiter. A failed batch does not
fail the call: its accounts are left out of ``costs`` and reported in
``failed_batches`` instead.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from leasecost.core.config import Settings, get_settings
from leasecost.core.exceptions import ConfigurationError
from leasecost.core.logging import component_logger
from leasecost.modules.costs.domain.batching import batch
from leasecost.modules.costs.domain.cost_report import parse_amount
from leasecost.modules.costs.domain.date_ranges import QueryWindow, ensure_utc
from leasecost.schemas.costs import CostResultBucket, FormattedTimeRange, Granularity
from leasecost.shared.adapters.base import CostQueryClient
from leasecost.shared.adapters.rate_limiter import RateLimiter

DailyCosts = Dict[str, Dict[str, float]]


@dataclass(frozen=True)
class FailedBatch:
    account_ids: List[str]
    error: str


@dataclass
class DailyCostsResult:
    """Daily costs for every account whose batch succeeded."""

    costs: DailyCosts = field(default_factory=dict)
    failed_batches: List[FailedBatch] = field(default_factory=list)

    @property
    def missing_accounts(self) -> Set[str]:
        """Accounts whose cost is unknown, as opposed to zero."""
        return {account_id for failed in self.failed_batches for account_id in failed.account_ids}

    @property
    def complete(self) -> bool:
        return not self.failed_batches


def reduce_daily_buckets(buckets: Sequence[CostResultBucket]) -> DailyCosts:
    daily_costs: DailyCosts = {}
    for bucket in buckets:
        for group in bucket.groups:
            daily_costs.setdefault(group.account_id, {})[bucket.bucket_start] = parse_amount(
                group.amount
            )
    return daily_costs


def merge_daily_costs(target: DailyCosts, source: DailyCosts) -> DailyCosts:
    for account_id, days in source.items():
        target.setdefault(account_id, {}).update(days)
    return target


@dataclass
class _SettledBatch:
    index: int
    account_ids: List[str]
    costs: Optional[DailyCosts] = None
    error: Optional[BaseException] = None


class ThrottledDailyCostFetcher:
    """Concurrent, rate-limited daily cost queries over many account batches."""

    def __init__(
        self,
        client: CostQueryClient,
        settings: Optional[Settings] = None,
        limiter_factory: Optional[Callable[[int, float], RateLimiter]] = None,
        logger: Optional[Any] = None,
    ):
        self.client = client
        self.settings = settings or get_settings()
        self.logger = component_logger("daily_cost_fetcher", logger)
        self._limiter_factory = limiter_factory or (
            lambda limit, interval: RateLimiter(limit, interval, logger=self.logger)
        )

    async def get_daily_costs_by_account(
        self,
        account_ids: Iterable[str],
        start: datetime,
        end: datetime,
        max_concurrency: Optional[int] = None,
    ) -> DailyCostsResult:
        """
        DAILY cost per account and day over ``[start, end)``.

        At most ``max_concurrency`` queries start in any rate interval
        (one second by default). Never raises for a collaborator failure.
        """
        concurrency = (
            self.settings.DAILY_COSTS_MAX_CONCURRENCY if max_concurrency is None else max_concurrency
        )
        if concurrency < 1:
            raise ConfigurationError(
                "max_concurrency must be at least 1.", details={"max_concurrency": concurrency}
            )

        unique_accounts = list(dict.fromkeys(account_ids))
        batches = list(batch(unique_accounts, self.settings.COST_EXPLORER_MAX_ACCOUNTS_IN_FILTER))
        result = DailyCostsResult()
        if not batches:
            return result

        time_range = QueryWindow(ensure_utc(start), ensure_utc(end), Granularity.DAILY).formatted()
        limiter = self._limiter_factory(concurrency, self.settings.DAILY_COSTS_RATE_INTERVAL_SECONDS)

        queue: "asyncio.Queue[Tuple[int, List[str]]]" = asyncio.Queue()
        for index, account_batch in enumerate(batches):
            queue.put_nowait((index, account_batch))

        async def worker() -> List[_SettledBatch]:
            settled: List[_SettledBatch] = []
            while True:
                try:
                    index, account_batch = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return settled
                settled.append(
                    await limiter.run(self._fetch_batch, index, account_batch, time_range)
                )

        pool_size = min(concurrency, len(batches))
        pooled = await asyncio.gather(*(worker() for _ in range(pool_size)))

        for outcome in sorted((s for settled in pooled for s in settled), key=lambda s: s.index):
            if outcome.costs is not None:
                merge_daily_costs(result.costs, outcome.costs)
            else:
                result.failed_batches.append(
                    FailedBatch(account_ids=outcome.account_ids, error=str(outcome.error))
                )

        log = self.logger.warning if result.failed_batches else self.logger.info
        log(
            "daily_costs_fetched",
            accounts=len(unique_accounts),
            batches=len(batches),
            failed_batches=len(result.failed_batches),
            missing_accounts=len(result.missing_accounts),
        )
        return result

    async def _fetch_batch(
        self, index: int, account_batch: List[str], time_range: FormattedTimeRange
    ) -> _SettledBatch:
        try:
            buckets = await self.client.query_grouped_cost(
                time_range, Granularity.DAILY, account_batch
            )
            if not buckets:
                self.logger.warning(
                    "cost_data_empty",
                    start=time_range.start,
                    end=time_range.end,
                    batch_index=index,
                    accounts=len(account_batch),
                )
                return _SettledBatch(index, account_batch, costs={})
            return _SettledBatch(index, account_batch, costs=reduce_daily_buckets(buckets))
        except Exception as e:
            self.logger.warning(
                "daily_cost_batch_failed",
                batch_index=index,
                accounts=len(account_batch),
                error=str(e),
                error_type=type(e).__name__,
            )
            return _SettledBatch(index, account_batch, error=e)
