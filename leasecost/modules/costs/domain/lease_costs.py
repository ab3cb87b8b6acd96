"""
Lease Cost Aggregation

Computes per-account cost totals for accounts leased from different start
times. Accounts are queried in batches of at most 199; each batch is queried
from its earliest lease start, and the cost an account accrued before its own
lease began is filtered out while reducing the buckets.

Batches run sequentially and any collaborator failure aborts the whole
aggregation: a partial lease total would be misleading.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from leasecost.core.exceptions import ConfigurationError
from leasecost.core.logging import component_logger
from leasecost.modules.costs.domain.batching import MAX_ACCOUNTS_IN_FILTER, batch
from leasecost.modules.costs.domain.cost_report import CostReport, parse_amount
from leasecost.modules.costs.domain.date_ranges import (
    DateRangeSplitter,
    QueryWindow,
    ensure_utc,
    parse_bucket_start,
    start_of_period,
)
from leasecost.schemas.costs import CostResultBucket, Granularity, TagFilter
from leasecost.shared.adapters.base import CostQueryClient


@dataclass(frozen=True)
class LeaseWindow:
    """An account and the moment its lease began (UTC)."""

    account_id: str
    lease_start: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "lease_start", ensure_utc(self.lease_start))


LeaseInput = Union[Mapping[str, datetime], Iterable[LeaseWindow]]


def to_lease_windows(leases: LeaseInput) -> List[LeaseWindow]:
    """Accept either ``{account_id: lease_start}`` or LeaseWindow objects."""
    if isinstance(leases, Mapping):
        return [LeaseWindow(account_id, start) for account_id, start in leases.items()]
    return list(leases)


def reduce_lease_buckets(
    buckets: Sequence[CostResultBucket],
    lease_starts: Mapping[str, datetime],
    granularity: Granularity,
    logger: Optional[Any] = None,
) -> CostReport:
    """
    Sum bucket costs per account, skipping buckets that begin before the
    account's lease start aligned to ``granularity``.
    """
    report = CostReport()
    for bucket in buckets:
        bucket_start = parse_bucket_start(bucket.bucket_start)
        for group in bucket.groups:
            lease_start = lease_starts.get(group.account_id)
            if lease_start is None:
                if logger is not None:
                    logger.debug(
                        "cost_group_unknown_account",
                        account_id=group.account_id,
                        bucket_start=bucket.bucket_start,
                    )
                continue
            if start_of_period(lease_start, granularity) <= bucket_start:
                report.add_cost(group.account_id, parse_amount(group.amount))
    return report


class LeaseCostAggregator:
    """Orchestrates batched, lease-aware cost queries."""

    def __init__(
        self,
        client: CostQueryClient,
        splitter: Optional[DateRangeSplitter] = None,
        batch_size: int = MAX_ACCOUNTS_IN_FILTER,
        logger: Optional[Any] = None,
    ):
        self.client = client
        self.logger = component_logger("lease_cost_aggregator", logger)
        self.splitter = splitter or DateRangeSplitter(logger=self.logger)
        self.batch_size = batch_size

    async def get_cost_for_leases(
        self,
        leases: LeaseInput,
        end: datetime,
        granularity: Granularity = Granularity.DAILY,
    ) -> CostReport:
        """
        Total cost per account from its lease start through ``end``.

        ``end`` is the last period of interest; the period containing it is
        included. HOURLY requests are split into a DAILY body and an HOURLY
        tail. Raises ConfigurationError before any query when a window is
        outside the API's limits. A batch whose leases all start after ``end``
        is not queried; its accounts contribute no cost.
        """
        if granularity not in (Granularity.DAILY, Granularity.HOURLY):
            raise ConfigurationError(
                f"Lease costs support DAILY or HOURLY granularity, not {granularity.value}."
            )
        end = ensure_utc(end)
        windows = sorted(to_lease_windows(leases), key=lambda w: w.lease_start)

        # Plan every batch first so an invalid window fails before any query.
        plan: List[tuple[Dict[str, datetime], List[QueryWindow]]] = []
        for current_batch in batch(windows, self.batch_size):
            earliest_start = current_batch[0].lease_start
            lease_starts = {w.account_id: w.lease_start for w in current_batch}
            query_windows = self.splitter.split_lease_query(earliest_start, end, granularity)
            if not query_windows:
                self.logger.debug(
                    "lease_batch_skipped",
                    accounts=list(lease_starts),
                    earliest_start=earliest_start.isoformat(),
                    end=end.isoformat(),
                )
                continue
            plan.append((lease_starts, query_windows))

        report = CostReport()
        for lease_starts, query_windows in plan:
            for window in query_windows:
                report.merge(await self._query_and_reduce(window, lease_starts))

        self.logger.info(
            "lease_costs_aggregated",
            accounts=len(windows),
            batches=len(plan),
            granularity=granularity.value,
            total_cost=round(report.total_cost(), 2),
        )
        return report

    async def get_cost_for_range(
        self,
        start: datetime,
        end: datetime,
        leases: LeaseInput,
        tag_filter: Optional[TagFilter] = None,
    ) -> CostReport:
        """
        DAILY cost per account over ``[start, end)``, counting only days on
        or after each account's lease start, optionally restricted by tag.
        """
        window = QueryWindow(ensure_utc(start), ensure_utc(end), Granularity.DAILY)
        self.splitter.validate(window)
        windows = to_lease_windows(leases)

        report = CostReport()
        batches = 0
        for current_batch in batch(windows, self.batch_size):
            lease_starts = {w.account_id: w.lease_start for w in current_batch}
            report.merge(await self._query_and_reduce(window, lease_starts, tag_filter))
            batches += 1

        self.logger.info(
            "range_costs_aggregated",
            accounts=len(windows),
            batches=batches,
            tag=tag_filter.name if tag_filter else None,
            total_cost=round(report.total_cost(), 2),
        )
        return report

    async def _query_and_reduce(
        self,
        window: QueryWindow,
        lease_starts: Dict[str, datetime],
        tag_filter: Optional[TagFilter] = None,
    ) -> CostReport:
        time_range = window.formatted()
        buckets = await self.client.query_grouped_cost(
            time_range, window.granularity, list(lease_starts), tag_filter
        )
        if not buckets:
            self.logger.warning(
                "cost_data_empty",
                start=time_range.start,
                end=time_range.end,
                granularity=window.granularity.value,
                accounts=list(lease_starts),
            )
            return CostReport()
        estimated = sum(1 for bucket in buckets if bucket.estimated)
        if estimated:
            self.logger.info(
                "cost_data_estimated",
                start=time_range.start,
                end=time_range.end,
                estimated_buckets=estimated,
                buckets=len(buckets),
            )
        return reduce_lease_buckets(buckets, lease_starts, window.granularity, self.logger)
