"""Facade over lease aggregation and daily cost fetching for one client."""

from datetime import datetime
from typing import Any, Iterable, Optional

from leasecost.core.config import Settings, get_settings
from leasecost.core.logging import component_logger
from leasecost.modules.costs.domain.cost_report import CostReport
from leasecost.modules.costs.domain.daily_costs import DailyCostsResult, ThrottledDailyCostFetcher
from leasecost.modules.costs.domain.date_ranges import DateRangeSplitter
from leasecost.modules.costs.domain.lease_costs import LeaseCostAggregator, LeaseInput
from leasecost.schemas.costs import Granularity, TagFilter
from leasecost.shared.adapters.base import CostQueryClient
from leasecost.shared.adapters.cost_explorer import CostExplorerQueryClient


class CostExplorerService:
    def __init__(
        self,
        client: CostQueryClient,
        settings: Optional[Settings] = None,
        splitter: Optional[DateRangeSplitter] = None,
        logger: Optional[Any] = None,
    ):
        self.settings = settings or get_settings()
        self.logger = component_logger("cost_explorer_service", logger)
        self.client = client
        self.aggregator = LeaseCostAggregator(
            client,
            splitter=splitter
            or DateRangeSplitter(self.settings.COST_EXPLORER_MAX_DAYS_FOR_HOURLY, logger=self.logger),
            batch_size=self.settings.COST_EXPLORER_MAX_ACCOUNTS_IN_FILTER,
            logger=self.logger,
        )
        self.daily_fetcher = ThrottledDailyCostFetcher(client, settings=self.settings, logger=self.logger)

    async def get_cost_for_leases(
        self,
        leases: LeaseInput,
        end: datetime,
        granularity: Granularity = Granularity.DAILY,
    ) -> CostReport:
        return await self.aggregator.get_cost_for_leases(leases, end, granularity)

    async def get_cost_for_range(
        self,
        start: datetime,
        end: datetime,
        leases: LeaseInput,
        tag_filter: Optional[TagFilter] = None,
    ) -> CostReport:
        return await self.aggregator.get_cost_for_range(start, end, leases, tag_filter)

    async def get_daily_costs_by_account(
        self,
        account_ids: Iterable[str],
        start: datetime,
        end: datetime,
        max_concurrency: Optional[int] = None,
    ) -> DailyCostsResult:
        return await self.daily_fetcher.get_daily_costs_by_account(
            account_ids, start, end, max_concurrency
        )


def build_cost_explorer_service(
    settings: Optional[Settings] = None,
    session: Optional[Any] = None,
    logger: Optional[Any] = None,
) -> CostExplorerService:
    """Wire a CostExplorerService against AWS Cost Explorer."""
    settings = settings or get_settings()
    client = CostExplorerQueryClient(settings=settings, session=session, logger=logger)
    return CostExplorerService(client, settings=settings, logger=logger)
