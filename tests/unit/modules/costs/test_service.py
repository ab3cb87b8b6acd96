from unittest.mock import MagicMock

import pytest

from leasecost.modules.costs.domain.service import CostExplorerService, build_cost_explorer_service
from leasecost.schemas.costs import Granularity
from leasecost.shared.adapters.cost_explorer import CostExplorerQueryClient
from tests.utils import make_bucket, utc


def test_build_wires_cost_explorer_client(settings):
    session = MagicMock()

    service = build_cost_explorer_service(settings=settings, session=session)

    assert isinstance(service.client, CostExplorerQueryClient)
    assert service.client.session is session
    assert service.aggregator.client is service.client
    assert service.daily_fetcher.client is service.client
    assert service.aggregator.batch_size == settings.COST_EXPLORER_MAX_ACCOUNTS_IN_FILTER
    assert service.aggregator.splitter.max_days_for_hourly == settings.COST_EXPLORER_MAX_DAYS_FOR_HOURLY


@pytest.mark.asyncio
async def test_service_delegates_all_operations(mock_client, settings, mock_logger):
    mock_client.query_grouped_cost.return_value = [make_bucket("2024-03-02", {"A": "2"})]
    service = CostExplorerService(mock_client, settings=settings, logger=mock_logger)

    leases = {"A": utc(2024, 3, 1)}
    lease_report = await service.get_cost_for_leases(leases, utc(2024, 3, 5), Granularity.DAILY)
    range_report = await service.get_cost_for_range(utc(2024, 3, 1), utc(2024, 3, 5), leases)
    daily = await service.get_daily_costs_by_account(["A"], utc(2024, 3, 1), utc(2024, 3, 5))

    assert lease_report.get_cost("A") == pytest.approx(2.0)
    assert range_report.get_cost("A") == pytest.approx(2.0)
    assert daily.costs == {"A": {"2024-03-02": 2.0}}
    assert mock_client.query_grouped_cost.await_count == 3
