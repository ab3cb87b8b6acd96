import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from leasecost.core.config import Settings
from leasecost.core.exceptions import AdapterError, ConfigurationError
from leasecost.modules.costs.domain.daily_costs import (
    DailyCostsResult,
    ThrottledDailyCostFetcher,
    merge_daily_costs,
    reduce_daily_buckets,
)
from leasecost.schemas.costs import Granularity
from leasecost.shared.adapters.rate_limiter import RateLimiter
from tests.utils import FakeClock, make_bucket, utc


@pytest.fixture
def small_batch_settings():
    return Settings(TESTING=True, COST_EXPLORER_MAX_ACCOUNTS_IN_FILTER=2)


def _no_wait_limiter():
    clock = FakeClock()
    limiter = RateLimiter(100, 1.0, clock=clock, sleep=clock.sleep)
    limiter.run = AsyncMock(side_effect=limiter.run)
    return limiter


def _respond_per_account(time_range, granularity, accounts, tag_filter=None):
    return [
        make_bucket("2024-03-01", {a: "1.0" for a in accounts}),
        make_bucket("2024-03-02", {a: "2.5" for a in accounts}),
    ]


@pytest.mark.asyncio
async def test_failed_batch_is_dropped_and_reported(mock_client, mock_logger, small_batch_settings):
    def respond(time_range, granularity, accounts, tag_filter=None):
        if "a3" in accounts:
            raise AdapterError("throttled to death")
        return _respond_per_account(time_range, granularity, accounts)

    mock_client.query_grouped_cost.side_effect = respond
    fetcher = ThrottledDailyCostFetcher(mock_client, settings=small_batch_settings, logger=mock_logger)

    result = await fetcher.get_daily_costs_by_account(
        ["a1", "a2", "a3", "a4", "a5", "a6"], utc(2024, 3, 1), utc(2024, 3, 3)
    )

    assert set(result.costs) == {"a1", "a2", "a5", "a6"}
    assert result.costs["a5"] == {"2024-03-01": 1.0, "2024-03-02": 2.5}
    assert [f.account_ids for f in result.failed_batches] == [["a3", "a4"]]
    assert "throttled to death" in result.failed_batches[0].error
    assert result.missing_accounts == {"a3", "a4"}
    assert not result.complete
    warned = [c.args[0] for c in mock_logger.warning.call_args_list]
    assert "daily_cost_batch_failed" in warned


@pytest.mark.asyncio
async def test_every_batch_queried_daily_over_given_range(mock_client, mock_logger, small_batch_settings):
    mock_client.query_grouped_cost.side_effect = _respond_per_account
    fetcher = ThrottledDailyCostFetcher(mock_client, settings=small_batch_settings, logger=mock_logger)

    result = await fetcher.get_daily_costs_by_account(["a1", "a2", "a3"], utc(2024, 3, 1), utc(2024, 3, 3))

    calls = mock_client.query_grouped_cost.await_args_list
    assert sorted(c.args[2] for c in calls) == [["a1", "a2"], ["a3"]]
    for call in calls:
        time_range, granularity = call.args[0], call.args[1]
        assert granularity == Granularity.DAILY
        assert time_range.model_dump() == {"start": "2024-03-01", "end": "2024-03-03"}
    assert result.complete
    assert set(result.costs) == {"a1", "a2", "a3"}


@pytest.mark.asyncio
async def test_duplicate_accounts_are_queried_once(mock_client, mock_logger, small_batch_settings):
    mock_client.query_grouped_cost.side_effect = _respond_per_account
    fetcher = ThrottledDailyCostFetcher(mock_client, settings=small_batch_settings, logger=mock_logger)

    await fetcher.get_daily_costs_by_account(["a1", "a1", "a2", "a1"], utc(2024, 3, 1), utc(2024, 3, 3))

    (call,) = mock_client.query_grouped_cost.await_args_list
    assert call.args[2] == ["a1", "a2"]


@pytest.mark.asyncio
async def test_each_dispatch_goes_through_limiter(mock_client, mock_logger, small_batch_settings):
    mock_client.query_grouped_cost.side_effect = _respond_per_account
    limiter = _no_wait_limiter()
    factory = MagicMock(return_value=limiter)
    fetcher = ThrottledDailyCostFetcher(
        mock_client, settings=small_batch_settings, limiter_factory=factory, logger=mock_logger
    )

    await fetcher.get_daily_costs_by_account(
        [f"a{i}" for i in range(5)], utc(2024, 3, 1), utc(2024, 3, 3), max_concurrency=3
    )

    factory.assert_called_once_with(3, 1.0)
    assert limiter.run.await_count == 3
    assert len(limiter._starts) == 3


@pytest.mark.asyncio
async def test_in_flight_queries_bounded_by_worker_pool(mock_client, mock_logger, small_batch_settings):
    in_flight = 0
    peak = 0

    async def respond(time_range, granularity, accounts, tag_filter=None):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        in_flight -= 1
        return _respond_per_account(time_range, granularity, accounts)

    mock_client.query_grouped_cost.side_effect = respond
    fetcher = ThrottledDailyCostFetcher(
        mock_client,
        settings=small_batch_settings,
        limiter_factory=lambda limit, interval: _no_wait_limiter(),
        logger=mock_logger,
    )

    result = await fetcher.get_daily_costs_by_account(
        [f"a{i}" for i in range(12)], utc(2024, 3, 1), utc(2024, 3, 3), max_concurrency=2
    )

    assert mock_client.query_grouped_cost.await_count == 6
    assert 1 < peak <= 2
    assert len(result.costs) == 12


@pytest.mark.asyncio
async def test_all_batches_failing_still_returns(mock_client, mock_logger, small_batch_settings):
    mock_client.query_grouped_cost.side_effect = RuntimeError("network down")
    fetcher = ThrottledDailyCostFetcher(mock_client, settings=small_batch_settings, logger=mock_logger)

    result = await fetcher.get_daily_costs_by_account(["a1", "a2", "a3"], utc(2024, 3, 1), utc(2024, 3, 3))

    assert result.costs == {}
    assert result.missing_accounts == {"a1", "a2", "a3"}


@pytest.mark.asyncio
async def test_empty_batch_result_is_not_a_failure(mock_client, mock_logger, small_batch_settings):
    fetcher = ThrottledDailyCostFetcher(mock_client, settings=small_batch_settings, logger=mock_logger)

    result = await fetcher.get_daily_costs_by_account(["a1"], utc(2024, 3, 1), utc(2024, 3, 3))

    assert result.costs == {}
    assert result.complete
    assert mock_logger.warning.call_args_list[0].args[0] == "cost_data_empty"


@pytest.mark.asyncio
async def test_no_accounts_issues_no_queries(mock_client, settings):
    fetcher = ThrottledDailyCostFetcher(mock_client, settings=settings)

    result = await fetcher.get_daily_costs_by_account([], utc(2024, 3, 1), utc(2024, 3, 3))

    assert result == DailyCostsResult()
    mock_client.query_grouped_cost.assert_not_awaited()


@pytest.mark.asyncio
async def test_non_positive_concurrency_is_rejected(mock_client, settings):
    fetcher = ThrottledDailyCostFetcher(mock_client, settings=settings)
    with pytest.raises(ConfigurationError):
        await fetcher.get_daily_costs_by_account(["a1"], utc(2024, 3, 1), utc(2024, 3, 3), max_concurrency=0)


def test_reduce_and_merge_daily_costs():
    batch_costs = reduce_daily_buckets(
        [make_bucket("2024-03-01", {"A": "1.25", "B": None}), make_bucket("2024-03-02", {"A": "oops"})]
    )
    assert batch_costs == {"A": {"2024-03-01": 1.25, "2024-03-02": 0.0}, "B": {"2024-03-01": 0.0}}

    merged = merge_daily_costs({"A": {"2024-02-29": 9.0}}, batch_costs)
    assert merged["A"] == {"2024-02-29": 9.0, "2024-03-01": 1.25, "2024-03-02": 0.0}
    assert merged["B"] == {"2024-03-01": 0.0}
