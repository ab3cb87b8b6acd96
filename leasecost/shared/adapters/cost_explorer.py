"""
AWS Cost Explorer client (Native Async)

Implements the Cost Query Service on top of ``GetCostAndUsage`` using aioboto3.
Owns the concerns the aggregation layer deliberately leaves out: pagination,
retries with backoff, request construction and response validation.
"""

from functools import wraps
from typing import Any, Collection, Dict, List, Optional

import aioboto3
import tenacity
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from pydantic import ValidationError

from leasecost.core.config import COST_EXPLORER_FILTER_LIMIT, Settings, get_settings
from leasecost.core.exceptions import AdapterError, ConfigurationError
from leasecost.core.logging import component_logger
from leasecost.schemas.costs import (
    CostResultBucket,
    FormattedTimeRange,
    Granularity,
    TagFilter,
)
from leasecost.shared.adapters.base import CostQueryClient

THROTTLING_ERROR_CODES = frozenset(
    {"ThrottlingException", "Throttling", "TooManyRequestsException", "LimitExceededException"}
)
TRANSIENT_ERRORS = (ConnectTimeoutError, ReadTimeoutError, EndpointConnectionError)


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, TRANSIENT_ERRORS):
        return True
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "") in THROTTLING_ERROR_CODES
    return False


def with_aws_retry(func: Any) -> Any:
    """
    Exponential backoff retry decorator for Cost Explorer calls.
    Targets transient network failures and throttling responses.
    """

    @wraps(func)
    async def wrapper(self: "CostExplorerQueryClient", *args: Any, **kwargs: Any) -> Any:
        def _before_sleep(retry_state: tenacity.RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            wait = retry_state.next_action.sleep if retry_state.next_action else None
            self.logger.debug(
                "aws_retrying",
                attempt=retry_state.attempt_number,
                wait_seconds=wait,
                error=str(exc) if exc else None,
                function=func.__name__,
            )

        retry_config: Dict[str, Any] = {
            "retry": tenacity.retry_if_exception(_is_retryable),
            "wait": tenacity.wait_exponential(multiplier=1, min=2, max=10),
            "stop": tenacity.stop_after_attempt(4),
            "before_sleep": _before_sleep,
            "reraise": True,
        }
        if self.settings.TESTING:
            # Avoid real sleeps during tests while preserving retry semantics.
            async def _no_sleep(_seconds: float) -> None:
                return None

            retry_config["sleep"] = _no_sleep
            retry_config["wait"] = tenacity.wait_none()

        retrying = tenacity.AsyncRetrying(**retry_config)
        async for attempt in retrying:
            with attempt:
                return await func(self, *args, **kwargs)

    return wrapper


def build_get_cost_and_usage_params(
    time_range: FormattedTimeRange,
    granularity: Granularity,
    account_filter: Collection[str],
    metric: str,
    tag_filter: Optional[TagFilter] = None,
) -> Dict[str, Any]:
    """Build a ``GetCostAndUsage`` request grouped by linked account."""
    account_dimension: Dict[str, Any] = {
        "Dimensions": {"Key": "LINKED_ACCOUNT", "Values": list(account_filter)}
    }
    if tag_filter is not None:
        query_filter: Dict[str, Any] = {
            "And": [
                account_dimension,
                {
                    "Tags": {
                        "Key": tag_filter.name,
                        "MatchOptions": ["EQUALS"],
                        "Values": list(tag_filter.values),
                    }
                },
            ]
        }
    else:
        query_filter = account_dimension

    return {
        "TimePeriod": {"Start": time_range.start, "End": time_range.end},
        "Granularity": granularity.value,
        "Metrics": [metric],
        "Filter": query_filter,
        "GroupBy": [{"Type": "DIMENSION", "Key": "LINKED_ACCOUNT"}],
    }


class CostExplorerQueryClient(CostQueryClient):
    """Cost Query Service backed by AWS Cost Explorer via aioboto3."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session: Optional[Any] = None,
        logger: Optional[Any] = None,
    ):
        self.settings = settings or get_settings()
        self.session = session or aioboto3.Session(profile_name=self.settings.AWS_PROFILE)
        self.logger = component_logger("cost_explorer_client", logger)
        self.boto_config = BotoConfig(
            read_timeout=self.settings.AWS_READ_TIMEOUT_SECONDS,
            connect_timeout=self.settings.AWS_CONNECT_TIMEOUT_SECONDS,
            retries={"max_attempts": 3, "mode": "adaptive"},
        )

    async def query_grouped_cost(
        self,
        time_range: FormattedTimeRange,
        granularity: Granularity,
        account_filter: Collection[str],
        tag_filter: Optional[TagFilter] = None,
    ) -> List[CostResultBucket]:
        if len(account_filter) > COST_EXPLORER_FILTER_LIMIT:
            raise ConfigurationError(
                f"Cost Explorer accepts at most {COST_EXPLORER_FILTER_LIMIT} accounts per filter.",
                details={"accounts": len(account_filter)},
            )

        metric = self.settings.COST_EXPLORER_METRIC
        params = build_get_cost_and_usage_params(
            time_range, granularity, account_filter, metric, tag_filter
        )

        try:
            raw_results = await self._fetch_results_by_time(params)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            self.logger.error(
                "cost_explorer_query_failed",
                error=str(e),
                error_code=error_code,
                granularity=granularity.value,
            )
            raise AdapterError(
                message=f"AWS Cost Explorer failure: {str(e)}",
                code=error_code,
                details={"time_range": time_range.model_dump()},
            ) from e
        except BotoCoreError as e:
            self.logger.error("cost_explorer_transport_failed", error=str(e))
            raise AdapterError(
                message=f"AWS Cost Explorer unreachable: {str(e)}",
                details={"time_range": time_range.model_dump()},
            ) from e

        try:
            return [CostResultBucket.from_cost_explorer(raw, metric) for raw in raw_results]
        except ValidationError as e:
            raise AdapterError(
                message=f"Malformed Cost Explorer response: {e}",
                code="invalid_response",
            ) from e

    @with_aws_retry
    async def _fetch_results_by_time(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Collect ``ResultsByTime`` across every page of a single query."""
        request_params = dict(params)
        results: List[Dict[str, Any]] = []
        max_pages = self.settings.COST_EXPLORER_MAX_PAGES

        async with self.session.client(
            "ce",
            region_name=self.settings.AWS_REGION,
            config=self.boto_config,
        ) as client:
            pages_fetched = 0
            response: Dict[str, Any] = {}
            while pages_fetched < max_pages:
                response = await client.get_cost_and_usage(**request_params)
                results.extend(response.get("ResultsByTime") or [])
                pages_fetched += 1
                if response.get("NextPageToken"):
                    request_params["NextPageToken"] = response["NextPageToken"]
                else:
                    break

            if pages_fetched >= max_pages and response.get("NextPageToken"):
                self.logger.warning(
                    "cost_explorer_page_limit_reached",
                    pages=pages_fetched,
                )

        return results
