"""
Query window planning for Cost Explorer.

Cost Explorer only serves HOURLY data for the trailing 14 days, and hourly
queries are expensive, so long lease queries are split into a DAILY body and
an HOURLY tail covering the final partial day.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional

from leasecost.core.exceptions import AdapterError, ConfigurationError
from leasecost.core.logging import component_logger
from leasecost.schemas.costs import FormattedTimeRange, Granularity

HOURLY_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
DAILY_FORMAT = "%Y-%m-%d"

MAX_DAYS_FOR_HOURLY = 14


def ensure_utc(dt: datetime) -> datetime:
    """Normalise an aware timestamp to UTC; naive timestamps are rejected."""
    if dt.tzinfo is None or dt.utcoffset() is None:
        raise ConfigurationError(
            "Timestamps must be timezone-aware.", details={"timestamp": dt.isoformat()}
        )
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime, granularity: Granularity) -> str:
    dt = ensure_utc(dt)
    if granularity == Granularity.HOURLY:
        return dt.strftime(HOURLY_FORMAT)
    return dt.strftime(DAILY_FORMAT)


def start_of_period(dt: datetime, granularity: Granularity) -> datetime:
    """Truncate ``dt`` to the start of its hour, day or month."""
    dt = ensure_utc(dt)
    if granularity == Granularity.HOURLY:
        return dt.replace(minute=0, second=0, microsecond=0)
    if granularity == Granularity.DAILY:
        return dt.replace(hour=0, minute=0, second=0, microsecond=0)
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def next_period_start(dt: datetime, granularity: Granularity) -> datetime:
    """Exclusive upper bound that keeps the period containing ``dt``."""
    current = start_of_period(dt, granularity)
    if granularity == Granularity.HOURLY:
        return current + timedelta(hours=1)
    if granularity == Granularity.DAILY:
        return current + timedelta(days=1)
    if current.month == 12:
        return current.replace(year=current.year + 1, month=1)
    return current.replace(month=current.month + 1)


def parse_bucket_start(value: str) -> datetime:
    """Parse a bucket start in either the hourly or the daily API format."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise AdapterError(
            f"Unrecognised bucket start: {value!r}", code="invalid_response"
        ) from e
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class QueryWindow:
    """Half-open ``[start, end)`` interval queried at one granularity."""

    start: datetime
    end: datetime
    granularity: Granularity

    def formatted(self) -> FormattedTimeRange:
        return FormattedTimeRange(
            start=format_timestamp(self.start, self.granularity),
            end=format_timestamp(self.end, self.granularity),
        )


class DateRangeSplitter:
    """Plans the query windows for a lease-cost request."""

    def __init__(
        self,
        max_days_for_hourly: int = MAX_DAYS_FOR_HOURLY,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[Any] = None,
    ):
        self.max_days_for_hourly = max_days_for_hourly
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = component_logger("date_range_splitter", logger)

    def hourly_lookback_floor(self) -> datetime:
        return ensure_utc(self._clock()) - timedelta(days=self.max_days_for_hourly)

    def split_lease_query(
        self, start: datetime, end: datetime, granularity: Granularity
    ) -> List[QueryWindow]:
        """
        Return the windows to query for ``[start, end]`` where ``end`` is the
        last period of interest.

        Every window is validated before returning, so a caller can issue none
        of its queries when any one of them would be rejected. A lease that
        starts after the last period of interest has nothing to query and
        yields no windows.
        """
        start = ensure_utc(start)
        end = ensure_utc(end)

        if granularity in (Granularity.HOURLY, Granularity.DAILY):
            query_end = next_period_start(end, granularity)
            if start >= query_end:
                self.logger.debug(
                    "lease_query_empty",
                    start=start.isoformat(),
                    end=end.isoformat(),
                    granularity=granularity.value,
                )
                return []

        if granularity == Granularity.HOURLY:
            if end - start < timedelta(hours=24):
                windows = [
                    QueryWindow(start, next_period_start(end, Granularity.HOURLY), Granularity.HOURLY)
                ]
            else:
                last_daily_date = start_of_period(end, Granularity.DAILY)
                windows = [
                    QueryWindow(start, last_daily_date, Granularity.DAILY),
                    QueryWindow(
                        last_daily_date,
                        next_period_start(end, Granularity.HOURLY),
                        Granularity.HOURLY,
                    ),
                ]
        elif granularity == Granularity.DAILY:
            windows = [
                QueryWindow(start, next_period_start(end, Granularity.DAILY), Granularity.DAILY)
            ]
        else:
            raise ConfigurationError(
                f"Lease costs support DAILY or HOURLY granularity, not {granularity.value}."
            )

        for window in windows:
            self.validate(window)

        self.logger.debug(
            "lease_query_split",
            granularity=granularity.value,
            windows=[(w.granularity.value, w.start.isoformat(), w.end.isoformat()) for w in windows],
        )
        return windows

    def validate(self, window: QueryWindow) -> None:
        """Raise ConfigurationError for a window the API would reject."""
        formatted = window.formatted()
        if window.start >= window.end or formatted.start >= formatted.end:
            raise ConfigurationError(
                "Query window is empty.",
                details={"start": formatted.start, "end": formatted.end},
            )
        if window.granularity == Granularity.HOURLY:
            floor = self.hourly_lookback_floor()
            if window.start < floor:
                raise ConfigurationError(
                    f"Hourly data is only available for the last {self.max_days_for_hourly} days.",
                    details={"start": window.start.isoformat(), "earliest_allowed": floor.isoformat()},
                )
