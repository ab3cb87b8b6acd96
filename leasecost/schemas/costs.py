"""
Typed models for the Cost Query Service boundary.

Raw Cost Explorer payloads are validated into these models by the adapter so
the aggregation code never touches untyped response dictionaries.
"""

from enum import Enum
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class Granularity(str, Enum):
    """Time-bucket resolution of a cost query."""

    HOURLY = "HOURLY"
    DAILY = "DAILY"
    MONTHLY = "MONTHLY"


class FormattedTimeRange(BaseModel):
    """Query boundaries already rendered in the API's string format."""

    model_config = ConfigDict(frozen=True)

    start: str
    end: str


class TagFilter(BaseModel):
    """Tag-equality restriction ANDed with the account filter."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    values: List[str] = Field(..., min_length=1)


class CostGroup(BaseModel):
    """One account's cost inside a time bucket."""

    model_config = ConfigDict(frozen=True)

    account_id: str = Field(..., min_length=1)
    # Decimal string as returned by the API; parsed during aggregation.
    amount: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _stringify_amount(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class CostResultBucket(BaseModel):
    """One time bucket returned by a grouped cost query."""

    model_config = ConfigDict(frozen=True)

    bucket_start: str = Field(..., min_length=1)
    groups: List[CostGroup] = Field(default_factory=list)
    estimated: bool = False

    @classmethod
    def from_cost_explorer(cls, raw: dict[str, Any], metric: str) -> "CostResultBucket":
        """
        Validate a single ``ResultsByTime`` entry.

        Groups without a key are dropped; the first key is the linked account.
        Raises pydantic.ValidationError when the bucket has no start.
        """
        groups = []
        for group in raw.get("Groups") or []:
            keys = group.get("Keys") or []
            if not keys or not keys[0]:
                continue
            metric_value = (group.get("Metrics") or {}).get(metric) or {}
            groups.append({"account_id": keys[0], "amount": metric_value.get("Amount")})

        return cls.model_validate(
            {
                "bucket_start": (raw.get("TimePeriod") or {}).get("Start"),
                "groups": groups,
                "estimated": bool(raw.get("Estimated", False)),
            }
        )
