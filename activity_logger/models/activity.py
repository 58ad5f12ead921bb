from __future__ import annotations

"""Activity record model and timestamp helpers."""
from datetime import datetime
from typing import Any, Tuple
from uuid import UUID, uuid4

import pytz
from pydantic import BaseModel, ConfigDict, Field, field_validator


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return pytz.utc.localize(value)
    return value.astimezone(pytz.utc)


def normalize_timestamp(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime at CQL millisecond precision.

    Naive datetimes are taken to already be in UTC, which is also how the
    driver hands them back from ``timestamp`` columns. Writes and range
    bounds are truncated alike, so a record written at ``t`` is found by a
    range starting or ending at ``t``.
    """

    value = to_utc(value)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


class ActivityRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: UUID
    timestamp: datetime
    activity_id: UUID = Field(default_factory=uuid4)
    activity_type: str = Field(min_length=1)

    @field_validator("timestamp")
    @classmethod
    def _utc_millis(cls, value: datetime) -> datetime:
        return normalize_timestamp(value)

    @classmethod
    def from_row(cls, row: Any) -> "ActivityRecord":
        return cls(
            user_id=row.user_id,
            timestamp=row.timestamp,
            activity_id=row.activity_id,
            activity_type=row.activity_type,
        )

    def clustering_key(self) -> Tuple[float, int]:
        """Sort key matching ``CLUSTERING ORDER BY (timestamp DESC, activity_id ASC)``."""
        return (-self.timestamp.timestamp(), self.activity_id.int)

    def describe(self) -> str:
        return (
            f"user_id: {self.user_id}, activity_id: {self.activity_id}, "
            f"timestamp: {self.timestamp.isoformat()}, activity_type: {self.activity_type}"
        )
