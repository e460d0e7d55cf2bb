"""
Canonical point model shared by every source and the destination store
"""

from pydantic import BaseModel, Field, validator
from typing import Dict, Tuple
from datetime import datetime, timedelta, timezone
import math
from influxdb_client import Point as LinePoint, WritePrecision

FIELD_KEY = "value"


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MILLISECOND = timedelta(milliseconds=1)


def to_millis(value: datetime) -> int:
    """Epoch milliseconds of an aware (or UTC-naive) datetime"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - EPOCH) // ONE_MILLISECOND


def from_millis(millis: int) -> datetime:
    """UTC datetime for epoch milliseconds"""
    return EPOCH + timedelta(milliseconds=int(millis))


class Point(BaseModel):
    """
    One named, timestamped, tagged numeric measurement.

    Identity for reconciliation is ``(name, timestamp)`` only; value and
    tags never take part in deduplication.
    """

    name: str = Field(..., min_length=1)
    timestamp: datetime
    tags: Dict[str, str] = Field(default_factory=dict)
    value: float

    @validator("timestamp")
    def truncate_to_millis(cls, v):
        """Store instants as UTC with millisecond precision"""
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        else:
            v = v.astimezone(timezone.utc)
        return v.replace(microsecond=(v.microsecond // 1000) * 1000)

    @validator("value")
    def finite_value(cls, v):
        if not math.isfinite(v):
            raise ValueError("Point value must be a finite number")
        return v

    @validator("tags", pre=True)
    def clean_tags(cls, v):
        """Drop blank tag values; line protocol cannot carry them"""
        if v is None:
            return {}
        return {str(k): str(val) for k, val in v.items() if str(val).strip()}

    @property
    def timestamp_ms(self) -> int:
        return to_millis(self.timestamp)

    @property
    def identity(self) -> Tuple[str, int]:
        return (self.name, self.timestamp_ms)

    def to_line_protocol(self) -> str:
        """Render as an InfluxDB line with a single ``value`` field at ms precision"""
        line = LinePoint(self.name).field(FIELD_KEY, self.value).time(
            self.timestamp_ms, WritePrecision.MS
        )
        for key in sorted(self.tags):
            line = line.tag(key, self.tags[key])
        return line.to_line_protocol()

    class Config:
        frozen = True
