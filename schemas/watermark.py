"""
Persisted import watermark
"""

from pydantic import BaseModel, Field, validator
from typing import Optional
from datetime import datetime, timezone


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Watermark(BaseModel):
    """
    High-water mark of a source's last successful import.

    Field names match the on-disk state document:

        {
          "last_imported_timestamp": "2023-07-15T10:30:00Z",
          "source_file": "funds.csv",
          "records_imported": 42
        }

    ``source_file`` is the source identity; a state document saved for one
    identity is never reused for another.
    """

    last_imported_timestamp: Optional[datetime] = None
    source_file: str
    records_imported: int = Field(0, ge=0)

    @validator("last_imported_timestamp")
    def ensure_utc(cls, v):
        if v is None:
            return v
        return as_utc(v)

    @classmethod
    def empty(cls, source_file: str) -> "Watermark":
        return cls(source_file=source_file)

    @property
    def is_empty(self) -> bool:
        return self.last_imported_timestamp is None

    def advance(self, timestamp: Optional[datetime], records: int) -> "Watermark":
        """
        Return the watermark moved forward after a successful dispatch.

        The timestamp never moves backwards; a ``None`` timestamp leaves it
        unchanged. The record counter is advisory and only grows.
        """
        new_timestamp = self.last_imported_timestamp
        if timestamp is not None:
            timestamp = as_utc(timestamp)
            if new_timestamp is None or timestamp > new_timestamp:
                new_timestamp = timestamp

        return Watermark(
            last_imported_timestamp=new_timestamp,
            source_file=self.source_file,
            records_imported=self.records_imported + max(records, 0),
        )
