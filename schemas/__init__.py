"""
Pydantic schemas for data validation and serialization.

This package defines the models that flow through the import pipeline:

Schemas:
    point: Canonical Point model and epoch-millisecond helpers
    records: Raw source records (HealthRecord, CsvRecord)
    watermark: Persisted import watermark

Features:
    - Automatic data validation
    - Immutable points with millisecond UTC timestamps
    - JSON serialization of the watermark state file

Usage:
    from schemas import Point, Watermark
    from schemas.records import CsvRecord, HealthRecord

Example:
    point = Point(
        name="HeartRate",
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        tags={"record_type": "HeartRate"},
        value=62.0,
    )
    assert point.identity == ("HeartRate", 1704067200000)
"""

from schemas.point import Point, to_millis, from_millis
from schemas.records import HealthRecord, CsvRecord
from schemas.watermark import Watermark

__all__ = [
    "Point",
    "to_millis",
    "from_millis",
    "HealthRecord",
    "CsvRecord",
    "Watermark",
]
