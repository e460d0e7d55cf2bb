"""
Pytest configuration and fixtures
"""

import pytest
from datetime import datetime, timezone
from typing import List
from sqlalchemy import create_engine, insert
from models.base import metadata
from models.health_connect import (
    application_info_table,
    heart_rate_record_table,
    heart_rate_record_series_table,
    steps_record_table,
    sleep_session_record_table,
    sleep_stages_table,
    weight_record_table,
)
from schemas.point import to_millis
from core.exceptions import WriteError

T0 = datetime(2024, 1, 15, 22, 0, tzinfo=timezone.utc)
T0_MS = to_millis(T0)
MINUTE_MS = 60_000


class FakeTransport:
    """In-memory stand-in for InfluxTransport"""

    def __init__(self, existing=None, fail_on_batch=None, query_error=None):
        self.batches: List[list] = []
        self.queries: List[tuple] = []
        self.existing = set(existing or [])
        self.fail_on_batch = fail_on_batch
        self.query_error = query_error

    @property
    def points(self) -> list:
        return [point for batch in self.batches for point in batch]

    async def write_batch(self, points):
        if self.fail_on_batch is not None and len(self.batches) == self.fail_on_batch:
            raise WriteError("Write rejected with status 400", context={"status_code": 400})
        self.batches.append(list(points))

    async def query_timestamps(self, measurement, start, end):
        self.queries.append((measurement, start, end))
        if self.query_error is not None:
            raise self.query_error
        return set(self.existing)


@pytest.fixture
def fake_transport():
    """Transport recording every batch written"""
    return FakeTransport()


@pytest.fixture
def funds_csv(tmp_path):
    """Two-row-header CSV with currency and percent cells"""
    path = tmp_path / "funds.csv"
    path.write_text(
        "timestamp,Fund A,Fund A,Fund B\n"
        ",Value,Return,Value\n"
        "2024-01-15 10:00:00,\"$1,234.50\",12.5%,€900\n"
        "2024-01-16 10:00:00,\"$1,300.00\",13.0%,€910\n"
        "2024-01-17 10:00:00,\"$1,310.25\",n/a,€915\n",
        encoding="utf-8"
    )
    return path


@pytest.fixture
def health_db(tmp_path):
    """Health Connect export with heart rate, steps, sleep and weight rows"""
    path = tmp_path / "health_connect_export.db"
    engine = create_engine(f"sqlite:///{path}")

    tables = [
        application_info_table,
        heart_rate_record_table,
        heart_rate_record_series_table,
        steps_record_table,
        sleep_session_record_table,
        sleep_stages_table,
        weight_record_table,
    ]
    metadata.create_all(engine, tables=tables)

    with engine.begin() as conn:
        conn.execute(insert(application_info_table), [
            {"row_id": 1, "package_name": "com.example.watch", "app_name": "Watch"},
        ])
        conn.execute(insert(heart_rate_record_table), [
            {"row_id": 1, "start_time": T0_MS, "end_time": T0_MS + 3 * MINUTE_MS, "app_info_id": 1},
        ])
        conn.execute(insert(heart_rate_record_series_table), [
            {"row_id": i + 1, "heart_rate_record_id": 1, "epoch_millis": T0_MS + i * MINUTE_MS,
             "beats_per_minute": 60 + i}
            for i in range(3)
        ])
        conn.execute(insert(steps_record_table), [
            {"row_id": 1, "start_time": T0_MS, "end_time": T0_MS + 15 * MINUTE_MS, "count": 420,
             "app_info_id": 1},
        ])
        conn.execute(insert(sleep_session_record_table), [
            {"row_id": 1, "start_time": T0_MS, "end_time": T0_MS + 60 * MINUTE_MS, "title": "Night",
             "app_info_id": 1},
        ])
        conn.execute(insert(sleep_stages_table), [
            {"row_id": 1, "parent_key": 1, "stage_start_time": T0_MS,
             "stage_end_time": T0_MS + 30 * MINUTE_MS, "stage_type": 5},
            {"row_id": 2, "parent_key": 1, "stage_start_time": T0_MS + 30 * MINUTE_MS,
             "stage_end_time": T0_MS + 60 * MINUTE_MS, "stage_type": 6},
        ])
        conn.execute(insert(weight_record_table), [
            {"row_id": 1, "time": T0_MS, "weight": 72500.0, "app_info_id": 99},
        ])

    engine.dispose()
    return path


@pytest.fixture
def transport_factory():
    """Build FakeTransport instances with custom behaviour"""
    return FakeTransport
