"""
Integration tests for the complete import pipeline
"""

import json
import logging
import pytest
from datetime import datetime, timedelta, timezone
from ingestion.checkpoint import load_watermark
from ingestion.runner import CsvImportOptions, HealthImportOptions, ImportRunner
from schemas.point import to_millis
from core.config import Settings
from core.exceptions import SourceUnavailableError, WriteError

T0 = datetime(2024, 1, 15, 22, 0, tzinfo=timezone.utc)
T0_MS = to_millis(T0)


def csv_options(funds_csv, state_file, **overrides):
    options = {
        "source": str(funds_csv),
        "measurement": "funds",
        "header_rows": 2,
        "tag_key": "fund",
        "state_file": str(state_file),
    }
    options.update(overrides)
    return CsvImportOptions(**options)


@pytest.mark.asyncio
async def test_csv_import_end_to_end(funds_csv, fake_transport, tmp_path):
    """
    Integration test: Extract → Select → Normalize → Dispatch → Watermark
    """
    state_file = tmp_path / ".import_state.json"
    runner = ImportRunner(fake_transport)

    result = await runner.run_csv_import(csv_options(funds_csv, state_file))

    # Verify result
    assert result["status"] == "success"
    assert result["mode"] == "sync"
    assert result["records_extracted"] == 3
    assert result["records_selected"] == 3
    assert result["records_failed"] == 0
    assert result["points_written"] == 8
    assert result["state_saved"] is True
    assert result["watermark"] == "2024-01-17T10:00:00+00:00"

    # Verify points
    first = fake_transport.points[0]
    assert first.name == "Value"
    assert first.value == 1234.5
    assert first.tags == {"fund": "Fund_A", "record_type": "funds"}
    assert {p.name for p in fake_transport.points} == {"Value", "Return"}

    # Verify watermark
    watermark = load_watermark(state_file, str(funds_csv))
    assert watermark.last_imported_timestamp == datetime(2024, 1, 17, 10, tzinfo=timezone.utc)
    assert watermark.records_imported == 3


@pytest.mark.asyncio
async def test_second_run_imports_only_new_rows(funds_csv, transport_factory, tmp_path):
    """Test the watermark is monotonic and a re-run only sends appended rows"""
    state_file = tmp_path / "state.json"

    first_transport = transport_factory()
    await ImportRunner(first_transport).run_csv_import(csv_options(funds_csv, state_file))

    # Re-run without changes: nothing new
    idle_transport = transport_factory()
    idle = await ImportRunner(idle_transport).run_csv_import(csv_options(funds_csv, state_file))
    assert idle["status"] == "no_new_data"
    assert idle["records_skipped"] == 3
    assert idle_transport.batches == []

    # Append one row
    with funds_csv.open("a", encoding="utf-8") as handle:
        handle.write("2024-01-18 10:00:00,\"$1,320.00\",14.0%,€920\n")

    second_transport = transport_factory()
    result = await ImportRunner(second_transport).run_csv_import(csv_options(funds_csv, state_file))

    # Assertions
    assert result["records_selected"] == 1
    assert result["points_written"] == 3
    assert {p.timestamp for p in second_transport.points} == {datetime(2024, 1, 18, 10, tzinfo=timezone.utc)}
    watermark = load_watermark(state_file, str(funds_csv))
    assert watermark.last_imported_timestamp == datetime(2024, 1, 18, 10, tzinfo=timezone.utc)
    assert watermark.records_imported == 4


@pytest.mark.asyncio
async def test_force_all_reimports_everything(funds_csv, transport_factory, tmp_path):
    state_file = tmp_path / "state.json"
    await ImportRunner(transport_factory()).run_csv_import(csv_options(funds_csv, state_file))

    transport = transport_factory()
    result = await ImportRunner(transport).run_csv_import(
        csv_options(funds_csv, state_file, force_all=True)
    )

    assert result["records_selected"] == 3
    assert len(transport.points) == 8


@pytest.mark.asyncio
async def test_dry_run_leaves_state_untouched(funds_csv, tmp_path):
    """Test dry-run never calls the transport and never writes the state file"""
    state_file = tmp_path / "state.json"
    transport = _ExplodingTransport()
    preview = []

    result = await ImportRunner(transport, preview_sink=preview.append).run_csv_import(
        csv_options(funds_csv, state_file, dry_run=True)
    )

    # Assertions
    assert result["dry_run"] is True
    assert result["points_written"] == 8
    assert result["state_saved"] is False
    assert not state_file.exists()
    assert preview[0] == "Dry-run mode: would write 8 points"
    assert len(preview) == 9


@pytest.mark.asyncio
async def test_bad_row_is_isolated(tmp_path, fake_transport):
    """Test an unparseable timestamp fails one row and the watermark skips it"""
    source = tmp_path / "readings.csv"
    source.write_text(
        "timestamp,temperature\n"
        "2024-01-15 10:00:00,21.5\n"
        "yesterday,22.0\n"
        "2024-01-15 11:00:00,21.0\n",
        encoding="utf-8"
    )
    state_file = tmp_path / "state.json"

    result = await ImportRunner(fake_transport).run_csv_import(
        CsvImportOptions(source=str(source), state_file=str(state_file))
    )

    # Assertions
    assert result["status"] == "partial_success"
    assert result["records_selected"] == 3
    assert result["records_failed"] == 1
    assert result["error_details"][0]["line_number"] == 3
    assert result["points_written"] == 2
    assert result["watermark"] == "2024-01-15T11:00:00+00:00"


@pytest.mark.asyncio
async def test_unresolved_rows_dropped_when_fail_closed(tmp_path, fake_transport, caplog):
    """Test a dropped row is logged with its physical line and raw time value"""
    source = tmp_path / "readings.csv"
    source.write_text(
        "timestamp,temperature\n2024-01-15 10:00:00,21.5\n\nyesterday,22.0\n",
        encoding="utf-8"
    )

    with caplog.at_level(logging.WARNING, logger="ingestion.selector"):
        result = await ImportRunner(fake_transport, settings=Settings(TIMESTAMP_FAIL_OPEN=False)).run_csv_import(
            CsvImportOptions(source=str(source), state_file=str(tmp_path / "state.json"))
        )

    # Assertions
    assert result["status"] == "success"
    assert result["records_selected"] == 1
    assert result["records_skipped"] == 1
    assert "line 4, time value 'yesterday'" in caplog.text


@pytest.mark.asyncio
async def test_failed_dispatch_keeps_watermark(funds_csv, transport_factory, tmp_path):
    """Test a rejected batch aborts the run without advancing the watermark"""
    state_file = tmp_path / "state.json"
    transport = transport_factory(fail_on_batch=1)
    runner = ImportRunner(transport, settings=Settings(BATCH_SIZE=3))

    with pytest.raises(WriteError) as exc_info:
        await runner.run_csv_import(csv_options(funds_csv, state_file))

    # Assertions
    assert exc_info.value.context["points_sent"] == 3
    assert not state_file.exists()


@pytest.mark.asyncio
async def test_state_save_failure_is_reported(funds_csv, fake_transport, tmp_path):
    """Test points stay written and the run reports the unsaved state"""
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")

    result = await ImportRunner(fake_transport).run_csv_import(
        csv_options(funds_csv, blocker / "state.json")
    )

    # Assertions
    assert result["points_written"] == 8
    assert result["state_saved"] is False
    assert result["status"] == "success"


@pytest.mark.asyncio
async def test_missing_source_raises(tmp_path, fake_transport):
    with pytest.raises(SourceUnavailableError):
        await ImportRunner(fake_transport).run_csv_import(
            CsvImportOptions(source=str(tmp_path / "missing.csv"), state_file=str(tmp_path / "s.json"))
        )


@pytest.mark.asyncio
async def test_health_import_end_to_end(health_db, fake_transport, tmp_path):
    """
    Integration test: every exported kind is normalized and the watermark is
    the latest record start
    """
    state_file = tmp_path / ".health_import_state.json"
    options = HealthImportOptions(source=str(health_db), state_file=str(state_file))

    result = await ImportRunner(fake_transport).run_health_import(options)

    # Verify result
    assert result["status"] == "success"
    assert result["records_extracted"] == 7
    assert result["records_by_type"] == {"HeartRate": 3, "Steps": 1, "Sleep": 2, "Weight": 1}
    assert result["points_written"] == 13

    # Verify points
    weight = [p for p in fake_transport.points if p.name == "Weight"][0]
    assert weight.value == 72.5
    assert weight.tags["app_name"] == "unknown"
    sleep_states = [p for p in fake_transport.points if p.name == "SleepState"]
    assert [p.value for p in sleep_states] == [3.0, 4.0]

    # Verify watermark and idempotent re-run
    document = json.loads(state_file.read_text(encoding="utf-8"))
    assert document["source_file"] == str(health_db)
    watermark = load_watermark(state_file, str(health_db))
    assert watermark.last_imported_timestamp == T0 + timedelta(minutes=30)

    rerun = await ImportRunner(fake_transport).run_health_import(options)
    assert rerun["status"] == "no_new_data"


@pytest.mark.asyncio
async def test_health_import_data_type_filter(health_db, fake_transport, tmp_path):
    options = HealthImportOptions(
        source=str(health_db),
        state_file=str(tmp_path / "state.json"),
        data_types=["Steps"]
    )

    result = await ImportRunner(fake_transport).run_health_import(options)

    assert result["records_by_type"] == {"Steps": 1}
    assert [p.name for p in fake_transport.points] == ["Steps"]


@pytest.mark.asyncio
async def test_gap_fill_leaves_state_untouched(health_db, transport_factory, tmp_path):
    """Test gap-fill writes only missing heart-rate points and never touches the state file"""
    state_file = tmp_path / "state.json"
    state_file.write_text("sentinel", encoding="utf-8")
    transport = transport_factory(existing={T0_MS, T0_MS + 120_000})
    events = []

    runner = ImportRunner(transport, on_progress=events.append, clock=lambda: T0 + timedelta(days=1))
    result = await runner.run_health_import(
        HealthImportOptions(source=str(health_db), state_file=str(state_file), gap_fill_days=7)
    )

    # Assertions
    assert result["mode"] == "gap_fill"
    assert result["records_duplicate"] == 2
    assert result["records_new"] == 1
    assert result["points_written"] == 1
    assert [p.timestamp_ms for p in transport.points] == [T0_MS + 60_000]
    assert result["state_saved"] is False
    assert state_file.read_text(encoding="utf-8") == "sentinel"
    assert events[-1].is_complete


@pytest.mark.asyncio
async def test_gap_fill_without_gaps(health_db, transport_factory, tmp_path):
    transport = transport_factory(existing={T0_MS + i * 60_000 for i in range(3)})

    result = await ImportRunner(transport, clock=lambda: T0 + timedelta(days=1)).run_health_import(
        HealthImportOptions(source=str(health_db), state_file=str(tmp_path / "s.json"), gap_fill_days=7)
    )

    # Assertions
    assert result["status"] == "no_new_data"
    assert result["points_written"] == 0
    assert transport.batches == []


class _ExplodingTransport:
    """Fails the test if any write reaches it"""

    async def write_batch(self, points):
        raise AssertionError("dry-run must not write")

    async def query_timestamps(self, measurement, start, end):
        raise AssertionError("dry-run must not query")
