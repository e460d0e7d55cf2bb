"""
Unit tests for watermark persistence and incremental selection
"""

import logging
import os
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from ingestion.checkpoint import load_watermark, save_watermark
from ingestion.selector import IncrementalSelector
from schemas.watermark import Watermark
from core.exceptions import CheckpointError

T0 = datetime(2024, 1, 15, 22, 0, tzinfo=timezone.utc)


class TestWatermark:
    """Test the watermark model"""

    def test_advance_moves_forward(self):
        watermark = Watermark.empty("funds.csv").advance(T0, 3)

        assert watermark.last_imported_timestamp == T0
        assert watermark.records_imported == 3

    def test_advance_never_moves_backwards(self):
        """Test an older timestamp leaves the watermark where it is"""
        watermark = Watermark(source_file="funds.csv", last_imported_timestamp=T0, records_imported=5)

        advanced = watermark.advance(T0 - timedelta(days=1), 2)

        # Assertions
        assert advanced.last_imported_timestamp == T0
        assert advanced.records_imported == 7
        assert watermark.records_imported == 5

    def test_naive_timestamp_is_utc(self):
        watermark = Watermark(source_file="a", last_imported_timestamp=datetime(2024, 1, 15, 22, 0))

        assert watermark.last_imported_timestamp == T0

    def test_negative_counter_rejected(self):
        with pytest.raises(ValueError):
            Watermark(source_file="a", records_imported=-1)


class TestWatermarkPersistence:
    """Test loading and saving the state file"""

    def test_round_trip(self, tmp_path):
        """Test a saved watermark loads back unchanged"""
        state_file = tmp_path / ".import_state.json"
        watermark = Watermark(source_file="funds.csv", last_imported_timestamp=T0, records_imported=42)

        save_watermark(watermark, state_file)
        loaded = load_watermark(state_file, "funds.csv")

        # Assertions
        assert loaded == watermark
        assert "last_imported_timestamp" in state_file.read_text(encoding="utf-8")

    def test_missing_file_yields_empty_watermark(self, tmp_path):
        loaded = load_watermark(tmp_path / "missing.json", "funds.csv")

        assert loaded.is_empty
        assert loaded.source_file == "funds.csv"
        assert loaded.records_imported == 0

    def test_corrupted_file_yields_empty_watermark(self, tmp_path):
        """Test a malformed state document is ignored rather than fatal"""
        state_file = tmp_path / "state.json"
        state_file.write_text("{not json", encoding="utf-8")

        loaded = load_watermark(state_file, "funds.csv")

        assert loaded.is_empty

    def test_undecodable_file_yields_empty_watermark(self, tmp_path):
        """Test a state file that is not UTF-8 text is ignored rather than fatal"""
        state_file = tmp_path / "state.json"
        state_file.write_bytes(b'\xff\xfe{"source_file": "funds.csv"}')

        loaded = load_watermark(state_file, "funds.csv")

        # Assertions
        assert loaded.is_empty
        assert loaded.source_file == "funds.csv"

    def test_unreadable_path_yields_empty_watermark(self, tmp_path):
        """Test a state path that cannot be read as a file is ignored"""
        state_file = tmp_path / "state.json"
        state_file.mkdir()

        loaded = load_watermark(state_file, "funds.csv")

        assert loaded.is_empty

    def test_identity_mismatch_yields_empty_watermark(self, tmp_path):
        """Test a state document saved for another source is never reused"""
        state_file = tmp_path / "state.json"
        save_watermark(
            Watermark(source_file="other.csv", last_imported_timestamp=T0, records_imported=9),
            state_file
        )

        loaded = load_watermark(state_file, "funds.csv")

        # Assertions
        assert loaded.is_empty
        assert loaded.source_file == "funds.csv"

    def test_save_leaves_no_temp_files(self, tmp_path):
        state_file = tmp_path / "state.json"

        save_watermark(Watermark.empty("a"), state_file)
        save_watermark(Watermark.empty("a").advance(T0, 1), state_file)

        assert os.listdir(tmp_path) == ["state.json"]

    def test_save_failure_raises_checkpoint_error(self, tmp_path):
        """Test a failed write surfaces as CheckpointError and keeps the old file"""
        state_file = tmp_path / "state.json"
        original = Watermark(source_file="a", last_imported_timestamp=T0)
        save_watermark(original, state_file)

        with patch("ingestion.checkpoint.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(CheckpointError) as exc_info:
                save_watermark(original.advance(T0 + timedelta(hours=1), 1), state_file)

        # Assertions
        assert exc_info.value.context["state_file"] == str(state_file)
        assert load_watermark(state_file, "a") == original
        assert os.listdir(tmp_path) == ["state.json"]


class TestIncrementalSelector:
    """Test selection against the watermark"""

    def candidates(self):
        return [(f"r{i}", T0 + timedelta(minutes=i)) for i in range(4)]

    def test_empty_watermark_selects_everything(self):
        result = IncrementalSelector().select(self.candidates(), None)

        assert result.records == ["r0", "r1", "r2", "r3"]
        assert result.new_watermark == T0 + timedelta(minutes=3)
        assert result.skipped == 0

    def test_strictly_newer_only(self):
        """Test a record exactly at the watermark is skipped"""
        result = IncrementalSelector().select(self.candidates(), T0 + timedelta(minutes=1))

        # Assertions
        assert result.records == ["r2", "r3"]
        assert result.skipped == 2

    def test_reselection_with_new_watermark_is_empty(self):
        """Test selecting again from the returned watermark yields nothing"""
        selector = IncrementalSelector()
        first = selector.select(self.candidates(), None)

        second = selector.select(self.candidates(), first.new_watermark)

        # Assertions
        assert second.records == []
        assert second.new_watermark is None
        assert second.skipped == 4

    def test_force_all_ignores_watermark(self):
        result = IncrementalSelector().select(self.candidates(), T0 + timedelta(days=1), force_all=True)

        assert len(result.records) == 4

    def test_unresolved_kept_when_fail_open(self):
        candidates = self.candidates() + [("bad", None)]

        result = IncrementalSelector(fail_open=True).select(candidates, T0 + timedelta(minutes=2))

        # Assertions
        assert result.records == ["r3", "bad"]
        assert result.unresolved == 1
        assert result.new_watermark == T0 + timedelta(minutes=3)

    def test_unresolved_dropped_when_fail_closed(self):
        candidates = [("bad", None)] + self.candidates()

        result = IncrementalSelector(fail_open=False).select(candidates, None)

        # Assertions
        assert "bad" not in result.records
        assert result.unresolved == 1
        assert result.skipped == 1

    def test_dropped_records_are_logged_individually(self, caplog):
        """Test each record dropped for lack of a timestamp is named in the log"""
        candidates = [("first", None), ("second", None)] + self.candidates()

        with caplog.at_level(logging.WARNING, logger="ingestion.selector"):
            IncrementalSelector(fail_open=False).select(
                candidates, None, describe=lambda record: f"row {record}"
            )

        # Assertions
        assert "Dropped record with unresolvable timestamp: row first" in caplog.text
        assert "Dropped record with unresolvable timestamp: row second" in caplog.text
        assert "2 records had unresolvable timestamps (dropped)" in caplog.text

    def test_kept_records_are_not_logged_individually(self, caplog):
        with caplog.at_level(logging.WARNING, logger="ingestion.selector"):
            IncrementalSelector(fail_open=True).select([("bad", None)], None)

        assert "Dropped record" not in caplog.text
