# ============================================================================
# File: ingestion/runner.py
# Description: Import orchestrator for delimited files and Health Connect exports
# ============================================================================
"""
Import Runner - Orchestrates Extract, Normalize, Select, Dispatch.

This module provides the import orchestration with:
- Watermark-driven incremental sync (only newer records are sent)
- Partial failure support (a bad row never aborts the run)
- Heart-rate gap-filling as a maintenance pass that leaves state untouched
- Dry-run previews with no transport calls and no state writes
- Run statistics for the CLI
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from pydantic import BaseModel, Field
import logging

from ingestion.checkpoint import load_watermark, save_watermark
from ingestion.extractors.csv_extractor import CsvExtractor
from ingestion.extractors.health_connect_extractor import HealthConnectExtractor
from ingestion.loaders.dispatcher import BatchDispatcher
from ingestion.progress import ProgressCallback
from ingestion.reconciler import GapReconciler
from ingestion.selector import IncrementalSelector
from ingestion.transformers.normalizer import NormalizerConfig, RecordNormalizer, SourceRecord
from models.base import RecordKind, RunStatus, SourceKind
from schemas.point import Point
from schemas.records import CsvRecord
from schemas.watermark import Watermark
from core.config import Settings, settings as default_settings
from core.exceptions import CheckpointError, ImporterException

logger = logging.getLogger(__name__)


class CsvImportOptions(BaseModel):
    """Parameters of one delimited-file import"""

    source: str
    measurement: Optional[str] = None
    time_column: Optional[str] = None
    time_format: Optional[str] = None
    header_rows: int = Field(1, ge=0)
    tag_key: Optional[str] = None
    dry_run: bool = False
    state_file: str = ".import_state.json"
    force_all: bool = False


class HealthImportOptions(BaseModel):
    """Parameters of one Health Connect import"""

    source: str
    state_file: str = ".health_import_state.json"
    force_all: bool = False
    dry_run: bool = False
    data_types: Optional[List[RecordKind]] = None
    gap_fill_days: Optional[int] = Field(None, ge=1)


class ImportRunner:
    """
    Import orchestrator.

    Responsibilities:
    - Orchestrate Extract → Normalize → Select → Dispatch
    - Control watermark advancement (only after a successful dispatch)
    - Handle partial failures safely
    - Report accurate run statistics
    """

    def __init__(
        self,
        transport,
        settings: Optional[Settings] = None,
        on_progress: Optional[ProgressCallback] = None,
        preview_sink: Optional[Callable[[str], None]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.transport = transport
        self.settings = settings or default_settings
        self.on_progress = on_progress
        self.clock = clock
        self.selector = IncrementalSelector(fail_open=self.settings.TIMESTAMP_FAIL_OPEN)
        self.dispatcher = BatchDispatcher(
            transport,
            batch_size=self.settings.BATCH_SIZE,
            preview_limit=self.settings.DRY_RUN_PREVIEW_LIMIT,
            preview_sink=preview_sink
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run_csv_import(self, options: CsvImportOptions) -> Dict[str, Any]:
        """
        Import new rows of a delimited file.

        Raises:
            SourceUnavailableError: The file does not exist
            CSVExtractionError: The file cannot be tokenized
            TransportError: A batch write failed
        """
        normalizer = RecordNormalizer(
            NormalizerConfig(
                time_format=options.time_format or self.settings.CSV_TIME_FORMAT,
                tag_key=options.tag_key or self.settings.CSV_TAG_KEY,
                record_type=options.measurement,
            )
        )
        watermark = self._load_watermark(options.state_file, options.source, options.force_all)

        logger.info(f"Importing delimited data from '{options.source}'")
        extractor = CsvExtractor(
            options.source,
            header_rows=options.header_rows,
            time_column=options.time_column
        )
        records = extractor.parse()

        return await self._sync(
            records=records,
            source_kind=SourceKind.CSV,
            normalizer=normalizer,
            watermark=watermark,
            state_file=options.state_file,
            force_all=options.force_all,
            dry_run=options.dry_run
        )

    async def run_health_import(self, options: HealthImportOptions) -> Dict[str, Any]:
        """
        Import new Health Connect records, or gap-fill heart rate when requested.

        Raises:
            SourceUnavailableError: The database file does not exist
            HealthDataExtractionError: The database cannot be read
            TransportError: A batch write failed
        """
        if options.gap_fill_days is not None:
            return await self.run_gap_fill(options)

        watermark = self._load_watermark(options.state_file, options.source, options.force_all)

        logger.info(f"Importing health data from SQLite database '{options.source}'")
        with HealthConnectExtractor(options.source) as extractor:
            logger.info(extractor.validate_db().rstrip())
            since = None if options.force_all else watermark.last_imported_timestamp
            records_by_kind = extractor.get_all_since(since, options.data_types)

        records: List[SourceRecord] = [
            record for kind_records in records_by_kind.values() for record in kind_records
        ]

        stats = await self._sync(
            records=records,
            source_kind=SourceKind.HEALTH_CONNECT,
            normalizer=RecordNormalizer(),
            watermark=watermark,
            state_file=options.state_file,
            force_all=options.force_all,
            dry_run=options.dry_run
        )
        stats["records_by_type"] = {
            kind.value: len(kind_records)
            for kind, kind_records in records_by_kind.items()
            if kind_records
        }
        return stats

    async def run_gap_fill(self, options: HealthImportOptions) -> Dict[str, Any]:
        """
        Write heart-rate points missing from the store over the trailing window.

        The state file is neither read nor written.
        """
        logger.info(
            f"Gap-filling mode: only heart rate data for the last {options.gap_fill_days} days; "
            f"state file not used"
        )

        with HealthConnectExtractor(options.source) as extractor:
            logger.info(extractor.validate_db().rstrip())
            reconciler = GapReconciler(
                self.transport,
                extractor,
                RecordNormalizer(),
                kind=RecordKind.HEART_RATE,
                on_progress=self.on_progress,
                clock=self.clock,
                min_progress_interval=self.settings.GAP_FILL_PROGRESS_INTERVAL
            )
            result = await reconciler.reconcile(options.gap_fill_days)

        if not result.points:
            logger.info("No heart rate gaps found - all data is up to date")
            points_written = 0
        else:
            points_written = await self.dispatcher.dispatch(result.points, dry_run=options.dry_run)

        status = RunStatus.NO_NEW_DATA if not result.points else self._status(result.failed)
        stats = {
            "status": status.value,
            "source": options.source,
            "mode": "gap_fill",
            "dry_run": options.dry_run,
            "records_extracted": result.total,
            "records_duplicate": result.duplicates,
            "records_new": result.new,
            "records_failed": result.failed,
            "existing_points": result.existing,
            "points_written": points_written,
            "watermark": None,
            "state_saved": False,
        }
        if result.error_details:
            stats["error_details"] = result.error_details

        self._log_summary(stats)
        return stats

    # ------------------------------------------------------------------
    # Normal sync
    # ------------------------------------------------------------------

    def _load_watermark(self, state_file: str, source: str, force_all: bool) -> Watermark:
        watermark = load_watermark(state_file, source)
        if force_all:
            logger.info("Force import all records (--force-all is set)")
        elif watermark.last_imported_timestamp is not None:
            logger.info(
                f"Skipping records up to {watermark.last_imported_timestamp.isoformat()} "
                f"(previously imported: {watermark.records_imported} records)"
            )
        else:
            logger.info("No previous import state found, importing all records")
        return watermark

    async def _sync(
        self,
        records: List[SourceRecord],
        source_kind: SourceKind,
        normalizer: RecordNormalizer,
        watermark: Watermark,
        state_file: str,
        force_all: bool,
        dry_run: bool
    ) -> Dict[str, Any]:
        records_extracted = len(records)
        logger.info(f"Extracted {records_extracted} records")

        # --------------------------------------------------
        # PHASE 1: INCREMENTAL SELECTION
        # --------------------------------------------------
        candidates = [
            ((record, timestamp), timestamp)
            for record, timestamp in (
                (record, normalizer.resolve_timestamp(record, source_kind)) for record in records
            )
        ]
        selection = self.selector.select(
            candidates,
            watermark.last_imported_timestamp,
            force_all=force_all,
            describe=self._describe
        )

        stats: Dict[str, Any] = {
            "source": watermark.source_file,
            "mode": "sync",
            "dry_run": dry_run,
            "records_extracted": records_extracted,
            "records_selected": len(selection.records),
            "records_skipped": selection.skipped,
            "records_failed": 0,
            "points_written": 0,
            "watermark": self._iso(watermark.last_imported_timestamp),
            "state_saved": False,
        }

        if not selection.records:
            logger.info("No new records to import")
            stats["status"] = RunStatus.NO_NEW_DATA.value
            self._log_summary(stats)
            return stats

        # --------------------------------------------------
        # PHASE 2: NORMALIZATION
        # --------------------------------------------------
        timestamps = {id(record): timestamp for record, timestamp in selection.records}
        bundles, error_details = normalizer.normalize_many(
            [record for record, _ in selection.records],
            source_kind
        )
        points: List[Point] = [point for _, bundle in bundles for point in bundle]
        latest = self._latest(timestamps[id(record)] for record, _ in bundles)

        stats["records_failed"] = len(error_details)
        if error_details:
            stats["error_details"] = error_details

        # --------------------------------------------------
        # PHASE 3: DISPATCH
        # --------------------------------------------------
        try:
            stats["points_written"] = await self.dispatcher.dispatch(points, dry_run=dry_run)
        except ImporterException as e:
            logger.error(
                f"Import failed during dispatch: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            raise

        stats["status"] = self._status(len(error_details)).value

        # --------------------------------------------------
        # PHASE 4: WATERMARK
        # --------------------------------------------------
        if dry_run:
            logger.info(
                f"Dry-run mode: state file not updated "
                f"(would advance to {self._iso(latest)})"
            )
        elif bundles:
            advanced = watermark.advance(latest, len(bundles))
            stats["watermark"] = self._iso(advanced.last_imported_timestamp)
            try:
                save_watermark(advanced, state_file)
                stats["state_saved"] = True
            except CheckpointError as e:
                logger.error(
                    f"Failed to save import state: {e}",
                    extra={"error_context": e.to_dict()}
                )

        self._log_summary(stats)
        return stats

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _describe(candidate) -> str:
        record, _ = candidate
        if isinstance(record, CsvRecord):
            return f"line {record.line_number}, time value {record.get_time_value()!r}"
        return f"{record.kind.value} record, start_millis {record.start_millis!r}"

    @staticmethod
    def _latest(timestamps) -> Optional[datetime]:
        resolved = [ts for ts in timestamps if ts is not None]
        return max(resolved) if resolved else None

    @staticmethod
    def _status(failed: int) -> RunStatus:
        return RunStatus.SUCCESS if failed == 0 else RunStatus.PARTIAL

    @staticmethod
    def _iso(value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value is not None else None

    @staticmethod
    def _log_summary(stats: Dict[str, Any]) -> None:
        prefix = "Would write" if stats["dry_run"] else "Wrote"
        logger.info(
            f"Import run completed: {stats['status']} - "
            f"Extracted: {stats['records_extracted']}, "
            f"Failed: {stats['records_failed']}, "
            f"{prefix} {stats['points_written']} points"
        )
