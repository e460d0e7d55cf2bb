"""
Gap reconciliation between the source export and the time-series store.

A maintenance pass over a trailing window: the destination is asked which
timestamps it already holds for a measurement, the source rows of the same
window are read, and only rows missing from the destination are turned into
points. The watermark is never consulted nor advanced here.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Set
import logging

from ingestion.progress import ProgressCallback, ProgressEvent, progress_interval, resolve_callback
from ingestion.transformers.normalizer import RecordNormalizer
from models.base import RecordKind, SourceKind
from schemas.point import Point
from core.exceptions import RecordParseError, TransportError

logger = logging.getLogger(__name__)


@dataclass
class GapFillResult:
    """Points to write plus the counters of one reconciliation pass"""

    points: List[Point] = field(default_factory=list)
    total: int = 0
    duplicates: int = 0
    new: int = 0
    failed: int = 0
    existing: int = 0
    error_details: List[dict] = field(default_factory=list)


class GapReconciler:
    """
    Backfill only the points the destination is missing.

    Args:
        transport: Object exposing ``async query_timestamps(measurement, start, end)``
        reader: Object exposing ``query_table_range(kind, start, end)``
        normalizer: Normalizer used for the emitted points
        kind: Record kind (and measurement) to reconcile
        on_progress: Callback receiving ProgressEvent updates
        clock: Returns "now"; injectable for tests
        min_progress_interval: Lower bound on rows between progress events
    """

    def __init__(
        self,
        transport,
        reader,
        normalizer: Optional[RecordNormalizer] = None,
        kind: RecordKind = RecordKind.HEART_RATE,
        on_progress: Optional[ProgressCallback] = None,
        clock: Optional[Callable[[], datetime]] = None,
        min_progress_interval: int = 1000
    ):
        self.transport = transport
        self.reader = reader
        self.normalizer = normalizer or RecordNormalizer()
        self.kind = kind
        self.on_progress = resolve_callback(on_progress)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.min_progress_interval = min_progress_interval

    @property
    def measurement(self) -> str:
        return self.kind.value

    async def existing_timestamps(self, start: datetime, end: datetime) -> Set[int]:
        """Timestamps already stored in the window; empty when the query fails"""
        try:
            existing = await self.transport.query_timestamps(self.measurement, start, end)
        except TransportError as e:
            logger.warning(
                f"Failed to query existing {self.measurement} data, "
                f"proceeding without deduplication: {e}"
            )
            return set()

        logger.info(f"Found {len(existing)} existing {self.measurement} points in the store")
        return existing

    async def reconcile(self, window_days: int) -> GapFillResult:
        """
        Compute the points missing from the destination over the last ``window_days``.

        Returns:
            GapFillResult; ``points`` never share a timestamp with the
            destination's existing set
        """
        end = self.clock()
        start = end - timedelta(days=window_days)

        logger.info(
            f"Gap-filling {self.measurement} from {start:%Y-%m-%d %H:%M:%S} "
            f"to {end:%Y-%m-%d %H:%M:%S} ({window_days} days)"
        )

        existing = await self.existing_timestamps(start, end)
        rows = self.reader.query_table_range(self.kind, start, end)

        result = GapFillResult(total=len(rows), existing=len(existing))
        interval = progress_interval(result.total, self.min_progress_interval)

        for processed, record in enumerate(rows, start=1):
            if record.start_millis is not None and record.start_millis in existing:
                result.duplicates += 1
            else:
                try:
                    points = self.normalizer.normalize(record, SourceKind.HEALTH_CONNECT)
                except RecordParseError as e:
                    result.failed += 1
                    result.error_details.append({
                        "phase": "gap_fill",
                        "error_type": type(e).__name__,
                        "error_message": e.message,
                        "record_type": self.measurement,
                    })
                    logger.warning(f"Rejected {self.measurement} record: {e}")
                else:
                    fresh = [p for p in points if p.timestamp_ms not in existing]
                    result.points.extend(fresh)
                    result.new += 1

            if processed % interval == 0 and processed < result.total:
                self._emit(result, processed)

        self._emit(result, result.total, is_complete=True)

        logger.info(
            f"Gap-fill analysis: {result.total} source rows, {result.duplicates} already present, "
            f"{result.new} missing, {result.failed} rejected"
        )
        return result

    def _emit(self, result: GapFillResult, processed: int, is_complete: bool = False) -> None:
        self.on_progress(
            ProgressEvent(
                measurement=self.measurement,
                processed=processed,
                total=result.total,
                duplicates=result.duplicates,
                new=result.new,
                is_complete=is_complete,
            )
        )
