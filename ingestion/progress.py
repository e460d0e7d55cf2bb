"""
Structured progress events for long-running reconciliation passes
"""

from dataclasses import dataclass
from typing import Callable, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """
    Progress update emitted while a measurement stream is reconciled.

    Attributes:
        measurement: Measurement being reconciled
        processed:   Source rows examined so far
        total:       Source rows in the window
        duplicates:  Rows already present in the destination
        new:         Rows that will be written
        is_complete: True for the final event of a pass
    """

    measurement: str
    processed: int
    total: int
    duplicates: int
    new: int
    is_complete: bool = False

    @property
    def pct_complete(self) -> float:
        if self.total == 0:
            return 100.0
        return round(self.processed / self.total * 100, 1)


ProgressCallback = Callable[[ProgressEvent], None]


def log_progress(event: ProgressEvent) -> None:
    """Default sink: one INFO line per event"""
    logger.info(
        f"{event.measurement}: {event.processed}/{event.total} "
        f"({event.pct_complete}%) - duplicates={event.duplicates}, new={event.new}"
    )


def progress_interval(total: int, minimum: int) -> int:
    """Rows between two progress events"""
    return max(total // 10, minimum, 1)


def resolve_callback(callback: Optional[ProgressCallback]) -> ProgressCallback:
    return callback or log_progress
