"""
Incremental selection of records newer than the watermark
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Generic, Iterable, List, Optional, Tuple, TypeVar
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SelectionResult(Generic[T]):
    """Records that survived selection and the high-water mark they imply"""

    records: List[T] = field(default_factory=list)
    new_watermark: Optional[datetime] = None
    skipped: int = 0
    unresolved: int = 0


class IncrementalSelector:
    """
    Filter candidates strictly newer than a watermark.

    A candidate whose timestamp cannot be resolved is kept when
    ``fail_open`` is set (the default) and dropped otherwise. Re-running a
    selection with the returned ``new_watermark`` yields nothing.
    """

    def __init__(self, fail_open: bool = True):
        self.fail_open = fail_open

    def select(
        self,
        candidates: Iterable[Tuple[T, Optional[datetime]]],
        watermark: Optional[datetime],
        force_all: bool = False,
        describe: Optional[Callable[[T], str]] = None
    ) -> SelectionResult[T]:
        """
        Args:
            candidates: (record, timestamp) pairs; timestamp may be None
            watermark: Last imported instant, None when nothing was imported
            force_all: Ignore the watermark for this selection only
            describe: Renders a dropped record for the log (default: repr)

        Returns:
            SelectionResult with surviving records in input order
        """
        threshold = None if force_all else watermark
        result: SelectionResult[T] = SelectionResult()

        for record, timestamp in candidates:
            if timestamp is None:
                result.unresolved += 1
                if self.fail_open:
                    result.records.append(record)
                else:
                    result.skipped += 1
                    shown = describe(record) if describe else repr(record)
                    logger.warning(f"Dropped record with unresolvable timestamp: {shown}")
                continue

            if threshold is not None and timestamp <= threshold:
                result.skipped += 1
                continue

            result.records.append(record)
            if result.new_watermark is None or timestamp > result.new_watermark:
                result.new_watermark = timestamp

        if threshold is not None:
            logger.info(
                f"Filtered to {len(result.records)} records newer than {threshold.isoformat()} "
                f"({result.skipped} skipped)"
            )
        if result.unresolved:
            action = "kept" if self.fail_open else "dropped"
            logger.warning(f"{result.unresolved} records had unresolvable timestamps ({action})")

        return result
