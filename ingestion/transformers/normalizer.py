"""
Transform raw source records into canonical points with Pydantic validation
"""

from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from datetime import datetime, timezone
from pydantic import BaseModel, Field, ValidationError
from schemas.point import Point, from_millis
from schemas.records import CsvRecord, HealthRecord
from models.base import RecordKind, SleepStage, SourceKind
from core.exceptions import RecordParseError
import logging
import math
import re

logger = logging.getLogger(__name__)

SourceRecord = Union[HealthRecord, CsvRecord]

# Stage intensity used for the Sleep and SleepState points
SLEEP_STAGE_ORDINALS: Dict[int, float] = {
    SleepStage.AWAKE.value: 0.0,
    SleepStage.SLEEPING.value: 1.0,
    SleepStage.OUT_OF_BED.value: 0.0,
    SleepStage.LIGHT.value: 2.0,
    SleepStage.DEEP.value: 3.0,
    SleepStage.REM.value: 4.0,
}
UNKNOWN_STAGE_ORDINAL = -1.0

MILLIS_PER_MINUTE = 60000.0

_WHITESPACE_RUN = re.compile(r"\s+")


def stage_ordinal(stage_type: Optional[int]) -> float:
    return SLEEP_STAGE_ORDINALS.get(stage_type, UNKNOWN_STAGE_ORDINAL)


def stage_name(stage_type: Optional[int]) -> str:
    try:
        return SleepStage(stage_type).name
    except ValueError:
        return SleepStage.UNKNOWN.name


def duration_minutes(start_millis: int, end_millis: int) -> float:
    """Duration in minutes; negative spans are passed through unchanged"""
    return (end_millis - start_millis) / MILLIS_PER_MINUTE


def parse_number(raw: Any) -> Optional[float]:
    """
    Parse a delimited cell as a number.

    Currency cells (``$`` or ``€``) lose the symbol and their thousands
    separators; a trailing ``%`` is dropped. Returns None for anything that
    is not a finite number.
    """
    if raw is None:
        return None
    value = str(raw).strip()
    if "$" in value or "€" in value:
        value = value.replace("$", "").replace("€", "").replace(",", "").strip()
    if value.endswith("%"):
        value = value[:-1].strip()
    if not value:
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


class NormalizerConfig(BaseModel):
    """Per-run normalizer settings"""

    time_format: str = "%Y-%m-%d %H:%M:%S"
    tag_key: str = "category"
    record_type: Optional[str] = None
    placeholder: str = Field("unknown", min_length=1)


class RecordNormalizer:
    """
    Normalize records from both source kinds into canonical points.

    Handles:
    - Per-kind mapping of Health Connect records (dispatch table)
    - Header-driven naming and tagging of delimited rows
    - Number cleaning (currency, thousands separators, percent)
    - Placeholder substitution for missing optional fields
    """

    def __init__(self, config: Optional[NormalizerConfig] = None):
        self.config = config or NormalizerConfig()
        self._health_mappers: Dict[RecordKind, Callable[[HealthRecord], List[Point]]] = {
            RecordKind.SLEEP: self._map_sleep_stage,
            RecordKind.EXERCISE_SESSION: self._map_exercise_session,
        }

    def normalize(self, record: SourceRecord, source_kind: SourceKind) -> List[Point]:
        """
        Normalize one raw record.

        Returns:
            Zero or more validated Point models

        Raises:
            RecordParseError: The record cannot be turned into points
        """
        try:
            if source_kind == SourceKind.HEALTH_CONNECT:
                return self._normalize_health(record)
            elif source_kind == SourceKind.CSV:
                return self._normalize_csv(record)
            else:
                raise ValueError(f"Unknown source kind: {source_kind}")
        except ValidationError as e:
            raise RecordParseError(
                "Record produced an invalid point",
                context={
                    "record_type": getattr(getattr(record, "kind", None), "value", "csv"),
                    "line_number": getattr(record, "line_number", None),
                },
                original_exception=e
            )

    def resolve_timestamp(self, record: SourceRecord, source_kind: SourceKind) -> Optional[datetime]:
        """The instant used for watermark comparison, or None when it cannot be resolved"""
        if source_kind == SourceKind.HEALTH_CONNECT:
            return record.timestamp
        try:
            return self._parse_csv_timestamp(record)
        except RecordParseError:
            return None

    def normalize_many(
        self,
        records: List[SourceRecord],
        source_kind: SourceKind
    ) -> Tuple[List[Tuple[SourceRecord, List[Point]]], List[Dict[str, Any]]]:
        """
        Normalize a batch, isolating failures to the offending record.

        Returns:
            (bundles, error_details) where each bundle pairs a record with its
            points and each error detail describes one rejected record
        """
        bundles: List[Tuple[SourceRecord, List[Point]]] = []
        error_details: List[Dict[str, Any]] = []

        for record in records:
            try:
                bundles.append((record, self.normalize(record, source_kind)))
            except RecordParseError as e:
                error_detail = {
                    "phase": "normalization",
                    "error_type": type(e).__name__,
                    "error_message": e.message,
                    **{k: v for k, v in e.context.items() if k != "error_timestamp"},
                }
                error_details.append(error_detail)
                logger.warning(
                    f"Rejected record: {e}",
                    extra={"error_context": error_detail}
                )

        if error_details:
            logger.info(
                f"Normalization complete: {len(bundles)} succeeded, "
                f"{len(error_details)} failed"
            )
        return bundles, error_details

    # ------------------------------------------------------------------
    # Health Connect
    # ------------------------------------------------------------------

    def _normalize_health(self, record: HealthRecord) -> List[Point]:
        if record.start_millis is None:
            raise RecordParseError(
                "Record has no start timestamp",
                context={"record_type": record.kind.value, "value": None}
            )
        mapper = self._health_mappers.get(record.kind, self._map_single)
        return mapper(record)

    def _health_tags(self, record: HealthRecord) -> Dict[str, str]:
        tags = {k: (v if v else self.config.placeholder) for k, v in record.attributes.items()}
        tags["app_name"] = record.app_name or self.config.placeholder
        tags["record_type"] = record.kind.value
        return tags

    def _map_single(self, record: HealthRecord) -> List[Point]:
        if record.value is None:
            raise RecordParseError(
                f"{record.kind.value} record has no value",
                context={"record_type": record.kind.value, "value": None}
            )
        return [
            Point(
                name=record.kind.value,
                timestamp=from_millis(record.start_millis),
                tags=self._health_tags(record),
                value=record.value,
            )
        ]

    def _require_end(self, record: HealthRecord) -> int:
        if record.end_millis is None:
            raise RecordParseError(
                f"{record.kind.value} record has no end timestamp",
                context={"record_type": record.kind.value, "value": record.start_millis}
            )
        return record.end_millis

    def _map_sleep_stage(self, record: HealthRecord) -> List[Point]:
        """One stage fans out to Sleep (start and end marker), SleepDuration and SleepState"""
        end_millis = self._require_end(record)
        start = from_millis(record.start_millis)
        ordinal = stage_ordinal(record.stage_type)

        tags = self._health_tags(record)
        tags["stage"] = stage_name(record.stage_type)

        return [
            Point(name="Sleep", timestamp=start, tags=tags, value=ordinal),
            Point(name="Sleep", timestamp=from_millis(end_millis), tags=tags, value=0.0),
            Point(
                name="SleepDuration",
                timestamp=start,
                tags=tags,
                value=duration_minutes(record.start_millis, end_millis),
            ),
            Point(name="SleepState", timestamp=start, tags=tags, value=ordinal),
        ]

    def _map_exercise_session(self, record: HealthRecord) -> List[Point]:
        end_millis = self._require_end(record)
        tags = self._health_tags(record)
        tags.setdefault("exercise_type", self.config.placeholder)
        tags.setdefault("title", self.config.placeholder)
        return [
            Point(
                name=record.kind.value,
                timestamp=from_millis(record.start_millis),
                tags=tags,
                value=duration_minutes(record.start_millis, end_millis),
            )
        ]

    # ------------------------------------------------------------------
    # Delimited rows
    # ------------------------------------------------------------------

    def _parse_csv_timestamp(self, record: CsvRecord) -> datetime:
        raw = record.get_time_value()
        if raw is None:
            raise RecordParseError(
                "Row has no timestamp cell",
                context={"record_type": "csv", "line_number": record.line_number, "value": None}
            )
        try:
            parsed = datetime.strptime(raw.strip(), self.config.time_format)
        except ValueError as e:
            raise RecordParseError(
                f"Failed to parse timestamp '{raw}'",
                context={
                    "record_type": "csv",
                    "line_number": record.line_number,
                    "value": raw,
                    "time_format": self.config.time_format,
                },
                original_exception=e
            )
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    def _csv_point_name(self, record: CsvRecord, index: int) -> str:
        if len(record.header_values) >= 2:
            last_row = record.header_cell(len(record.header_values) - 1, index).strip()
            if last_row:
                return last_row
        if index < len(record.column_names) and record.column_names[index]:
            return record.column_names[index]
        return f"column_{index + 1}"

    def _csv_tags(self, record: CsvRecord, index: int) -> Dict[str, str]:
        tags: Dict[str, str] = {}
        category = _WHITESPACE_RUN.sub("_", record.header_cell(0, index).strip())
        if category:
            tags[self.config.tag_key] = category
        if self.config.record_type:
            tags["record_type"] = self.config.record_type
        return tags

    def _normalize_csv(self, record: CsvRecord) -> List[Point]:
        timestamp = self._parse_csv_timestamp(record)

        points = []
        for index, cell in enumerate(record.values):
            if index == record.time_column_index:
                continue
            value = parse_number(cell)
            if value is None:
                continue
            points.append(
                Point(
                    name=self._csv_point_name(record, index),
                    timestamp=timestamp,
                    tags=self._csv_tags(record, index),
                    value=value,
                )
            )
        return points
