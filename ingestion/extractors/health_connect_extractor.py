"""
Health Connect SQLite export reader.

Every record kind is described once by a TableDescriptor (tables it needs,
query builder, time column, row extractor); the reader only knows how to run
a descriptor. A table absent from the export means "no data" for that kind,
while a missing database file aborts the run.
"""

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from models.base import RecordKind
from models.health_connect import (
    application_info_table,
    heart_rate_record_table,
    heart_rate_record_series_table,
    steps_record_table,
    sleep_session_record_table,
    sleep_stages_table,
    weight_record_table,
    total_calories_burned_record_table,
    active_calories_burned_record_table,
    basal_metabolic_rate_record_table,
    body_fat_record_table,
    exercise_session_record_table,
)
from schemas.point import to_millis
from schemas.records import HealthRecord
from core.exceptions import ConfigurationError, HealthDataExtractionError, SourceUnavailableError
import logging

logger = logging.getLogger(__name__)

GRAMS_PER_KILOGRAM = 1000.0
CALORIES_PER_KILOCALORIE = 1000.0


@dataclass(frozen=True)
class TableDescriptor:
    """
    How one record kind is read from the export.

    ``build_query`` receives whether ``application_info_table`` exists and
    returns a SELECT labelling its columns ``start``, ``end``, ``value``,
    ``app_name`` (plus kind-specific extras); ``extract`` turns one result
    mapping into a HealthRecord.
    """

    tables: Tuple[sa.Table, ...]
    time_column: sa.Column
    build_query: Callable[[bool], sa.Select]
    extract: Callable[[Mapping[str, Any]], HealthRecord]


def _app_name(with_apps: bool):
    if with_apps:
        return application_info_table.c.app_name.label("app_name")
    return sa.null().label("app_name")


def _join_apps(from_clause, app_info_column, with_apps: bool):
    if not with_apps:
        return from_clause
    return from_clause.outerjoin(
        application_info_table,
        app_info_column == application_info_table.c.row_id
    )


def _float(value: Any, divisor: float = 1.0) -> Optional[float]:
    if value is None:
        return None
    return float(value) / divisor


def _int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


# ----------------------------------------------------------------------------
# Query builders
# ----------------------------------------------------------------------------

def _heart_rate_query(with_apps: bool) -> sa.Select:
    series = heart_rate_record_series_table
    record = heart_rate_record_table
    joined = series.join(record, series.c.heart_rate_record_id == record.c.row_id)
    return sa.select(
        series.c.epoch_millis.label("start"),
        series.c.beats_per_minute.label("value"),
        _app_name(with_apps),
    ).select_from(_join_apps(joined, record.c.app_info_id, with_apps))


def _interval_query(table: sa.Table, value_column: str) -> Callable[[bool], sa.Select]:
    def build(with_apps: bool) -> sa.Select:
        return sa.select(
            table.c.start_time.label("start"),
            table.c.end_time.label("end"),
            table.c[value_column].label("value"),
            _app_name(with_apps),
        ).select_from(_join_apps(table, table.c.app_info_id, with_apps))
    return build


def _instant_query(table: sa.Table, value_column: str) -> Callable[[bool], sa.Select]:
    def build(with_apps: bool) -> sa.Select:
        return sa.select(
            table.c.time.label("start"),
            table.c[value_column].label("value"),
            _app_name(with_apps),
        ).select_from(_join_apps(table, table.c.app_info_id, with_apps))
    return build


def _sleep_query(with_apps: bool) -> sa.Select:
    stages = sleep_stages_table
    session = sleep_session_record_table
    joined = stages.join(session, stages.c.parent_key == session.c.row_id)
    return sa.select(
        stages.c.stage_start_time.label("start"),
        stages.c.stage_end_time.label("end"),
        stages.c.stage_type.label("stage_type"),
        _app_name(with_apps),
    ).select_from(_join_apps(joined, session.c.app_info_id, with_apps))


def _exercise_query(with_apps: bool) -> sa.Select:
    table = exercise_session_record_table
    return sa.select(
        table.c.start_time.label("start"),
        table.c.end_time.label("end"),
        table.c.exercise_type.label("exercise_type"),
        table.c.title.label("title"),
        _app_name(with_apps),
    ).select_from(_join_apps(table, table.c.app_info_id, with_apps))


# ----------------------------------------------------------------------------
# Row extractors
# ----------------------------------------------------------------------------

def _measurement(kind: RecordKind, unit: str, divisor: float = 1.0):
    def extract(row: Mapping[str, Any]) -> HealthRecord:
        return HealthRecord(
            kind=kind,
            start_millis=_int(row["start"]),
            end_millis=_int(row.get("end")),
            value=_float(row["value"], divisor),
            app_name=row["app_name"],
            attributes={"unit": unit},
        )
    return extract


def _sleep_stage(row: Mapping[str, Any]) -> HealthRecord:
    return HealthRecord(
        kind=RecordKind.SLEEP,
        start_millis=_int(row["start"]),
        end_millis=_int(row["end"]),
        stage_type=_int(row["stage_type"]),
        app_name=row["app_name"],
    )


def _exercise_session(row: Mapping[str, Any]) -> HealthRecord:
    attributes = {"unit": "minutes"}
    if row["exercise_type"] is not None:
        attributes["exercise_type"] = str(row["exercise_type"])
    if row["title"]:
        attributes["title"] = str(row["title"])
    return HealthRecord(
        kind=RecordKind.EXERCISE_SESSION,
        start_millis=_int(row["start"]),
        end_millis=_int(row["end"]),
        app_name=row["app_name"],
        attributes=attributes,
    )


TABLE_DESCRIPTORS: Dict[RecordKind, TableDescriptor] = {
    RecordKind.HEART_RATE: TableDescriptor(
        tables=(heart_rate_record_series_table, heart_rate_record_table),
        time_column=heart_rate_record_series_table.c.epoch_millis,
        build_query=_heart_rate_query,
        extract=_measurement(RecordKind.HEART_RATE, "bpm"),
    ),
    RecordKind.STEPS: TableDescriptor(
        tables=(steps_record_table,),
        time_column=steps_record_table.c.start_time,
        build_query=_interval_query(steps_record_table, "count"),
        extract=_measurement(RecordKind.STEPS, "steps"),
    ),
    RecordKind.SLEEP: TableDescriptor(
        tables=(sleep_stages_table, sleep_session_record_table),
        time_column=sleep_stages_table.c.stage_start_time,
        build_query=_sleep_query,
        extract=_sleep_stage,
    ),
    RecordKind.WEIGHT: TableDescriptor(
        tables=(weight_record_table,),
        time_column=weight_record_table.c.time,
        build_query=_instant_query(weight_record_table, "weight"),
        extract=_measurement(RecordKind.WEIGHT, "kg", GRAMS_PER_KILOGRAM),
    ),
    RecordKind.TOTAL_CALORIES: TableDescriptor(
        tables=(total_calories_burned_record_table,),
        time_column=total_calories_burned_record_table.c.start_time,
        build_query=_interval_query(total_calories_burned_record_table, "energy"),
        extract=_measurement(RecordKind.TOTAL_CALORIES, "kcal", CALORIES_PER_KILOCALORIE),
    ),
    RecordKind.ACTIVE_CALORIES: TableDescriptor(
        tables=(active_calories_burned_record_table,),
        time_column=active_calories_burned_record_table.c.start_time,
        build_query=_interval_query(active_calories_burned_record_table, "energy"),
        extract=_measurement(RecordKind.ACTIVE_CALORIES, "kcal", CALORIES_PER_KILOCALORIE),
    ),
    RecordKind.BASAL_METABOLIC_RATE: TableDescriptor(
        tables=(basal_metabolic_rate_record_table,),
        time_column=basal_metabolic_rate_record_table.c.time,
        build_query=_instant_query(basal_metabolic_rate_record_table, "basal_metabolic_rate"),
        extract=_measurement(RecordKind.BASAL_METABOLIC_RATE, "calories_per_day"),
    ),
    RecordKind.BODY_FAT: TableDescriptor(
        tables=(body_fat_record_table,),
        time_column=body_fat_record_table.c.time,
        build_query=_instant_query(body_fat_record_table, "percentage"),
        extract=_measurement(RecordKind.BODY_FAT, "percentage"),
    ),
    RecordKind.EXERCISE_SESSION: TableDescriptor(
        tables=(exercise_session_record_table,),
        time_column=exercise_session_record_table.c.start_time,
        build_query=_exercise_query,
        extract=_exercise_session,
    ),
}


def parse_data_types(value: Optional[str]) -> Optional[List[RecordKind]]:
    """
    Parse a comma-separated data type filter such as ``"HeartRate,Steps"``.

    Raises:
        ConfigurationError: A name is not a known record kind
    """
    if value is None or not value.strip():
        return None

    known = {kind.value: kind for kind in RecordKind}
    kinds = []
    for name in (part.strip() for part in value.split(",")):
        if not name:
            continue
        if name not in known:
            raise ConfigurationError(
                f"Unknown data type '{name}'",
                context={"available": ", ".join(known)}
            )
        if known[name] not in kinds:
            kinds.append(known[name])
    return kinds


class HealthConnectExtractor:
    """
    Read records from a Health Connect SQLite export.

    The database is opened read-only; the file must exist beforehand.
    """

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self._engine: Optional[Engine] = None

    def db_exists(self) -> bool:
        return self.db_path.is_file()

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            if not self.db_exists():
                raise SourceUnavailableError(
                    f"Database file does not exist: {self.db_path}",
                    context={"source": str(self.db_path)}
                )
            uri = f"{self.db_path.resolve().as_uri()}?mode=ro"
            self._engine = sa.create_engine(
                "sqlite://",
                creator=lambda: sqlite3.connect(uri, uri=True),
            )
        return self._engine

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def __enter__(self) -> "HealthConnectExtractor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def validate_db(self) -> str:
        """
        List the tables of the export.

        Raises:
            SourceUnavailableError: The database file does not exist
            HealthDataExtractionError: The file is not a readable SQLite database
        """
        try:
            tables = sa.inspect(self.engine).get_table_names()
        except SQLAlchemyError as e:
            raise HealthDataExtractionError(
                "Failed to read database structure",
                context={"db_path": str(self.db_path)},
                original_exception=e
            )

        lines = [f"Database: {self.db_path}", f"Found {len(tables)} tables:"]
        lines.extend(f"  - {table}" for table in tables)
        return "\n".join(lines) + "\n"

    def _run(
        self,
        kind: RecordKind,
        conditions: Iterable[sa.ColumnElement]
    ) -> List[HealthRecord]:
        descriptor = TABLE_DESCRIPTORS[kind]

        try:
            with self.engine.connect() as conn:
                inspector = sa.inspect(conn)
                missing = [t.name for t in descriptor.tables if not inspector.has_table(t.name)]
                if missing:
                    logger.info(f"No {kind.value} data: table(s) {', '.join(missing)} not in export")
                    return []

                with_apps = inspector.has_table(application_info_table.name)
                stmt = descriptor.build_query(with_apps)
                for condition in conditions:
                    stmt = stmt.where(condition)
                stmt = stmt.order_by(descriptor.time_column)

                rows = conn.execute(stmt).mappings().all()
        except SQLAlchemyError as e:
            raise HealthDataExtractionError(
                f"Failed to read {kind.value} records",
                context={"db_path": str(self.db_path), "record_type": kind.value},
                original_exception=e
            )

        records = [descriptor.extract(row) for row in rows]
        logger.debug(f"Read {len(records)} {kind.value} records")
        return records

    def query_table_since(self, kind: RecordKind, since: Optional[datetime] = None) -> List[HealthRecord]:
        """Records of a kind strictly after ``since`` (all records when None), oldest first"""
        descriptor = TABLE_DESCRIPTORS[kind]
        conditions = [] if since is None else [descriptor.time_column > to_millis(since)]
        return self._run(kind, conditions)

    def query_table_range(self, kind: RecordKind, start: datetime, end: datetime) -> List[HealthRecord]:
        """Records of a kind with ``start <= time <= end``, oldest first"""
        descriptor = TABLE_DESCRIPTORS[kind]
        return self._run(
            kind,
            [
                descriptor.time_column >= to_millis(start),
                descriptor.time_column <= to_millis(end),
            ]
        )

    def get_all_since(
        self,
        since: Optional[datetime] = None,
        kinds: Optional[List[RecordKind]] = None
    ) -> Dict[RecordKind, List[HealthRecord]]:
        """
        Records of every requested kind newer than ``since``.

        Args:
            since: Exclusive lower bound, None for everything
            kinds: Record kinds to read; all kinds when None
        """
        selected = kinds if kinds is not None else list(TABLE_DESCRIPTORS)
        result = {}
        for kind in selected:
            result[kind] = self.query_table_since(kind, since)
            if result[kind]:
                logger.info(f"Found {len(result[kind])} {kind.value} records")
        return result
