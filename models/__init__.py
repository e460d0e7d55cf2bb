"""
SQLAlchemy table definitions and shared enums.

This package describes the Health Connect SQLite export the importer reads
and the enums shared across the pipeline:

Modules:
    base: Shared MetaData and enums (SourceKind, RecordKind, SleepStage, RunStatus)
    health_connect: SQLAlchemy Core tables of the Health Connect export

Database Schema:
    Tables are declared with SQLAlchemy Core rather than ORM classes; the
    importer only ever reads the export, so no mapped classes are needed.
    Timestamps in every table are epoch milliseconds.

Usage:
    from models.base import RecordKind, SourceKind
    from models.health_connect import steps_record_table

Example:
    # Build a query against the export
    stmt = select(steps_record_table.c.start_time, steps_record_table.c.count)
"""

from models.base import metadata, SourceKind, RecordKind, SleepStage, RunStatus

__all__ = [
    "metadata",
    "SourceKind",
    "RecordKind",
    "SleepStage",
    "RunStatus",
]
