"""
Import pipeline components.

This package contains every stage between a source file and InfluxDB:

Modules:
    runner: Import orchestrator (normal sync and heart-rate gap-fill)
    checkpoint: Watermark state file load/save
    selector: Incremental selection against the watermark
    reconciler: Gap reconciliation against the destination's existing points
    progress: Structured progress events

Subpackages:
    extractors: Source readers (delimited files, Health Connect SQLite export)
    transformers: Record normalization into canonical points
    loaders: Batch dispatcher and the InfluxDB transport

Architecture:
    A normal sync follows four phases:

    1. Extract - Read raw records from the source
    2. Select - Keep records strictly newer than the watermark
    3. Normalize - Turn each record into points, isolating bad rows
    4. Dispatch - Write points in batches, then advance the watermark

    Gap-filling replaces the selection phase with a comparison against the
    points already stored, and never touches the watermark.

Usage:
    from ingestion.runner import ImportRunner, CsvImportOptions
    from ingestion.loaders.influx_loader import InfluxTransport

Example:
    async with InfluxTransport(url, org, bucket, token) as transport:
        runner = ImportRunner(transport)
        result = await runner.run_csv_import(
            CsvImportOptions(source="funds.csv", measurement="funds", header_rows=2)
        )

    print(f"Wrote {result['points_written']} points")

Error Handling:
    All components raise exceptions from core.exceptions with structured
    context; row-level failures are collected in the run statistics.
"""

__all__ = [
    "ImportRunner",
    "CsvImportOptions",
    "HealthImportOptions",
    "IncrementalSelector",
    "GapReconciler",
    "RecordNormalizer",
    "BatchDispatcher",
    "InfluxTransport",
]
