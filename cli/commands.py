"""
CLI command implementations.

This module contains the implementation of the CLI commands:
- import-csv: Incremental import of a delimited file
- import-health: Incremental import (or heart-rate gap-fill) of a Health Connect export
- validate-csv: Structure report of a delimited file
- init: Template environment file
"""

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict

from pydantic import ValidationError

from core.config import settings
from core.exceptions import ConfigurationError, ImporterException
from ingestion.extractors.csv_extractor import CsvExtractor
from ingestion.extractors.health_connect_extractor import parse_data_types
from ingestion.loaders.influx_loader import InfluxTransport
from ingestion.runner import CsvImportOptions, HealthImportOptions, ImportRunner

logger = logging.getLogger(__name__)

ENV_TEMPLATE = """\
# home-db-importer configuration
# Values here are read from the environment or this file; CLI flags override them.

# InfluxDB destination
INFLUX_URL=http://localhost:8086
INFLUX_ORG=my-org
INFLUX_BUCKET=home
INFLUX_TOKEN=
INFLUX_TIMEOUT=30.0
MAX_RETRIES=3
RETRY_DELAY=1.0

# Import behaviour
BATCH_SIZE=1000
DRY_RUN_PREVIEW_LIMIT=10
GAP_FILL_PROGRESS_INTERVAL=1000
CSV_TIME_FORMAT="%Y-%m-%d %H:%M:%S"
CSV_TAG_KEY=category
TIMESTAMP_FAIL_OPEN=true

# Logging
LOG_LEVEL=INFO
"""


def build_transport(args: argparse.Namespace) -> InfluxTransport:
    """
    Build the InfluxDB transport from CLI flags, falling back to settings.

    Raises:
        ConfigurationError: No bucket is configured for a run that writes
    """
    bucket = args.bucket or settings.INFLUX_BUCKET
    needs_store = not args.dry_run or getattr(args, 'gap_fill_heart_rate', None) is not None
    if needs_store and not bucket:
        raise ConfigurationError(
            "No InfluxDB bucket configured; pass --bucket or set INFLUX_BUCKET"
        )

    return InfluxTransport(
        url=args.url or settings.INFLUX_URL,
        org=args.org or settings.INFLUX_ORG,
        bucket=bucket,
        token=args.token or settings.INFLUX_TOKEN,
        timeout=settings.INFLUX_TIMEOUT,
        max_retries=settings.MAX_RETRIES,
        retry_delay=settings.RETRY_DELAY
    )


def _log_result(result: Dict[str, Any]) -> None:
    summary = {k: v for k, v in result.items() if k != "error_details"}
    logger.info(f"Run statistics: {json.dumps(summary, default=str)}")
    for detail in result.get("error_details", [])[:10]:
        logger.warning(f"Rejected: {detail}")


async def _run_csv(args: argparse.Namespace) -> Dict[str, Any]:
    options = CsvImportOptions(
        source=args.source,
        measurement=args.measurement,
        time_column=args.time_column,
        time_format=args.time_format,
        header_rows=args.header_rows,
        tag_key=args.tag_key,
        dry_run=args.dry_run,
        state_file=args.state_file,
        force_all=args.force_all
    )
    async with build_transport(args) as transport:
        return await ImportRunner(transport).run_csv_import(options)


async def _run_health(args: argparse.Namespace) -> Dict[str, Any]:
    options = HealthImportOptions(
        source=args.source,
        state_file=args.state_file,
        force_all=args.force_all,
        dry_run=args.dry_run,
        data_types=parse_data_types(args.data_types),
        gap_fill_days=args.gap_fill_heart_rate
    )
    async with build_transport(args) as transport:
        return await ImportRunner(transport).run_health_import(options)


def _execute(name: str, coro_factory, args: argparse.Namespace) -> int:
    try:
        result = asyncio.run(coro_factory(args))
    except ImporterException as e:
        logger.error(f"{name} failed: {e}", extra={"error_context": e.to_dict()})
        return 1
    except ValidationError as e:
        logger.error(f"{name} failed: invalid options: {e}")
        return 1

    _log_result(result)
    return 0


def cmd_import_csv(args: argparse.Namespace) -> int:
    """
    Import a delimited file

    Args:
        args: Parsed command-line arguments
    """
    logger.info(
        f"Importing '{args.source}' (measurement={args.measurement}, "
        f"header_rows={args.header_rows}, dry_run={args.dry_run}, state_file={args.state_file})"
    )
    return _execute("CSV import", _run_csv, args)


def cmd_import_health(args: argparse.Namespace) -> int:
    """
    Import a Health Connect export

    Args:
        args: Parsed command-line arguments
    """
    logger.info(
        f"Importing '{args.source}' (data_types={args.data_types or 'all'}, "
        f"dry_run={args.dry_run}, state_file={args.state_file})"
    )
    return _execute("Health import", _run_health, args)


def cmd_validate_csv(args: argparse.Namespace) -> int:
    """Print a structure report of a delimited file"""
    extractor = CsvExtractor(args.source, header_rows=args.header_rows)
    try:
        report = extractor.validate(show_details=args.details)
    except ImporterException as e:
        logger.error(f"Validation error: {e}")
        return 1

    print(report, end="")
    return 0


def cmd_init(args: argparse.Namespace) -> int:
    """Write a template environment file"""
    output = Path(args.output)
    if output.exists() and not args.force:
        logger.error(f"{output} already exists; use --force to overwrite it")
        return 1

    try:
        output.write_text(ENV_TEMPLATE, encoding="utf-8")
    except OSError as e:
        logger.error(f"Failed to write {output}: {e}")
        return 1

    logger.info(f"Template configuration written to {output}")
    return 0
