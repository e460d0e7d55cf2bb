"""
Command-line argument parser configuration.

This module sets up the argument parser for the home-db-importer CLI,
defining all commands and their options.
"""

import argparse


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return number


def non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {value}")
    return number


def _add_connection_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("InfluxDB connection (defaults from INFLUX_* settings)")
    group.add_argument('--url', help='InfluxDB URL')
    group.add_argument('--org', help='InfluxDB organization')
    group.add_argument('--bucket', help='InfluxDB bucket/database')
    group.add_argument('--token', help='InfluxDB token for authentication')


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="home-db-importer",
        description="Import home data (delimited files, Health Connect exports) into InfluxDB",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Import a two-row-header CSV, only rows newer than the last run
  home-db-importer import-csv --source funds.csv --measurement funds --header-rows 2

  # Preview what would be written without touching InfluxDB or the state file
  home-db-importer import-csv --source funds.csv --measurement funds --dry-run

  # Import selected Health Connect data types
  home-db-importer import-health --source health_connect_export.db --data-types HeartRate,Steps

  # Fill heart rate gaps of the last 7 days (state file untouched)
  home-db-importer import-health --source health_connect_export.db --gap-fill-heart-rate 7

  # Check how a CSV file will be parsed
  home-db-importer validate-csv --source funds.csv --header-rows 2 --details
        """
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Logging level (default: LOG_LEVEL setting)'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # ========== import-csv ==========
    csv_parser = subparsers.add_parser('import-csv', help='Import data from a CSV file into InfluxDB')
    csv_parser.add_argument('--source', '-s', required=True, help='The CSV file to import')
    csv_parser.add_argument(
        '--measurement', '-m',
        required=True,
        help='Measurement name, stored as the record_type tag'
    )
    csv_parser.add_argument(
        '--time-column',
        help='Timestamp column header name (default: first column)'
    )
    csv_parser.add_argument(
        '--time-format',
        help='Timestamp strftime format (default: CSV_TIME_FORMAT setting)'
    )
    csv_parser.add_argument(
        '--header-rows',
        type=non_negative_int,
        default=1,
        help='Number of header rows in the CSV file (default: 1)'
    )
    csv_parser.add_argument(
        '--tag-key',
        help='Tag key for the first header row (default: CSV_TAG_KEY setting)'
    )
    csv_parser.add_argument(
        '--dry-run',
        action='store_true',
        help="Don't write to InfluxDB, just show the points"
    )
    csv_parser.add_argument(
        '--state-file',
        default='.import_state.json',
        help='State file tracking the last imported timestamp (default: .import_state.json)'
    )
    csv_parser.add_argument(
        '--force-all',
        action='store_true',
        help='Import all records, ignoring the state file'
    )
    _add_connection_arguments(csv_parser)

    # ========== import-health ==========
    health_parser = subparsers.add_parser(
        'import-health',
        help='Import health data from a Health Connect SQLite export'
    )
    health_parser.add_argument('--source', '-s', required=True, help='The SQLite database file to import')
    health_parser.add_argument(
        '--state-file',
        default='.health_import_state.json',
        help='State file tracking the last imported timestamp (default: .health_import_state.json)'
    )
    health_parser.add_argument(
        '--force-all',
        action='store_true',
        help='Import all records, ignoring the state file'
    )
    health_parser.add_argument(
        '--dry-run',
        action='store_true',
        help="Don't write to InfluxDB, just show the points"
    )
    health_parser.add_argument(
        '--data-types',
        help='Comma-separated data types to import (HeartRate,Steps,Sleep,Weight,TotalCalories,'
             'ActiveCalories,BasalMetabolicRate,BodyFat,ExerciseSession)'
    )
    health_parser.add_argument(
        '--gap-fill-heart-rate',
        type=positive_int,
        metavar='DAYS',
        help='Only import heart rate points missing from InfluxDB in the last DAYS days; '
             'the state file is not updated'
    )
    _add_connection_arguments(health_parser)

    # ========== validate-csv ==========
    validate_parser = subparsers.add_parser('validate-csv', help='Validate a CSV file format without importing')
    validate_parser.add_argument('--source', '-s', required=True, help='The CSV file to validate')
    validate_parser.add_argument(
        '--details', '-d',
        action='store_true',
        help='Show every parsed record instead of a sample'
    )
    validate_parser.add_argument(
        '--header-rows',
        type=non_negative_int,
        default=1,
        help='Number of header rows in the CSV file (default: 1)'
    )

    # ========== init ==========
    init_parser = subparsers.add_parser('init', help='Generate a template environment file')
    init_parser.add_argument(
        '--output', '-o',
        default='.env',
        help='Output file for the configuration (default: .env)'
    )
    init_parser.add_argument(
        '--force',
        action='store_true',
        help='Overwrite the output file if it exists'
    )

    return parser
