"""
Command-line interface for home-db-importer.

Available commands:
- import-csv: Import a delimited file into InfluxDB
- import-health: Import a Health Connect SQLite export (or gap-fill heart rate)
- validate-csv: Show how a delimited file will be parsed
- init: Write a template environment file
"""

import sys
from typing import List, Optional

from core.logging import setup_logging

from .commands import cmd_import_csv, cmd_import_health, cmd_init, cmd_validate_csv
from .parser import create_parser

COMMANDS = {
    'import-csv': cmd_import_csv,
    'import-health': cmd_import_health,
    'validate-csv': cmd_validate_csv,
    'init': cmd_init,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the home-db-importer CLI"""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 1

    return command(args)


__all__ = [
    'main',
    'create_parser',
    'cmd_import_csv',
    'cmd_import_health',
    'cmd_validate_csv',
    'cmd_init',
]


if __name__ == '__main__':
    sys.exit(main())
