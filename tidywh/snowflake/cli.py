#!/usr/bin/env python3
"""
CLI entry point for Snowflake operations.

Supports 'query', 'discover' and 'upload' commands.

Usage:
    python -m tidywh.snowflake query <sql-file> [options]
    python -m tidywh.snowflake discover <subcommand> [options]
    python -m tidywh.snowflake upload <csv-file> --table DB.SCHEMA.TABLE --col-types icccc
    python -m tidywh.snowflake <sql-file> [options]  # query is implied
"""

import sys
from typing import List, Optional

from . import discover as discover_module
from . import query as query_module
from . import upload as upload_module


def print_help():
    """Print main help message."""
    help_text = """
snowflake - Execute Snowflake queries, explore and load tables

Usage:
  snowflake query <sql-file> [options]           - Execute SQL query from file
  snowflake query --sql "SELECT ..." [options]   - Execute inline SQL query
  snowflake discover <subcommand> [options]      - Explore tables and columns
  snowflake upload <csv-file> [options]          - Create a table and load a CSV file
  snowflake <sql-file> [options]                 - Execute SQL query (query is implied)

Examples:
  # Run a query and save the result next to it
  snowflake query analysis/top_stores.sql --limit 100

  # Columns of a table
  snowflake discover columns --table SALES_DB.PUBLIC.STORES

  # Load a file prepared with python -m tidywh.csvprep
  snowflake upload csv/store_mod.csv --table SALES_DB.PUBLIC.STORES --col-types icccc

Connection settings are read from ~/.snowflake/connections.toml
(section from tidywh.yaml "connection", default: [default]).

For more details:
  snowflake query --help
  snowflake discover --help
  snowflake upload --help
"""
    print(help_text)


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    argv = sys.argv[1:] if argv is None else argv

    if not argv or argv[0] in ['-h', '--help', 'help']:
        print_help()
        sys.exit(0)

    first_arg = argv[0]

    if first_arg == 'query':
        query_module.main(argv[1:])

    elif first_arg == 'discover':
        discover_module.main(argv[1:])

    elif first_arg == 'upload':
        upload_module.main(argv[1:])

    # If first arg is --sql, treat as implicit 'query' command with inline SQL
    elif first_arg == '--sql':
        query_module.main(argv)

    # If first arg looks like a file path (not a known command), assume it's a query
    elif first_arg.endswith('.sql') or first_arg.startswith('.') or first_arg.startswith('/') or '/' in first_arg:
        query_module.main(argv)

    else:
        print(f"Error: Unknown command or invalid file path '{first_arg}'", file=sys.stderr)
        print("", file=sys.stderr)
        print("Expected either:", file=sys.stderr)
        print("  - 'query' command: snowflake query <sql-file> [options]", file=sys.stderr)
        print("  - 'discover' command: snowflake discover <subcommand> [options]", file=sys.stderr)
        print("  - 'upload' command: snowflake upload <csv-file> [options]", file=sys.stderr)
        print("  - SQL file path: snowflake <sql-file> [options]", file=sys.stderr)
        print("", file=sys.stderr)
        print("Use --help for more information.", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
