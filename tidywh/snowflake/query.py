#!/usr/bin/env python3
"""
Snowflake Query Executor

Executes SQL from a file or the command line and saves results to CSV.

Usage:
  python -m tidywh.snowflake query <path-to-sql-file> [options]
  python -m tidywh.snowflake query --sql "SELECT ..." [options]

Examples:
  python -m tidywh.snowflake query analysis/top_stores.sql
  python -m tidywh.snowflake query analysis/top_stores.sql --output results.csv --limit 100
  python -m tidywh.snowflake query --sql "SELECT COUNT(*) FROM SALES_DB.PUBLIC.SALES"

Options:
  --sql <query>        Pass SQL query inline (no file needed). Output defaults to output.csv
  --output <path>      Output CSV file (default: <sql-file>.csv next to the SQL file)
  --limit <N>          Limit results to N rows
  --timeout <seconds>  Abort the query after this many seconds
  --database <name>    Database to use (default from connections.toml)
  --debug              Show detailed debug information including SQL content
  -h, --help           Show this help message
"""

import sys
from pathlib import Path
from typing import List, Optional

from tidywh.common.console import debug, error, info, is_debug, set_debug, success, warning
from tidywh.plan.result import MaterializedResult


def load_query(sql_file: Path) -> str:
    """Load SQL query from file."""
    if not sql_file.exists():
        raise FileNotFoundError(f"SQL file not found: {sql_file}")

    return sql_file.read_text()


def apply_limit_to_query(query: str, limit: int) -> str:
    """
    Append LIMIT clause to SQL query without modifying the original file.

    The warehouse then only produces the requested number of rows.
    """
    lines = query.split('\n')

    # Find the last non-comment, non-empty line
    last_query_line_idx = -1
    for i in range(len(lines) - 1, -1, -1):
        line = lines[i].strip()
        if line and not line.startswith('--'):
            last_query_line_idx = i
            break

    if last_query_line_idx == -1:
        query = query.rstrip().rstrip(';').rstrip()
        return f"{query}\nLIMIT {limit};"

    query_lines = lines[:last_query_line_idx + 1]

    # Remove trailing semicolon from the last line if present
    query_lines[-1] = query_lines[-1].rstrip().rstrip(';')

    query = '\n'.join(query_lines)
    return f"{query}\nLIMIT {limit};"


def execute_query(session, query: str, limit: Optional[int] = None,
                  timeout: Optional[float] = None) -> MaterializedResult:
    """
    Execute query and return the materialized result.

    If limit is provided, appends LIMIT clause to the query.
    """
    if limit:
        query = apply_limit_to_query(query, limit)

    columns, rows = session.run_query(query, timeout=timeout)
    return MaterializedResult(columns, rows)


def resolve_output_path(sql_file: Optional[Path], output_arg: Optional[str]) -> Path:
    """
    Resolve the output CSV path.

    Default: {stem}.csv next to the SQL file, or output.csv in the current
    directory for inline SQL.
    """
    if output_arg:
        output_path = Path(output_arg)
        if output_path.is_dir() or output_arg.endswith('/'):
            return output_path.resolve() / "results.csv"
        return output_path.resolve()

    if sql_file is None:
        return Path.cwd() / "output.csv"
    return sql_file.parent / f"{sql_file.stem}.csv"


def parse_args(argv: List[str]) -> dict:
    if not argv or argv[0] in ['-h', '--help']:
        print(__doc__)
        sys.exit(0)

    options = {
        'inline_sql': None,
        'sql_file': None,
        'output': None,
        'limit': None,
        'timeout': None,
        'database': None,
        'debug': False,
    }

    if argv[0] == '--sql':
        if len(argv) < 2:
            error("--sql requires a query string")
            sys.exit(1)
        options['inline_sql'] = argv[1]
        i = 2
    else:
        options['sql_file'] = Path(argv[0]).resolve()
        i = 1

    while i < len(argv):
        if argv[i] == '--output' and i + 1 < len(argv):
            options['output'] = argv[i + 1]
            i += 2
        elif argv[i] == '--limit' and i + 1 < len(argv):
            options['limit'] = int(argv[i + 1])
            i += 2
        elif argv[i] == '--timeout' and i + 1 < len(argv):
            options['timeout'] = float(argv[i + 1])
            i += 2
        elif argv[i] == '--database' and i + 1 < len(argv):
            options['database'] = argv[i + 1]
            i += 2
        elif argv[i] == '--debug':
            options['debug'] = True
            i += 1
        else:
            error(f"Unknown option '{argv[i]}'")
            sys.exit(1)

    return options


def main(argv: Optional[List[str]] = None):
    options = parse_args(sys.argv[1:] if argv is None else argv)
    set_debug(options['debug'])
    debug(f"Parsed options: {options}")

    sql_file = options['sql_file']
    output_path = resolve_output_path(sql_file, options['output'])

    info(f"\n{'=' * 100}")
    info("SNOWFLAKE QUERY EXECUTOR")
    info('=' * 100)
    info(f"\nSQL: {'(inline)' if options['inline_sql'] else sql_file}")
    info(f"Output: {output_path}")
    if options['limit']:
        info(f"Limit: {options['limit']} rows")
    print()

    from .connection import connect

    try:
        query = options['inline_sql'] or load_query(sql_file)
        debug(f"Query loaded ({len(query)} characters)")
        if is_debug():
            debug(query)

        if options['limit']:
            warning(f"LIMIT {options['limit']} will be appended to the query")

        with connect(database=options['database']) as session:
            info("Connected to Snowflake")
            result = execute_query(session, query, options['limit'], options['timeout'])
            success(f"Query executed successfully - {len(result)} rows returned")

        result.to_csv(output_path)
        debug(f"Results saved to {output_path.name}")

        if len(result):
            print("\nPreview (first 5 rows):")
            print("-" * 100)
            print(result.preview(limit=5))

    except Exception as e:
        error(f"\nError: {e}\n")
        debug(f"Error type: {type(e).__name__}")
        if is_debug():
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
