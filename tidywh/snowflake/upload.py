#!/usr/bin/env python3
"""
Table creation and upload.

Creates warehouse tables from type codes (or SQL types), inserts rows in
batches, and bulk-loads normalized CSV files through the table stage.

Usage:
  python -m tidywh.snowflake upload <csv-file> --table <DATABASE.SCHEMA.TABLE> --col-types icccc
      [--if-exists fail|replace|append]

Examples:
  python -m tidywh.snowflake upload csv/store_mod.csv --table SALES_DB.PUBLIC.STORES --col-types icccc
"""

import argparse
import csv
import itertools
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from tidywh.common.config import IF_EXISTS_CHOICES, load_config
from tidywh.common.console import error, success
from tidywh.csvprep.coltypes import parse_col_types, sql_type_for
from tidywh.errors import TableExists
from tidywh.plan.compiler import quote_identifier, render_table
from tidywh.plan.ops import TableRef
from .discover import table_exists

logger = logging.getLogger(__name__)

# File format matching tidywh.csvprep output: quoted text, empty unquoted field = NULL
CSV_FILE_FORMAT = (
    "TYPE = CSV SKIP_HEADER = 1 FIELD_OPTIONALLY_ENCLOSED_BY = '\"' "
    "EMPTY_FIELD_AS_NULL = TRUE TIMESTAMP_FORMAT = 'AUTO' ENCODING = 'UTF8'"
)


def _resolve_if_exists(if_exists: Optional[str]) -> str:
    if_exists = if_exists or load_config()["upload"]["if_exists"]
    if if_exists not in IF_EXISTS_CHOICES:
        raise ValueError(
            f"if_exists must be one of {', '.join(IF_EXISTS_CHOICES)}, got '{if_exists}'"
        )
    return if_exists


def create_table(session, database: str, schema: str, table: str,
                 schema_spec: Dict[str, str], if_exists: Optional[str] = None) -> TableRef:
    """
    Create a table.

    Args:
        schema_spec: Ordered mapping column -> type code ("i", "c", ...) or SQL type
        if_exists: "fail" (raise TableExists), "replace" (drop and recreate) or
            "append" (keep the existing table). Default from tidywh.yaml.

    Returns:
        TableRef of the created (or kept) table
    """
    if_exists = _resolve_if_exists(if_exists)
    ref = TableRef(database, schema, table)

    if not schema_spec:
        raise ValueError(f"No columns given for {ref.full_name}")

    if if_exists == "fail" and table_exists(session, database, schema, table):
        raise TableExists(f"Table {ref.full_name} already exists")

    columns = ",\n    ".join(
        f"{quote_identifier(name)} {sql_type_for(type_)}" for name, type_ in schema_spec.items()
    )
    verb = {
        "fail": "CREATE TABLE",
        "replace": "CREATE OR REPLACE TABLE",
        "append": "CREATE TABLE IF NOT EXISTS",
    }[if_exists]

    session.execute(f"{verb} {render_table(ref)} (\n    {columns}\n)")
    logger.info(f"Created table {ref.full_name} ({if_exists})")
    return ref


def upload_rows(session, database: str, schema: str, table: str, columns: Sequence[str],
                rows: Iterable[Sequence[Any]], batch_size: Optional[int] = None) -> int:
    """
    Insert rows in batches with bound parameters.

    Returns:
        Number of rows inserted
    """
    if not columns:
        raise ValueError("upload_rows() needs at least one column")
    batch_size = batch_size or load_config()["upload"]["batch_size"]

    ref = TableRef(database, schema, table)
    placeholders = ", ".join(["%s"] * len(columns))
    statement = (
        f"INSERT INTO {render_table(ref)} "
        f"({', '.join(quote_identifier(name) for name in columns)}) VALUES ({placeholders})"
    )

    total = 0
    iterator = iter(rows)
    while True:
        batch = [tuple(row) for row in itertools.islice(iterator, batch_size)]
        if not batch:
            break
        for row in batch:
            if len(row) != len(columns):
                raise ValueError(f"Row has {len(row)} values for {len(columns)} columns: {row}")
        session.executemany(statement, batch)
        total += len(batch)
        logger.debug(f"Inserted {total} rows into {ref.full_name}")

    logger.info(f"Uploaded {total} rows to {ref.full_name}")
    return total


def load_csv(session, path: Path, database: str, schema: str, table: str) -> int:
    """
    Bulk-load a normalized CSV file through the table stage (PUT + COPY INTO).

    Returns:
        Number of rows loaded
    """
    path = Path(path).resolve()
    if not path.exists():
        raise FileNotFoundError(f"CSV file not found: {path}")

    ref = TableRef(database, schema, table)
    stage = f"@{quote_identifier(database)}.{quote_identifier(schema)}.%{quote_identifier(table)}"

    session.execute(f"PUT 'file://{path.as_posix()}' {stage} AUTO_COMPRESS = TRUE OVERWRITE = TRUE")
    columns, rows = session.execute(
        f"COPY INTO {render_table(ref)} FROM {stage} "
        f"FILES = ('{path.name}.gz') FILE_FORMAT = ({CSV_FILE_FORMAT}) PURGE = TRUE"
    )

    names = [column.name.lower() for column in columns]
    loaded = 0
    if "rows_loaded" in names:
        index = names.index("rows_loaded")
        loaded = sum(row[index] or 0 for row in rows)

    logger.info(f"Loaded {loaded} rows from {path.name} into {ref.full_name}")
    return loaded


def read_header(path: Path) -> List[str]:
    with open(path, 'r', encoding='utf-8', newline='') as f:
        header = next(csv.reader(f), None)
    if not header:
        raise ValueError(f"{path} has no header row")
    return header


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        prog='snowflake upload',
        description='Create a table and bulk-load a normalized CSV file',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('csv_file', help='Normalized CSV file (see python -m tidywh.csvprep)')
    parser.add_argument('--table', required=True, help='DATABASE.SCHEMA.TABLE')
    parser.add_argument('--col-types', required=True,
                        help='Type codes of the columns in the file, e.g. "icccc"')
    parser.add_argument('--if-exists', choices=IF_EXISTS_CHOICES,
                        help='What to do when the table exists (default from tidywh.yaml)')
    args = parser.parse_args(argv)

    from .connection import connect

    try:
        path = Path(args.csv_file)
        ref = TableRef.parse(args.table)
        header = read_header(path)
        types = [t for t in parse_col_types(args.col_types) if not t.skipped]
        if len(types) != len(header):
            raise ValueError(
                f"{len(types)} column type(s) for {len(header)} column(s) in {path.name}"
            )

        with connect(database=ref.database) as session:
            create_table(
                session, ref.database, ref.schema, ref.name,
                {name: t.code for name, t in zip(header, types)},
                if_exists=args.if_exists
            )
            loaded = load_csv(session, path, ref.database, ref.schema, ref.name)
        success(f"Loaded {loaded} rows into {ref.full_name}")

    except TableExists as e:
        error(f"\n{e}. Use --if-exists replace or append.\n")
        sys.exit(1)
    except Exception as e:
        error(f"\nError: {e}\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
