#!/usr/bin/env python3
"""
Snowflake Discovery Tools

Utilities for exploring tables and columns before building query plans.

Usage:
  python -m tidywh.snowflake discover tables <DATABASE> [SCHEMA] [--pattern P]
  python -m tidywh.snowflake discover columns --table <DATABASE.SCHEMA.TABLE>
  python -m tidywh.snowflake discover preview --table <DATABASE.SCHEMA.TABLE> [--limit N]

Examples:
  python -m tidywh.snowflake discover tables SALES_DB PUBLIC --pattern store
  python -m tidywh.snowflake discover columns --table SALES_DB.PUBLIC.STORES
  python -m tidywh.snowflake discover preview --table SALES_DB.PUBLIC.SALES --limit 10
"""

import argparse
import sys
from dataclasses import dataclass
from typing import List, Optional

from tidywh.common.console import dim, error, info, success
from tidywh.plan.compiler import quote_identifier
from tidywh.plan.ops import TableRef


@dataclass
class TableInfo:
    """Information about a table"""
    database: str
    schema: str
    name: str
    row_count: Optional[int]
    bytes: Optional[int]
    last_altered: Optional[str]

    @property
    def full_name(self) -> str:
        return f"{self.database}.{self.schema}.{self.name}"

    def format_size(self) -> str:
        """Format bytes as human-readable size"""
        if self.bytes is None:
            return "unknown"

        size = float(self.bytes)
        for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
            if size < 1024.0:
                return f"{size:.1f} {unit}"
            size /= 1024.0
        return f"{size:.1f} PB"


@dataclass
class ColumnInfo:
    """Information about a column"""
    name: str
    type: str
    nullable: bool
    default: Optional[str]
    comment: Optional[str]


def list_tables(session, database: str, schema: Optional[str] = None,
                pattern: Optional[str] = None, limit: int = 200) -> List[TableInfo]:
    """
    List base tables in a database, optionally restricted to one schema and
    to names containing pattern (case-insensitive).
    """
    conditions = ["TABLE_TYPE = 'BASE TABLE'"]
    params = []
    if schema:
        conditions.append("TABLE_SCHEMA = %s")
        params.append(schema)
    if pattern:
        conditions.append("TABLE_NAME ILIKE %s")
        params.append(f"%{pattern}%")

    query = f"""
    SELECT
        TABLE_CATALOG,
        TABLE_SCHEMA,
        TABLE_NAME,
        ROW_COUNT,
        BYTES,
        LAST_ALTERED
    FROM {quote_identifier(database)}.INFORMATION_SCHEMA.TABLES
    WHERE {' AND '.join(conditions)}
    ORDER BY TABLE_SCHEMA, TABLE_NAME
    LIMIT {int(limit)}
    """

    _, rows = session.execute(query, params)
    return [
        TableInfo(
            database=row[0],
            schema=row[1],
            name=row[2],
            row_count=row[3],
            bytes=row[4],
            last_altered=row[5].strftime('%Y-%m-%d %H:%M:%S') if row[5] else None
        )
        for row in rows
    ]


def table_columns(session, database: str, schema: str, table: str) -> List[ColumnInfo]:
    """Columns of a table in ordinal order; empty when the table is not visible."""
    query = f"""
    SELECT
        COLUMN_NAME,
        DATA_TYPE,
        IS_NULLABLE,
        COLUMN_DEFAULT,
        COMMENT
    FROM {quote_identifier(database)}.INFORMATION_SCHEMA.COLUMNS
    WHERE TABLE_SCHEMA = %s
        AND TABLE_NAME = %s
    ORDER BY ORDINAL_POSITION
    """

    _, rows = session.execute(query, [schema, table])
    return [
        ColumnInfo(
            name=row[0],
            type=row[1],
            nullable=row[2] == 'YES',
            default=row[3],
            comment=row[4]
        )
        for row in rows
    ]


def table_exists(session, database: str, schema: str, table: str) -> bool:
    return bool(table_columns(session, database, schema, table))


def print_tables(tables: List[TableInfo]):
    if not tables:
        info("No tables found.")
        return

    success(f"Found {len(tables)} table(s):\n")
    for table in tables:
        rows = f"{table.row_count:,} rows" if table.row_count is not None else "? rows"
        info(f"  {table.full_name}")
        dim(f"      {rows}, {table.format_size()}, last altered {table.last_altered or 'unknown'}")


def print_columns(columns: List[ColumnInfo]):
    if not columns:
        info("No columns found (table missing or not accessible).")
        return

    info(f"{'COLUMN':<32} {'TYPE':<20} NULLABLE")
    info("-" * 64)
    for column in columns:
        info(f"{column.name:<32} {column.type:<20} {'yes' if column.nullable else 'no'}")
        if column.comment:
            dim(f"    {column.comment}")


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        prog='snowflake discover',
        description='Explore warehouse tables and columns',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    subparsers = parser.add_subparsers(dest='command')

    tables_parser = subparsers.add_parser('tables', help='List tables in a database')
    tables_parser.add_argument('database')
    tables_parser.add_argument('schema', nargs='?')
    tables_parser.add_argument('--pattern', help='Substring of the table name')

    columns_parser = subparsers.add_parser('columns', help='Show the columns of a table')
    columns_parser.add_argument('--table', required=True, help='DATABASE.SCHEMA.TABLE')

    preview_parser = subparsers.add_parser('preview', help='Show the first rows of a table')
    preview_parser.add_argument('--table', required=True, help='DATABASE.SCHEMA.TABLE')
    preview_parser.add_argument('--limit', type=int, default=10)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    from .connection import connect

    try:
        if args.command == 'tables':
            with connect(database=args.database) as session:
                print_tables(list_tables(session, args.database, args.schema, args.pattern))

        elif args.command == 'columns':
            ref = TableRef.parse(args.table)
            with connect(database=ref.database) as session:
                info(f"Analyzing table: {ref.full_name}\n")
                print_columns(table_columns(session, ref.database, ref.schema, ref.name))

        elif args.command == 'preview':
            ref = TableRef.parse(args.table)
            with connect(database=ref.database) as session:
                plan = session.table(ref.database, ref.schema, ref.name)
                info(f"Preview: {ref.full_name} (first {args.limit} rows)\n")
                result = plan.execute(limit=args.limit)
                info(result.preview(limit=args.limit))

    except Exception as e:
        error(f"\nError: {e}\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
