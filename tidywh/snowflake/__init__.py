"""
Snowflake warehouse access for tidywh

This package provides:
- connection: Connect, run queries with timeout/cancellation, start query plans
- upload: Create tables, insert rows, bulk-load normalized CSV files
- discover: List tables and columns
- query: Execute SQL files or inline SQL and save results as CSV

Usage as CLI:
    python -m tidywh.snowflake query <sql-file> [options]

Usage programmatically:
    from tidywh.snowflake import connect, create_table, upload_rows
"""

from .connection import (
    CancellationToken,
    Session,
    connect,
    load_connection_settings,
    open_connection,
)
from .upload import create_table, load_csv, upload_rows

__all__ = [
    'CancellationToken',
    'Session',
    'connect',
    'create_table',
    'load_connection_settings',
    'load_csv',
    'open_connection',
    'upload_rows',
]
