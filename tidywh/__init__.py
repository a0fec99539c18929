"""
Tidy Warehouse Toolkit

A collection of tools for preparing data for, and querying, a cloud warehouse:
- csvprep: Normalize raw CSV files into quoted, type-stable bulk-load files
- plan: Lazy, immutable query plans compiled to a single SQL query
- snowflake: Connection, query execution, discovery and table upload
"""

__version__ = '1.0.0'
