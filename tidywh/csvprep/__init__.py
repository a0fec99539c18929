"""CSV preparation - Normalize raw CSV files for warehouse bulk loading.

This module provides:
- normalize_csv: Flatten line breaks, quote text columns, re-render typed columns
- run_jobs: Normalize every job listed in the csvprep section of tidywh.yaml
"""

from .coltypes import COLUMN_TYPES, parse_col_types, sql_type_for
from .normalize import NormalizeReport, normalize_csv, run_jobs

__version__ = "0.1.0"
__all__ = [
    'COLUMN_TYPES',
    'NormalizeReport',
    'normalize_csv',
    'parse_col_types',
    'run_jobs',
    'sql_type_for',
]
