"""
Lazy query plans for the warehouse.

Build a plan with select / filter / mutate / group_by+summarise / arrange,
compile it to one SQL query, and materialize it with execute().

Usage programmatically:
    from tidywh.plan import table, col, desc, n
"""

from .expr import aggregate, asc, col, desc, func, lit, n
from .ops import TableRef
from .plan import GroupedPlan, QueryPlan, table
from .result import MaterializedResult, ResultColumn

__all__ = [
    'GroupedPlan',
    'MaterializedResult',
    'QueryPlan',
    'ResultColumn',
    'TableRef',
    'aggregate',
    'asc',
    'col',
    'desc',
    'func',
    'lit',
    'n',
    'table',
]
