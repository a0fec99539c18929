"""
Lazy, immutable query plans.

Every verb returns a new plan and leaves the receiver untouched, so plans can
be branched from a shared prefix freely. Nothing runs until execute().

Example:
    from tidywh.plan import table, col, desc

    sales = table("SALES_DB", "PUBLIC", "SALES", columns=["STORE", "AMOUNT"])
    top = (
        sales
        .filter(col("AMOUNT") > 5)
        .group_by("STORE")
        .summarise(TOTAL=col("AMOUNT").sum())
        .arrange(desc("TOTAL"))
    )
    print(top.compile())
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, List, Optional, Sequence, Tuple

from .compiler import compile_plan
from .expr import Aggregate, Column, Expr, aggregate, as_sort_key
from .ops import Derive, Filter, GroupAggregate, Project, Sort, TableRef, describe
from .result import MaterializedResult

logger = logging.getLogger(__name__)


def _column_names(values) -> Tuple[str, ...]:
    """Flatten names given as strings, Column expressions or one list of them."""
    if len(values) == 1 and isinstance(values[0], (list, tuple)):
        values = tuple(values[0])

    names = []
    for value in values:
        if isinstance(value, Column):
            value = value.name
        if not isinstance(value, str) or not value:
            raise TypeError(f"Expected a column name, got {value!r}")
        names.append(value)
    return tuple(names)


def _as_aggregate(name: str, value) -> Aggregate:
    # (function, input, na_rm) triples are accepted alongside expressions
    if isinstance(value, tuple):
        return aggregate(*value)
    if not isinstance(value, Aggregate):
        raise TypeError(
            f"summarise() value for '{name}' must be an aggregate such as col(...).sum(), "
            f"got {value!r}"
        )
    return value


@dataclass(frozen=True, eq=False)
class QueryPlan:
    """An unevaluated sequence of relational operations over one table."""
    table: TableRef
    columns: Tuple[str, ...]
    operations: Tuple[Any, ...] = ()
    session: Any = field(default=None, repr=False)

    def __repr__(self):
        steps = " -> ".join(describe(op) for op in self.operations)
        return f"<QueryPlan {self.table.full_name}{': ' + steps if steps else ''}>"

    def _append(self, *ops) -> "QueryPlan":
        return replace(self, operations=self.operations + ops)

    # -------------------------------------------------------------------------
    # Verbs
    # -------------------------------------------------------------------------

    def select(self, *columns) -> "QueryPlan":
        """Keep only the given columns, in the given order."""
        return self._append(Project(_column_names(columns)))

    def filter(self, *predicates: Expr) -> "QueryPlan":
        """Keep rows matching every predicate."""
        if not predicates:
            raise TypeError("filter() needs at least one predicate")
        for predicate in predicates:
            if not isinstance(predicate, Expr):
                raise TypeError(f"filter() expects expressions, got {predicate!r}")
        return self._append(*(Filter(predicate) for predicate in predicates))

    def mutate(self, name: Optional[str] = None, expression: Optional[Expr] = None, /,
               **derived: Expr) -> "QueryPlan":
        """
        Add or replace columns.

        Either mutate("total", col("a") + col("b")) or
        mutate(total=col("a") + col("b"), ratio=...). Redefining an existing
        column keeps its position; later references see the new definition.
        """
        pairs = []
        if name is not None:
            if expression is None:
                raise TypeError("mutate(name, expression) needs an expression")
            pairs.append((name, expression))
        pairs.extend(derived.items())

        if not pairs:
            raise TypeError("mutate() needs at least one column")

        ops = []
        for column_name, value in pairs:
            if not isinstance(column_name, str) or not column_name:
                raise TypeError(f"Expected a column name, got {column_name!r}")
            if not isinstance(value, Expr):
                raise TypeError(f"mutate() value for '{column_name}' must be an expression")
            ops.append(Derive(column_name, value))
        return self._append(*ops)

    def group_by(self, *keys) -> "GroupedPlan":
        return GroupedPlan(self, _column_names(keys))

    def summarise(self, *mapping, **aggregates) -> "QueryPlan":
        """Aggregate the whole relation into one row."""
        return GroupedPlan(self, ()).summarise(*mapping, **aggregates)

    summarize = summarise

    def arrange(self, *keys) -> "QueryPlan":
        """Order rows by names, expressions or desc()/asc() keys."""
        if len(keys) == 1 and isinstance(keys[0], list):
            keys = tuple(keys[0])
        if not keys:
            raise TypeError("arrange() needs at least one key")
        return self._append(Sort(tuple(as_sort_key(key) for key in keys)))

    # -------------------------------------------------------------------------
    # Compilation & execution
    # -------------------------------------------------------------------------

    def compile(self, limit: Optional[int] = None) -> str:
        """
        Lower the plan to one SQL query.

        Raises:
            UnknownColumn: a referenced column is not in scope
            CompilationError: the plan cannot be expressed as SQL
        """
        return compile_plan(self.table, self.columns, self.operations, limit=limit)

    def show_query(self) -> str:
        sql = self.compile()
        logger.info(f"Query for {self!r}:\n{sql}")
        return sql

    def describe(self) -> List[str]:
        return [describe(op) for op in self.operations]

    def execute(self, session=None, timeout: Optional[float] = None, cancel=None,
                limit: Optional[int] = None) -> MaterializedResult:
        """
        Compile the plan, run it on the warehouse and fetch every row.

        Args:
            session: Warehouse session (defaults to the one the plan is bound to)
            timeout: Seconds before the remote query is aborted
            cancel: CancellationToken; setting it aborts the remote query
            limit: Append LIMIT to the compiled query

        Returns:
            MaterializedResult; nothing partial is returned on timeout or cancel
        """
        # Compile first so scope errors never cost a round trip
        sql = self.compile(limit=limit)

        session = session if session is not None else self.session
        if session is None:
            raise ValueError(
                "No warehouse session: build the plan with Session.table() or pass session="
            )

        columns, rows = session.run_query(sql, timeout=timeout, cancel=cancel)
        return MaterializedResult(columns, rows)

    collect = execute


@dataclass(frozen=True, eq=False)
class GroupedPlan:
    """A plan with pending group keys, waiting for summarise()."""
    plan: QueryPlan
    keys: Tuple[str, ...]

    def summarise(self, *mapping, **aggregates) -> QueryPlan:
        """
        Aggregate each group.

        Accepts keyword aggregates (total=col("a").sum()), a mapping of the
        same, or (function, input, na_rm) triples as values.
        """
        pairs = []
        for item in mapping:
            if not isinstance(item, dict):
                raise TypeError(f"summarise() expects a mapping of aggregates, got {item!r}")
            pairs.extend(item.items())
        pairs.extend(aggregates.items())

        resolved = tuple((name, _as_aggregate(name, value)) for name, value in pairs)
        return self.plan._append(GroupAggregate(self.keys, resolved))

    summarize = summarise

    def ungroup(self) -> QueryPlan:
        return self.plan


def table(database: str, schema: str, name: str, columns: Sequence[str],
          session=None) -> QueryPlan:
    """Start a plan over DATABASE.SCHEMA.NAME with the given columns."""
    return QueryPlan(TableRef(database, schema, name), tuple(columns), session=session)
