"""
Query plan compiler.

Lowers an ordered sequence of operations into one SQL query. Operations are
merged into the current SELECT clause where the grammar allows it; otherwise
the current clause is wrapped as a subquery (aliased t1, t2, ... in wrap
order) and a fresh clause is started on top of it:

    - select() never needs a new clause
    - filter() / mutate() need one when they reference a column derived in
      the current clause, or when the current clause is aggregated
    - group_by().summarise() always starts a new clause
    - arrange() keys are held back and emitted as ORDER BY on the outermost
      clause only

Column scope is tracked per clause, so an unknown column is reported here,
before any query reaches the warehouse.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple, Union

from tidywh.errors import CompilationError, UnknownColumn
from .expr import (
    Aggregate,
    BinaryOp,
    Column,
    Expr,
    Func,
    InList,
    IsNull,
    Literal,
    SortKey,
    UnaryOp,
)
from .ops import Derive, Filter, GroupAggregate, Project, Sort, TableRef

logger = logging.getLogger(__name__)

INDENT = "  "

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_$]*$')
_FUNCTION_NAME = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

RESERVED_WORDS = {
    "ALL", "ALTER", "AND", "ANY", "AS", "BETWEEN", "BY", "CASE", "CAST", "CHECK",
    "COLUMN", "CONNECT", "CREATE", "CROSS", "CURRENT", "DELETE", "DISTINCT",
    "DROP", "ELSE", "EXISTS", "FALSE", "FOLLOWING", "FOR", "FROM", "FULL", "GRANT",
    "GROUP", "HAVING", "ILIKE", "IN", "INCREMENT", "INNER", "INSERT", "INTERSECT",
    "INTO", "IS", "JOIN", "LATERAL", "LEFT", "LIKE", "LIMIT", "MINUS", "NATURAL",
    "NOT", "NULL", "OF", "ON", "OR", "ORDER", "QUALIFY", "REGEXP", "REVOKE",
    "RIGHT", "RLIKE", "ROW", "ROWS", "SAMPLE", "SELECT", "SET", "SOME", "START",
    "TABLE", "TABLESAMPLE", "THEN", "TO", "TRIGGER", "TRUE", "TRY_CAST", "UNION",
    "UNIQUE", "UPDATE", "USING", "VALUES", "VIEW", "WHEN", "WHENEVER", "WHERE",
    "WITH",
}

AGGREGATE_FUNCTIONS = ("SUM", "AVG", "MIN", "MAX", "COUNT")

# Binding strength, higher binds tighter
PRECEDENCE = {
    "OR": 1,
    "AND": 2,
    "NOT": 3,
    "=": 4, "!=": 4, "<": 4, "<=": 4, ">": 4, ">=": 4,
    "+": 5, "-": 5,
    "*": 6, "/": 6, "%": 6,
    "NEG": 7,
}
ATOM = 9
COMPARISON = 4

SQL_OPERATORS = {"!=": "<>"}
ASSOCIATIVE = ("AND", "OR", "+", "*")


# =============================================================================
# Rendering
# =============================================================================

def quote_identifier(name: str) -> str:
    """Render an identifier, double-quoting it when it is not a plain word."""
    if _IDENTIFIER.match(name) and name.upper() not in RESERVED_WORDS:
        return name
    return '"' + name.replace('"', '""') + '"'


def render_table(table: TableRef) -> str:
    return ".".join(quote_identifier(part) for part in (table.database, table.schema, table.name))


def render_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "''")
    return f"'{escaped}'"


def render_literal(value) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "'NaN'::FLOAT"
        if math.isinf(value):
            return "'inf'::FLOAT" if value > 0 else "'-inf'::FLOAT"
        return repr(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        cast = "TIMESTAMP_NTZ" if value.tzinfo is None else "TIMESTAMP_TZ"
        return f"{render_string(value.isoformat(sep=' '))}::{cast}"
    if isinstance(value, date):
        return f"{render_string(value.isoformat())}::DATE"
    if isinstance(value, str):
        return render_string(value)
    raise CompilationError(f"Unsupported literal value {value!r} ({type(value).__name__})")


def _is_null_literal(expr: Expr) -> bool:
    return isinstance(expr, Literal) and expr.value is None


def _wrap_child(child: Expr, parent_precedence: int, tight: bool) -> str:
    """Render child, parenthesized when it binds looser than its parent."""
    text, precedence = _render(child)
    if precedence < parent_precedence or (tight and precedence == parent_precedence):
        return f"({text})"
    return text


def _render(expr: Expr) -> Tuple[str, int]:
    if isinstance(expr, Column):
        return quote_identifier(expr.name), ATOM

    if isinstance(expr, Literal):
        text = render_literal(expr.value)
        # "-" followed by "-5" would start a comment
        return text, PRECEDENCE["NEG"] if text.startswith("-") else ATOM

    if isinstance(expr, BinaryOp):
        if expr.op not in PRECEDENCE:
            raise CompilationError(f"Unsupported operator '{expr.op}'")
        if expr.op in ("=", "!=") and _is_null_literal(expr.right):
            return _render(IsNull(expr.left, negated=expr.op == "!="))
        if expr.op in ("=", "!=") and _is_null_literal(expr.left):
            return _render(IsNull(expr.right, negated=expr.op == "!="))

        precedence = PRECEDENCE[expr.op]
        # Comparisons never chain, so both sides of one are tight
        left = _wrap_child(expr.left, precedence, tight=precedence == COMPARISON)
        right = _wrap_child(expr.right, precedence, tight=expr.op not in ASSOCIATIVE)
        return f"{left} {SQL_OPERATORS.get(expr.op, expr.op)} {right}", precedence

    if isinstance(expr, UnaryOp):
        if expr.op == "NOT":
            return f"NOT {_wrap_child(expr.operand, PRECEDENCE['NOT'], tight=False)}", PRECEDENCE["NOT"]
        if expr.op == "-":
            return f"-{_wrap_child(expr.operand, PRECEDENCE['NEG'], tight=True)}", PRECEDENCE["NEG"]
        raise CompilationError(f"Unsupported unary operator '{expr.op}'")

    if isinstance(expr, IsNull):
        operand = _wrap_child(expr.operand, COMPARISON, tight=True)
        keyword = "IS NOT NULL" if expr.negated else "IS NULL"
        return f"{operand} {keyword}", COMPARISON

    if isinstance(expr, InList):
        if not expr.values:
            raise CompilationError("isin() needs at least one value")
        operand = _wrap_child(expr.operand, COMPARISON, tight=True)
        values = ", ".join(render_expr(value) for value in expr.values)
        keyword = "NOT IN" if expr.negated else "IN"
        return f"{operand} {keyword} ({values})", COMPARISON

    if isinstance(expr, Func):
        if not _FUNCTION_NAME.match(expr.name):
            raise CompilationError(f"Invalid function name '{expr.name}'")
        args = ", ".join(render_expr(arg) for arg in expr.args)
        return f"{expr.name}({args})", ATOM

    if isinstance(expr, Aggregate):
        return _render_aggregate(expr), ATOM

    raise CompilationError(f"Cannot compile {expr!r}")


def _render_aggregate(agg: Aggregate) -> str:
    if agg.function not in AGGREGATE_FUNCTIONS:
        raise CompilationError(f"Unsupported aggregate function '{agg.function}'")
    if agg.input is None:
        if agg.function != "COUNT":
            raise CompilationError(f"{agg.function} needs an input expression")
        return "COUNT(*)"
    if agg.input.has_aggregate():
        raise CompilationError("Aggregate functions cannot be nested")

    arg = render_expr(agg.input)
    if agg.distinct:
        return f"{agg.function}(DISTINCT {arg})"
    text = f"{agg.function}({arg})"
    if agg.na_rm or agg.function == "COUNT":
        return text
    # NULL as soon as one input is NULL
    return f"CASE WHEN COUNT(*) = COUNT({arg}) THEN {text} END"


def render_expr(expr: Expr) -> str:
    """Render an expression as SQL text."""
    return _render(expr)[0]


def render_sort_key(key: SortKey) -> str:
    text = render_expr(key.expr)
    return f"{text} DESC" if key.descending else text


# =============================================================================
# Clauses
# =============================================================================

@dataclass
class Subquery:
    clause: "Clause"
    alias: str


@dataclass
class Clause:
    """One SELECT level. Items are (output name, expression); None passes a
    source column through unchanged."""
    source: Union[TableRef, Subquery]
    source_columns: List[str]
    items: List[Tuple[str, Optional[Expr]]]
    where: List[Expr] = field(default_factory=list)
    group_by: List[str] = field(default_factory=list)
    aggregated: bool = False

    @property
    def columns(self) -> List[str]:
        return [name for name, _ in self.items]

    @property
    def derived(self) -> List[str]:
        return [name for name, expr in self.items if expr is not None]

    def is_plain(self) -> bool:
        return not self.where and not self.aggregated and not self.derived

    def render(self, order_by: Sequence[SortKey] = (), limit: Optional[int] = None) -> str:
        lines = [f"SELECT {self._render_select_list()}"]

        if isinstance(self.source, TableRef):
            lines.append(f"FROM {render_table(self.source)}")
        else:
            lines.append("FROM (")
            for line in self.source.clause.render().split("\n"):
                lines.append(INDENT + line)
            lines.append(f") AS {self.source.alias}")

        if self.where:
            tight = len(self.where) > 1
            predicates = [_wrap_child(p, PRECEDENCE["AND"], tight=False) if tight else render_expr(p)
                          for p in self.where]
            lines.append("WHERE " + " AND ".join(predicates))
        if self.group_by:
            lines.append("GROUP BY " + ", ".join(quote_identifier(key) for key in self.group_by))
        if order_by:
            lines.append("ORDER BY " + ", ".join(render_sort_key(key) for key in order_by))
        if limit is not None:
            lines.append(f"LIMIT {int(limit)}")

        return "\n".join(lines)

    def _render_select_list(self) -> str:
        if not self.derived and self.columns == self.source_columns:
            return "*"

        parts = []
        for name, expr in self.items:
            if expr is None:
                parts.append(quote_identifier(name))
            else:
                parts.append(f"{render_expr(expr)} AS {quote_identifier(name)}")
        return ", ".join(parts)


def _dedupe(names: Sequence[str]) -> List[str]:
    seen = []
    for name in names:
        if name not in seen:
            seen.append(name)
    return seen


# =============================================================================
# Compiler
# =============================================================================

class QueryCompiler:
    """Compiles the operations of one plan. Use once per compile() call."""

    def __init__(self, table: TableRef, columns: Sequence[str]):
        columns = list(columns)
        if not columns:
            raise CompilationError(f"Table {table.full_name} has no known columns")
        if len(set(columns)) != len(columns):
            raise CompilationError(f"Table {table.full_name} lists duplicate columns")

        self.table = table
        self.columns = columns
        self._aliases = 0
        self._pending_sort: List[SortKey] = []

    def compile(self, operations: Sequence, limit: Optional[int] = None) -> str:
        if limit is not None and int(limit) < 0:
            raise CompilationError(f"Limit must be non-negative, got {limit}")

        clause = Clause(
            source=self.table,
            source_columns=list(self.columns),
            items=[(name, None) for name in self.columns],
        )

        for op in operations:
            if isinstance(op, Project):
                clause = self._project(clause, op)
            elif isinstance(op, Filter):
                clause = self._filter(clause, op)
            elif isinstance(op, Derive):
                clause = self._derive(clause, op)
            elif isinstance(op, GroupAggregate):
                clause = self._group_aggregate(clause, op)
            elif isinstance(op, Sort):
                self._sort(clause, op)
            else:
                raise CompilationError(f"Unknown operation {op!r}")

        if self._pending_sort and self._sort_is_ambiguous(clause):
            clause = self._wrap(clause)

        return clause.render(order_by=self._pending_sort, limit=limit)

    # -------------------------------------------------------------------------

    def _wrap(self, clause: Clause) -> Clause:
        self._aliases += 1
        alias = f"t{self._aliases}"
        columns = clause.columns
        return Clause(
            source=Subquery(clause, alias),
            source_columns=list(columns),
            items=[(name, None) for name in columns],
        )

    @staticmethod
    def _check_scope(clause: Clause, names: Sequence[str]) -> None:
        in_scope = clause.columns
        for name in names:
            if name not in in_scope:
                raise UnknownColumn(name, in_scope)

    @staticmethod
    def _check_row_expression(expr: Expr, verb: str) -> None:
        if not isinstance(expr, Expr):
            raise CompilationError(f"{verb}() expects an expression, got {expr!r}")
        if expr.has_aggregate():
            raise CompilationError(
                f"Aggregate functions are not allowed in {verb}(); use summarise()"
            )

    def _sort_columns(self) -> List[str]:
        return _dedupe([name for key in self._pending_sort for name in key.columns()])

    def _sort_is_ambiguous(self, clause: Clause) -> bool:
        # ORDER BY name could bind to either the source column or the new alias
        shadowed = set(clause.derived) & set(clause.source_columns)
        return any(name in shadowed for name in self._sort_columns())

    def _project(self, clause: Clause, op: Project) -> Clause:
        names = _dedupe(op.columns)
        if not names:
            raise CompilationError("select() needs at least one column")
        self._check_scope(clause, names)

        for name in self._sort_columns():
            if name not in names:
                raise CompilationError(
                    f"Column '{name}' is used by arrange() but removed by a later select()"
                )

        expressions = dict(clause.items)
        clause.items = [(name, expressions[name]) for name in names]
        return clause

    def _filter(self, clause: Clause, op: Filter) -> Clause:
        self._check_row_expression(op.predicate, "filter")
        refs = op.predicate.columns()
        self._check_scope(clause, refs)

        if clause.aggregated or set(refs) & set(clause.derived):
            clause = self._wrap(clause)

        clause.where.append(op.predicate)
        return clause

    def _derive(self, clause: Clause, op: Derive) -> Clause:
        self._check_row_expression(op.expression, "mutate")
        refs = op.expression.columns()
        self._check_scope(clause, refs)

        if op.name in self._sort_columns():
            raise CompilationError(
                f"Column '{op.name}' is used by arrange() and redefined by a later mutate()"
            )

        if clause.aggregated or set(refs) & set(clause.derived):
            clause = self._wrap(clause)

        if op.name in clause.columns:
            clause.items = [
                (name, op.expression if name == op.name else expr)
                for name, expr in clause.items
            ]
        else:
            clause.items.append((op.name, op.expression))
        return clause

    def _group_aggregate(self, clause: Clause, op: GroupAggregate) -> Clause:
        keys = _dedupe(op.group_keys)
        if not keys and not op.aggregates:
            raise CompilationError("summarise() needs at least one aggregate or group key")
        self._check_scope(clause, keys)

        names = []
        for name, agg in op.aggregates:
            if not isinstance(agg, Aggregate):
                raise CompilationError(
                    f"summarise() value for '{name}' must be an aggregate such as col(...).sum()"
                )
            if name in keys:
                raise CompilationError(f"Aggregate '{name}' has the same name as a group key")
            if name in names:
                raise CompilationError(f"Aggregate '{name}' is defined twice")
            names.append(name)
            self._check_scope(clause, agg.columns())

        if self._pending_sort:
            logger.warning("Ordering before summarise() has no effect and is dropped")
            self._pending_sort = []

        if not clause.is_plain():
            clause = self._wrap(clause)

        return Clause(
            source=clause.source,
            source_columns=clause.source_columns,
            items=[(key, None) for key in keys] + list(op.aggregates),
            group_by=keys,
            aggregated=True,
        )

    def _sort(self, clause: Clause, op: Sort) -> None:
        if not op.keys:
            raise CompilationError("arrange() needs at least one key")
        for key in op.keys:
            if not isinstance(key, SortKey):
                raise CompilationError(f"arrange() expects sort keys, got {key!r}")
            if isinstance(key.expr, Literal):
                # ORDER BY <integer> would sort by select-list position
                raise CompilationError(f"arrange() keys must reference columns, got constant {key.expr.value!r}")
            if key.expr.has_aggregate():
                raise CompilationError("Aggregate functions are not allowed in arrange()")
            self._check_scope(clause, key.columns())

        # A later arrange() replaces the earlier ordering
        self._pending_sort = list(op.keys)


def compile_plan(table: TableRef, columns: Sequence[str], operations: Sequence,
                 limit: Optional[int] = None) -> str:
    """Compile operations over a base table into SQL text."""
    return QueryCompiler(table, columns).compile(operations, limit=limit)
