"""
Expression trees for query plans.

Expressions are built with ordinary Python operators and are never evaluated
locally; the compiler lowers them to SQL.

Example:
    from tidywh.plan.expr import col, desc, n

    predicate = (col("amount") > 5) & ~col("region").isin(["EU", "APAC"])
    total = col("amount").sum()
    order = desc("total")
"""

from dataclasses import dataclass
from typing import Any, Iterator, Optional, Tuple, Union


class Expr:
    """Base class for expression nodes.

    Comparison operators build nodes instead of returning booleans, so
    expressions must never be tested for truth or compared with ``==`` in
    plain Python code.
    """

    __hash__ = object.__hash__

    def __bool__(self):
        raise TypeError(
            "Expressions have no truth value; combine predicates with &, | and ~"
        )

    # Comparison
    def __eq__(self, other):
        return BinaryOp("=", self, wrap(other))

    def __ne__(self, other):
        return BinaryOp("!=", self, wrap(other))

    def __lt__(self, other):
        return BinaryOp("<", self, wrap(other))

    def __le__(self, other):
        return BinaryOp("<=", self, wrap(other))

    def __gt__(self, other):
        return BinaryOp(">", self, wrap(other))

    def __ge__(self, other):
        return BinaryOp(">=", self, wrap(other))

    # Boolean connectives
    def __and__(self, other):
        return BinaryOp("AND", self, wrap(other))

    def __rand__(self, other):
        return BinaryOp("AND", wrap(other), self)

    def __or__(self, other):
        return BinaryOp("OR", self, wrap(other))

    def __ror__(self, other):
        return BinaryOp("OR", wrap(other), self)

    def __invert__(self):
        return UnaryOp("NOT", self)

    # Arithmetic
    def __add__(self, other):
        return BinaryOp("+", self, wrap(other))

    def __radd__(self, other):
        return BinaryOp("+", wrap(other), self)

    def __sub__(self, other):
        return BinaryOp("-", self, wrap(other))

    def __rsub__(self, other):
        return BinaryOp("-", wrap(other), self)

    def __mul__(self, other):
        return BinaryOp("*", self, wrap(other))

    def __rmul__(self, other):
        return BinaryOp("*", wrap(other), self)

    def __truediv__(self, other):
        return BinaryOp("/", self, wrap(other))

    def __rtruediv__(self, other):
        return BinaryOp("/", wrap(other), self)

    def __mod__(self, other):
        return BinaryOp("%", self, wrap(other))

    def __neg__(self):
        return UnaryOp("-", self)

    # Predicates
    def is_null(self) -> "IsNull":
        return IsNull(self)

    def not_null(self) -> "IsNull":
        return IsNull(self, negated=True)

    def isin(self, values) -> "InList":
        return InList(self, tuple(wrap(value) for value in values))

    def notin(self, values) -> "InList":
        return InList(self, tuple(wrap(value) for value in values), negated=True)

    # Aggregates
    def sum(self, na_rm: bool = True) -> "Aggregate":
        return Aggregate("SUM", self, na_rm)

    def mean(self, na_rm: bool = True) -> "Aggregate":
        return Aggregate("AVG", self, na_rm)

    def min(self, na_rm: bool = True) -> "Aggregate":
        return Aggregate("MIN", self, na_rm)

    def max(self, na_rm: bool = True) -> "Aggregate":
        return Aggregate("MAX", self, na_rm)

    def count(self) -> "Aggregate":
        """Number of non-null values."""
        return Aggregate("COUNT", self)

    def n_distinct(self) -> "Aggregate":
        return Aggregate("COUNT", self, distinct=True)

    # Ordering
    def desc(self) -> "SortKey":
        return SortKey(self, descending=True)

    def asc(self) -> "SortKey":
        return SortKey(self, descending=False)

    def children(self) -> Tuple["Expr", ...]:
        return ()

    def walk(self) -> Iterator["Expr"]:
        """Yield this node and every descendant, depth first."""
        yield self
        for child in self.children():
            yield from child.walk()

    def columns(self) -> Tuple[str, ...]:
        """Referenced column names, in first-seen order."""
        seen = []
        for node in self.walk():
            if isinstance(node, Column) and node.name not in seen:
                seen.append(node.name)
        return tuple(seen)

    def has_aggregate(self) -> bool:
        return any(isinstance(node, Aggregate) for node in self.walk())


@dataclass(frozen=True, eq=False)
class Column(Expr):
    name: str

    def __repr__(self):
        return f"col({self.name!r})"


@dataclass(frozen=True, eq=False)
class Literal(Expr):
    value: Any

    def __repr__(self):
        return f"lit({self.value!r})"


@dataclass(frozen=True, eq=False)
class BinaryOp(Expr):
    op: str
    left: Expr
    right: Expr

    def children(self):
        return (self.left, self.right)


@dataclass(frozen=True, eq=False)
class UnaryOp(Expr):
    op: str
    operand: Expr

    def children(self):
        return (self.operand,)


@dataclass(frozen=True, eq=False)
class IsNull(Expr):
    operand: Expr
    negated: bool = False

    def children(self):
        return (self.operand,)


@dataclass(frozen=True, eq=False)
class InList(Expr):
    operand: Expr
    values: Tuple[Expr, ...]
    negated: bool = False

    def children(self):
        return (self.operand,) + self.values


@dataclass(frozen=True, eq=False)
class Func(Expr):
    """Scalar function call, passed through to the warehouse by name."""
    name: str
    args: Tuple[Expr, ...] = ()

    def children(self):
        return self.args


@dataclass(frozen=True, eq=False)
class Aggregate(Expr):
    """Aggregate function over an input expression.

    ``input`` is None for a row count. With ``na_rm=False`` the aggregate is
    NULL as soon as one input value is NULL.
    """
    function: str
    input: Optional[Expr] = None
    na_rm: bool = True
    distinct: bool = False

    def children(self):
        return () if self.input is None else (self.input,)


@dataclass(frozen=True, eq=False)
class SortKey:
    expr: Expr
    descending: bool = False

    def columns(self) -> Tuple[str, ...]:
        return self.expr.columns()


def wrap(value) -> Expr:
    if isinstance(value, Expr):
        return value
    if isinstance(value, SortKey):
        raise TypeError("Sort keys can only be used in arrange()")
    return Literal(value)


def col(name: str) -> Column:
    """Reference a column by name."""
    if not isinstance(name, str) or not name:
        raise TypeError(f"Column names must be non-empty strings, got {name!r}")
    return Column(name)


def lit(value) -> Literal:
    return Literal(value)


def func(name: str, *args) -> Func:
    """Call a warehouse scalar function, e.g. func("UPPER", col("city"))."""
    return Func(name, tuple(as_expr(arg) for arg in args))


def n() -> Aggregate:
    """Row count of the group."""
    return Aggregate("COUNT")


AGGREGATE_NAMES = {
    "sum": "SUM",
    "mean": "AVG",
    "avg": "AVG",
    "min": "MIN",
    "max": "MAX",
    "count": "COUNT",
}


def aggregate(function: str, input=None, na_rm: bool = True) -> Aggregate:
    """Build an aggregate from a function name, e.g. aggregate("sum", "amount").

    "n" counts rows, "n_distinct" counts distinct values of input.
    """
    name = function.lower()
    if name == "n":
        return n()
    if input is None:
        raise ValueError(f"Aggregate '{function}' needs an input column or expression")
    if name == "n_distinct":
        return as_expr(input).n_distinct()
    if name not in AGGREGATE_NAMES:
        raise ValueError(
            f"Unknown aggregate '{function}' "
            f"(expected one of {', '.join(sorted(AGGREGATE_NAMES))}, n, n_distinct)"
        )
    return Aggregate(AGGREGATE_NAMES[name], as_expr(input), na_rm)


def as_expr(value: Union[str, Expr]) -> Expr:
    """Column name or expression -> expression. Other values become literals."""
    if isinstance(value, str):
        return col(value)
    return wrap(value)


def desc(value: Union[str, Expr]) -> SortKey:
    return SortKey(as_expr(value), descending=True)


def asc(value: Union[str, Expr]) -> SortKey:
    return SortKey(as_expr(value), descending=False)


def as_sort_key(value) -> SortKey:
    if isinstance(value, SortKey):
        return value
    return asc(value)
