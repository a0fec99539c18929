"""Relational operations accumulated by a query plan."""

from dataclasses import dataclass
from typing import Tuple

from .expr import Aggregate, Expr, SortKey


@dataclass(frozen=True)
class TableRef:
    """A remote relation: database (project), schema (dataset) and table."""
    database: str
    schema: str
    name: str

    def __post_init__(self):
        for part in (self.database, self.schema, self.name):
            if not isinstance(part, str) or not part:
                raise ValueError(f"Invalid table reference part: {part!r}")

    @property
    def full_name(self) -> str:
        return f"{self.database}.{self.schema}.{self.name}"

    @classmethod
    def parse(cls, full_name: str) -> "TableRef":
        """Parse DATABASE.SCHEMA.TABLE."""
        parts = full_name.split('.')
        if len(parts) != 3:
            raise ValueError(
                f"Invalid table name format: {full_name} (expected DATABASE.SCHEMA.TABLE)"
            )
        return cls(*parts)


@dataclass(frozen=True, eq=False)
class Project:
    columns: Tuple[str, ...]


@dataclass(frozen=True, eq=False)
class Filter:
    predicate: Expr


@dataclass(frozen=True, eq=False)
class Derive:
    name: str
    expression: Expr


@dataclass(frozen=True, eq=False)
class GroupAggregate:
    group_keys: Tuple[str, ...]
    # (output name, aggregate) pairs, in declaration order
    aggregates: Tuple[Tuple[str, Aggregate], ...]


@dataclass(frozen=True, eq=False)
class Sort:
    keys: Tuple[SortKey, ...]


def describe(op) -> str:
    """One-line summary of an operation, for logs and plan listings."""
    if isinstance(op, Project):
        return f"select({', '.join(op.columns)})"
    if isinstance(op, Filter):
        return f"filter({', '.join(op.predicate.columns())})"
    if isinstance(op, Derive):
        return f"mutate({op.name})"
    if isinstance(op, GroupAggregate):
        names = ', '.join(name for name, _ in op.aggregates)
        return f"group_by({', '.join(op.group_keys)}).summarise({names})"
    if isinstance(op, Sort):
        keys = ', '.join(
            ("-" if key.descending else "") + '+'.join(key.columns()) for key in op.keys
        )
        return f"arrange({keys})"
    return type(op).__name__
