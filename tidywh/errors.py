"""Exception types raised across the toolkit.

Normalizer and query-builder errors are raised before anything touches the
network. Warehouse errors are translated from the connector at the session
boundary and surfaced to the caller unchanged otherwise (no retries).
"""

from typing import Iterable, Optional


class TidyWarehouseError(Exception):
    """Base class for every error raised by tidywh."""


# =============================================================================
# CSV Normalizer
# =============================================================================

class SchemaMismatch(TidyWarehouseError, ValueError):
    """Declared column types do not fit the header."""


class MalformedRecord(TidyWarehouseError, ValueError):
    """A data row cannot be normalized as declared."""

    def __init__(self, message: str, line: Optional[int] = None):
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)
        self.line = line


# =============================================================================
# Query Builder
# =============================================================================

class CompilationError(TidyWarehouseError, ValueError):
    """A query plan cannot be lowered to SQL."""


class UnknownColumn(CompilationError):
    """A plan references a column that is not in scope."""

    def __init__(self, column: str, available: Iterable[str] = ()):
        available = list(available)
        message = f"Unknown column '{column}'"
        if available:
            message += f" (available: {', '.join(available)})"
        super().__init__(message)
        self.column = column
        self.available = available


# =============================================================================
# Warehouse
# =============================================================================

class WarehouseError(TidyWarehouseError):
    """Raised by the warehouse connection or query execution."""


class AuthenticationError(WarehouseError):
    pass


class ProjectNotFound(WarehouseError):
    pass


class QueryTimeout(WarehouseError):
    pass


class QueryCancelled(WarehouseError):
    pass


class QuotaExceeded(WarehouseError):
    pass


class QuerySyntaxError(WarehouseError):
    """The warehouse rejected the query text."""


class RemoteUnavailable(WarehouseError):
    pass


class TableExists(WarehouseError):
    pass
