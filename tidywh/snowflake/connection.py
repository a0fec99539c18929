"""
Snowflake connection and query execution.

The only module that talks to the warehouse. Connector errors are translated
into tidywh errors here and nowhere else.

Usage:
    from tidywh.snowflake.connection import load_connection_settings, open_connection

    session = open_connection(load_connection_settings(), database="SALES_DB")
    columns, rows = session.run_query("SELECT 1", timeout=30)
"""

import logging
import threading
import time
import tomllib  # pyright: ignore[reportMissingImports]
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import snowflake.connector  # pyright: ignore[reportMissingImports]
from snowflake.connector import errors as sf_errors  # pyright: ignore[reportMissingImports]
from snowflake.connector.constants import FIELD_ID_TO_NAME  # pyright: ignore[reportMissingImports]

from tidywh.common.config import load_config
from tidywh.errors import (
    AuthenticationError,
    ProjectNotFound,
    QueryCancelled,
    QuerySyntaxError,
    QueryTimeout,
    QuotaExceeded,
    RemoteUnavailable,
)
from tidywh.plan.compiler import quote_identifier
from tidywh.plan.plan import QueryPlan, table
from tidywh.plan.result import ResultColumn

logger = logging.getLogger(__name__)

CONNECTIONS_PATH = Path.home() / '.snowflake' / 'connections.toml'

# Connector error numbers
AUTH_ERRNOS = {390100, 390144, 390190, 390191, 390195, 390302, 390303, 390318}
NOT_FOUND_ERRNOS = {2003, 2043}
CANCELLED_ERRNOS = {604}
TIMEOUT_ERRNOS = {630}
QUOTA_ERRNOS = {90064, 90084}
SYNTAX_ERRNOS = {904, 1003, 2003}


class CancellationToken:
    """Set from any thread to abort a running query."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)


def load_connection_settings(name: Optional[str] = None, path: Optional[Path] = None) -> dict:
    """
    Read one connection section from ~/.snowflake/connections.toml.

    Args:
        name: Section name (default: "connection" from tidywh.yaml, usually "default")
        path: Alternative connections file
    """
    config_path = path or CONNECTIONS_PATH
    name = name or load_config()["connection"]

    if not config_path.exists():
        raise FileNotFoundError(
            f"Snowflake connection config not found at {config_path}\n"
            f"Please create this file with your connection details."
        )

    with open(config_path, 'rb') as f:
        config = tomllib.load(f)

    if name not in config:
        raise ValueError(
            f"No '{name}' connection found in {config_path}\n"
            f"Please ensure your config has a [{name}] section."
        )

    return config[name]


def translate_error(e: Exception) -> Optional[Exception]:
    """Map a connector error to a tidywh error, or None to re-raise it as is."""
    message = str(e)
    errno = getattr(e, 'errno', None)
    sqlstate = getattr(e, 'sqlstate', None) or ""

    if errno in CANCELLED_ERRNOS:
        return QueryCancelled(message)
    if isinstance(e, (sf_errors.RequestTimeoutError, sf_errors.GatewayTimeoutError)) \
            or errno in TIMEOUT_ERRNOS:
        return QueryTimeout(message)
    if errno in QUOTA_ERRNOS or "quota" in message.lower():
        return QuotaExceeded(message)
    if isinstance(e, sf_errors.ProgrammingError) and (errno in SYNTAX_ERRNOS or sqlstate.startswith("42")):
        return QuerySyntaxError(message)
    if isinstance(e, (sf_errors.OperationalError, sf_errors.InterfaceError,
                      sf_errors.ServiceUnavailableError, sf_errors.BadGatewayError)):
        return RemoteUnavailable(message)
    return None


def _describe_columns(description) -> List[ResultColumn]:
    return [ResultColumn(desc[0], FIELD_ID_TO_NAME.get(desc[1])) for desc in description or []]


class Session:
    """A warehouse connection plus execution defaults."""

    def __init__(self, connection, database: Optional[str] = None,
                 poll_interval: float = 0.5, timeout: Optional[float] = None):
        self.connection = connection
        self.database = database
        self.poll_interval = poll_interval
        self.timeout = timeout

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        logger.debug("Closing Snowflake connection")
        self.connection.close()

    def run_query(self, sql: str, timeout: Optional[float] = None,
                  cancel: Optional[CancellationToken] = None) -> Tuple[List[ResultColumn], List[tuple]]:
        """
        Run a query and fetch every row.

        The query is submitted asynchronously and polled so it can be aborted
        on timeout or cancellation; in both cases nothing is returned.

        Returns:
            (columns, rows)

        Raises:
            QueryTimeout, QueryCancelled, QuotaExceeded, QuerySyntaxError,
            RemoteUnavailable
        """
        timeout = timeout if timeout is not None else self.timeout
        if cancel is not None and cancel.cancelled:
            raise QueryCancelled("Query cancelled before submission")

        cursor = self.connection.cursor()
        try:
            cursor.execute_async(sql)
            query_id = cursor.sfqid
            logger.debug(f"Submitted query {query_id}")

            deadline = time.monotonic() + timeout if timeout is not None else None
            while self.connection.is_still_running(
                    self.connection.get_query_status_throw_if_error(query_id)):
                if cancel is not None and cancel.cancelled:
                    self._abort(cursor, query_id)
                    raise QueryCancelled(f"Query {query_id} cancelled")

                wait = self.poll_interval
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        self._abort(cursor, query_id)
                        raise QueryTimeout(f"Query {query_id} exceeded {timeout}s")
                    wait = min(wait, remaining)

                if cancel is not None:
                    cancel.wait(wait)
                else:
                    time.sleep(wait)

            cursor.get_results_from_sfqid(query_id)
            rows = cursor.fetchall()
            columns = _describe_columns(cursor.description)
            logger.info(f"Query {query_id} returned {len(rows)} rows")
            return columns, rows
        except sf_errors.Error as e:
            mapped = translate_error(e)
            if mapped is None:
                raise
            raise mapped from e
        finally:
            cursor.close()

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None,
                timeout: Optional[float] = None) -> Tuple[List[ResultColumn], List[tuple]]:
        """Run a statement synchronously (DDL, PUT, COPY) and fetch its output."""
        timeout = timeout if timeout is not None else self.timeout
        cursor = self.connection.cursor()
        try:
            if timeout is not None:
                cursor.execute(sql, params, timeout=int(timeout))
            else:
                cursor.execute(sql, params)
            rows = cursor.fetchall() if cursor.description else []
            return _describe_columns(cursor.description), rows
        except sf_errors.Error as e:
            mapped = translate_error(e)
            if mapped is None:
                raise
            raise mapped from e
        finally:
            cursor.close()

    def executemany(self, sql: str, seq_of_params: Sequence[Sequence[Any]]) -> int:
        cursor = self.connection.cursor()
        try:
            cursor.executemany(sql, seq_of_params)
            return cursor.rowcount if cursor.rowcount is not None else len(seq_of_params)
        except sf_errors.Error as e:
            mapped = translate_error(e)
            if mapped is None:
                raise
            raise mapped from e
        finally:
            cursor.close()

    def table(self, database: str, schema: str, name: str,
              columns: Optional[Sequence[str]] = None) -> QueryPlan:
        """
        Start a query plan over DATABASE.SCHEMA.NAME bound to this session.

        Column names are read from INFORMATION_SCHEMA unless given.
        """
        if columns is None:
            from .discover import table_columns
            columns = [column.name for column in table_columns(self, database, schema, name)]
            if not columns:
                raise ValueError(f"Table not found or not accessible: {database}.{schema}.{name}")
        return table(database, schema, name, columns, session=self)

    def _abort(self, cursor, query_id: str):
        try:
            cursor.execute(f"SELECT SYSTEM$CANCEL_QUERY('{query_id}')")
            logger.info(f"Aborted query {query_id}")
        except sf_errors.Error as e:
            logger.warning(f"Failed to abort query {query_id}: {e}")


def open_connection(settings: dict, database: Optional[str] = None,
                    poll_interval: Optional[float] = None,
                    timeout: Optional[float] = None) -> Session:
    """
    Connect to Snowflake.

    Args:
        settings: A connections.toml section (account, user, authenticator, ...)
        database: Database to use; overrides the one in settings

    Raises:
        AuthenticationError: credentials were rejected
        ProjectNotFound: the database does not exist or is not accessible
        RemoteUnavailable: the account could not be reached
    """
    config = load_config()
    database = database or settings.get('database')

    params = {
        'account': settings['account'],
        'user': settings.get('user'),
        'authenticator': settings.get('authenticator'),
        'password': settings.get('password'),
        'warehouse': settings.get('warehouse'),
        'role': settings.get('role'),
    }
    params = {key: value for key, value in params.items() if value is not None}

    try:
        connection = snowflake.connector.connect(**params)
    except sf_errors.Error as e:
        if isinstance(e, sf_errors.ForbiddenError) or getattr(e, 'errno', None) in AUTH_ERRNOS \
                or "incorrect username or password" in str(e).lower():
            raise AuthenticationError(str(e)) from e
        mapped = translate_error(e)
        if mapped is None:
            raise
        raise mapped from e

    session = Session(
        connection,
        database=database,
        poll_interval=poll_interval if poll_interval is not None else config["query"]["poll_interval"],
        timeout=timeout if timeout is not None else config["query"]["timeout"],
    )

    if database:
        cursor = connection.cursor()
        try:
            cursor.execute(f"USE DATABASE {quote_identifier(database)}")
        except sf_errors.Error as e:
            connection.close()
            if isinstance(e, sf_errors.ProgrammingError) and getattr(e, 'errno', None) in NOT_FOUND_ERRNOS:
                raise ProjectNotFound(f"Database '{database}' does not exist or is not authorized") from e
            mapped = translate_error(e)
            if mapped is None:
                raise
            raise mapped from e
        finally:
            cursor.close()

    logger.info(f"Connected to Snowflake account {settings['account']}"
                + (f" (database {database})" if database else ""))
    return session


def connect(database: Optional[str] = None, name: Optional[str] = None) -> Session:
    """Connect using a section of ~/.snowflake/connections.toml"""
    return open_connection(load_connection_settings(name), database=database)
