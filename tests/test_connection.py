"""Tests for the Snowflake session, with an in-memory connection."""

import pytest
from snowflake.connector import errors as sf_errors

from tidywh.errors import (
    AuthenticationError,
    ProjectNotFound,
    QueryCancelled,
    QuerySyntaxError,
    QueryTimeout,
    QuotaExceeded,
    RemoteUnavailable,
)
from tidywh.plan import col
from tidywh.snowflake.connection import (
    CancellationToken,
    Session,
    load_connection_settings,
    open_connection,
    translate_error,
)

RESULT = ([("B", 2), ("TOTAL", 0)], [("x", 3), ("y", 5)])
COLUMNS = ([("COLUMN_NAME", 2)], [])


class TestRunQuery:
    def test_returns_columns_and_rows(self, fake_connection):
        connection = fake_connection(responses=[("SELECT", RESULT)], statuses=["RUNNING", "SUCCESS"])
        session = Session(connection, poll_interval=0)

        columns, rows = session.run_query("SELECT b, total FROM t")

        assert [(c.name, c.type_name) for c in columns] == [("B", "TEXT"), ("TOTAL", "FIXED")]
        assert rows == [("x", 3), ("y", 5)]
        assert connection.polls == 2
        assert connection.closed_cursors == 1

    def test_timeout_aborts_remote_query(self, fake_connection):
        connection = fake_connection(responses=[("SELECT b", RESULT)], statuses=["RUNNING"])
        session = Session(connection, poll_interval=0)

        with pytest.raises(QueryTimeout):
            session.run_query("SELECT b FROM t", timeout=0)

        assert "SELECT SYSTEM$CANCEL_QUERY('01b2-query')" in connection.statements

    def test_session_default_timeout(self, fake_connection):
        connection = fake_connection(statuses=["RUNNING"])
        session = Session(connection, poll_interval=0, timeout=0)
        with pytest.raises(QueryTimeout):
            session.run_query("SELECT 1")

    def test_cancelled_before_submission(self, fake_connection):
        connection = fake_connection()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(QueryCancelled):
            Session(connection, poll_interval=0).run_query("SELECT 1", cancel=token)

        assert connection.executed == []

    def test_cancel_while_running(self, fake_connection):
        token = CancellationToken()
        connection = fake_connection(statuses=["RUNNING"], on_poll=lambda polls: token.cancel())
        session = Session(connection, poll_interval=0)

        with pytest.raises(QueryCancelled):
            session.run_query("SELECT 1", cancel=token)

        assert any("SYSTEM$CANCEL_QUERY" in sql for sql in connection.statements)

    def test_syntax_error(self, fake_connection):
        error = sf_errors.ProgrammingError(msg="syntax error line 1", errno=1003, sqlstate="42000")
        connection = fake_connection(submit_error=error)

        with pytest.raises(QuerySyntaxError):
            Session(connection, poll_interval=0).run_query("SELEC 1")

    def test_error_while_polling(self, fake_connection):
        error = sf_errors.ProgrammingError(msg="statement timed out", errno=630)
        connection = fake_connection(statuses=[error])

        with pytest.raises(QueryTimeout):
            Session(connection, poll_interval=0).run_query("SELECT 1")

    def test_unmapped_errors_propagate(self, fake_connection):
        error = sf_errors.ProgrammingError(msg="insufficient privileges", errno=3001, sqlstate="01000")
        connection = fake_connection(submit_error=error)

        with pytest.raises(sf_errors.ProgrammingError):
            Session(connection, poll_interval=0).run_query("SELECT 1")


class TestTranslateError:
    def test_quota(self):
        error = sf_errors.ProgrammingError(msg="Resource monitor quota exceeded", errno=90064)
        assert isinstance(translate_error(error), QuotaExceeded)

    def test_remote_unavailable(self):
        error = sf_errors.OperationalError(msg="could not connect", errno=250001)
        assert isinstance(translate_error(error), RemoteUnavailable)

    def test_cancelled(self):
        error = sf_errors.ProgrammingError(msg="SQL execution canceled", errno=604)
        assert isinstance(translate_error(error), QueryCancelled)

    def test_timeout(self):
        error = sf_errors.DatabaseError(msg="timeout", errno=630)
        assert isinstance(translate_error(error), QueryTimeout)

    def test_other(self):
        assert translate_error(sf_errors.DatabaseError(msg="something", errno=1)) is None


class TestExecute:
    def test_execute_returns_output(self, fake_connection):
        connection = fake_connection(responses=[("SHOW", RESULT)])
        columns, rows = Session(connection).execute("SHOW TABLES", ["x"])
        assert len(rows) == 2
        assert connection.executed == [("SHOW TABLES", ["x"])]

    def test_execute_without_output(self, fake_connection):
        connection = fake_connection()
        assert Session(connection).execute("CREATE TABLE t (a INT)") == ([], [])

    def test_executemany(self, fake_connection):
        connection = fake_connection()
        count = Session(connection).executemany("INSERT INTO t VALUES (%s)", [(1,), (2,)])
        assert count == 2
        assert connection.executemany_calls == [("INSERT INTO t VALUES (%s)", [(1,), (2,)])]

    def test_context_manager_closes(self, fake_connection):
        connection = fake_connection()
        with Session(connection):
            pass
        assert connection.closed


class TestSessionTable:
    def test_discovers_columns(self, fake_connection):
        columns = ([("COLUMN_NAME", 2)], [("STORE", "TEXT", "YES", None, None),
                                          ("AMOUNT", "NUMBER", "YES", None, None)])
        connection = fake_connection(responses=[("INFORMATION_SCHEMA.COLUMNS", columns)])
        session = Session(connection)

        plan = session.table("SALES_DB", "PUBLIC", "SALES")

        assert plan.columns == ("STORE", "AMOUNT")
        assert plan.session is session
        _, params = connection.executed[0]
        assert params == ["PUBLIC", "SALES"]

    def test_missing_table(self, fake_connection):
        connection = fake_connection(responses=[("INFORMATION_SCHEMA.COLUMNS", COLUMNS)])
        with pytest.raises(ValueError):
            Session(connection).table("SALES_DB", "PUBLIC", "NOPE")

    def test_plan_executes_on_session(self, fake_connection):
        connection = fake_connection(responses=[("SUM(AMOUNT)", RESULT)])
        session = Session(connection, poll_interval=0)
        plan = session.table("SALES_DB", "PUBLIC", "SALES", columns=["STORE", "AMOUNT"])

        result = (
            plan.filter(col("AMOUNT") > 5)
            .group_by("STORE")
            .summarise(TOTAL=col("AMOUNT").sum())
            .execute()
        )

        assert len(result) == 2
        assert connection.statements[0].startswith("SELECT STORE, SUM(AMOUNT) AS TOTAL")


class TestOpenConnection:
    @pytest.fixture
    def settings(self):
        return {"account": "acme-xy123", "user": "ana", "authenticator": "externalbrowser"}

    def test_connects_and_uses_database(self, fake_connection, settings, monkeypatch):
        connection = fake_connection()
        captured = {}

        def connect(**params):
            captured.update(params)
            return connection

        monkeypatch.setattr("snowflake.connector.connect", connect)

        session = open_connection(settings, database="SALES_DB")

        assert captured == settings
        assert connection.statements == ["USE DATABASE SALES_DB"]
        assert session.database == "SALES_DB"
        assert session.poll_interval == 0.5
        assert session.timeout is None

    def test_missing_database(self, fake_connection, settings, monkeypatch):
        error = sf_errors.ProgrammingError(msg="Object does not exist", errno=2043)
        connection = fake_connection(responses=[("USE DATABASE", error)])
        monkeypatch.setattr("snowflake.connector.connect", lambda **params: connection)

        with pytest.raises(ProjectNotFound):
            open_connection(settings, database="NOPE")
        assert connection.closed

    def test_rejected_credentials(self, settings, monkeypatch):
        def connect(**params):
            raise sf_errors.DatabaseError(msg="Incorrect username or password was specified.",
                                          errno=390100)

        monkeypatch.setattr("snowflake.connector.connect", connect)

        with pytest.raises(AuthenticationError):
            open_connection(settings)

    def test_unreachable_account(self, settings, monkeypatch):
        def connect(**params):
            raise sf_errors.OperationalError(msg="Failed to connect to DB", errno=250001)

        monkeypatch.setattr("snowflake.connector.connect", connect)

        with pytest.raises(RemoteUnavailable):
            open_connection(settings)

    def test_network_failure_on_use_database(self, fake_connection, settings, monkeypatch):
        error = sf_errors.OperationalError(msg="Connection reset", errno=250003)
        connection = fake_connection(responses=[("USE DATABASE", error)])
        monkeypatch.setattr("snowflake.connector.connect", lambda **params: connection)

        with pytest.raises(RemoteUnavailable):
            open_connection(settings, database="SALES_DB")
        assert connection.closed

    def test_timeout_from_environment(self, fake_connection, settings, monkeypatch):
        monkeypatch.setenv("TIDYWH_QUERY_TIMEOUT", "45")
        monkeypatch.setattr("snowflake.connector.connect", lambda **params: fake_connection())
        assert open_connection(settings).timeout == 45.0


class TestConnectionSettings:
    def test_reads_section(self, tmp_path):
        path = tmp_path / "connections.toml"
        path.write_text('[default]\naccount = "acme"\nuser = "ana"\n\n[prod]\naccount = "prod"\n')

        assert load_connection_settings(path=path)["account"] == "acme"
        assert load_connection_settings("prod", path=path) == {"account": "prod"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_connection_settings(path=tmp_path / "missing.toml")

    def test_missing_section(self, tmp_path):
        path = tmp_path / "connections.toml"
        path.write_text('[default]\naccount = "acme"\n')
        with pytest.raises(ValueError):
            load_connection_settings("prod", path=path)

    def test_section_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "connections.toml"
        path.write_text('[default]\naccount = "acme"\n\n[prod]\naccount = "prod"\n')
        monkeypatch.setenv("TIDYWH_CONNECTION", "prod")
        assert load_connection_settings(path=path)["account"] == "prod"
