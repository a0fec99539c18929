"""Shared fixtures: isolated configuration and an in-memory Snowflake connection."""

import pytest

from tidywh.common import config as config_module
from tidywh.plan import table


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point configuration at an empty temporary directory."""
    config_path = tmp_path / "tidywh.yaml"
    monkeypatch.setenv("TIDYWH_CONFIG", str(config_path))
    monkeypatch.setattr(config_module, "ENV_PATH", tmp_path / ".env")
    monkeypatch.delenv("TIDYWH_CONNECTION", raising=False)
    monkeypatch.delenv("TIDYWH_QUERY_TIMEOUT", raising=False)
    return config_path


class FakeCursor:
    def __init__(self, connection):
        self.connection = connection
        self.description = None
        self.rowcount = None
        self.sfqid = None
        self._rows = []
        self._async_sql = None

    def _load(self, sql):
        result = self.connection.respond(sql)
        if isinstance(result, Exception):
            raise result
        if result is None:
            self.description, self._rows = None, []
        else:
            self.description, self._rows = result

    def execute(self, sql, params=None, timeout=None):
        self.connection.executed.append((sql, params))
        self._load(sql)
        return self

    def execute_async(self, sql):
        self.connection.executed.append((sql, None))
        error = self.connection.submit_error
        if error is not None:
            raise error
        self._async_sql = sql
        self.sfqid = "01b2-query"
        return {"queryId": self.sfqid}

    def get_results_from_sfqid(self, query_id):
        self._load(self._async_sql)

    def executemany(self, sql, seq_of_params):
        self.connection.executemany_calls.append((sql, list(seq_of_params)))
        self.rowcount = len(seq_of_params)
        return self

    def fetchall(self):
        return list(self._rows)

    def close(self):
        self.connection.closed_cursors += 1


class FakeConnection:
    """
    Stand-in for snowflake.connector's connection.

    responses: list of (substring, result) where result is
    (description, rows), an exception to raise, or None for no output.
    statuses: query statuses returned while polling; the last one repeats.
    """

    def __init__(self, responses=None, statuses=None, submit_error=None, on_poll=None):
        self.responses = list(responses or [])
        self.statuses = list(statuses or ["SUCCESS"])
        self.submit_error = submit_error
        self.on_poll = on_poll
        self.executed = []
        self.executemany_calls = []
        self.closed = False
        self.closed_cursors = 0
        self.polls = 0

    def respond(self, sql):
        for needle, result in self.responses:
            if needle in sql:
                return result
        return None

    def cursor(self):
        return FakeCursor(self)

    def get_query_status_throw_if_error(self, query_id):
        self.polls += 1
        if self.on_poll is not None:
            self.on_poll(self.polls)
        status = self.statuses[0] if len(self.statuses) == 1 else self.statuses.pop(0)
        if isinstance(status, Exception):
            raise status
        return status

    def is_still_running(self, status):
        return status == "RUNNING"

    def close(self):
        self.closed = True

    @property
    def statements(self):
        return [sql for sql, _ in self.executed]


@pytest.fixture
def fake_connection():
    return FakeConnection


@pytest.fixture
def sales():
    return table("DB", "PUBLIC", "T", columns=["a", "b", "c"])
