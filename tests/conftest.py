"""
Shared fixtures: temporary input files and an in-memory stand-in for a
psycopg2 connection that models pending and committed rows.
"""
import os
import tempfile

# must be set before sqlload configures logging
os.environ["ENVIRONMENT"] = "testing"

import psycopg2
import pytest

from sqlload.database.pool import ConnectionPool
from sqlload.setup.config import DatabaseConfig, LoadingConfig


class FakeDatabaseError(psycopg2.OperationalError):
    """Driver error with a chosen SQLSTATE."""

    def __init__(self, code, message=None):
        super().__init__(message or f"server error {code}")
        self._code = code

    @property
    def pgcode(self):
        return self._code


class _Failure:
    def __init__(self, error, after, times, match):
        self.error = error
        self.after = after
        self.times = times
        self.match = match


class FakeCursor:
    def __init__(self, connection):
        self.connection = connection
        self.rowcount = -1
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        self.closed = True

    def execute(self, sql, params=None):
        conn = self.connection
        conn.executed.append((sql, params))
        conn.check_failure(sql)
        self.rowcount = -1
        upper = sql.lstrip().upper()
        if upper.startswith("PREPARE "):
            name, statement = sql.split(None, 2)[1], sql.split(" AS ", 1)[1]
            conn.prepared[name] = statement
        elif upper.startswith("EXECUTE "):
            conn.add_rows([tuple(params or ())])
            self.rowcount = 1
        elif upper.startswith("INSERT"):
            values = sql.split("VALUES", 1)[1] if "VALUES" in sql else ""
            count = max(values.count("("), 1)
            if params:
                width = len(params) // count
                rows = [tuple(params[i * width:(i + 1) * width]) for i in range(count)]
            else:
                rows = [(sql,)] * count
            conn.add_rows(rows)
            self.rowcount = count

    def copy_expert(self, sql, stream, size=8192):
        conn = self.connection
        conn.executed.append((sql, None))
        conn.check_failure(sql)
        chunks = []
        while True:
            data = stream.read(size)
            if not data:
                break
            chunks.append(data)
        data = b"".join(chunks)
        conn.copied.append(data)
        lines = [line for line in data.split(b"\n") if line]
        conn.add_rows([(line,) for line in lines])
        self.rowcount = len(lines)


class FakeConnection:
    """
    Records executed statements. Rows go to ``pending`` until ``commit``
    (immediately in autocommit mode); ``rollback`` drops them.
    """

    def __init__(self):
        self.autocommit = False
        self.closed = False
        self.executed = []
        self.prepared = {}
        self.pending = []
        self.committed = []
        self.copied = []
        self.commits = 0
        self.rollbacks = 0
        self._failures = []

    def inject_failure(self, error, after=0, times=1, match=None):
        """Raise ``error`` on ``times`` matching statements after skipping ``after`` of them."""
        self._failures.append(_Failure(error, after, times, match))

    def check_failure(self, sql):
        for failure in self._failures:
            if failure.match is not None and failure.match not in sql:
                continue
            if failure.after > 0:
                failure.after -= 1
                continue
            if failure.times > 0:
                failure.times -= 1
                raise failure.error

    def add_rows(self, rows):
        if self.autocommit:
            self.committed.extend(rows)
        else:
            self.pending.extend(rows)

    def cursor(self):
        if self.closed:
            raise psycopg2.InterfaceError("connection already closed")
        return FakeCursor(self)

    def commit(self):
        self.check_failure("COMMIT")
        self.commits += 1
        self.committed.extend(self.pending)
        self.pending = []

    def rollback(self):
        self.rollbacks += 1
        self.pending = []

    def close(self):
        self.closed = True


class FakeConnector:
    """``psycopg2.connect`` replacement handing out FakeConnections."""

    def __init__(self):
        self.connections = []
        self.calls = []
        self.on_connect = None

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        connection = FakeConnection()
        if self.on_connect is not None:
            self.on_connect(connection)
        self.connections.append(connection)
        return connection

    @property
    def committed(self):
        return [row for connection in self.connections for row in connection.committed]


@pytest.fixture
def tmp_file_from():
    """Factory writing text (or bytes) to a temporary file; files are removed afterwards."""
    created_files = []

    def _create(content, suffix=".csv", encoding="utf-8", name=None):
        if name is not None:
            directory = tempfile.mkdtemp(prefix="sqlload_")
            file_path = os.path.join(directory, name)
        else:
            fd, file_path = tempfile.mkstemp(suffix=suffix, prefix="test_")
            os.close(fd)
        data = content if isinstance(content, bytes) else content.encode(encoding)
        with open(file_path, "wb") as f:
            f.write(data)
        created_files.append(file_path)
        return file_path

    yield _create

    for file_path in created_files:
        try:
            os.remove(file_path)
        except FileNotFoundError:
            pass


@pytest.fixture
def loading_config():
    def _make(**overrides):
        return LoadingConfig(**overrides)
    return _make


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def pool_factory(connector):
    def _make(loading=None, database=None):
        return ConnectionPool(database or DatabaseConfig(), loading or LoadingConfig(), connect=connector)
    return _make


@pytest.fixture
def db_error():
    """Factory for driver errors carrying a SQLSTATE."""
    return FakeDatabaseError
