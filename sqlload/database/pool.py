"""
Reusable connections for segment loaders.

Connections are never shared by two running segments, so the idle set only
needs a thread-safe container: ``deque.append`` and ``deque.pop`` are atomic.
"""
from collections import deque
import psycopg2

from ..core.constants import COMMIT_AUTO
from ..setup.config import DatabaseConfig, LoadingConfig
from ..setup.logging import logger
from .quoting import quote_literal


class ConnectionPool:
    """Idle psycopg2 connections plus the session setup every acquire applies."""

    def __init__(self, database: DatabaseConfig, loading: LoadingConfig, connect=psycopg2.connect):
        self.database = database
        self.loading = loading
        self._connect = connect
        self._idle = deque()
        self.opened = 0

    def __len__(self) -> int:
        return len(self._idle)

    def _open(self):
        logger.debug(
            f"[ConnectionPool] Opening connection to {self.database.get_connection_string(hide_password=True)}"
        )
        connection = self._connect(**self.database.get_connect_kwargs())
        self.opened += 1
        return connection

    def _session_statements(self):
        statements = []
        commit_frequency = self.loading.commit_frequency
        if commit_frequency == COMMIT_AUTO:
            statements.append(f"SET {self.loading.periodic_commit_setting} TO 'true'")
        if commit_frequency != 0 and self.loading.constraint_check_time:
            statements.append(
                f"SET {self.loading.constraint_check_setting} TO "
                f"{quote_literal(self.loading.constraint_check_time)}"
            )
        return statements

    def acquire(self, autocommit: bool):
        """
        Reuse an idle connection or open a new one, reset it to a clean
        state and apply the configured session settings.
        """
        try:
            connection = self._idle.pop()
        except IndexError:
            connection = self._open()

        try:
            connection.rollback()
            connection.autocommit = True
            statements = self._session_statements()
            if statements:
                with connection.cursor() as cursor:
                    for statement in statements:
                        cursor.execute(statement)
            connection.autocommit = autocommit
        except Exception:
            self.discard(connection)
            raise
        return connection

    def release(self, connection, success: bool = True):
        """Pool a healthy connection; close one involved in a failure."""
        if connection is None:
            return
        if success and not connection.closed:
            self._idle.append(connection)
        else:
            self.discard(connection)

    def discard(self, connection):
        try:
            connection.close()
        except psycopg2.Error as e:
            logger.warning(f"[ConnectionPool] Error closing connection: {e}")

    def clear(self):
        """Close every idle connection."""
        closed = 0
        while True:
            try:
                connection = self._idle.pop()
            except IndexError:
                break
            self.discard(connection)
            closed += 1
        if closed:
            logger.debug(f"[ConnectionPool] Closed {closed} idle connections")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.clear()

