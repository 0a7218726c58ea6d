"""
Statement execution helpers shared by the segment loaders.
"""
import itertools
import re
from typing import Dict, Optional, Sequence

import psycopg2

from ..core.constants import ROLLBACK_PREFIX, STALE_STATEMENT_CODE
from ..setup.logging import logger

# Bound on in-place retries of a stale statement
STALE_RETRY_LIMIT = 3

_PLACEHOLDER = re.compile(r"%s")
_statement_ids = itertools.count(1)


def should_retry(error: BaseException, retry_rollback: bool = False) -> bool:
    """
    Whether ``error`` is a transient server conflict.

    Stale statements (``0A50A``) are always retryable. Transaction rollback
    errors (SQLSTATE class ``40``: serialization failure, deadlock) only when
    ``retry_rollback`` is set. Errors without a SQLSTATE never are.
    """
    code = getattr(error, "pgcode", None)
    if not code:
        return False
    return code == STALE_STATEMENT_CODE or (retry_rollback and code.startswith(ROLLBACK_PREFIX))


def to_positional(query: str) -> str:
    """Rewrite ``%s`` placeholders as ``$1, $2, ...`` for PREPARE."""
    counter = itertools.count(1)
    return _PLACEHOLDER.sub(lambda _: f"${next(counter)}", query)


class StatementHelper:
    """
    Executes statements on one connection.

    Keeps one cursor and a cache of server-side prepared statements keyed by
    query text. Not thread-safe; one helper per segment.
    """

    def __init__(self, conn):
        self.conn = conn
        self._cursor = None
        self._prepared: Dict[str, str] = {}

    @property
    def cursor(self):
        if self._cursor is None or self._cursor.closed:
            self._cursor = self.conn.cursor()
        return self._cursor

    def execute(self, query: str, params: Optional[Sequence] = None, retry_rollback: bool = False) -> int:
        """Execute ``query`` and return the affected row count (-1 when unknown)."""
        return self._run(lambda: self.cursor.execute(query, params), retry_rollback)

    def execute_prepared(self, query: str, params: Sequence, retry_rollback: bool = False) -> int:
        """
        Execute ``query`` (with ``%s`` placeholders) as a prepared statement,
        preparing it on first use.
        """
        def attempt():
            name = self._prepared.get(query)
            if name is None:
                name = f"sqlload_{next(_statement_ids)}"
                self.cursor.execute(f"PREPARE {name} AS {to_positional(query)}")
                self._prepared[query] = name
            if params:
                placeholders = ", ".join(["%s"] * len(params))
                self.cursor.execute(f"EXECUTE {name} ({placeholders})", params)
            else:
                self.cursor.execute(f"EXECUTE {name}")

        return self._run(attempt, retry_rollback, query)

    def _run(self, attempt, retry_rollback: bool, prepared_query: Optional[str] = None) -> int:
        # inside a transaction a failed statement aborts it, so only
        # autocommit connections can retry in place
        attempts = 0
        while True:
            try:
                attempt()
                return self.cursor.rowcount
            except psycopg2.Error as e:
                attempts += 1
                if (not self.conn.autocommit or attempts > STALE_RETRY_LIMIT
                        or not should_retry(e, retry_rollback)):
                    raise
                logger.debug(f"[StatementHelper] Retrying after {e.pgcode}: {e}")
                if prepared_query is not None:
                    self._prepared.pop(prepared_query, None)

    def forget_prepared(self):
        """Drop the cache so the next use prepares again."""
        self._prepared.clear()

    def copy_expert(self, sql: str, stream, size: int) -> int:
        self.cursor.copy_expert(sql, stream, size)
        return self.cursor.rowcount

    def close(self):
        self._prepared.clear()
        if self._cursor is not None and not self._cursor.closed:
            self._cursor.close()
        self._cursor = None
