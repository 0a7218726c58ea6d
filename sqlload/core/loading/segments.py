"""
segments.py
Per-segment execution: each loader owns one byte range, its own reader and
tokenizer, and one pooled connection for the duration of ``run``.

Row-producing formats batch their units: every executed unit stays in an
uncommitted list until a commit succeeds, so a transient server conflict can
be recovered by rolling back and replaying just that list.
"""
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import psycopg2

from ...database.pool import ConnectionPool
from ...database.statement import StatementHelper, should_retry
from ...setup.config import LoadingConfig
from ...setup.logging import logger
from ..exceptions import (
    ParseError,
    RetriesExhaustedError,
    SegmentLoadError,
    StatementFormatError,
)
from .buffers import CsvBuffer, MySQLBuffer, Query, QueryBuffer
from .reader import LineReader, SegmentStream, Source

_INSERT = re.compile(r"INSERT\s+INTO\s", re.IGNORECASE)


@dataclass
class CommitStatus:
    """Rows executed since the last commit and rows durably committed."""
    pending: int = 0
    committed: int = 0

    def commit(self):
        self.committed += self.pending
        self.pending = 0


class SegmentLoader(ABC):
    """
    Loads ``[start, end)`` of a source.

    ``prepare`` runs on the main thread before any worker starts. ``run`` runs
    on a worker and returns the number of committed rows; any failure is
    raised as a SegmentLoadError carrying the rows committed so far.
    """

    def __init__(self, pool: ConnectionPool, loading: LoadingConfig, source: Source,
                 start: int, end: int, index: int = 0, total: int = 1):
        self.pool = pool
        self.loading = loading
        self.source = source
        self.start = start
        self.end = end
        self.index = index
        self.total = total
        self.status = CommitStatus()
        self._line_no: Optional[int] = None
        self._query: Optional[str] = None

    @property
    def label(self) -> str:
        return f"[Segment {self.index + 1}/{self.total}]"

    @property
    def count(self) -> int:
        return self.status.committed

    def prepare(self):
        pass

    def run(self) -> int:
        logger.debug(f"{self.label} Loading bytes {self.start}-{self.end} of {self.source.name}")
        try:
            self._run_segment()
        except Exception as e:
            raise SegmentLoadError(
                self.index, e, line_no=self._line_no, query=self._query,
                rows_committed=self.status.committed,
            ) from e
        logger.debug(f"{self.label} Committed {self.status.committed} rows")
        return self.status.committed

    @abstractmethod
    def _run_segment(self):
        pass

    def __repr__(self):
        return f"{type(self).__name__}(start={self.start}, end={self.end})"


class BatchingSegmentLoader(SegmentLoader):
    """
    Reads units through a tokenizer and executes them one by one, committing
    every ``commit_frequency`` rows (or once at the end) and replaying the
    uncommitted units after a retryable error.
    """

    autocommit = False

    @abstractmethod
    def _create_tokenizer(self):
        pass

    @abstractmethod
    def _execute(self, helper: StatementHelper, unit) -> int:
        """Execute one unit and return the number of rows it added."""

    def _describe(self, unit) -> str:
        return str(unit)

    def _handle(self, conn, helper: StatementHelper, unit, uncommitted: List):
        """Execute a freshly read unit inside the current batch."""
        uncommitted.append(unit)
        try:
            self.status.pending += self._execute(helper, unit)
            if self._commit_due():
                self._commit(conn, uncommitted)
        except psycopg2.Error as e:
            self._recover(conn, helper, uncommitted, e)

    def _commit_due(self) -> bool:
        frequency = self.loading.commit_frequency
        return frequency > 0 and self.status.pending >= frequency

    def _commit(self, conn, uncommitted: List):
        if not conn.autocommit:
            conn.commit()
        self.status.commit()
        uncommitted.clear()

    def _rollback(self, conn, helper: StatementHelper):
        if not conn.autocommit:
            conn.rollback()
            helper.forget_prepared()

    def _recover(self, conn, helper: StatementHelper, uncommitted: List, error: psycopg2.Error):
        self._rollback(conn, helper)
        if not should_retry(error, self.loading.retry_rollback):
            raise error
        self._retry(conn, helper, uncommitted, error)

    def _retry(self, conn, helper: StatementHelper, uncommitted: List, error: psycopg2.Error):
        """Replay the uncommitted units and commit them, up to ``max_retries`` times."""
        max_retries = self.loading.max_retries
        for attempt in range(1, max_retries + 1):
            logger.warning(
                f"{self.label} {error.pgcode}: retrying {len(uncommitted)} uncommitted "
                f"unit(s), attempt {attempt}/{max_retries}"
            )
            if self.loading.retry_backoff_seconds:
                time.sleep(self.loading.retry_backoff_seconds * attempt)
            self.status.pending = 0
            try:
                for unit in uncommitted:
                    self.status.pending += self._execute(helper, unit)
                self._commit(conn, uncommitted)
                return
            except psycopg2.Error as e:
                self._rollback(conn, helper)
                if not should_retry(e, self.loading.retry_rollback):
                    raise
                error = e
        self.status.pending = 0
        raise RetriesExhaustedError(max_retries) from error

    def _run_segment(self):
        tokenizer = self._create_tokenizer()
        uncommitted: List[Any] = []
        success = False
        conn = self.pool.acquire(self.autocommit)
        helper = StatementHelper(conn)
        try:
            with LineReader(self.source, byte_size=self.loading.byte_buffer_size,
                            char_size=self.loading.byte_buffer_size,
                            start=self.start, end=self.end) as reader:
                while self._read_unit(reader, tokenizer):
                    unit = self._next_unit(tokenizer)
                    if unit is None:
                        continue
                    self._line_no = reader.line_no
                    self._query = self._describe(unit)
                    self._handle(conn, helper, unit, uncommitted)
            self._line_no = None
            self._query = None
            if uncommitted or self.status.pending:
                try:
                    self._commit(conn, uncommitted)
                except psycopg2.Error as e:
                    self._recover(conn, helper, uncommitted, e)
            success = True
        finally:
            helper.close()
            self.pool.release(conn, success)

    def _read_unit(self, reader: LineReader, tokenizer) -> bool:
        try:
            return reader.read_unit(tokenizer)
        except ParseError:
            self._line_no = reader.line_no
            self._query = None
            raise

    def _next_unit(self, tokenizer):
        return tokenizer.next_unit()


class CsvSegmentLoader(BatchingSegmentLoader):
    """Inserts CSV rows through one prepared INSERT shared by all segments."""

    def __init__(self, *args, template=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.template = template
        self.statement: Optional[str] = None
        self.field_count = 0

    def prepare(self):
        self.statement, self.field_count = self.template.insert_statement()

    def _create_tokenizer(self):
        return CsvBuffer(self.source.encoding)

    def _describe(self, unit: Sequence[str]) -> str:
        return ",".join(unit)

    def _execute(self, helper: StatementHelper, unit: Sequence[str]) -> int:
        if len(unit) != self.field_count:
            raise ParseError(
                f"CSV row has {len(unit)} fields but {self.field_count} were expected"
            )
        rows = helper.execute_prepared(self.statement, unit, self.loading.retry_rollback)
        return rows if rows >= 0 else 1


class MySQLSegmentLoader(BatchingSegmentLoader):
    """Executes each INSERT of a MySQL dump with all of its tuples as parameters."""

    def __init__(self, *args, target: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.target = target

    def _create_tokenizer(self):
        return MySQLBuffer(self.target)

    def _describe(self, unit: Query) -> str:
        return unit.statement

    def _execute(self, helper: StatementHelper, unit: Query) -> int:
        rows = helper.execute(unit.statement, unit.values, self.loading.retry_rollback)
        return rows if rows >= 0 else unit.rows


class DumpSegmentLoader(BatchingSegmentLoader):
    """
    Executes the statements of a SQL dump in file order.

    INSERTs are batched like rows. Anything else commits the pending batch,
    switches the connection to autocommit and runs on its own; the next
    INSERT switches back to a transaction.
    """

    def __init__(self, *args, has_ddl: bool = False, **kwargs):
        super().__init__(*args, **kwargs)
        self.has_ddl = has_ddl
        self.autocommit = has_ddl

    def _create_tokenizer(self):
        return QueryBuffer()

    def _next_unit(self, tokenizer: QueryBuffer) -> Optional[str]:
        backslash = tokenizer.is_backslash
        statement = tokenizer.next_unit()
        if backslash:
            raise StatementFormatError(
                f"Backslash commands cannot be fast loaded: {statement.strip()}"
            )
        statement = statement.strip()
        return statement or None

    def _handle(self, conn, helper: StatementHelper, unit: str, uncommitted: List):
        if is_insert(unit):
            if conn.autocommit:
                conn.autocommit = False
            super()._handle(conn, helper, unit, uncommitted)
            return

        if not conn.autocommit:
            try:
                self._commit(conn, uncommitted)
            except psycopg2.Error as e:
                self._recover(conn, helper, uncommitted, e)
            conn.autocommit = True
        self.has_ddl = True
        logger.debug(f"{self.label} Executing {unit.split(None, 1)[0].upper()} statement")
        helper.execute(unit, retry_rollback=self.loading.retry_rollback)

    def _execute(self, helper: StatementHelper, unit: str) -> int:
        return max(helper.execute(unit, retry_rollback=self.loading.retry_rollback), 0)


def is_insert(statement: str) -> bool:
    return _INSERT.match(statement) is not None


class CopySegmentLoader(SegmentLoader):
    """Streams the raw bytes of the segment into one server-side COPY."""

    def __init__(self, *args, sql: str = "", **kwargs):
        super().__init__(*args, **kwargs)
        self.sql = sql

    def _run_segment(self):
        success = False
        conn = self.pool.acquire(True)
        helper = StatementHelper(conn)
        try:
            with SegmentStream(self.source, self.start, self.end) as stream:
                rows = helper.copy_expert(self.sql, stream, self.loading.byte_buffer_size)
            self.status.pending = max(rows, 0)
            self.status.commit()
            success = True
        finally:
            helper.close()
            # closing the connection aborts a COPY left open by a failure
            self.pool.release(conn, success)
