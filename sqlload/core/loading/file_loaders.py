"""
file_loaders.py
Per-format file loaders.

A FileLoader checks that a file can be fast loaded (before any connection is
opened) and cuts it into segment loaders, either one for the whole file or
up to ``nsegments`` with boundaries on complete rows or statements.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from ...database.pool import ConnectionPool
from ...database.quoting import escape_literal_percent, quote_ident, quote_literal, quote_qualified
from ...setup.config import LoadingConfig
from ...setup.logging import logger
from ..exceptions import UnsupportedFormatError
from .buffers import CsvBuffer, QueryBuffer
from .reader import LineReader, Source
from .segments import (
    CopySegmentLoader,
    CsvSegmentLoader,
    DumpSegmentLoader,
    MySQLSegmentLoader,
    SegmentLoader,
)
from .splitter import newline_near, split_parse, split_ranges, statement_end

MYSQL_DUMP_HEADER = "-- MySQL dump "


def is_mysql_dump(source: Source) -> bool:
    """Whether the first line is the mysqldump banner."""
    with LineReader(source) as reader:
        header = reader.read_line()
    return header is not None and header.startswith(MYSQL_DUMP_HEADER)


def render_target(target: str, parameterized: bool = True) -> str:
    """Quote a table name; a target that already lists columns is used as given."""
    if "(" in target:
        return escape_literal_percent(target) if parameterized else target
    return quote_qualified(target, parameterized)


class FileLoader(ABC):
    """Format specific checks and segmentation for one source file."""

    def __init__(self, pool: ConnectionPool, loading: LoadingConfig, source: Source):
        self.pool = pool
        self.loading = loading
        self.source = source

    @property
    def data_start(self) -> int:
        return 0

    def check_format(self):
        """Raise UnsupportedFormatError when the file cannot be fast loaded."""

    def whole_file(self) -> SegmentLoader:
        return self._segments([(self.data_start, self.source.length)])[0]

    def split(self, nsegments: int) -> List[SegmentLoader]:
        if nsegments <= 1:
            return [self.whole_file()]
        with self._split_reader() as reader:
            ranges = split_ranges(
                self.data_start, self.source.length, nsegments,
                lambda segment_start, target: self._find_boundary(reader, segment_start, target),
            )
        logger.debug(f"[{type(self).__name__}] Split {self.source.name} into {ranges}")
        return self._segments(ranges)

    def _split_reader(self) -> LineReader:
        return LineReader(self.source, byte_size=self.loading.split_buffer_size, char_size=1)

    @abstractmethod
    def _find_boundary(self, reader: LineReader, segment_start: int, target: int) -> Optional[int]:
        pass

    def _segments(self, ranges: List[Tuple[int, int]]) -> List[SegmentLoader]:
        return [
            self._segment(start, end, index, len(ranges))
            for index, (start, end) in enumerate(ranges)
        ]

    @abstractmethod
    def _segment(self, start: int, end: int, index: int, total: int) -> SegmentLoader:
        pass

    def _lines(self):
        """Decoded lines of the file, for format checks."""
        with LineReader(self.source) as reader:
            while True:
                line = reader.read_line()
                if line is None:
                    return
                yield line


class CsvLoader(FileLoader):
    """
    CSV files, loaded row by row through a prepared INSERT or, with
    ``bulk_copy``, streamed wholesale into COPY.
    """

    def __init__(self, pool: ConnectionPool, loading: LoadingConfig, source: Source,
                 target: str, header: bool = False):
        super().__init__(pool, loading, source)
        self.target = target
        self.header = header
        self._columns: Optional[List[str]] = None
        self._data_start: Optional[int] = None
        self._insert: Optional[Tuple[Optional[str], int]] = None

    def _read_header(self):
        if self._data_start is not None:
            return
        if not self.header:
            self._columns, self._data_start = None, 0
            return
        buffer = CsvBuffer(self.source.encoding)
        with self._split_reader() as reader:
            if reader.read_unit(buffer):
                self._columns = buffer.next_unit()
            else:
                self._columns = []
            self._data_start = reader.position

    @property
    def data_start(self) -> int:
        self._read_header()
        return self._data_start

    @property
    def columns(self) -> Optional[List[str]]:
        self._read_header()
        return self._columns

    def _first_row_width(self) -> int:
        buffer = CsvBuffer(self.source.encoding)
        with LineReader(self.source, start=self.data_start) as reader:
            if reader.read_unit(buffer):
                return len(buffer.next_unit())
        return 0

    def insert_statement(self) -> Tuple[Optional[str], int]:
        """
        The parameterized INSERT every segment executes and its field count.
        The statement is None when the file has no data rows.
        """
        if self._insert is None:
            columns = self.columns
            width = len(columns) if columns else self._first_row_width()
            if not width:
                self._insert = (None, 0)
            else:
                sql = f"INSERT INTO {render_target(self.target)}"
                if columns and "(" not in self.target:
                    sql += " (" + ", ".join(quote_ident(column) for column in columns) + ")"
                sql += " VALUES (" + ", ".join(["%s"] * width) + ")"
                self._insert = (sql, width)
                logger.debug(f"[CsvLoader] Prepared statement: {sql}")
        return self._insert

    def copy_statement(self) -> str:
        sql = f"COPY {render_target(self.target, parameterized=False)}"
        columns = self.columns
        if columns and "(" not in self.target:
            sql += " (" + ", ".join(quote_ident(column, parameterized=False) for column in columns) + ")"
        sql += f" FROM STDIN WITH (FORMAT csv, ENCODING {quote_literal(self.source.encoding)})"
        return sql

    def _find_boundary(self, reader: LineReader, segment_start: int, target: int) -> Optional[int]:
        # quoted fields may hold newlines, so parse from the last safe offset
        reader.position = segment_start
        return split_parse(reader, target, CsvBuffer(self.source.encoding))

    def _segment(self, start: int, end: int, index: int, total: int) -> SegmentLoader:
        args = (self.pool, self.loading, self.source, start, end, index, total)
        if self.loading.bulk_copy:
            return CopySegmentLoader(*args, sql=self.copy_statement())
        return CsvSegmentLoader(*args, template=self)


class DumpLoader(FileLoader):
    """Semicolon terminated SQL dumps of INSERT statements, optionally with DDL."""

    def __init__(self, pool: ConnectionPool, loading: LoadingConfig, source: Source):
        super().__init__(pool, loading, source)
        self.has_ddl = False

    def check_format(self):
        """
        Statements before the first INSERT decide whether the file can be
        fast loaded. A split file must not contain DDL anywhere, so with
        several threads the scan continues to the end of the file.
        """
        threaded = self.loading.threads > 1
        seen_insert = False
        for line in self._lines():
            if line.startswith("INSERT INTO "):
                if not threaded:
                    return
                seen_insert = True
            elif line.startswith(("DROP ", "CREATE ")):
                if threaded:
                    raise UnsupportedFormatError(
                        "File contains DDL and cannot be loaded using multiple threads. "
                        "Dump the data without schema definitions."
                    )
                self.has_ddl = True
                return
            elif seen_insert or not line.strip() or line.startswith("--"):
                continue
            else:
                raise UnsupportedFormatError(
                    f"File contains {line} and cannot be fast loaded. Try psql -f instead."
                )

    def _find_boundary(self, reader: LineReader, segment_start: int, target: int) -> Optional[int]:
        reader.position = segment_start
        return split_parse(reader, target, QueryBuffer())

    def _segment(self, start: int, end: int, index: int, total: int) -> SegmentLoader:
        return DumpSegmentLoader(self.pool, self.loading, self.source, start, end, index, total,
                                 has_ddl=self.has_ddl)


class MySQLLoader(FileLoader):
    """
    mysqldump output restricted to LOCK/UNLOCK and INSERT statements.

    mysqldump escapes newlines inside literals, so a newline right after ``;``
    always ends a statement and boundaries can be found with a window scan.
    """

    def __init__(self, pool: ConnectionPool, loading: LoadingConfig, source: Source,
                 target: Optional[str] = None):
        super().__init__(pool, loading, source)
        self.target = target

    def check_format(self):
        for line in self._lines():
            if not line or line.startswith(("--", "/*")):
                continue
            if line.startswith(("LOCK ", "INSERT INTO ")):
                return
            raise UnsupportedFormatError(
                f"File contains {line} and can only be loaded by MySQL. "
                "Try mysqldump --no-create-info."
            )

    def _find_boundary(self, reader: LineReader, segment_start: int, target: int) -> Optional[int]:
        return newline_near(reader, target, statement_end, lower=segment_start)

    def _segment(self, start: int, end: int, index: int, total: int) -> SegmentLoader:
        return MySQLSegmentLoader(self.pool, self.loading, self.source, start, end, index, total,
                                  target=self.target)
