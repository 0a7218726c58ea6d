"""
Exception hierarchy for the loader.

Format errors are deterministic and never retried. Unsupported-format errors
are raised by the pre-flight checks before any connection is opened. Driver
errors (``psycopg2.Error``) that survive the retry policy are wrapped in
``SegmentLoadError`` and finally in ``FileLoadError`` once all workers joined.
"""

from typing import List, Optional

from .constants import PARTIAL_QUERY_LENGTH


class LoadError(Exception):
    """Base class for every error raised by the loader."""


class ParseError(LoadError):
    """Malformed input that cannot be tokenized."""


class CsvFormatError(ParseError):
    """CSV content the fast parser refuses (stray or unterminated quotes)."""


class StatementFormatError(ParseError):
    """SQL dump content the statement loader cannot execute."""


class MySQLParseError(ParseError):
    def __init__(self, message: str):
        super().__init__(f"Error parsing mysql: {message}")


class UnexpectedTokenError(MySQLParseError):
    """A character that is not valid in the current tokenizer state."""

    def __init__(self, expected: str, actual: str):
        if len(expected) == 1:
            expected = f"'{expected}'"
        super().__init__(f"expected to get {expected} but got the token '{actual}'")
        self.expected = expected
        self.actual = actual


class UnexpectedKeywordError(MySQLParseError):
    def __init__(self, expected: str, actual: str):
        super().__init__(f"Expected keyword: {expected} but got the word: {actual}")
        self.expected = expected
        self.actual = actual


class UnexpectedEndOfFileError(MySQLParseError):
    def __init__(self):
        super().__init__("End of file mid statement")


class UnsupportedFormatError(LoadError):
    """File structure that cannot be fast loaded with the requested options."""


class RetriesExhaustedError(LoadError):
    def __init__(self, attempts: int):
        super().__init__("Maximum number of retries met")
        self.attempts = attempts


def partial_query(query: Optional[str], max_length: int = PARTIAL_QUERY_LENGTH) -> str:
    """Truncate a statement for error reports."""
    if query is None:
        return ""
    if len(query) > max_length:
        return query[:max_length] + " ..."
    return query


class SegmentLoadError(LoadError):
    """Failure inside one segment, with the position of the failing unit."""

    def __init__(self, segment_index: int, cause: BaseException, line_no: Optional[int] = None,
                 query: Optional[str] = None, rows_committed: int = 0):
        self.segment_index = segment_index
        self.cause = cause
        self.line_no = line_no
        self.query = partial_query(query) if query is not None else None
        self.rows_committed = rows_committed
        message = f"Segment {segment_index} failed: {cause}"
        if line_no is not None:
            message += f" (during query that ends on line {line_no}"
            if self.query:
                message += f", starting with: {self.query}"
            message += ")"
        super().__init__(message)


class FileLoadError(LoadError):
    """One or more segments of a file failed; raised after all workers are joined."""

    def __init__(self, path: str, errors: List[SegmentLoadError], rows_committed: int):
        self.path = path
        self.errors = errors
        self.rows_committed = rows_committed
        first = errors[0] if errors else None
        super().__init__(
            f"Failed to load {path}: {len(errors)} segment(s) failed, "
            f"{rows_committed} rows committed. First error: {first}"
        )
