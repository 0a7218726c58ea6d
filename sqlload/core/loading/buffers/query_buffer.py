"""
query_buffer.py
Statement boundary tokenizer for semicolon delimited SQL.

Semicolons only end a statement outside of quoted strings (``'``, ``"``,
backtick, ``E'...'`` and ``$$...$$``) and comments (``--`` to end of line and
nestable ``/* */``). A backslash that is only preceded by whitespace starts a
backslash command, which runs to the end of the line or of the buffer.
"""
from typing import Optional

from ...constants import PARTIAL_QUERY_LENGTH
from ...exceptions import StatementFormatError

E_STRING = "E"
DOLLAR_QUOTE = "$$"


def _closing_char(kind: str) -> str:
    return "'" if kind == E_STRING else kind


class QueryBuffer:
    """
    Input accumulator that finds complete statements.

    ``has_next`` scans forward from where it stopped last time, so repeated
    calls without new input never rescan or double report a statement.
    """

    def __init__(self):
        self.reset()

    def reset(self):
        self._buffer = ""
        self._start = 0
        self._cur = 0
        self._end: Optional[int] = None
        self._guard = -1
        self._last_close = -1
        self._dollar_open = -1
        self._reset_statement()

    def _reset_statement(self):
        self._quote: Optional[str] = None
        self._reopen: Optional[str] = None
        self._line_comment = False
        self._comment_depth = 0
        self._only_space = True
        self._is_backslash = False
        # offset of the first character outside whitespace and comments
        self._first: Optional[int] = None

    def append(self, text: str):
        self._buffer += text

    @property
    def is_backslash(self) -> bool:
        """Whether the statement reported by ``has_next`` is a backslash command."""
        return self._is_backslash

    def is_empty(self) -> bool:
        if self.has_next() or self._quote is not None or self._comment_depth:
            return False
        return self._first is None

    def has_next(self, end_of_file: bool = False) -> bool:
        """
        Whether a complete statement is buffered. At ``end_of_file`` a
        trailing statement without ``;`` counts as complete.

        Raises:
            StatementFormatError: the file ends inside a quoted string or a
                block comment.
        """
        if self._end is not None:
            return True
        if self._scan():
            return True
        if not end_of_file:
            return False
        if self._quote is not None or self._comment_depth:
            what = "a block comment" if self._comment_depth else "a quoted string"
            raise StatementFormatError(
                f"SQL file ends inside {what} and cannot be fast loaded : "
                + self._buffer[self._start:self._start + PARTIAL_QUERY_LENGTH]
            )
        if self._first is None:
            return False
        self._end = len(self._buffer) - 1
        self._cur = len(self._buffer)
        return True

    def next_unit(self) -> str:
        if self._end is None:
            raise ValueError("No query present")
        begin = self._start if self._is_backslash or self._first is None else self._first
        text = self._buffer[begin:self._end + 1]
        self._start = self._end + 1
        self._cur = max(self._cur, self._start)
        self._end = None
        self._reset_statement()
        return text

    def trim_completed(self) -> str:
        """Drop and return the text of statements already handed out."""
        done = self._buffer[:self._start]
        shift = self._start
        self._buffer = self._buffer[shift:]
        self._cur -= shift
        if self._end is not None:
            self._end -= shift
        self._guard -= shift
        self._last_close -= shift
        self._dollar_open -= shift
        if self._first is not None:
            self._first -= shift
        self._start = 0
        return done

    def _is_e_prefix(self, i: int) -> bool:
        buf = self._buffer
        if i - 1 < self._start or buf[i - 1] not in "Ee":
            return False
        if i - 2 < self._start:
            return True
        before = buf[i - 2]
        return not (before.isalnum() or before == "_")

    def _escaped_in_e_string(self, i: int) -> bool:
        buf = self._buffer
        return i >= 1 and buf[i - 1] == "\\" and not (i >= 2 and buf[i - 2] == "\\")

    def _comment_started(self, opener: int):
        # a comment ahead of the statement text is not part of it
        if self._first == opener:
            self._first = None

    def _scan(self) -> bool:
        buf = self._buffer
        n = len(buf)
        i = self._cur
        while i < n:
            c = buf[i]
            prev = buf[i - 1] if i > 0 else ""

            if self._reopen is not None:
                kind, self._reopen = self._reopen, None
                if c == _closing_char(kind):
                    # doubled quote inside a string
                    self._quote = kind
                    i += 1
                    continue

            if self._line_comment:
                if c == "\n":
                    self._line_comment = False
            elif self._comment_depth:
                if c == "*" and prev == "/" and i - 1 != self._last_close:
                    self._comment_depth += 1
                    self._guard = i
                elif c == "/" and prev == "*" and i - 1 != self._guard:
                    self._comment_depth -= 1
                    self._last_close = i
            elif self._quote is not None:
                kind = self._quote
                if kind == DOLLAR_QUOTE:
                    if c == "$" and prev == "$" and i - 1 > self._dollar_open:
                        self._quote = None
                        self._last_close = i
                elif c == _closing_char(kind):
                    if not (kind == E_STRING and self._escaped_in_e_string(i)):
                        self._quote = None
                        self._reopen = kind
            else:
                if self._first is None and not c.isspace():
                    self._first = i
                if c == "'" and self._is_e_prefix(i):
                    self._quote = E_STRING
                elif c in "'\"`":
                    self._quote = c
                elif c == "$" and prev == "$" and i - 1 != self._last_close:
                    self._quote = DOLLAR_QUOTE
                    self._dollar_open = i
                elif c == "-" and prev == "-":
                    self._line_comment = True
                    self._comment_started(i - 1)
                elif c == "*" and prev == "/" and i - 1 != self._last_close:
                    self._comment_depth = 1
                    self._guard = i
                    self._comment_started(i - 1)
                elif c == ";":
                    self._end = i
                    self._cur = i + 1
                    return True
                elif c == "\\" and self._only_space:
                    newline = buf.find("\n", i)
                    self._is_backslash = True
                    self._start = i
                    self._end = newline - 1 if newline >= 0 else n - 1
                    self._cur = self._end + 1
                    return True
                # '-' and '/' may open a comment, which keeps the statement blank
                if self._only_space and not c.isspace() and c not in "-/":
                    self._only_space = False
            i += 1
        self._cur = i
        return False
