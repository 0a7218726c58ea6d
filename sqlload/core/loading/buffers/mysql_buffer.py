"""
mysql_buffer.py
Tokenizer for mysqldump output.

Only the statements ``mysqldump --no-create-info`` emits are understood:
``INSERT INTO t VALUES (...), (...);`` is turned into one parameterized
statement per INSERT, ``LOCK``/``UNLOCK`` statements are scanned for balanced
quotes and dropped, and comments (``-- ...`` and ``/* ... */``) are skipped.
Anything else is a parse error.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from ....database.quoting import quote_ident, quote_qualified
from ...exceptions import UnexpectedEndOfFileError, UnexpectedKeywordError, UnexpectedTokenError

_QUOTES = "`'\""
_IGNORED_VERBS = ("lock", "unlock")

# MySQL backslash escapes; any other escaped character stands for itself
_ESCAPES = {
    "0": "\x00",
    "b": "\b",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "Z": "\x1a",
}


class MySQLState(Enum):
    STATEMENT_START = "statement_start"
    LINE_COMMENT_START = "line_comment_start"
    SINGLE_LINE_COMMENT = "single_line_comment"
    AFTER_FORWARD_SLASH = "after_forward_slash"
    DELIMITED_COMMENT = "delimited_comment"
    FINISHING_DELIMITED_COMMENT = "finishing_delimited_comment"
    STATEMENT_VERB = "statement_verb"
    IGNORED_STATEMENT = "ignored_statement"
    IGNORED_STATEMENT_QUOTE = "ignored_statement_quote"
    SWALLOWED_CHARACTER = "swallowed_character"
    INSERT = "insert"
    INSERT_TABLE_NAME = "insert_table_name"
    INSERT_TABLE_QUOTED = "insert_table_quoted"
    INSERT_VALUES_KEYWORD = "insert_values_keyword"
    ROW_START = "row_start"
    AFTER_ROW = "after_row"
    FIELD_START = "field_start"
    FIELD = "field"
    QUOTED_FIELD = "quoted_field"
    AFTER_QUOTED_FIELD = "after_quoted_field"


# States in which the end of input does not cut a statement in half
_RESTING_STATES = (MySQLState.STATEMENT_START, MySQLState.SINGLE_LINE_COMMENT)


@dataclass(frozen=True)
class Query:
    """One INSERT rendered as a parameterized statement with all its tuples."""
    statement: str
    values: Tuple[Optional[str], ...]
    rows: int = field(default=1, compare=False)

    def __str__(self) -> str:
        return f"{self.statement}; {list(self.values)}"


def _is_identifier_char(c: str) -> bool:
    return c.isalnum() or c in "_$" or c >= "\x80"


class MySQLBuffer:
    """
    Character driven state machine over mysqldump text.

    Args:
        table: Load every INSERT into this table instead of the one named in the dump.
    """

    def __init__(self, table: Optional[str] = None):
        self.table = table
        self._handlers = {
            MySQLState.STATEMENT_START: self._statement_start,
            MySQLState.LINE_COMMENT_START: self._line_comment_start,
            MySQLState.SINGLE_LINE_COMMENT: self._single_line_comment,
            MySQLState.AFTER_FORWARD_SLASH: self._after_forward_slash,
            MySQLState.DELIMITED_COMMENT: self._delimited_comment,
            MySQLState.FINISHING_DELIMITED_COMMENT: self._finishing_delimited_comment,
            MySQLState.STATEMENT_VERB: self._statement_verb,
            MySQLState.IGNORED_STATEMENT: self._ignored_statement,
            MySQLState.IGNORED_STATEMENT_QUOTE: self._ignored_statement_quote,
            MySQLState.SWALLOWED_CHARACTER: self._swallowed_character,
            MySQLState.INSERT: self._insert,
            MySQLState.INSERT_TABLE_NAME: self._insert_table_name,
            MySQLState.INSERT_TABLE_QUOTED: self._insert_table_quoted,
            MySQLState.INSERT_VALUES_KEYWORD: self._values_keyword,
            MySQLState.ROW_START: self._row_start,
            MySQLState.AFTER_ROW: self._after_row,
            MySQLState.FIELD_START: self._field_start,
            MySQLState.FIELD: self._field,
            MySQLState.QUOTED_FIELD: self._quoted_field,
            MySQLState.AFTER_QUOTED_FIELD: self._after_quoted_field,
        }
        self.reset()

    def reset(self):
        self._buffer = ""
        self._index = 0
        self._query: Optional[Query] = None
        self._reset_statement()

    def _reset_statement(self):
        self._state = MySQLState.STATEMENT_START
        self._statement: List[str] = []
        self._values: List[Optional[str]] = []
        self._current: List[str] = []
        self._quote_char = ""
        self._first_row = True
        self._first_field = True
        self._escaped = False
        self._swallow_whitespace = True
        self._rows = 0

    @property
    def state(self) -> MySQLState:
        return self._state

    def append(self, text: str):
        self._buffer += text

    def is_empty(self) -> bool:
        return (self._query is None and self._state in _RESTING_STATES
                and not self._buffer[self._index:].strip())

    def has_next(self, end_of_file: bool = False) -> bool:
        if self._query is not None:
            return True
        buffer = self._buffer
        while self._index < len(buffer):
            c = buffer[self._index]
            self._index += 1
            if self._swallow_whitespace:
                if c.isspace():
                    continue
                self._swallow_whitespace = False
            self._handlers[self._state](c)
            if self._query is not None:
                self._buffer = buffer[self._index:]
                self._index = 0
                return True
        self._buffer = ""
        self._index = 0
        if end_of_file and self._state not in _RESTING_STATES:
            raise UnexpectedEndOfFileError()
        return False

    def next_unit(self) -> Query:
        if self._query is None:
            raise ValueError("No query present")
        query = self._query
        self._query = None
        return query

    # keyword and field helpers

    def _read_keyword(self, c: str) -> bool:
        """Accumulate letters; True once whitespace ends the word."""
        if c.isalpha():
            self._current.append(c)
            return False
        if c.isspace():
            return True
        raise UnexpectedTokenError("a letter", c)

    def _word(self) -> str:
        word = "".join(self._current)
        self._current = []
        return word

    def _set_table_name(self):
        name = "".join(self._current)
        self._current = []
        self._statement.append(quote_qualified(self.table) if self.table else quote_ident(name))
        self._statement.append(" ")
        self._swallow_whitespace = True
        self._state = MySQLState.INSERT_VALUES_KEYWORD

    def _add_field(self, quoted: bool):
        value: Optional[str] = "".join(self._current)
        self._current = []
        if not quoted:
            value = value.rstrip()
            if value.upper() == "NULL":
                value = None
        self._statement.append("%s" if self._first_field else ", %s")
        self._first_field = False
        self._values.append(value)

    def _end_row(self):
        self._statement.append(")")
        self._rows += 1
        self._swallow_whitespace = True
        self._state = MySQLState.AFTER_ROW

    # state handlers

    def _statement_start(self, c: str):
        if c.isspace() or c == ";":
            return
        if c == "-":
            self._state = MySQLState.LINE_COMMENT_START
        elif c == "/":
            self._state = MySQLState.AFTER_FORWARD_SLASH
        elif c.isalpha():
            self._current = [c]
            self._state = MySQLState.STATEMENT_VERB
        else:
            raise UnexpectedTokenError("a statement start", c)

    def _line_comment_start(self, c: str):
        if c != "-":
            raise UnexpectedTokenError("-", c)
        self._state = MySQLState.SINGLE_LINE_COMMENT

    def _single_line_comment(self, c: str):
        if c == "\n":
            self._state = MySQLState.STATEMENT_START

    def _after_forward_slash(self, c: str):
        if c != "*":
            raise UnexpectedTokenError("*", c)
        self._state = MySQLState.DELIMITED_COMMENT

    def _delimited_comment(self, c: str):
        if c == "*":
            self._state = MySQLState.FINISHING_DELIMITED_COMMENT

    def _finishing_delimited_comment(self, c: str):
        if c == "/":
            self._state = MySQLState.STATEMENT_START
        elif c != "*":
            self._state = MySQLState.DELIMITED_COMMENT

    def _statement_verb(self, c: str):
        if not self._read_keyword(c):
            return
        verb = self._word()
        if verb.lower() in _IGNORED_VERBS:
            self._state = MySQLState.IGNORED_STATEMENT
        elif verb.lower() == "insert":
            self._swallow_whitespace = True
            self._state = MySQLState.INSERT
        else:
            raise UnexpectedKeywordError("INSERT", verb)

    def _ignored_statement(self, c: str):
        if c == ";":
            self._reset_statement()
        elif c in _QUOTES:
            self._quote_char = c
            self._state = MySQLState.IGNORED_STATEMENT_QUOTE

    def _ignored_statement_quote(self, c: str):
        if c == self._quote_char:
            self._state = MySQLState.IGNORED_STATEMENT
        elif c == "\\":
            self._state = MySQLState.SWALLOWED_CHARACTER

    def _swallowed_character(self, c: str):
        self._state = MySQLState.IGNORED_STATEMENT_QUOTE

    def _insert(self, c: str):
        if not self._read_keyword(c):
            return
        word = self._word()
        if word.lower() != "into":
            raise UnexpectedKeywordError("INTO", word)
        self._statement.append("INSERT INTO ")
        self._swallow_whitespace = True
        self._state = MySQLState.INSERT_TABLE_NAME

    def _insert_table_name(self, c: str):
        if c in _QUOTES:
            self._quote_char = c
            self._state = MySQLState.INSERT_TABLE_QUOTED
        elif _is_identifier_char(c):
            self._current.append(c)
        elif c.isspace():
            self._set_table_name()
        else:
            raise UnexpectedTokenError("a valid identifier character", c)

    def _insert_table_quoted(self, c: str):
        if self._escaped:
            self._current.append(c)
            self._escaped = False
        elif c == self._quote_char:
            self._set_table_name()
        elif c == "\\":
            self._escaped = True
        else:
            self._current.append(c)

    def _values_keyword(self, c: str):
        if c == "(" and "".join(self._current).lower() == "values":
            # VALUES( without a space
            self._values_keyword_done()
            self._row_start(c)
            return
        if not self._read_keyword(c):
            return
        self._values_keyword_done()

    def _values_keyword_done(self):
        word = self._word()
        if word.lower() != "values":
            raise UnexpectedKeywordError("VALUES", word)
        self._statement.append("VALUES ")
        self._swallow_whitespace = True
        self._state = MySQLState.ROW_START

    def _row_start(self, c: str):
        if c != "(":
            raise UnexpectedTokenError("(", c)
        self._first_field = True
        self._statement.append("(" if self._first_row else ", (")
        self._first_row = False
        self._swallow_whitespace = True
        self._state = MySQLState.FIELD_START

    def _field_start(self, c: str):
        self._current = []
        if c in _QUOTES:
            self._quote_char = c
            self._state = MySQLState.QUOTED_FIELD
        else:
            self._current.append(c)
            self._state = MySQLState.FIELD

    def _field(self, c: str):
        if c == ")":
            self._add_field(quoted=False)
            self._end_row()
        elif c == ",":
            self._add_field(quoted=False)
            self._swallow_whitespace = True
            self._state = MySQLState.FIELD_START
        elif c in _QUOTES:
            raise UnexpectedTokenError("a literal character", c)
        else:
            self._current.append(c)

    def _quoted_field(self, c: str):
        if self._escaped:
            self._escaped = False
            self._current.append(_ESCAPES.get(c, c))
        elif c == self._quote_char:
            self._swallow_whitespace = True
            self._state = MySQLState.AFTER_QUOTED_FIELD
        elif c == "\\":
            self._escaped = True
        else:
            self._current.append(c)

    def _after_quoted_field(self, c: str):
        if c == self._quote_char:
            # doubled quote
            self._current.append(c)
            self._state = MySQLState.QUOTED_FIELD
        elif c == ",":
            self._add_field(quoted=True)
            self._swallow_whitespace = True
            self._state = MySQLState.FIELD_START
        elif c == ")":
            self._add_field(quoted=True)
            self._end_row()
        else:
            raise UnexpectedTokenError("',' or ')'", c)

    def _after_row(self, c: str):
        if c == ",":
            self._swallow_whitespace = True
            self._state = MySQLState.ROW_START
        elif c == ";":
            if not self._values:
                raise UnexpectedTokenError("a row", ";")
            self._query = Query("".join(self._statement), tuple(self._values), self._rows)
            self._reset_statement()
        else:
            raise UnexpectedTokenError("a ',' or ';'", c)
