"""
csv_buffer.py
Streaming CSV row tokenizer.

The fast parser accepts RFC 4180 style quoting (``""`` inside a quoted field
is a literal quote) and refuses anything ambiguous, such as a quote in the
middle of an unquoted field, instead of guessing.
"""
from enum import Enum
from typing import List, Optional

from ...constants import DEFAULT_ENCODING
from ...exceptions import CsvFormatError

_CONTEXT_LENGTH = 80


class CsvState(Enum):
    ROW_START = "row_start"
    FIELD_START = "field_start"
    IN_FIELD = "in_field"
    IN_QUOTE = "in_quote"
    AFTER_QUOTE = "after_quote"


def _single_byte(char: str, encoding: str) -> str:
    if len(char.encode(encoding)) != 1:
        raise ValueError(f"{char!r} must encode as a single byte in {encoding}")
    return char


class CsvBuffer:
    """Accumulates decoded text and emits one row (a list of field strings) at a time."""

    def __init__(self, encoding: str = DEFAULT_ENCODING, delimiter: str = ",", quote: str = '"'):
        self.encoding = encoding
        self.delimiter = _single_byte(delimiter, encoding)
        self.quote = _single_byte(quote, encoding)
        _single_byte("\n", encoding)
        self._buffer = ""
        self._index = 0
        self._reset_row()

    def _reset_row(self):
        self._state = CsvState.ROW_START
        self._values: List[str] = []
        self._field: List[str] = []
        self._row: Optional[List[str]] = None

    def reset(self):
        self._buffer = ""
        self._index = 0
        self._reset_row()

    @property
    def state(self) -> CsvState:
        return self._state

    def append(self, text: str):
        self._buffer += text

    def is_empty(self) -> bool:
        if self._row is not None or self._state is not CsvState.ROW_START:
            return False
        return not self._buffer[self._index:].strip("\r\n")

    def has_next(self, end_of_file: bool = False) -> bool:
        if self._row is not None:
            return True
        buffer = self._buffer
        while self._index < len(buffer):
            c = buffer[self._index]
            self._index += 1
            self._step(c)
            if self._row is not None:
                self._buffer = buffer[self._index:]
                self._index = 0
                return True
        self._buffer = ""
        self._index = 0
        if end_of_file:
            if self._state is CsvState.IN_QUOTE:
                raise CsvFormatError(
                    "CSV File ends inside a quoted field and cannot be fast loaded : "
                    + self._context()
                )
            if self._state is not CsvState.ROW_START:
                self._end_field()
                self._end_row()
        return self._row is not None

    def next_unit(self) -> List[str]:
        if self._row is None:
            raise ValueError("No Row Present")
        row = self._row
        self._reset_row()
        return row

    def _context(self) -> str:
        text = self.delimiter.join(self._values + ["".join(self._field)])
        return text[:_CONTEXT_LENGTH]

    def _end_field(self):
        self._values.append("".join(self._field))
        self._field = []

    def _end_row(self):
        self._row = self._values
        self._state = CsvState.ROW_START

    def _step(self, c: str):
        state = self._state
        newline = c == "\n" or c == "\r"

        if state is CsvState.ROW_START:
            if newline:
                return
            if c == self.delimiter:
                self._values.append("")
                self._state = CsvState.FIELD_START
            elif c == self.quote:
                self._state = CsvState.IN_QUOTE
            else:
                self._field.append(c)
                self._state = CsvState.IN_FIELD

        elif state is CsvState.FIELD_START:
            if newline:
                self._end_field()
                self._end_row()
            elif c == self.delimiter:
                self._end_field()
            elif c == self.quote:
                self._state = CsvState.IN_QUOTE
            else:
                self._field.append(c)
                self._state = CsvState.IN_FIELD

        elif state is CsvState.IN_FIELD:
            if newline:
                self._end_field()
                self._end_row()
            elif c == self.delimiter:
                self._end_field()
                self._state = CsvState.FIELD_START
            elif c == self.quote:
                raise CsvFormatError(
                    "CSV File contains QUOTE in the middle of a field and cannot be fast loaded : "
                    + self._context()
                )
            else:
                self._field.append(c)

        elif state is CsvState.IN_QUOTE:
            if c == self.quote:
                self._state = CsvState.AFTER_QUOTE
            else:
                self._field.append(c)

        else:  # AFTER_QUOTE
            if newline:
                self._end_field()
                self._end_row()
            elif c == self.delimiter:
                self._end_field()
                self._state = CsvState.FIELD_START
            elif c == self.quote:
                self._field.append(c)
                self._state = CsvState.IN_QUOTE
            else:
                raise CsvFormatError(
                    "CSV File contains junk after quoted field and cannot be fast loaded : "
                    + self._context()
                )
