"""
Tests for the streaming CSV tokenizer.
"""
import csv
import io

import pytest

from sqlload.core.exceptions import CsvFormatError
from sqlload.core.loading.buffers import CsvBuffer, CsvState


def _rows(text, chunk=None):
    """Feed ``text`` in chunks and collect every emitted row."""
    buffer = CsvBuffer()
    rows = []
    chunks = [text] if chunk is None else [text[i:i + chunk] for i in range(0, len(text), chunk)]
    for piece in chunks:
        buffer.append(piece)
        while buffer.has_next():
            rows.append(buffer.next_unit())
    while buffer.has_next(end_of_file=True):
        rows.append(buffer.next_unit())
    return rows


class TestCsvBuffer:
    def test_simple_rows(self):
        assert _rows("1,2,3\n4,5,6\n") == [["1", "2", "3"], ["4", "5", "6"]]

    def test_empty_fields(self):
        assert _rows(",a,\n") == [["", "a", ""]]

    def test_quoted_delimiter_and_newline(self):
        assert _rows('"a,b","c\nd"\n') == [["a,b", "c\nd"]]

    def test_doubled_quote(self):
        assert _rows('"say ""hi""",x\n') == [['say "hi"', "x"]]

    def test_crlf_line_endings(self):
        assert _rows("a,b\r\nc,d\r\n") == [["a", "b"], ["c", "d"]]

    def test_blank_lines_are_skipped(self):
        assert _rows("a\n\n\nb\n") == [["a"], ["b"]]

    def test_last_row_without_newline(self):
        assert _rows("a,b\nc,d") == [["a", "b"], ["c", "d"]]

    def test_chunked_input_matches_whole_input(self):
        text = '1,"two\nlines",3\n"x""y",,z\r\nlast,row\n'
        assert _rows(text, chunk=1) == _rows(text)
        assert _rows(text, chunk=4) == _rows(text)

    def test_round_trips_python_csv_quoting(self):
        original = [
            ["plain", "with,comma", 'with "quotes"'],
            ["multi\nline", "", "trailing space "],
        ]
        out = io.StringIO()
        csv.writer(out, lineterminator="\n").writerows(original)
        assert _rows(out.getvalue()) == original

    def test_quote_in_middle_of_field(self):
        with pytest.raises(CsvFormatError, match="QUOTE in the middle of a field"):
            _rows('ab"c,d\n')

    def test_junk_after_quoted_field(self):
        with pytest.raises(CsvFormatError, match="junk after quoted field"):
            _rows('"abc"x,d\n')

    def test_unterminated_quote_at_end_of_file(self):
        with pytest.raises(CsvFormatError, match="ends inside a quoted field"):
            _rows('a,"never closed\n')

    def test_has_next_is_idempotent(self):
        buffer = CsvBuffer()
        buffer.append("a,b\nc,d\n")
        assert buffer.has_next()
        assert buffer.has_next()
        assert buffer.next_unit() == ["a", "b"]
        assert buffer.has_next()
        assert buffer.next_unit() == ["c", "d"]
        assert not buffer.has_next()
        assert not buffer.has_next()

    def test_next_unit_without_row(self):
        buffer = CsvBuffer()
        with pytest.raises(ValueError):
            buffer.next_unit()

    def test_state_and_is_empty(self):
        buffer = CsvBuffer()
        assert buffer.is_empty()
        buffer.append('a,"open')
        assert not buffer.has_next()
        assert buffer.state is CsvState.IN_QUOTE
        assert not buffer.is_empty()
        buffer.reset()
        assert buffer.state is CsvState.ROW_START
        assert buffer.is_empty()

    def test_custom_delimiter(self):
        buffer = CsvBuffer(delimiter=";")
        buffer.append("a;b,c\n")
        assert buffer.has_next()
        assert buffer.next_unit() == ["a", "b,c"]

    def test_multibyte_delimiter_rejected(self):
        with pytest.raises(ValueError):
            CsvBuffer(delimiter="§")
