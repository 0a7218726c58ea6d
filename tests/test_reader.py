"""
Tests for Source, LineReader and SegmentStream.
"""
import pytest

from sqlload.core.loading.buffers import CsvBuffer
from sqlload.core.loading.reader import LineReader, SegmentStream, Source


def _reader(path, **kwargs):
    encoding = kwargs.pop("encoding", "utf-8")
    return LineReader(Source.from_path(path, encoding), **kwargs)


class TestSource:
    def test_from_path_records_length(self, tmp_file_from):
        path = tmp_file_from("abc\ndef\n")
        source = Source.from_path(path)
        assert source.length == 8
        assert source.encoding == "utf-8"
        assert source.name.endswith(".csv")

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            Source.from_path("/nonexistent/input.csv")

    def test_unknown_encoding(self, tmp_file_from):
        path = tmp_file_from("abc\n")
        with pytest.raises(LookupError):
            Source.from_path(path, "no-such-encoding")


class TestLineReader:
    def test_reads_all_lines(self, tmp_file_from):
        path = tmp_file_from("ab\ncd\nef")
        with _reader(path) as reader:
            assert reader.read_line() == "ab"
            assert reader.read_line() == "cd"
            assert reader.read_line() == "ef"
            assert reader.read_line() is None
            assert reader.line_no == 3

    def test_empty_file(self, tmp_file_from):
        path = tmp_file_from("")
        with _reader(path) as reader:
            assert reader.read_raw_line() is None

    def test_carriage_returns_elided(self, tmp_file_from):
        path = tmp_file_from("ab\r\ncd\r\n")
        with _reader(path) as reader:
            assert reader.read_raw_line() == "ab\r\n"
            assert reader.read_line() == "cd"
            assert reader.read_line() is None

    def test_bounded_range(self, tmp_file_from):
        path = tmp_file_from("aaa\nbbb\nccc\n")
        with _reader(path, start=4, end=8) as reader:
            assert reader.read_line() == "bbb"
            assert reader.read_line() is None

    def test_range_end_cuts_partial_line(self, tmp_file_from):
        path = tmp_file_from("aaa\nbbb\nccc\n")
        with _reader(path, start=0, end=6) as reader:
            assert reader.read_line() == "aaa"
            assert reader.read_line() == "bb"
            assert reader.read_line() is None

    def test_small_buffers(self, tmp_file_from):
        path = tmp_file_from("first line\nsecond line\n")
        with _reader(path, byte_size=3) as reader:
            assert reader.read_line() == "first line"
            assert reader.read_line() == "second line"

    def test_exact_positions_with_multibyte_characters(self, tmp_file_from):
        text = "é,ü\nñ\nabc\n"
        path = tmp_file_from(text)
        with _reader(path, byte_size=2, char_size=1) as reader:
            assert reader.read_raw_line() == "é,ü\n"
            assert reader.position == len("é,ü\n".encode("utf-8"))
            assert reader.read_raw_line() == "ñ\n"
            assert reader.position == len("é,ü\nñ\n".encode("utf-8"))
            assert reader.read_raw_line() == "abc\n"
            assert reader.position == len(text.encode("utf-8"))

    def test_exact_mode_requires_single_byte_newline(self, tmp_file_from):
        path = tmp_file_from("ab\n", encoding="utf-16-le")
        with pytest.raises(ValueError):
            _reader(path, encoding="utf-16-le", char_size=1)

    def test_latin1_decoding(self, tmp_file_from):
        path = tmp_file_from("café\n", encoding="latin-1")
        with _reader(path, encoding="latin-1") as reader:
            assert reader.read_line() == "café"

    def test_reposition(self, tmp_file_from):
        path = tmp_file_from("aaa\nbbb\nccc\n")
        with _reader(path, char_size=1) as reader:
            reader.read_line()
            reader.position = 8
            assert reader.read_line() == "ccc"
            assert reader.position == 12

    def test_read_unit_spans_lines(self, tmp_file_from):
        path = tmp_file_from('a,"x\ny"\nb,c\n')
        buffer = CsvBuffer()
        with _reader(path) as reader:
            assert reader.read_unit(buffer)
            assert buffer.next_unit() == ["a", "x\ny"]
            assert reader.read_unit(buffer)
            assert buffer.next_unit() == ["b", "c"]
            assert not reader.read_unit(buffer)

    def test_read_unit_finalizes_row_at_end_of_file(self, tmp_file_from):
        path = tmp_file_from("a,b")
        buffer = CsvBuffer()
        with _reader(path) as reader:
            assert reader.read_unit(buffer)
            assert buffer.next_unit() == ["a", "b"]

    def test_read_bytes(self, tmp_file_from):
        path = tmp_file_from("0123456789")
        with _reader(path) as reader:
            assert reader.read_bytes(3, 4) == b"3456"
            assert reader.read_bytes(8, 10) == b"89"
            assert reader.read_bytes(0, 0) == b""


class TestSegmentStream:
    def test_reads_only_the_range(self, tmp_file_from):
        source = Source.from_path(tmp_file_from("0123456789"))
        with SegmentStream(source, 2, 7) as stream:
            assert stream.read(2) == b"23"
            assert stream.read() == b"456"
            assert stream.read() == b""
            assert stream.bytes_read == 5

    def test_readinto(self, tmp_file_from):
        source = Source.from_path(tmp_file_from("0123456789"))
        buffer = bytearray(4)
        with SegmentStream(source, 5, 10) as stream:
            assert stream.readinto(buffer) == 4
            assert bytes(buffer) == b"5678"
            assert stream.readinto(buffer) == 1
            assert buffer[:1] == b"9"

    def test_empty_range(self, tmp_file_from):
        source = Source.from_path(tmp_file_from("0123456789"))
        with SegmentStream(source, 4, 4) as stream:
            assert stream.read(10) == b""
