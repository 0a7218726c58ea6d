"""
reader.py
Byte-range readers over a source file.

LineReader decodes a ``[start, end)`` byte range into lines. With
``char_size=1`` it decodes one line at a time so that ``position`` is the
exact byte offset after the last line returned, which is what the splitter
needs to hand back byte-accurate boundaries. SegmentStream exposes the raw
bytes of a range as a file object for server-side COPY.
"""
import codecs
import io
import os
from dataclasses import dataclass
from typing import Optional

from ..constants import DEFAULT_ENCODING, SHORT_LINE, SMALL_BUFFER_SIZE
from ..interfaces import Tokenizer


@dataclass(frozen=True)
class Source:
    """An immutable, seekable input file with a known length."""
    path: str
    encoding: str = DEFAULT_ENCODING
    length: int = 0

    @classmethod
    def from_path(cls, path: str, encoding: str = DEFAULT_ENCODING) -> "Source":
        if not os.path.isfile(path):
            raise FileNotFoundError(f"File not found: {path}")
        codecs.lookup(encoding)
        return cls(path=str(path), encoding=encoding, length=os.path.getsize(path))

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


class LineReader:
    """
    Incremental decoder for one byte range of a Source.

    Every reader owns its own file handle, so readers for different segments
    can run on different threads without sharing state.

    Args:
        source: File to read.
        byte_size: Size of each raw read from disk.
        char_size: Use 1 to make ``position`` exact after every line.
        start: First byte of the range.
        end: Byte offset where the range stops (defaults to the file length).
    """

    def __init__(self, source: Source, byte_size: int = SMALL_BUFFER_SIZE,
                 char_size: int = SHORT_LINE, start: int = 0, end: Optional[int] = None):
        self.source = source
        self.encoding = source.encoding
        self.byte_size = byte_size
        self.exact = char_size == 1
        if self.exact and "\n".encode(self.encoding) != b"\n":
            raise ValueError(f"Encoding {self.encoding} cannot be split on byte boundaries")
        self.start = start
        self.limit = source.length if end is None else min(end, source.length)
        self.line_no = 0
        self._file = open(source.path, "rb")
        self._decoder_factory = codecs.getincrementaldecoder(self.encoding)
        self._seek(start)

    def _seek(self, position: int):
        self._position = position
        self._read_pos = position
        self._pending = b""
        self._chars = ""
        self._char_index = 0
        self._decoder = self._decoder_factory()

    @property
    def position(self) -> int:
        """Offset of the next byte not yet handed to the decoder."""
        return self._position

    @position.setter
    def position(self, value: int):
        self._seek(value)

    def close(self):
        self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _refill(self) -> bool:
        """Decode the next slice of bytes. Returns False once the range is exhausted."""
        if not self._pending:
            remaining = self.limit - self._read_pos
            if remaining <= 0:
                return False
            self._file.seek(self._read_pos)
            chunk = self._file.read(min(self.byte_size, remaining))
            if not chunk:
                return False
            self._pending = chunk
            self._read_pos += len(chunk)

        if self.exact:
            newline = self._pending.find(b"\n")
            cut = len(self._pending) if newline < 0 else newline + 1
        else:
            cut = len(self._pending)
        data, self._pending = self._pending[:cut], self._pending[cut:]
        self._position += len(data)
        self._chars = self._decoder.decode(data, self._position >= self.limit)
        self._char_index = 0
        return True

    def read_raw_line(self) -> Optional[str]:
        """
        Return the next line including its terminator, a trailing partial line
        at the end of the range, or None when nothing is left.
        """
        parts = []
        while True:
            if self._char_index < len(self._chars):
                newline = self._chars.find("\n", self._char_index)
                if newline >= 0:
                    parts.append(self._chars[self._char_index:newline + 1])
                    self._char_index = newline + 1
                    self.line_no += 1
                    return "".join(parts)
                parts.append(self._chars[self._char_index:])
                self._char_index = len(self._chars)
            if not self._refill():
                break
        line = "".join(parts)
        if not line:
            return None
        self.line_no += 1
        return line

    def read_line(self) -> Optional[str]:
        """Next line with the newline removed and carriage returns elided."""
        line = self.read_raw_line()
        if line is None:
            return None
        if line.endswith("\n"):
            line = line[:-1]
        return line.replace("\r", "")

    def read_unit(self, tokenizer: Tokenizer) -> bool:
        """Feed lines to ``tokenizer`` until it holds a complete unit."""
        while True:
            if tokenizer.has_next():
                return True
            line = self.read_raw_line()
            if line is None:
                return tokenizer.has_next(end_of_file=True)
            tokenizer.append(line)

    def read_bytes(self, offset: int, size: int) -> bytes:
        """Raw bytes of the file, independent of the decoding state."""
        if size <= 0:
            return b""
        self._file.seek(offset)
        return self._file.read(size)


class SegmentStream(io.RawIOBase):
    """Read-only file object over the raw bytes of ``[start, end)``."""

    def __init__(self, source: Source, start: int, end: int):
        super().__init__()
        self._file = open(source.path, "rb")
        self._file.seek(start)
        self._remaining = max(0, end - start)
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        if self._remaining <= 0:
            return b""
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining
        data = self._file.read(size)
        self._remaining -= len(data)
        self.bytes_read += len(data)
        if not data:
            self._remaining = 0
        return data

    def readinto(self, buffer) -> int:
        data = self.read(len(buffer))
        buffer[:len(data)] = data
        return len(data)

    def close(self):
        if not self.closed:
            self._file.close()
        super().close()
