"""
splitter.py
Chooses byte offsets at which a file can be cut into independently loadable segments.

Two strategies are used:

* ``newline_near`` loads a window of raw bytes around the target offset and
  scans outwards for a newline accepted by a boundary predicate, widening the
  search one window at a time. It never decodes the file.
* ``split_parse`` runs a tokenizer line by line from a known safe offset up to
  the first line end at or after the target where no unit is left open. It is
  needed when a newline alone says nothing about statement boundaries.

``split_ranges`` drives either strategy and degrades to fewer segments when no
interior boundary can be found.
"""
from typing import Callable, List, Optional, Tuple

from ..interfaces import Tokenizer
from ..exceptions import LoadError
from .reader import LineReader

# Receives the bytes being scanned (with up to two bytes of lookbehind) and the
# index of a newline inside them.
BoundaryPredicate = Callable[[bytes, int], bool]
BoundaryFinder = Callable[[int, int], Optional[int]]

_CARRIAGE_RETURN = 0x0D
_BACKSLASH = 0x5C
_SEMICOLON = 0x3B
_LOOKBEHIND = 2


def line_end(data: bytes, index: int) -> bool:
    """A newline that is not escaped by a backslash continuation."""
    before = index - 1
    if before >= 0 and data[before] == _CARRIAGE_RETURN:
        before -= 1
    return before < 0 or data[before] != _BACKSLASH


def statement_end(data: bytes, index: int) -> bool:
    """A newline directly after ``;`` (optionally ``;\\r\\n``)."""
    before = index - 1
    if before >= 0 and data[before] == _CARRIAGE_RETURN:
        before -= 1
    return before >= 0 and data[before] == _SEMICOLON


def _boundaries(reader: LineReader, low: int, high: int, lower: int, upper: int,
                predicate: BoundaryPredicate) -> List[int]:
    """Offsets just after accepted newlines in ``[low, high)``, strictly inside ``(lower, upper)``."""
    head = max(0, low - _LOOKBEHIND)
    data = reader.read_bytes(head, high - head)
    found = []
    index = data.find(b"\n", low - head)
    while index >= 0:
        boundary = head + index + 1
        if boundary >= upper:
            break
        if boundary > lower and predicate(data, index):
            found.append(boundary)
        index = data.find(b"\n", index + 1)
    return found


def newline_near(reader: LineReader, target: int, predicate: BoundaryPredicate = line_end,
                 lower: Optional[int] = None, upper: Optional[int] = None) -> Optional[int]:
    """
    Find the boundary closest to ``target``.

    The first window holds ``reader.byte_size`` bytes centered on ``target``.
    If it has no acceptable newline, one more window is read after and then
    before the scanned region until a newline is found or both ends of the
    range are reached.

    Returns:
        The offset just after the chosen newline, or None when the range has
        no interior boundary.
    """
    lower = reader.start if lower is None else lower
    upper = reader.limit if upper is None else upper
    if upper - lower < 2:
        return None
    target = min(max(target, lower), upper)
    size = max(reader.byte_size, 2)

    low = max(lower, target - size // 2)
    high = min(upper, low + size)
    found = _boundaries(reader, low, high, lower, upper, predicate)
    while not found and (low > lower or high < upper):
        if high < upper:
            step_high = min(upper, high + size)
            found += _boundaries(reader, high, step_high, lower, upper, predicate)
            high = step_high
        if low > lower:
            step_low = max(lower, low - size)
            found += _boundaries(reader, step_low, low, lower, upper, predicate)
            low = step_low
    if not found:
        return None
    # the scanned region grows evenly on both sides, so the closest hit is the closest overall
    return min(found, key=lambda boundary: (abs(boundary - target), boundary))


def split_parse(reader: LineReader, target: int, tokenizer: Tokenizer) -> int:
    """
    Parse forward from ``reader.position`` (a known safe offset) and return the
    first line end at or after ``target`` where ``tokenizer`` has nothing open.

    ``reader`` must be exact (``char_size=1``). Returns ``reader.limit`` when
    the range ends first.
    """
    if not reader.exact:
        raise LoadError("split_parse needs a reader with exact positions")
    tokenizer.reset()
    while True:
        line = reader.read_raw_line()
        if line is None:
            return reader.limit
        tokenizer.append(line)
        while tokenizer.has_next():
            tokenizer.next_unit()
        trim = getattr(tokenizer, "trim_completed", None)
        if trim is not None:
            trim()
        if reader.position >= target and tokenizer.is_empty():
            return reader.position


def split_ranges(start: int, end: int, nsegments: int, find_boundary: BoundaryFinder) -> List[Tuple[int, int]]:
    """
    Partition ``[start, end)`` into at most ``nsegments`` contiguous ranges.

    ``find_boundary(segment_start, target)`` returns a safe offset or None.
    Targets are spaced evenly over what is left after each cut. A missing or
    useless boundary ends the splitting, so the remainder becomes one segment.
    """
    ranges = []
    while nsegments > 1 and end - start > 1:
        remaining = end - start
        if remaining < nsegments:
            nsegments = remaining
        target = start + remaining // nsegments
        boundary = find_boundary(start, target)
        if boundary is None or boundary <= start or boundary >= end:
            break
        ranges.append((start, boundary))
        start = boundary
        nsegments -= 1
    ranges.append((start, end))
    return ranges
