#!/usr/bin/env python3
"""
Labeled Hex Dumps

A reversible text encoding for sparse binary data.  Each line of a dump
carries up to 16 bytes, optionally preceded by the absolute offset of the
first of them:

  00000010  00 01 02 03 04 05 06 07  08 09 0A 0B 0C 0D 0E 0F  |................|
  :foo
                               5E  5F 60 61 62 63 64 65 66         |^_`abcdef|
  FF000040  67 68 69 6A 6B 6C 6D 6E  6F 70 71 72 73 74 75 76  |ghijklmnopqrstuv|

Offsets may jump forward, leaving gaps.  A line without an offset takes its
position from the next line that has one.  `:name` lines bind a label to
the offset of the byte that follows them.  Blank lines and `#` comments are
ignored, and the |ascii| column is never read back.

Components:
  - Scanner:  classifies one text line as data, label, or no-op
  - Labels:   name <-> offset index, iterated in offset order
  - Decoder:  reassembles contiguous segments and resolves labels
  - Dumper:   renders writes and seeks back into dump text

Usage:
  python lhex.py dump  <binary> [dump]  [--offset N] [--label NAME=OFFSET ...]
  python lhex.py load  <dump> <binary>  [--base N]
  python lhex.py info  <dump>
"""

import argparse
import bisect
import io
import mmap
import os
import string
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Union


# ============================================================================
# Format constants
#
#   offset:  2..16 uppercase hex digits (even count), big-endian, < 2^63
#   data:    up to LINE_WIDTH two-digit byte values, grouped GROUP_WIDTH + GROUP_WIDTH
#   label:   ':' followed by [A-Za-z_-][A-Za-z0-9_-]*
# ============================================================================

LINE_WIDTH = 16            # bytes per full line; full lines start 16-aligned
GROUP_WIDTH = 8            # an extra space separates the two column groups
OFFSET_WIDTH = 8           # minimum hex digits in a rendered offset
MAX_OFFSET_DIGITS = 16     # 8 bytes
MAX_OFFSET = (1 << 63) - 1
CHUNK_SIZE = 1 << 20       # CLI read size

HEX_DIGITS = '0123456789ABCDEF'
_SEPARATORS = ' -'
_LABEL_START = frozenset(string.ascii_letters + '_-')
_LABEL_CHARS = _LABEL_START | frozenset(string.digits)


# ============================================================================
# Errors
# ============================================================================

class LhexError(ValueError):
    """Malformed or inconsistent hex dump input."""

    def __init__(self, message: str, lineno: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.lineno = lineno

    def __str__(self):
        if self.lineno is None:
            return self.message
        return f"line {self.lineno}: {self.message}"


class MalformedOffset(LhexError):
    """Offset field with an odd number of digits, or more than 16."""


class OffsetTooLarge(LhexError):
    """Offset with bit 63 set."""


class MalformedByte(LhexError):
    """Hex run in the data area that is not exactly two digits."""


class IllegalCharacter(LhexError):
    """Unexpected character directly after a hex field."""


class IllegalLabelTrailer(LhexError):
    """Text other than spaces or a comment after a label name."""


class OffsetRewind(LhexError):
    """Data placed before data that was already delivered."""


class EndOfInput(EOFError):
    """No more lines (scanner) or no more segments (decoder)."""


# ============================================================================
# Records
# ============================================================================

@dataclass(frozen=True)
class Line:
    """One scanned text line.

    A data line has an offset, data, or both; a label line has only a
    label; a no-op line has none of them.
    """
    offset: Optional[int] = None
    data: bytes = b''
    label: Optional[str] = None

    @property
    def is_label(self) -> bool:
        return self.label is not None

    @property
    def is_noop(self) -> bool:
        return self.offset is None and not self.data and self.label is None

    def __repr__(self):
        if self.label is not None:
            return f"LABEL({self.label})"
        if self.is_noop:
            return "NOOP"
        where = "-" if self.offset is None else f"0x{self.offset:X}"
        return f"DATA(ofs={where}, {self.data.hex().upper()})"


@dataclass(frozen=True)
class Segment:
    """Bytes contiguous in offset space, starting at offset."""
    offset: int
    data: bytes

    @property
    def end(self) -> int:
        return self.offset + len(self.data)

    def __repr__(self):
        return f"SEGMENT(ofs=0x{self.offset:X}, len={len(self.data)})"


@dataclass(frozen=True)
class Gap:
    """Unspecified bytes before the segment starting at offset."""
    offset: int
    size: int

    def __repr__(self):
        return f"GAP(ofs=0x{self.offset:X}, size={self.size})"


# ============================================================================
# Scanner
#
# A line starting with a hex digit carries an offset, then data.  A line
# starting with ':' carries a label.  Anything else is data if hex digits
# follow the leading spaces/hyphens, and a no-op otherwise.  Scanning stops
# at the first character after the data that is neither hex nor separator,
# which is where the ascii column starts.
# ============================================================================

def _is_hex(ch: str) -> bool:
    return '0' <= ch <= '9' or 'A' <= ch <= 'F'


class _LineCursor:
    """Read position within one line of text."""
    __slots__ = ('text', 'pos')

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def peek(self) -> str:
        """Current character, or '' at end of line."""
        return self.text[self.pos] if self.pos < len(self.text) else ''

    def skip(self, chars: str):
        n = len(self.text)
        while self.pos < n and self.text[self.pos] in chars:
            self.pos += 1

    def hex_run(self) -> str:
        """Consume and return the run of hex digits at the cursor."""
        start = self.pos
        while _is_hex(self.peek()):
            self.pos += 1
        return self.text[start:self.pos]

    def rest(self) -> str:
        return self.text[self.pos:]


def _end_of_field(cur: _LineCursor, field: str):
    ch = cur.peek()
    if ch and ch not in _SEPARATORS:
        raise IllegalCharacter(f"illegal character {ch!r} after {field!r}")


def _scan_offset(cur: _LineCursor) -> int:
    run = cur.hex_run()
    if len(run) % 2 or len(run) > MAX_OFFSET_DIGITS:
        raise MalformedOffset(
            f"offset {run!r} must be an even number of hex digits, "
            f"at most {MAX_OFFSET_DIGITS}")
    _end_of_field(cur, run)
    offset = int(run, 16)
    if offset > MAX_OFFSET:
        raise OffsetTooLarge(f"offset too large: {run}")
    return offset


def _scan_bytes(cur: _LineCursor) -> bytes:
    data = bytearray()
    while len(data) < LINE_WIDTH:
        run = cur.hex_run()
        if len(run) != 2:
            raise MalformedByte(f"byte value {run!r} must be two hex digits")
        _end_of_field(cur, run)
        data.append(int(run, 16))
        cur.skip(_SEPARATORS)
        if not _is_hex(cur.peek()):
            break
    return bytes(data)


def _scan_label(cur: _LineCursor) -> str:
    start = cur.pos
    if cur.peek() in _LABEL_START:
        cur.pos += 1
        while cur.peek() in _LABEL_CHARS:
            cur.pos += 1
    name = cur.text[start:cur.pos]
    cur.skip(' ')
    if cur.peek() not in ('', '#'):
        raise IllegalLabelTrailer(f"illegal text after label {name!r}: {cur.rest()!r}")
    if not name:
        raise IllegalLabelTrailer(f"missing label name: {cur.text!r}")
    return name


def scan_line(text: str) -> Line:
    """Classify one line of dump text (without its line terminator)."""
    cur = _LineCursor(text)
    offset = None
    if _is_hex(cur.peek()):
        offset = _scan_offset(cur)
    elif cur.peek() == ':':
        cur.pos += 1
        return Line(label=_scan_label(cur))
    cur.skip(_SEPARATORS)
    data = _scan_bytes(cur) if _is_hex(cur.peek()) else b''
    return Line(offset=offset, data=data)


class Scanner:
    """Pulls lines from a text source and classifies them one at a time.

    source may be a text or binary file, an iterable of str/bytes lines, or
    a whole document as str/bytes.  Binary input is read as Latin-1.
    """

    def __init__(self, source):
        if isinstance(source, str):
            source = io.StringIO(source)
        elif isinstance(source, (bytes, bytearray)):
            source = io.BytesIO(source)
        self._lines = iter(source)
        self._line = ''
        self.lineno = 0

    def read_line(self) -> str:
        """Advance to the next physical line; raise EndOfInput when there is none."""
        try:
            raw = next(self._lines)
        except StopIteration:
            raise EndOfInput("end of input") from None
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode('latin-1')
        if raw.endswith('\n'):
            raw = raw[:-2] if raw.endswith('\r\n') else raw[:-1]
        self._line = raw
        self.lineno += 1
        return raw

    def scan_line(self) -> Line:
        """Classify the line most recently returned by read_line()."""
        try:
            return scan_line(self._line)
        except LhexError as err:
            err.lineno = self.lineno
            raise

    def __iter__(self):
        return self

    def __next__(self) -> Line:
        try:
            self.read_line()
        except EndOfInput:
            raise StopIteration from None
        return self.scan_line()


# ============================================================================
# Labels
#
# Primary map name -> offset, with a derived index offset -> sorted names
# and a sorted list of labeled offsets.  Adding a name updates the index in
# place; moving an existing name rebuilds it.
# ============================================================================

def _check_label(name, offset):
    if not (isinstance(name, str) and name and name[0] in _LABEL_START
            and all(c in _LABEL_CHARS for c in name)):
        raise ValueError(f"invalid label name: {name!r}")
    if not isinstance(offset, int) or not 0 <= offset <= MAX_OFFSET:
        raise ValueError(f"label {name} offset out of range: {offset!r}")


class Labels:
    """Mapping from label name to offset, iterable in offset order."""

    def __init__(self, labels=None):
        self.reset(labels if labels is not None else {})

    def reset(self, labels):
        """Replace every label with those in the mapping labels."""
        by_name = dict(labels)
        for name, offset in by_name.items():
            _check_label(name, offset)
        self._by_name: Dict[str, int] = by_name
        self._reindex()

    def _reindex(self):
        by_offset: Dict[int, List[str]] = {}
        for name, offset in self._by_name.items():
            by_offset.setdefault(offset, []).append(name)
        for names in by_offset.values():
            names.sort()
        self._by_offset = by_offset
        self._offsets = sorted(by_offset)

    def get(self, name: str) -> Optional[int]:
        return self._by_name.get(name)

    def set(self, name: str, offset: int):
        """Bind name to offset, replacing any earlier binding."""
        _check_label(name, offset)
        old = self._by_name.get(name)
        if old == offset:
            return
        self._by_name[name] = offset
        if old is not None:
            self._reindex()
            return
        names = self._by_offset.get(offset)
        if names is None:
            self._by_offset[offset] = [name]
            bisect.insort(self._offsets, offset)
        else:
            bisect.insort(names, name)

    def all(self) -> Dict[str, int]:
        """The live name -> offset map.  Do not modify it."""
        return self._by_name

    def iter_from(self, offset: int = 0) -> Iterator[Tuple[int, List[str]]]:
        """Yield (offset, sorted names) for each labeled offset >= offset.

        Labels added during iteration are seen if they lie beyond the
        last offset yielded.
        """
        while True:
            i = bisect.bisect_left(self._offsets, offset)
            if i == len(self._offsets):
                return
            found = self._offsets[i]
            yield found, list(self._by_offset[found])
            offset = found + 1

    def __len__(self):
        return len(self._by_name)

    def __contains__(self, name):
        return name in self._by_name

    def __eq__(self, other):
        if isinstance(other, Labels):
            return self._by_name == other._by_name
        if isinstance(other, dict):
            return self._by_name == other
        return NotImplemented

    def __repr__(self):
        inner = ", ".join(f"{n}=0x{o:X}" for o, names in self.iter_from(0)
                          for n in names)
        return f"Labels({inner})"


# ============================================================================
# Decoder
#
# Lines without an offset collect in a pending buffer until an offset line
# arrives; the pending bytes then start at offset - len(pending).  If that
# start is the end of the active segment, the bytes continue it.  If it lies
# further on, they become the next segment, which is parked until the
# caller calls next().  Labels are recorded relative to the pending buffer
# and bound once its start is known.
#
# At end of input, leftover pending bytes and labels continue the active
# segment.  Before any segment exists they have no position and are dropped.
# ============================================================================

class Decoder:
    """Reads the bytes described by a hex dump, one contiguous segment at a time.

    read() returns bytes of the current segment and b'' at its end.  next()
    moves to the following segment and returns the number of bytes skipped
    to reach it, raising EndOfInput after the last one.  A fresh decoder is
    positioned at offset 0, so reading before the first next() only yields
    data if the dump starts there.
    """

    def __init__(self, source):
        self._scan = source if isinstance(source, Scanner) else Scanner(source)
        self._labels = Labels()
        self._started = False       # some segment has been activated
        self._done = False          # scanner exhausted
        self._pos = 0               # offset of _buf[0]
        self._buf = bytearray()     # undelivered bytes of the active segment
        self._parked: Optional[Segment] = None

    @property
    def labels(self) -> Labels:
        """Labels seen so far.  Live: grows as decoding proceeds."""
        return self._labels

    def tell(self) -> int:
        """Offset of the next byte read() will return."""
        return self._pos

    def read(self, size: int = -1) -> bytes:
        out = bytearray()
        while size < 0 or len(out) < size:
            if not self._buf:
                if self._parked is not None:
                    if self._started or self._parked.offset != self._pos:
                        break
                    self._activate()
                    continue
                if self._done:
                    break
                try:
                    event = self._pull()
                except EndOfInput:
                    break
                if isinstance(event, Segment):
                    self._buf += event.data
                continue
            n = len(self._buf) if size < 0 else min(size - len(out), len(self._buf))
            out += self._buf[:n]
            del self._buf[:n]
            self._pos += n
        return bytes(out)

    def next(self) -> int:
        """Skip the rest of this segment and move to the next; return the gap size."""
        self._pos += len(self._buf)
        self._buf.clear()
        while self._parked is None:
            event = self._pull()
            if isinstance(event, Segment):
                self._pos += len(event.data)
        return self._activate()

    def segments(self) -> Iterator[Segment]:
        """Yield each following segment whole.  On a fresh decoder that is all of them."""
        while True:
            try:
                self.next()
            except EndOfInput:
                return
            offset = self._pos
            yield Segment(offset, self.read())

    def _activate(self) -> int:
        seg, self._parked = self._parked, None
        gap = seg.offset - self._pos
        self._pos = seg.offset
        self._buf = bytearray(seg.data)
        self._started = True
        return gap

    def _resolve(self, unresolved, start: int):
        for name, rel in unresolved:
            self._labels.set(name, start + rel)

    def _pull(self) -> Union[Segment, Gap]:
        """Scan until bytes continuing the active segment, or a parked segment, are found.

        Returns a Segment of continuation bytes or a Gap announcing the parked
        segment; raises EndOfInput when the input is exhausted.
        """
        if self._done:
            raise EndOfInput("end of input")
        pending = bytearray()
        unresolved: List[Tuple[str, int]] = []
        while True:
            try:
                self._scan.read_line()
            except EndOfInput:
                self._done = True
                if self._started:
                    end = self._pos + len(self._buf)
                    self._resolve(unresolved, end)
                    if pending:
                        return Segment(end, bytes(pending))
                raise
            line = self._scan.scan_line()

            if line.label is not None:
                unresolved.append((line.label, len(pending)))
                continue
            if line.offset is None:
                pending += line.data
                continue

            start = line.offset - len(pending)
            end = self._pos + len(self._buf)
            if start < 0 or (self._started and start < end):
                raise OffsetRewind(
                    f"data at 0x{max(start, 0):X} rewinds before 0x{end:X}",
                    self._scan.lineno)
            self._resolve(unresolved, start)
            unresolved = []
            data = bytes(pending) + line.data
            if not self._started or start > end:
                self._parked = Segment(start, data)
                return Gap(start, start - end)
            if data:
                return Segment(start, data)
            pending.clear()


# ============================================================================
# Dumper
#
# Bytes accumulate in a line buffer until the line reaches its target
# width: the rest of the current 16-byte row, cut short at the next label
# so the label can sit on its own line.  A line shows its offset only when
# it starts 16-aligned; otherwise an anchor is owed, and before a seek or
# close the dumper makes sure some later line shows its offset.
#
# 00000010  00 01 02 03 04 05 06 07  08 09 0A 0B 0C 0D 0E 0F  |................|
# ============================================================================

class _LineBuffer:
    """Bytes for the next output line and the offset of the first of them.

    The offset only advances by taking the buffered bytes.  Moving it to
    another offset is allowed only while the buffer is empty.
    """
    __slots__ = ('offset', 'data')

    def __init__(self, offset: int = 0):
        self.offset = offset
        self.data = bytearray()

    @property
    def end(self) -> int:
        return self.offset + len(self.data)

    def fill(self, p, start: int, want: int) -> int:
        """Copy bytes from p[start:] until the buffer holds want bytes."""
        if not 0 <= want <= LINE_WIDTH:
            raise RuntimeError(f"line width {want} out of range")
        n = max(0, min(want - len(self.data), len(p) - start))
        self.data += p[start:start + n]
        return n

    def take(self) -> Tuple[int, bytes]:
        offset, data = self.offset, bytes(self.data)
        self.offset += len(data)
        self.data.clear()
        return offset, data

    def move(self, offset: int):
        if self.data:
            raise RuntimeError(
                f"cannot move to 0x{offset:X} with {len(self.data)} bytes "
                f"buffered at 0x{self.offset:X}")
        self.offset = offset


def _ascii_column(data: bytes) -> str:
    return ''.join(chr(b) if chr(b).isprintable() and b != 0x7C else '.'
                   for b in data)


def render_line(offset: int, data: bytes, force_offset: bool = False) -> str:
    """Render one dump line for data starting at offset.

    An unaligned line keeps its bytes in their row columns and leaves the
    offset blank, unless force_offset is set, in which case the offset is
    shown and the bytes start in the first column.
    """
    skip_left = offset % LINE_WIDTH
    skip_right = LINE_WIDTH - (len(data) + skip_left)
    if force_offset and skip_left:
        skip_right += skip_left
        skip_left = 0

    if skip_left == 0:
        # Offsets must scan back as an even number of digits.
        digits = len(f"{offset:X}")
        width = max(OFFSET_WIDTH, digits + digits % 2)
        parts = [f"{offset:0{width}X}  "]
    else:
        parts = [" " * OFFSET_WIDTH + "  "]
    cells = ["   "] * skip_left + [f"{b:02X} " for b in data] + ["   "] * skip_right
    for i, cell in enumerate(cells):
        parts.append(cell)
        if i == GROUP_WIDTH - 1:
            parts.append(" ")
    parts.append(" " * skip_left)
    parts.append(f" |{_ascii_column(data)}|\n")
    return ''.join(parts)


class Dumper:
    """Writes a hex dump of the bytes written to it, with labels, to a text stream.

    seek() changes the offset of the next write; it takes effect on that
    write, so a seek followed by close() produces nothing.  write(b'') after
    a seek emits the labels at the new offset and an empty anchor line.
    close() finishes partial lines but does not close out.  Not safe for
    concurrent or re-entrant use.
    """

    def __init__(self, out, labels=None):
        if labels is not None and not isinstance(labels, Labels):
            labels = Labels(labels)
        self._out = out
        self._labels = labels if labels is not None else Labels()
        self._line = _LineBuffer()
        self._seek_to: Optional[int] = None
        self._label_floor = 0        # labels below this offset were handled
        self._anchor_owed = False    # some line still needs a later offset line
        self._wrote_anything = False
        self._closed = False

    @property
    def labels(self) -> Labels:
        return self._labels

    def tell(self) -> int:
        if self._seek_to is not None:
            return self._seek_to
        return self._line.end

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        """Set the offset of the next write.  SEEK_CUR and SEEK_END are equivalent."""
        self._check_open()
        if whence in (os.SEEK_CUR, os.SEEK_END):
            offset += self.tell()
        elif whence != os.SEEK_SET:
            raise ValueError(f"invalid whence: {whence!r}")
        if offset < 0:
            raise ValueError(f"negative seek offset: {offset}")
        if offset > MAX_OFFSET:
            raise ValueError(f"seek offset too large: 0x{offset:X}")
        self._seek_to = offset
        return offset

    def write(self, data) -> int:
        """Dump data at the current offset; return the number of bytes consumed."""
        self._check_open()
        with memoryview(data) as view:
            start = self.tell()
            # Every line, including an empty anchor, must start at a valid offset.
            if start + max(len(view), 1) > MAX_OFFSET + 1:
                raise ValueError(
                    f"write of {len(view)} bytes at 0x{start:X} passes "
                    f"offset 0x{MAX_OFFSET:X}")
            self._honor_seek()
            # Even an empty write must leave a trace at close.
            self._anchor_owed = True
            line = self._line
            n = 0
            while n < len(view):
                if not line.data:
                    self._write_labels()
                want = LINE_WIDTH - line.offset % LINE_WIDTH
                # Labels inside the buffered bytes were added too late to cut this line.
                label = next(self._labels.iter_from(max(line.offset + 1, line.end)), None)
                if label is not None and label[0] < line.offset + want:
                    want = label[0] - line.offset
                n += line.fill(view, n, want)
                if len(line.data) == want:
                    # No line can follow one that ends past MAX_OFFSET.
                    last = line.end > MAX_OFFSET
                    self._anchor_owed = not last and line.offset % LINE_WIDTH != 0
                    self._write_line(last)
                    self._wrote_anything = True
        return n

    def close(self):
        """Flush the partial line and any owed anchor.  Further writes fail."""
        if self._closed:
            return
        self._seek_to = None
        self._wrap_up()
        if self._wrote_anything:
            self._write_labels()  # labels at the end of the data
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _check_open(self):
        if self._closed:
            raise ValueError("I/O operation on closed Dumper")

    def _honor_seek(self):
        target, self._seek_to = self._seek_to, None
        if target is None or target == self._line.end:
            return
        self._wrap_up()
        if self._wrote_anything:
            self._out.write("\n")
        self._line.move(target)
        self._label_floor = target

    def _wrap_up(self):
        # No following line will carry an offset, so this one must.
        if self._anchor_owed or self._line.data:
            self._write_labels()
            self._write_line(True)
        self._anchor_owed = False

    def _write_labels(self):
        offset = self._line.offset
        if offset < self._label_floor:
            return
        hit = next(self._labels.iter_from(offset), None)
        if hit is not None and hit[0] == offset:
            self._out.write(''.join(f":{name}\n" for name in hit[1]))
            self._label_floor = offset + 1

    def _write_line(self, force_offset: bool):
        offset, data = self._line.take()
        self._out.write(render_line(offset, data, force_offset))


# ============================================================================
# One-shot helpers
# ============================================================================

def dump(data, offset: int = 0, labels=None) -> str:
    """Return the hex dump of data placed at offset, with optional labels.

    Empty data dumps as nothing unless a label sits at offset, which then
    gets an empty anchor line.
    """
    out = io.StringIO()
    with Dumper(out, labels) as dmp:
        dmp.seek(offset)
        first = next(dmp.labels.iter_from(offset), None)
        if len(data) or (first is not None and first[0] == offset):
            dmp.write(data)
    return out.getvalue()


def load(source) -> Tuple[List[Segment], Labels]:
    """Decode a whole hex dump into its segments and labels."""
    dec = Decoder(source)
    segments = list(dec.segments())
    return segments, dec.labels


def copy(dst: Dumper, src: Decoder) -> int:
    """Re-dump every remaining segment of src into dst; return bytes copied.

    Each segment is read whole before it is written, so labels the decoder
    resolves while reading it are in place when dst reaches them.
    """
    total = 0
    for seg in src.segments():
        dst.seek(seg.offset)
        dst.write(seg.data)
        total += len(seg.data)
    return total


def segment_summary(segments: List[Segment]) -> dict:
    """Return summary statistics for decoded segments."""
    data_bytes = sum(len(s.data) for s in segments)
    gap_bytes = 0
    for prev, cur in zip(segments, segments[1:]):
        gap_bytes += cur.offset - prev.end
    return {
        'num_segments': len(segments),
        'data_bytes': data_bytes,
        'gap_bytes': gap_bytes,
        'start': segments[0].offset if segments else 0,
        'end': segments[-1].end if segments else 0,
    }


# ============================================================================
# File I/O helpers
# ============================================================================

@contextmanager
def mmap_open(path):
    """Memory-map a file for reading.  Yields b'' for empty files."""
    size = os.path.getsize(path)
    if size == 0:
        yield b""
    else:
        with open(path, 'rb') as f:
            mm = mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)
            try:
                yield mm
            finally:
                mm.close()


@contextmanager
def _text_output(path):
    """Open path for writing dump text, or use stdout when path is None."""
    if path is None:
        yield sys.stdout
    else:
        with open(path, 'w', encoding='utf-8', newline='\n') as f:
            yield f


# ============================================================================
# CLI helpers
# ============================================================================

def _parse_offset(s: str) -> int:
    """Parse an offset: decimal, 0x/0o/0b prefixed, or with a k/M/G suffix (binary multipliers)."""
    s = s.strip()
    if not s:
        raise argparse.ArgumentTypeError("empty offset value")
    multipliers = {'k': 1 << 10, 'K': 1 << 10, 'm': 1 << 20, 'M': 1 << 20,
                   'g': 1 << 30, 'G': 1 << 30}
    scale = 1
    if s[-1] in multipliers:
        scale = multipliers[s[-1]]
        s = s[:-1]
    try:
        value = int(s, 0) * scale
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid offset: {s!r}") from None
    if not 0 <= value <= MAX_OFFSET:
        raise argparse.ArgumentTypeError(f"offset out of range: {value}")
    return value


def _parse_label(s: str) -> Tuple[str, int]:
    """Parse NAME=OFFSET."""
    name, sep, value = s.partition('=')
    if not sep:
        raise argparse.ArgumentTypeError(f"expected NAME=OFFSET, got {s!r}")
    offset = _parse_offset(value)
    try:
        _check_label(name, offset)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None
    return name, offset


# ============================================================================
# CLI
# ============================================================================

def cmd_dump(args):
    labels = Labels(dict(args.label))
    t0 = time.time()
    with mmap_open(args.input) as data, _text_output(args.output) as out:
        with Dumper(out, labels) as dmp:
            dmp.seek(args.offset)
            for pos in range(0, len(data), CHUNK_SIZE):
                dmp.write(data[pos:pos + CHUNK_SIZE])
        size = len(data)
    elapsed = time.time() - t0

    if args.verbose:
        print(f"Input:        {args.input} ({size:,} bytes)", file=sys.stderr)
        print(f"Offsets:      0x{args.offset:X} .. 0x{args.offset + size:X}",
              file=sys.stderr)
        print(f"Labels:       {len(labels)}", file=sys.stderr)
        print(f"Time:         {elapsed:.3f}s", file=sys.stderr)


def cmd_load(args):
    t0 = time.time()
    segments = []
    end = 0
    with open(args.input, 'rb') as src, open(args.output, 'wb') as dst:
        dec = Decoder(src)
        for seg in dec.segments():
            pos = seg.offset - args.base
            if pos < 0:
                raise SystemExit(
                    f"error: segment at 0x{seg.offset:X} lies before "
                    f"--base 0x{args.base:X}")
            dst.seek(pos)
            dst.write(seg.data)
            end = max(end, pos + len(seg.data))
            segments.append(seg)
            if args.verbose:
                print(f"  segment 0x{seg.offset:X}: {len(seg.data):,} bytes",
                      file=sys.stderr)
        dst.truncate(end)
        labels = dec.labels
    elapsed = time.time() - t0

    stats = segment_summary(segments)
    print(f"Dump:         {args.input}")
    print(f"Output:       {args.output} ({end:,} bytes)")
    print(f"Segments:     {stats['num_segments']}")
    print(f"Data bytes:   {stats['data_bytes']:,}")
    print(f"Gap bytes:    {stats['gap_bytes']:,}")
    print(f"Labels:       {len(labels)}")
    print(f"Time:         {elapsed:.3f}s")


def cmd_info(args):
    with open(args.input, 'rb') as f:
        segments, labels = load(f)

    stats = segment_summary(segments)
    print(f"Dump:         {args.input}")
    print(f"Segments:     {stats['num_segments']}")
    print(f"Data bytes:   {stats['data_bytes']:,}")
    print(f"Gap bytes:    {stats['gap_bytes']:,}")
    print(f"Range:        0x{stats['start']:X} .. 0x{stats['end']:X}")
    for seg in segments:
        print(f"  0x{seg.offset:08X}  {len(seg.data):,} bytes")
    print(f"Labels:       {len(labels)}")
    for offset, names in labels.iter_from(0):
        for name in names:
            print(f"  0x{offset:08X}  {name}")


def main(argv=None):
    ap = argparse.ArgumentParser(
        description='Labeled hex dumps of sparse binary data')
    sub = ap.add_subparsers(dest='command')

    # dump
    dmp = sub.add_parser('dump', help='Render a binary file as a hex dump')
    dmp.add_argument('input', help='Binary input file')
    dmp.add_argument('output', nargs='?', help='Dump output file (default: stdout)')
    dmp.add_argument('--offset', type=_parse_offset, default=0, metavar='N',
                     help='Offset of the first byte (0x prefix, k/M/G suffix)')
    dmp.add_argument('--label', type=_parse_label, action='append', default=[],
                     metavar='NAME=OFFSET', help='Label an offset (repeatable)')
    dmp.add_argument('--verbose', action='store_true',
                     help='Print diagnostic messages to stderr')
    dmp.set_defaults(func=cmd_dump)

    # load
    ld = sub.add_parser('load', help='Rebuild a binary file from a hex dump')
    ld.add_argument('input', help='Dump input file')
    ld.add_argument('output', help='Binary output file')
    ld.add_argument('--base', type=_parse_offset, default=0, metavar='N',
                    help='Subtract N from every offset')
    ld.add_argument('--verbose', action='store_true',
                    help='List segments on stderr')
    ld.set_defaults(func=cmd_load)

    # info
    inf = sub.add_parser('info', help='Show segments and labels of a hex dump')
    inf.add_argument('input', help='Dump input file')
    inf.set_defaults(func=cmd_info)

    args = ap.parse_args(argv)
    if args.command is None:
        ap.print_help()
        sys.exit(1)
    try:
        args.func(args)
    except (LhexError, OSError) as e:
        raise SystemExit(f"error: {e}")


# ============================================================================

if __name__ == '__main__':
    main()
