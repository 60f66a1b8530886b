# evewatch/reader.py
import codecs
import logging
from typing import Iterable, Iterator, List

from .classifier import Classification, classify_line
from .config import ALLOWED_EVENT_TYPES
from .errors import ClassificationError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
MAX_PENDING = 1024 * 1024  # 1 MB cap on an unterminated line


class LineFramer:
    """
    Split a stream of appended bytes into complete lines.

    Whatever follows the last newline is kept in `pending` and glued onto
    the next chunk. Bytes of a multi-byte character cut off at the end of
    a chunk are held back until the rest arrives.
    """

    def __init__(self, pending: str = "", pending_bytes: bytes = b"",
                 max_pending: int = MAX_PENDING):
        self.pending = pending
        self.max_pending = max_pending
        self.bytes_fed = 0
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        if pending_bytes:
            self._decoder.setstate((pending_bytes, 0))

    @property
    def pending_bytes(self) -> bytes:
        return self._decoder.getstate()[0]

    def feed_bytes(self, data: bytes) -> List[str]:
        self.bytes_fed += len(data)
        return self.feed(self._decoder.decode(data))

    def feed(self, text: str) -> List[str]:
        parts = (self.pending + text).split("\n")
        self.pending = parts.pop()

        if self.max_pending and len(self.pending) > self.max_pending:
            logger.warning(
                "Dropping unterminated line fragment of %d chars", len(self.pending))
            self.pending = ""

        lines = []
        for part in parts:
            part = part.rstrip("\r")
            if not part.strip():
                continue
            lines.append(part)
        return lines


def iter_range(path, start: int, end: int, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield the bytes of [start, end) in chunks. Stops early if the file got shorter."""
    remaining = end - start
    if remaining <= 0:
        return
    with open(path, "rb") as f:
        f.seek(start)
        while remaining > 0:
            data = f.read(min(chunk_size, remaining))
            if not data:
                break
            remaining -= len(data)
            yield data


def read_lines(path, start: int, end: int, framer: LineFramer,
               chunk_size: int = CHUNK_SIZE) -> Iterator[str]:
    """
    Yield complete lines found in [start, end) of path.

    framer carries the partial line in from the previous range and out to
    the next one; framer.bytes_fed tells how much was actually read.
    """
    for chunk in iter_range(path, start, end, chunk_size):
        yield from framer.feed_bytes(chunk)


def classify_lines(lines: Iterable[str],
                   allowed_types: Iterable[str] = ALLOWED_EVENT_TYPES) -> Iterator[Classification]:
    """
    Classify each line, skipping the ones we don't track.

    A bad line is logged and skipped, the rest of the batch still goes through.
    """
    allowed = frozenset(allowed_types)
    for line in lines:
        try:
            result = classify_line(line, allowed)
        except ClassificationError as e:
            logger.warning("Skipping line: %s: %.200s", e, line)
            continue
        if result:
            yield result
