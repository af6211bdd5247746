"""
Line sources - forward-only line readers over (possibly compressed) input files.
"""

import bz2
import gzip
import io
import sys
from typing import Iterator, Optional, TextIO

DEFAULT_BUFFER_SIZE = 1024 * 1024
DEFAULT_ENCODING = "utf-8"

# Lines end at "\n" only and are returned untranslated: a "\r\n" terminator is
# kept as is and a lone "\r" stays part of the line's data
LINE_TERMINATOR = "\n"


def open_input_path(
    path: str, buffer_size: int = DEFAULT_BUFFER_SIZE, encoding: str = DEFAULT_ENCODING
) -> TextIO:
    """
    Open input for text reading. Supports '-' (stdin), .gz and .bz2 files.

    Every line is returned exactly as it is stored, terminator included.
    """
    if path == "-":
        return io.TextIOWrapper(sys.stdin.buffer, encoding=encoding, newline=LINE_TERMINATOR)
    if path.endswith(".gz"):
        return gzip.open(path, "rt", encoding=encoding, newline=LINE_TERMINATOR)
    if path.endswith(".bz2"):
        return bz2.open(path, "rt", encoding=encoding, newline=LINE_TERMINATOR)
    return open(path, "r", buffering=buffer_size, encoding=encoding, newline=LINE_TERMINATOR)


class LineSource:
    """
    Reads successive raw lines from one input file.

    A LineSource can be consumed once: after read_line() has returned None the
    underlying file is closed and the source stays exhausted.

    Example:
        >>> with LineSource("shard-01.tsv.gz") as source:
        ...     for line in source:
        ...         handle(line)
    """

    def __init__(
        self,
        path: str,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        encoding: str = DEFAULT_ENCODING,
    ):
        self.path = path
        self.line_number = 0
        self.exhausted = False
        self._fh: Optional[TextIO] = open_input_path(path, buffer_size, encoding)

    def read_line(self) -> Optional[str]:
        """Return the next line (terminator included), or None at end of stream."""
        if self.exhausted:
            return None
        line = self._fh.readline()
        if not line:
            self.exhausted = True
            self.close()
            return None
        self.line_number += 1
        return line

    def close(self):
        if self._fh is not None:
            if self.path == "-":
                # Leave the process stdin open
                self._fh.detach()
            else:
                self._fh.close()
            self._fh = None
        self.exhausted = True

    def __iter__(self) -> Iterator[str]:
        while True:
            line = self.read_line()
            if line is None:
                return
            yield line

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def __repr__(self):
        return f"LineSource({self.path!r}, line_number={self.line_number})"
