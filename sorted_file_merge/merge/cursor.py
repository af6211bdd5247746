"""
Merge cursors - one per input file, holding the single line awaiting output.
"""

from typing import NamedTuple, Optional

from sorted_file_merge.errors import LineError
from sorted_file_merge.keys.extract import extract_key, validate_extraction
from sorted_file_merge.keys.key_types import Key, KeyType
from sorted_file_merge.merge.line_source import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_ENCODING,
    LineSource,
)
from sorted_file_merge.utils import TRACE, WARNING, log_progress, log_warning


class LineRecord(NamedTuple):
    """One input line exactly as read, with its merge key and 1-based line number."""

    line: str
    key: Key
    line_number: int


class MergeCursor:
    """
    Iteration state of one input file during a merge.

    The cursor reads its first line on construction and from then on holds at
    most one LineRecord, the one the merge has not emitted yet. It never reads
    further ahead, which keeps merge memory proportional to the number of
    files rather than their size.

    Lines whose key cannot be extracted raise MalformedLine / KeyParseError
    (tagged with path and line number). With skip_invalid=True they are
    skipped instead, with a warning on stderr, and counted in ``skipped``.
    """

    def __init__(
        self,
        source: LineSource,
        delimiter: str,
        column_index: int,
        key_type: KeyType,
        skip_invalid: bool = False,
        verbosity: int = WARNING,
    ):
        validate_extraction(delimiter, column_index)
        self.source = source
        self.delimiter = delimiter
        self.column_index = column_index
        self.key_type = key_type
        self.skip_invalid = skip_invalid
        self.verbosity = verbosity
        self.skipped = 0
        self._current: Optional[LineRecord] = None
        self.advance()

    @classmethod
    def open(
        cls,
        path: str,
        delimiter: str,
        column_index: int,
        key_type: KeyType,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        encoding: str = DEFAULT_ENCODING,
        skip_invalid: bool = False,
        verbosity: int = WARNING,
    ) -> "MergeCursor":
        """Open a file and return a cursor positioned on its first valid line."""
        source = LineSource(path, buffer_size=buffer_size, encoding=encoding)
        try:
            return cls(source, delimiter, column_index, key_type, skip_invalid, verbosity)
        except BaseException:
            source.close()
            raise

    @property
    def path(self) -> str:
        return self.source.path

    @property
    def current(self) -> Optional[LineRecord]:
        return self._current

    @property
    def exhausted(self) -> bool:
        return self._current is None

    def peek(self) -> Optional[Key]:
        """Return the key of the buffered line, or None once the file is exhausted."""
        if self._current is None:
            return None
        return self._current.key

    def advance(self):
        """Drop the buffered line and buffer the next one (if any)."""
        self._current = None
        while True:
            line = self.source.read_line()
            if line is None:
                return
            try:
                key = extract_key(line, self.delimiter, self.column_index, self.key_type)
            except LineError as e:
                error = e.with_location(self.source.path, self.source.line_number)
                if not self.skip_invalid:
                    raise error from None
                self.skipped += 1
                log_warning(f"Skipping line: {error}", self.verbosity)
                continue

            log_progress(
                f"[TRACE] {self.source.path}:{self.source.line_number} key={key.value!r}",
                self.verbosity,
                level=TRACE,
            )
            self._current = LineRecord(line, key, self.source.line_number)
            return

    def fast_forward(self, key_start: Key):
        """Advance until the buffered key is >= key_start (files are sorted)."""
        while self._current is not None and self._current.key < key_start:
            self.advance()

    def close(self):
        self._current = None
        self.source.close()

    def __repr__(self):
        return f"MergeCursor({self.path!r}, current={self.peek()!r})"
