"""
Merge Sorted Files - Efficient k-way merge of delimited files sorted on a key column

This module merges multiple files that are each sorted on one key column into a
single sorted output using a min-heap based k-way merge. It is optimized for
large files: files are read line-by-line and never loaded into memory.

Usage Examples:
    from sorted_file_merge.keys import KeyType
    from sorted_file_merge.merge import merge_sorted_files

    # Merge two tab-separated files sorted numerically on the first column
    merge_sorted_files(
        ["part-0001.tsv", "part-0002.tsv.gz"],
        "merged.tsv",
        delimiter="\\t",
        column_index=0,
        key_type=KeyType.UNSIGNED_32_INTEGER,
    )

    # Only keep keys in [1000, 2000), write to stdout
    merge_sorted_files(files, "-", ",", 2, KeyType.SIGNED_32_INTEGER,
                       key_start=start_key, key_end=end_key)

    # Lazy merge over already opened cursors
    for record in merge_cursors(cursors, KeyType.STRING):
        print(record.line, end="")

Requirements:
    - Every input file must be sorted (non-decreasing) on the key column
    - All inputs share the same delimiter, key column and key type

    An unsorted input is not detected: the output is then only sorted up to
    the first out-of-order line of that file.

Ordering:
    - Integer keys compare numerically, string keys by codepoint
    - Lines with equal keys are emitted in input file order, so merging the
      same files in the same order always gives byte-identical output

Performance:
    - Time Complexity: O(N log k) where N is total lines, k is number of files
    - Space Complexity: O(k) - one buffered line per file
"""

import heapq
import sys
from typing import Iterable, Iterator, List, Optional

from sorted_file_merge.errors import KeyTypeMismatch
from sorted_file_merge.keys.key_types import Key, KeyType
from sorted_file_merge.merge.cursor import LineRecord, MergeCursor
from sorted_file_merge.merge.line_source import DEFAULT_BUFFER_SIZE, DEFAULT_ENCODING
from sorted_file_merge.utils import DEBUG, WARNING, log_progress, log_warning


def _check_key_type(key: Key, key_type: KeyType, cursor: MergeCursor):
    if key.key_type is not key_type:
        raise KeyTypeMismatch(
            f"{cursor.path} produced a {key.key_type.value} key ({key.value!r}) "
            f"but the merge uses {key_type.value} keys"
        )


def merge_cursors(
    cursors: Iterable[MergeCursor],
    key_type: Optional[KeyType] = None,
    key_start: Optional[Key] = None,
    key_end: Optional[Key] = None,
) -> Iterator[LineRecord]:
    """
    Lazily merge cursors into one sequence of LineRecords ordered by key.

    Args:
        cursors: Merge cursors, in input order (input order breaks key ties)
        key_type: Key type of the merge; defaults to the type of the first key seen
        key_start: Only emit lines with key >= key_start (optional)
        key_end: Stop before the first line with key >= key_end (optional)

    Yields:
        LineRecord: The globally smallest pending line, one at a time

    Raises:
        KeyTypeMismatch: If a cursor yields a key of another key type

    Algorithm:
        1. Fast-forward every cursor to key_start
        2. Push (key, input_position) of each non-exhausted cursor onto a heap
        3. Emit the record of the cursor at the top of the heap and advance it
        4. Replace its heap entry with its next key, or drop it when exhausted
        5. Continue until the heap is empty or the smallest key reaches key_end

    All cursors are closed when the merge finishes, fails, or when the caller
    stops consuming the generator.
    """
    cursors = list(cursors)
    # Heap elements are tuples: (key, input_position, cursor)
    # input_position is unique, so cursors themselves are never compared
    heap = []
    try:
        for position, cursor in enumerate(cursors):
            if key_start is not None:
                cursor.fast_forward(key_start)
            key = cursor.peek()
            if key is None:
                continue
            if key_type is None:
                key_type = key.key_type
            _check_key_type(key, key_type, cursor)
            heapq.heappush(heap, (key, position, cursor))

        while heap:
            key, position, cursor = heap[0]
            if key_end is not None and key >= key_end:
                break

            yield cursor.current

            cursor.advance()
            next_key = cursor.peek()
            if next_key is None:
                heapq.heappop(heap)
            else:
                _check_key_type(next_key, key_type, cursor)
                heapq.heapreplace(heap, (next_key, position, cursor))
    finally:
        for cursor in cursors:
            cursor.close()


def open_cursors(
    files: Iterable[str],
    delimiter: str,
    column_index: int,
    key_type: KeyType,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    encoding: str = DEFAULT_ENCODING,
    skip_invalid: bool = False,
    verbosity: int = WARNING,
) -> List[MergeCursor]:
    """
    Open one MergeCursor per file, in order.

    If any file fails to open (or its first line fails key extraction), the
    cursors opened so far are closed and the error propagates.
    """
    cursors = []
    try:
        for path in files:
            log_progress(f"[MERGE] Opening {path}", verbosity, level=DEBUG)
            cursors.append(
                MergeCursor.open(
                    path,
                    delimiter,
                    column_index,
                    key_type,
                    buffer_size=buffer_size,
                    encoding=encoding,
                    skip_invalid=skip_invalid,
                    verbosity=verbosity,
                )
            )
    except BaseException:
        for cursor in cursors:
            cursor.close()
        raise
    return cursors


def _write_records(records: Iterable[LineRecord], out) -> int:
    lines_written = 0
    for record in records:
        line = record.line
        # A last line without terminator must not be glued to the next file's line
        if not line.endswith("\n"):
            line += "\n"
        out.write(line)
        lines_written += 1
    return lines_written


def merge_sorted_files(
    files: List[str],
    output_file: str,
    delimiter: str,
    column_index: int,
    key_type: KeyType = KeyType.STRING,
    key_start: Optional[Key] = None,
    key_end: Optional[Key] = None,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    encoding: str = DEFAULT_ENCODING,
    skip_invalid: bool = False,
    verbosity: int = WARNING,
) -> int:
    """
    Merge multiple files sorted on a key column into a single sorted output file.

    Args:
        files: List of paths to sorted input files (.gz / .bz2 are decompressed)
        output_file: Path where the merged output will be written, or '-' for stdout
        delimiter: Single column separator character
        column_index: 0-based index of the key column
        key_type: Key type of the key column (default: String)
        key_start: Lower bound (inclusive) of keys to output (optional)
        key_end: Upper bound (exclusive) of keys to output (optional)
        buffer_size: Buffer size in bytes for file I/O operations (default: 1MB)
        encoding: Text encoding of inputs and output (default: utf-8)
        skip_invalid: Skip lines whose key cannot be extracted instead of failing
        verbosity: Verbosity level for stderr progress messages

    Returns:
        int: Number of lines written

    Raises:
        MalformedLine / KeyParseError: On a bad line when skip_invalid is False
        KeyTypeMismatch: If key bounds and keys have different key types
        OSError: If any input cannot be opened or read (no file is silently dropped)
        EOFError: If a compressed input is truncated
    """
    log_progress(f"[MERGE] Starting merge of {len(files)} files...", verbosity)
    cursors = open_cursors(
        files,
        delimiter,
        column_index,
        key_type,
        buffer_size=buffer_size,
        encoding=encoding,
        skip_invalid=skip_invalid,
        verbosity=verbosity,
    )
    records = merge_cursors(cursors, key_type, key_start=key_start, key_end=key_end)

    try:
        # Use stdout if output_file is '-', otherwise open a file
        if output_file == "-":
            lines_written = _write_records(records, sys.stdout)
            sys.stdout.flush()
        else:
            with open(
                output_file, "w", buffering=buffer_size, encoding=encoding, newline=""
            ) as out:
                lines_written = _write_records(records, out)
    finally:
        # merge_cursors only closes cursors once it has started
        for cursor in cursors:
            cursor.close()

    skipped = sum(cursor.skipped for cursor in cursors)
    if skipped:
        log_warning(f"{skipped} invalid line(s) were skipped", verbosity)

    log_progress(f"[MERGE] Complete: {lines_written} lines written", verbosity)
    return lines_written
