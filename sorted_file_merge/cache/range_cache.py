"""
Range cache - per-file min/max merge keys for pruning range merges
==================================================================

A range cache records, for every candidate file, the smallest and largest
merge key it contains. A later merge restricted to a key range can then open
only the files whose [min, max] interval intersects the requested range,
instead of scanning every shard.

LIFECYCLE
=========

    # Build once (full scan of every file), then persist atomically
    cache = RangeCache.build(files, "\\t", 0, KeyType.UNSIGNED_32_INTEGER)
    cache.save("shards.cache")

    # Later runs: load and select files for [1000, 2000)
    cache = RangeCache.load("shards.cache")
    start = KeyType.UNSIGNED_32_INTEGER.parse("1000")
    end = KeyType.UNSIGNED_32_INTEGER.parse("2000")
    files = [entry.path for entry in cache.query(KeyType.UNSIGNED_32_INTEGER, start, end)]

A cache is not refreshed automatically when its files change: rebuild it
after modifying shards. load(verify_sizes=True) drops entries whose file is
gone or whose size differs from the size recorded at build time.

CACHE FILE FORMAT (version 1)
=============================

UTF-8 JSON lines. The first line is a header, each following line one entry:

    {"format": "sorted-file-merge-cache", "version": 1, "entries": 2}
    {"path": "/data/a.tsv", "key_type": "Unsigned32Integer", "min_key": 1, "max_key": 10, "size": 42}
    {"path": "/data/empty.tsv", "key_type": "Unsigned32Integer", "min_key": null, "max_key": null, "size": 0}

Integer keys are JSON numbers and string keys JSON strings, so the file
round-trips exactly. A file without any valid key has null bounds and never
matches a query.
"""

import json
import os
import stat
import tempfile
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sorted_file_merge.errors import CacheBuildError, CacheLoadError, LineError
from sorted_file_merge.keys.extract import extract_key, validate_extraction
from sorted_file_merge.keys.key_types import Key, KeyType
from sorted_file_merge.merge.line_source import DEFAULT_BUFFER_SIZE, DEFAULT_ENCODING, LineSource
from sorted_file_merge.utils import DEBUG, WARNING, log_progress, log_warning

CACHE_FORMAT = "sorted-file-merge-cache"
CACHE_VERSION = 1


@dataclass(frozen=True)
class CacheEntry:
    """Observed key range of one file. min_key / max_key are None for files without keys."""

    path: str
    key_type: KeyType
    min_key: Optional[Key]
    max_key: Optional[Key]
    size: int

    @property
    def has_range(self) -> bool:
        return self.min_key is not None

    def intersects(self, key_start: Optional[Key], key_end: Optional[Key]) -> bool:
        """True if [min_key, max_key] intersects [key_start, key_end); None bounds are open."""
        if not self.has_range:
            return False
        if key_end is not None and not self.min_key < key_end:
            return False
        if key_start is not None and not self.max_key >= key_start:
            return False
        return True

    def to_json(self) -> str:
        return json.dumps(
            {
                "path": self.path,
                "key_type": self.key_type.value,
                "min_key": None if self.min_key is None else self.min_key.value,
                "max_key": None if self.max_key is None else self.max_key.value,
                "size": self.size,
            },
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, text: str) -> "CacheEntry":
        """
        Parse one entry line.

        Raises:
            ValueError: If the line is not a valid entry
        """
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("entry is not a JSON object")

        path = data["path"]
        if not isinstance(path, str):
            raise ValueError(f"path {path!r} is not a string")
        try:
            key_type = KeyType(data["key_type"])
        except ValueError:
            raise ValueError(f"unknown key type {data['key_type']!r}") from None
        size = data["size"]
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise ValueError(f"size {size!r} is not a non-negative integer")

        min_value, max_value = data["min_key"], data["max_key"]
        if (min_value is None) != (max_value is None):
            raise ValueError("min_key and max_key must both be set or both be null")
        if min_value is None:
            return cls(path, key_type, None, None, size)

        min_key = key_type.from_value(min_value)
        max_key = key_type.from_value(max_value)
        if max_key < min_key:
            raise ValueError(f"min_key {min_value!r} is greater than max_key {max_value!r}")
        return cls(path, key_type, min_key, max_key, size)


def _cache_file_mode(path: str) -> int:
    """Permissions for a (re)written cache: those of the file it replaces, else 0666 & ~umask."""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def _file_size(path: str) -> int:
    if path == "-":
        return 0
    return os.path.getsize(path)


def scan_file(
    path: str,
    delimiter: str,
    column_index: int,
    key_type: KeyType,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    encoding: str = DEFAULT_ENCODING,
    skip_invalid: bool = False,
    verbosity: int = WARNING,
) -> CacheEntry:
    """
    Scan every line of one file and record its smallest and largest key.

    The running minimum and maximum are tracked over all lines, so the result
    is correct even for a file that is not sorted.

    Raises:
        OSError: If the file cannot be opened or read
        EOFError: If a compressed file is truncated
        LineError: On a bad line when skip_invalid is False
    """
    size = _file_size(path)
    min_key = max_key = None
    skipped = 0

    with LineSource(path, buffer_size=buffer_size, encoding=encoding) as source:
        for line in source:
            try:
                key = extract_key(line, delimiter, column_index, key_type)
            except LineError as e:
                error = e.with_location(path, source.line_number)
                if not skip_invalid:
                    raise error from None
                skipped += 1
                log_warning(f"Skipping line: {error}", verbosity)
                continue
            if min_key is None or key < min_key:
                min_key = key
            if max_key is None or key > max_key:
                max_key = key

    if min_key is None:
        log_warning(f"{path} has no valid keys, it will never be selected", verbosity)
        key_range = "no keys"
    else:
        key_range = f"{min_key.value!r} -> {max_key.value!r}"
    if skipped:
        key_range += f" ({skipped} lines skipped)"
    log_progress(f"[CACHE] {path}: {key_range}", verbosity, level=DEBUG)
    return CacheEntry(path, key_type, min_key, max_key, size)


class RangeCache:
    """
    Ordered list of CacheEntry objects with build / save / load / query.

    There is no global cache instance: callers build or load a RangeCache and
    pass it where it is needed. A loaded cache is never modified.
    """

    def __init__(self, entries: Optional[Iterable[CacheEntry]] = None):
        self.entries: List[CacheEntry] = list(entries or [])

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __eq__(self, other):
        if not isinstance(other, RangeCache):
            return NotImplemented
        return self.entries == other.entries

    @classmethod
    def build(
        cls,
        files: Iterable[str],
        delimiter: str,
        column_index: int,
        key_type: KeyType,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        encoding: str = DEFAULT_ENCODING,
        skip_invalid: bool = False,
        verbosity: int = WARNING,
    ) -> "RangeCache":
        """
        Build a cache by fully scanning every file.

        The build is all-or-nothing: if any file cannot be opened or read, or
        a line fails key extraction while skip_invalid is False, a
        CacheBuildError is raised and no cache is returned.

        Raises:
            ConfigError: On an invalid delimiter / column index
            CacheBuildError: If any file cannot be scanned
        """
        validate_extraction(delimiter, column_index)
        entries = []
        for path in files:
            try:
                entries.append(
                    scan_file(
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
            except (OSError, EOFError, UnicodeDecodeError) as e:
                raise CacheBuildError(f"Cannot scan {path}: {e}") from e
            except LineError as e:
                raise CacheBuildError(f"Cannot build cache: {e}") from e

        log_progress(f"[CACHE] Scanned {len(entries)} files", verbosity)
        return cls(entries)

    def save(self, path: str):
        """
        Write the cache to path atomically.

        The cache is written to a temporary file next to path and moved over
        it with os.replace(), so an existing cache is either fully replaced or
        left untouched.
        """
        directory = os.path.dirname(os.path.abspath(path))
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=directory
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                header = {"format": CACHE_FORMAT, "version": CACHE_VERSION, "entries": len(self)}
                fh.write(json.dumps(header) + "\n")
                for entry in self.entries:
                    fh.write(entry.to_json() + "\n")
            os.chmod(tmp_path, _cache_file_mode(path))
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    @classmethod
    def load(
        cls, path: str, verify_sizes: bool = False, verbosity: int = WARNING
    ) -> "RangeCache":
        """
        Load a cache written by save().

        Args:
            path: Cache file path
            verify_sizes: Drop (with a warning) entries whose file is missing
                or whose size changed since the cache was built
            verbosity: Verbosity level for stderr messages

        Raises:
            CacheLoadError: If the file cannot be read or is not a valid cache
        """
        try:
            with open(path, "r", encoding="utf-8") as fh:
                lines = [line for line in fh if line.strip()]
        except (OSError, UnicodeDecodeError) as e:
            raise CacheLoadError(f"Cannot read cache file {path}: {e}") from e

        if not lines:
            raise CacheLoadError(f"{path} is empty, not a cache file")
        try:
            header = json.loads(lines[0])
        except json.JSONDecodeError as e:
            raise CacheLoadError(f"{path}: invalid cache header: {e}") from e
        if not isinstance(header, dict) or header.get("format") != CACHE_FORMAT:
            raise CacheLoadError(f"{path} is not a {CACHE_FORMAT} file")
        if header.get("version") != CACHE_VERSION:
            raise CacheLoadError(
                f"{path}: unsupported cache version {header.get('version')!r} "
                f"(expected {CACHE_VERSION})"
            )

        entries = []
        for line_number, line in enumerate(lines[1:], start=2):
            try:
                entries.append(CacheEntry.from_json(line))
            except (ValueError, KeyError, TypeError) as e:
                raise CacheLoadError(f"{path}:{line_number}: invalid cache entry: {e}") from e

        expected = header.get("entries")
        if expected is not None and expected != len(entries):
            raise CacheLoadError(
                f"{path}: header announces {expected} entries but {len(entries)} were found"
            )

        log_progress(f"[CACHE] Loaded {len(entries)} entries from {path}", verbosity)

        if verify_sizes:
            entries = [entry for entry in entries if _entry_is_current(entry, verbosity)]
        return cls(entries)

    def query(
        self,
        key_type: KeyType,
        key_start: Optional[Key] = None,
        key_end: Optional[Key] = None,
        verbosity: int = WARNING,
    ) -> List[CacheEntry]:
        """
        Select the entries whose key range intersects [key_start, key_end).

        An entry matches when ``min_key < key_end and max_key >= key_start``;
        a missing bound is unbounded. Entries of another key type are left
        out with a warning. Entries without a range never match.

        Returns:
            Matching entries, in cache order
        """
        selected = []
        for entry in self.entries:
            if entry.key_type is not key_type:
                log_warning(
                    f"Ignoring cache entry {entry.path}: built with {entry.key_type.value} "
                    f"keys, query uses {key_type.value}",
                    verbosity,
                )
                continue
            if entry.intersects(key_start, key_end):
                selected.append(entry)
        log_progress(
            f"[CACHE] Selected {len(selected)} of {len(self.entries)} files", verbosity
        )
        return selected


def _entry_is_current(entry: CacheEntry, verbosity: int) -> bool:
    try:
        ondisk_size = os.path.getsize(entry.path)
    except OSError:
        log_warning(f"Skipping cache entry for {entry.path} as it doesn't exist", verbosity)
        return False
    if ondisk_size != entry.size:
        log_warning(
            f"Skipping cache entry for {entry.path} as its size is wrong "
            f"({ondisk_size} != {entry.size})",
            verbosity,
        )
        return False
    return True
