#!/usr/bin/env python3
"""
file-merge - Merge files sorted on a key column, with an optional range cache
=============================================================================

Takes a series of delimited files that are each sorted on one column (the
merge key) and merges them into a single sorted stream. Files are read
line-by-line, so memory use depends on the number of files, not their size.

COMMAND-LINE USAGE
==================

After installing: pip install -e .
The command 'file-merge' becomes available globally.

Merge every matching file directly:

    # Tab-separated shards sorted numerically on column 0, to stdout
    file-merge --glob '/data/part-*.tsv.gz' --delimiter tsv --key-index 0 \\
        --key-type Unsigned32Integer

    # Only keys in [12345, 12347), to a file
    file-merge --glob '/data/part-*.tsv' --delimiter tsv --key-index 0 \\
        --key-type Unsigned32Integer --key-start 12345 --key-end 12347 -o out.tsv

Use a range cache to skip files outside the key range:

    # 1. Build the cache (scans every file once, does not merge)
    file-merge --glob '/data/part-*.tsv.gz' --cache-file parts.cache \\
        --delimiter tsv --key-index 0 --key-type Unsigned32Integer

    # 2. Merge only the files whose [min, max] key overlaps the range
    file-merge --cache-file parts.cache --delimiter tsv --key-index 0 \\
        --key-type Unsigned32Integer --key-start 12345 --key-end 12347

Settings can also come from a YAML file (--config-file), see settings.py.

EXIT CODES
==========

    0    success
    1    configuration, input, key or cache error (reported on stderr)
    130  interrupted by user
"""

import os
import sys

from sorted_file_merge.cache.range_cache import RangeCache
from sorted_file_merge.discovery import discover_files
from sorted_file_merge.errors import ConfigError, FileMergeError
from sorted_file_merge.merge.merge_sorted_files import merge_sorted_files
from sorted_file_merge.settings import (
    MODE_BUILD_CACHE,
    MODE_MERGE_FROM_CACHE,
    MergeSettings,
    load_settings,
)
from sorted_file_merge.utils import log_error, log_progress


def build_cache(settings: MergeSettings) -> int:
    """Scan the globbed files and write the range cache. Returns the number of entries."""
    files = discover_files(list(settings.globs), list(settings.exclude_patterns), settings.verbosity)
    if not files:
        raise ConfigError("No files to cache after applying globs and exclusions")

    cache = RangeCache.build(
        files,
        settings.delimiter,
        settings.key_index,
        settings.key_type,
        buffer_size=settings.buffer_size,
        skip_invalid=settings.skip_invalid,
        verbosity=settings.verbosity,
    )
    cache.save(settings.cache_path)
    log_progress(
        f"[CACHE] Wrote {len(cache)} entries to {settings.cache_path}", settings.verbosity
    )
    return len(cache)


def select_files(settings: MergeSettings):
    """Return the files to merge, from the range cache or from the globs."""
    if settings.mode == MODE_MERGE_FROM_CACHE:
        cache = RangeCache.load(
            settings.cache_path, verify_sizes=settings.verify_cache, verbosity=settings.verbosity
        )
        entries = cache.query(
            settings.key_type, settings.key_start, settings.key_end, verbosity=settings.verbosity
        )
        return [entry.path for entry in entries]

    files = discover_files(list(settings.globs), list(settings.exclude_patterns), settings.verbosity)
    if not files:
        raise ConfigError("No files to merge after applying globs and exclusions")
    return files


def run(settings: MergeSettings) -> int:
    """Run the operation selected by the settings. Returns the number of lines/entries."""
    if settings.mode == MODE_BUILD_CACHE:
        return build_cache(settings)

    files = select_files(settings)
    if settings.key_end is not None:
        log_progress(f"[MERGE] Beginning merge -> {settings.key_end.value!r}", settings.verbosity)
    else:
        log_progress("[MERGE] Beginning merge -> EOF", settings.verbosity)

    return merge_sorted_files(
        files,
        settings.output,
        settings.delimiter,
        settings.key_index,
        settings.key_type,
        key_start=settings.key_start,
        key_end=settings.key_end,
        buffer_size=settings.buffer_size,
        skip_invalid=settings.skip_invalid,
        verbosity=settings.verbosity,
    )


def main(argv=None) -> int:
    """Main entry point for command-line usage."""
    try:
        settings = load_settings(argv)
        run(settings)
    except BrokenPipeError:
        # Downstream closed the pipe (e.g. "| head"); stop quietly
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        return 0
    except KeyboardInterrupt:
        print("\n# Interrupted by user", file=sys.stderr)
        return 130
    except (FileMergeError, OSError, EOFError, UnicodeDecodeError) as e:
        log_error(e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
