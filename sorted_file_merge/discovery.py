"""
File discovery - expand glob patterns, files and directories into input files.
"""

import fnmatch
import glob
import os
from typing import List, Optional

from sorted_file_merge.utils import DEBUG, INFO, WARNING, log_progress, log_warning


def should_exclude(filename, exclude_patterns):
    """
    Check if a filename matches any exclusion pattern.

    Args:
        filename: Name of the file to check (basename only)
        exclude_patterns: List of glob-style patterns to match against

    Returns:
        tuple: (should_exclude: bool, matched_pattern: str or None)
               Returns (True, pattern) if file matches any pattern, (False, None) otherwise
    """
    if not exclude_patterns:
        return False, None

    basename = os.path.basename(filename)
    for pattern in exclude_patterns:
        if fnmatch.fnmatch(basename, pattern):
            return True, pattern
    return False, None


def _expand_pattern(pattern: str) -> List[str]:
    if os.path.isfile(pattern):
        return [pattern]
    if os.path.isdir(pattern):
        found = []
        for root, _, filenames in os.walk(pattern):
            for filename in filenames:
                found.append(os.path.join(root, filename))
        return sorted(found)
    return sorted(match for match in glob.glob(pattern, recursive=True) if os.path.isfile(match))


def discover_files(
    patterns: List[str],
    exclude_patterns: Optional[List[str]] = None,
    verbosity: int = WARNING,
) -> List[str]:
    """
    Discover input files from glob patterns, plain paths or directories.

    Args:
        patterns: Glob patterns ("/data/part-*.tsv.gz"), file paths or directories
        exclude_patterns: Glob-style patterns matched against file basenames (optional)
        verbosity: Verbosity level for stderr progress messages

    Returns:
        List of absolute file paths. Files keep the order of their patterns and
        are sorted by name within a pattern; duplicates are listed once.

    Note:
        The order matters: lines with equal keys are merged in file order.
        A pattern that matches nothing produces a warning, not an error.
    """
    files = []
    seen = set()
    total_excluded = 0

    for pattern in patterns:
        matched = _expand_pattern(pattern)
        if not matched:
            log_warning(f"Pattern '{pattern}' matched no files", verbosity)
            continue
        log_progress(f"[DISCOVER] {pattern}: {len(matched)} files", verbosity, level=DEBUG)

        for path in matched:
            path = os.path.abspath(path)
            if path in seen:
                continue
            seen.add(path)

            excluded, exclude_pattern = should_exclude(path, exclude_patterns)
            if excluded:
                total_excluded += 1
                log_progress(
                    f"[EXCLUDE] {os.path.basename(path)} (matches: {exclude_pattern})",
                    verbosity,
                    level=DEBUG,
                )
                continue
            files.append(path)

    log_progress(
        f"[SUMMARY] {len(files)} files included, {total_excluded} excluded",
        verbosity,
        level=INFO,
    )
    return files
