"""
Sorted File Merge

A Python package for the merge phase of an external merge sort.
Merges delimited files that are each sorted on one key column into a single
sorted stream, without loading any file into memory, and keeps a range cache
of per-file min/max keys so range merges only open the files they need.

Modules:
    keys: Merge key types and key extraction from delimited lines
    merge: Line sources, merge cursors and the k-way merge engine
    cache: Range cache build / save / load / query
    discovery: Glob and directory expansion into input files
    settings: Command-line and YAML configuration
    cli: The file-merge command
"""

__version__ = "1.0.0"

from .cache.range_cache import CacheEntry, RangeCache
from .keys.key_types import Key, KeyType
from .merge.merge_sorted_files import merge_cursors, merge_sorted_files

__all__ = [
    "CacheEntry",
    "Key",
    "KeyType",
    "RangeCache",
    "merge_cursors",
    "merge_sorted_files",
    "__version__",
]
