"""Merge module - Streaming k-way merge of files sorted on a key column."""

from .cursor import LineRecord, MergeCursor
from .line_source import LineSource, open_input_path
from .merge_sorted_files import merge_cursors, merge_sorted_files, open_cursors

__all__ = [
    "LineRecord",
    "LineSource",
    "MergeCursor",
    "merge_cursors",
    "merge_sorted_files",
    "open_cursors",
    "open_input_path",
]
