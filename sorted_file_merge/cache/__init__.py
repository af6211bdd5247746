"""Cache module - Persisted per-file key ranges used to skip irrelevant files."""

from .range_cache import CacheEntry, RangeCache, scan_file

__all__ = ["CacheEntry", "RangeCache", "scan_file"]
