"""Keys module - Merge key types and key extraction from delimited lines."""

from .extract import extract_column, extract_key, validate_extraction
from .key_types import Key, KeyType, compare_keys

__all__ = [
    "Key",
    "KeyType",
    "compare_keys",
    "extract_column",
    "extract_key",
    "validate_extraction",
]
