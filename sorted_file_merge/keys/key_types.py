"""
Merge key types.

A merge key is the value taken from one column of a line and used to order
lines across files. Exactly three representations exist:

    Unsigned32Integer   0 .. 4294967295, compared numerically
    Signed32Integer     -2147483648 .. 2147483647, compared numerically
    String              any text, compared by codepoint (lexicographic)

One key type is chosen per run. Keys remember which type produced them, and
comparing keys of different types raises KeyTypeMismatch instead of silently
falling back to some arbitrary order.

Example:
    >>> key = KeyType.UNSIGNED_32_INTEGER.parse("42")
    >>> key < KeyType.UNSIGNED_32_INTEGER.parse("100")
    True
    >>> KeyType.STRING.parse("42") < KeyType.STRING.parse("100")
    False
"""

import functools
import re
from enum import Enum

from sorted_file_merge.errors import ConfigError, KeyParseError, KeyTypeMismatch

UINT32_MAX = 2**32 - 1
INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1

# int() would also accept whitespace, underscores and non-ASCII digits
_UNSIGNED_RE = re.compile(r"\+?[0-9]+")
_SIGNED_RE = re.compile(r"[+-]?[0-9]+")


class KeyType(Enum):
    """The closed set of supported merge key types."""

    UNSIGNED_32_INTEGER = "Unsigned32Integer"
    SIGNED_32_INTEGER = "Signed32Integer"
    STRING = "String"

    @classmethod
    def from_name(cls, name: str) -> "KeyType":
        """
        Resolve a key type from its canonical name or a short alias.

        Raises:
            ConfigError: If the name is not a known key type
        """
        try:
            return _KEY_TYPE_ALIASES[name.strip().lower()]
        except (KeyError, AttributeError):
            valid = ", ".join(member.value for member in cls)
            raise ConfigError(f"Unknown key type {name!r} (valid choices: {valid})") from None

    def parse(self, text: str) -> "Key":
        """
        Parse key column text into a Key of this type.

        Raises:
            KeyParseError: If the text is not a valid value for this key type
        """
        if self is KeyType.STRING:
            return Key(self, text)
        if self is KeyType.UNSIGNED_32_INTEGER:
            if not _UNSIGNED_RE.fullmatch(text):
                raise KeyParseError(f"{text!r} is not an unsigned integer")
            value = int(text)
            if value > UINT32_MAX:
                raise KeyParseError(f"{text!r} does not fit in an unsigned 32-bit integer")
            return Key(self, value)
        if self is KeyType.SIGNED_32_INTEGER:
            if not _SIGNED_RE.fullmatch(text):
                raise KeyParseError(f"{text!r} is not a signed integer")
            value = int(text)
            if not INT32_MIN <= value <= INT32_MAX:
                raise KeyParseError(f"{text!r} does not fit in a signed 32-bit integer")
            return Key(self, value)
        raise AssertionError(f"unhandled key type {self!r}")

    def from_value(self, value) -> "Key":
        """
        Wrap an already decoded value (e.g. from a cache file) as a Key of this type.

        Raises:
            ValueError: If the value has the wrong Python type or is out of range
        """
        if self is KeyType.STRING:
            if not isinstance(value, str):
                raise ValueError(f"{value!r} is not a string key")
            return Key(self, value)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{value!r} is not an integer key")
        if self is KeyType.UNSIGNED_32_INTEGER and not 0 <= value <= UINT32_MAX:
            raise ValueError(f"{value} is out of range for {self.value}")
        if self is KeyType.SIGNED_32_INTEGER and not INT32_MIN <= value <= INT32_MAX:
            raise ValueError(f"{value} is out of range for {self.value}")
        return Key(self, value)


_KEY_TYPE_ALIASES = {
    "unsigned32integer": KeyType.UNSIGNED_32_INTEGER,
    "u32": KeyType.UNSIGNED_32_INTEGER,
    "signed32integer": KeyType.SIGNED_32_INTEGER,
    "i32": KeyType.SIGNED_32_INTEGER,
    "string": KeyType.STRING,
    "str": KeyType.STRING,
}


@functools.total_ordering
class Key:
    """A merge key value tagged with the key type that produced it."""

    __slots__ = ("key_type", "value")

    def __init__(self, key_type: KeyType, value):
        self.key_type = key_type
        self.value = value

    def __eq__(self, other):
        if not isinstance(other, Key):
            return NotImplemented
        return self.key_type is other.key_type and self.value == other.value

    def __lt__(self, other):
        if not isinstance(other, Key):
            return NotImplemented
        return compare_keys(self, other) < 0

    def __hash__(self):
        return hash((self.key_type, self.value))

    def __repr__(self):
        return f"Key({self.key_type.value}, {self.value!r})"


def compare_keys(a: Key, b: Key) -> int:
    """
    Compare two keys of the same type.

    Returns:
        -1, 0 or 1 as a is smaller than, equal to or greater than b

    Raises:
        KeyTypeMismatch: If the keys have different key types
    """
    if a.key_type is not b.key_type:
        raise KeyTypeMismatch(
            f"Cannot compare {a.key_type.value} key {a.value!r} "
            f"with {b.key_type.value} key {b.value!r}"
        )
    return (a.value > b.value) - (a.value < b.value)
