"""
Merge key extraction from delimited lines.
"""

from sorted_file_merge.errors import ConfigError, MalformedLine
from sorted_file_merge.keys.key_types import Key, KeyType


def validate_extraction(delimiter: str, column_index: int) -> None:
    """
    Check a delimiter / column index pair before any line is read.

    Raises:
        ConfigError: If the delimiter is not a single non-newline character
            or the column index is negative
    """
    if not isinstance(delimiter, str) or len(delimiter) != 1:
        raise ConfigError(f"Delimiter must be a single character, got {delimiter!r}")
    if delimiter in "\r\n":
        raise ConfigError("Delimiter cannot be a line terminator")
    if isinstance(column_index, bool) or not isinstance(column_index, int) or column_index < 0:
        raise ConfigError(f"Key index must be a non-negative integer, got {column_index!r}")


def extract_column(line: str, delimiter: str, column_index: int) -> str:
    """
    Return the text of one column of a delimited line.

    The line terminator is not part of the last column. Column 0 is located
    with a single find(); for later columns the line is walked delimiter by
    delimiter up to the wanted column only, so no list of columns is built.

    Raises:
        MalformedLine: If the line has fewer than column_index + 1 columns
    """
    line = line.rstrip("\r\n")

    if column_index == 0:
        end = line.find(delimiter)
        return line if end == -1 else line[:end]

    start = 0
    for _ in range(column_index):
        found = line.find(delimiter, start)
        if found == -1:
            columns = line.count(delimiter) + 1
            raise MalformedLine(
                f"key index {column_index} is out of range for a line with {columns} column(s)"
            )
        start = found + 1

    end = line.find(delimiter, start)
    return line[start:] if end == -1 else line[start:end]


def extract_key(line: str, delimiter: str, column_index: int, key_type: KeyType) -> Key:
    """
    Extract and parse the merge key of a line.

    Args:
        line: Raw line, with or without its line terminator
        delimiter: Single column separator character
        column_index: 0-based index of the key column
        key_type: Key type the column is parsed as

    Returns:
        Key: The parsed key

    Raises:
        MalformedLine: If the key column does not exist in the line
        KeyParseError: If the column is not a valid value of key_type

    Example:
        >>> extract_key("12\\tfoo\\tbar\\n", "\\t", 0, KeyType.UNSIGNED_32_INTEGER)
        Key(Unsigned32Integer, 12)
    """
    return key_type.parse(extract_column(line, delimiter, column_index))
