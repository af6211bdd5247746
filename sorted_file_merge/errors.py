"""
Error types raised by the merge tools.

All errors derive from FileMergeError so callers (and the file-merge command)
can catch everything the tools raise on purpose with a single except clause,
while still letting unexpected bugs surface.
"""


class FileMergeError(Exception):
    """Base class for every error raised on purpose by sorted_file_merge."""


class ConfigError(FileMergeError, ValueError):
    """Invalid settings: bad delimiter, column index, key type or range bounds."""


class LineError(FileMergeError, ValueError):
    """
    A single input line could not produce a merge key.

    Attributes:
        path: File the line came from (None when extracting outside a file)
        line_number: 1-based line number inside that file (None if unknown)
    """

    def __init__(self, message, path=None, line_number=None):
        self.path = path
        self.line_number = line_number
        if path is not None:
            location = f"{path}:{line_number}" if line_number is not None else str(path)
            message = f"{location}: {message}"
        super().__init__(message)

    def with_location(self, path, line_number):
        """Return a copy of this error tagged with the file and line it came from."""
        return type(self)(self.args[0], path=path, line_number=line_number)


class MalformedLine(LineError):
    """The line has fewer columns than the configured key index."""


class KeyParseError(LineError):
    """The key column text cannot be parsed as the configured key type."""


class KeyTypeMismatch(FileMergeError, TypeError):
    """Two keys of different key types were compared."""


class CacheLoadError(FileMergeError):
    """A persisted range cache could not be read or parsed."""


class CacheBuildError(FileMergeError):
    """A range cache could not be built; nothing was written."""
