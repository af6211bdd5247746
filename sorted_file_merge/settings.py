"""
Settings for the file-merge command.

Settings come from the command line and, optionally, from a YAML file given
with --config-file. Command-line values always win over file values. Both are
validated into a single frozen MergeSettings object before any file is opened,
so configuration mistakes fail fast with a ConfigError and no partial output.

Example config file (keys mirror the long option names):

    # merge.yaml
    delimiter: tsv
    key_index: 0
    key_type: Unsigned32Integer
    glob:
      - /data/exports/part-*.tsv.gz
    exclude:
      - "*-tmp.tsv.gz"
    cache_file: /data/exports/parts.cache
    verbose: 1
"""

import argparse
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import yaml

from sorted_file_merge.errors import ConfigError, KeyParseError
from sorted_file_merge.keys.extract import validate_extraction
from sorted_file_merge.keys.key_types import Key, KeyType
from sorted_file_merge.merge.line_source import DEFAULT_BUFFER_SIZE
from sorted_file_merge.utils import DEBUG, QUIET, WARNING, log_progress

MODE_BUILD_CACHE = "build-cache"
MODE_MERGE_FROM_CACHE = "merge-from-cache"
MODE_MERGE_FROM_GLOB = "merge-from-glob"

DELIMITER_ALIASES = {
    "tsv": "\t",
    "tab": "\t",
    "\\t": "\t",
    "csv": ",",
    "psv": "|",
}

# Keys accepted in a YAML config file, mapped to argparse destinations
CONFIG_KEYS = {
    "delimiter": "delimiter",
    "key_index": "key_index",
    "key_type": "key_type",
    "key_start": "key_start",
    "key_end": "key_end",
    "glob": "globs",
    "exclude": "exclude_patterns",
    "cache_file": "cache_file",
    "output": "output",
    "skip_invalid_lines": "skip_invalid_lines",
    "verify_cache": "verify_cache",
    "buffer_size": "buffer_size",
    "verbose": "verbose",
}


@dataclass(frozen=True)
class MergeSettings:
    """Validated settings for one file-merge run."""

    delimiter: str
    key_index: int
    key_type: KeyType = KeyType.STRING
    key_start: Optional[Key] = None
    key_end: Optional[Key] = None
    globs: Tuple[str, ...] = ()
    exclude_patterns: Tuple[str, ...] = ()
    cache_path: Optional[str] = None
    output: str = "-"
    skip_invalid: bool = False
    verify_cache: bool = False
    buffer_size: int = DEFAULT_BUFFER_SIZE
    verbosity: int = WARNING

    @property
    def mode(self) -> str:
        """
        Which operation the settings ask for:

        * globs and cache file: build the cache from the globs (no merge)
        * cache file only: merge the files selected from the cache
        * globs only: merge every globbed file directly
        """
        if self.globs and self.cache_path:
            return MODE_BUILD_CACHE
        if self.cache_path:
            return MODE_MERGE_FROM_CACHE
        return MODE_MERGE_FROM_GLOB


def parse_delimiter(value: str) -> str:
    """Resolve a delimiter given as a single character or an alias (tsv, csv, psv)."""
    if not isinstance(value, str):
        raise ConfigError(f"Delimiter must be a string, got {value!r}")
    delimiter = DELIMITER_ALIASES.get(value.lower(), value) if len(value) > 1 else value
    if len(delimiter) != 1:
        choices = ", ".join(sorted(DELIMITER_ALIASES))
        raise ConfigError(
            f"Delimiter can only be a single character or one of: {choices} (got {value!r})"
        )
    return delimiter


def parse_key_bound(value, key_type: KeyType, option: str) -> Optional[Key]:
    """Parse a --key-start / --key-end value with the active key type."""
    if value is None:
        return None
    try:
        return key_type.parse(str(value))
    except KeyParseError as e:
        raise ConfigError(f"Invalid {option} for key type {key_type.value}: {e}") from None


def load_config_file(path: str) -> Dict[str, Any]:
    """
    Load a YAML config file and map its keys to argparse destinations.

    Raises:
        ConfigError: If the file is missing, not valid YAML, not a mapping
            or contains unknown keys
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping of settings")

    values = {}
    for key, value in data.items():
        name = str(key).replace("-", "_")
        if name not in CONFIG_KEYS:
            valid = ", ".join(sorted(CONFIG_KEYS))
            raise ConfigError(f"Unknown setting '{key}' in {path} (valid settings: {valid})")
        if name in ("glob", "exclude") and isinstance(value, str):
            value = [value]
        values[CONFIG_KEYS[name]] = value
    return values


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="file-merge",
        description=(
            "Merge files that are each sorted on one key column into a single sorted "
            "stream, optionally restricted to a key range and pruned with a range cache."
        ),
        epilog="Modes:\n"
        "  --glob + --cache-file   build the range cache from the globbed files\n"
        "  --cache-file            merge the cached files that overlap the key range\n"
        "  --glob                  merge every globbed file\n"
        "\n"
        "Examples:\n"
        "  file-merge --glob '/data/part-*.tsv.gz' --cache-file parts.cache "
        "--delimiter tsv --key-index 0 --key-type Unsigned32Integer\n"
        "  file-merge --cache-file parts.cache --delimiter tsv --key-index 0 "
        "--key-type Unsigned32Integer --key-start 1000 --key-end 2000 -o merged.tsv\n"
        "  file-merge --glob 'exports/*.csv' --delimiter , --key-index 2 | gzip > out.gz",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    # argparse defaults are None so config file values can fill the gaps
    parser.add_argument(
        "--config-file", metavar="YAML", help="YAML file providing defaults for the options below"
    )

    files_group = parser.add_argument_group("File selection")
    files_group.add_argument(
        "--glob",
        action="append",
        dest="globs",
        metavar="PATTERN",
        help="Glob, file or directory providing input files (can be used multiple times)",
    )
    files_group.add_argument(
        "--exclude",
        action="append",
        dest="exclude_patterns",
        metavar="PATTERN",
        help="Exclude files whose name matches this glob pattern (can be used multiple times)",
    )
    files_group.add_argument(
        "--cache-file",
        metavar="PATH",
        help="Range cache file: written when --glob is also given, read otherwise",
    )
    files_group.add_argument(
        "--verify-cache",
        action="store_true",
        default=None,
        help="Ignore cache entries whose file is missing or changed size since the build",
    )

    key_group = parser.add_argument_group("Merge key")
    key_group.add_argument(
        "--delimiter", help="Column delimiter: one character, or tsv, csv, psv"
    )
    key_group.add_argument(
        "--key-index", type=int, metavar="N", help="0-based column index of the merge key"
    )
    key_group.add_argument(
        "--key-type",
        metavar="TYPE",
        help="Unsigned32Integer, Signed32Integer or String (default: String)",
    )
    key_group.add_argument(
        "--key-start", metavar="KEY", help="Lower bound (inclusive) of merged keys"
    )
    key_group.add_argument("--key-end", metavar="KEY", help="Upper bound (exclusive) of merged keys")

    parser.add_argument("-o", "--output", help="Output file name (default: '-' for stdout)")
    parser.add_argument(
        "--skip-invalid-lines",
        action="store_true",
        default=None,
        help="Skip lines whose key cannot be extracted (with a warning) instead of failing",
    )
    parser.add_argument(
        "--buffer-size",
        type=int,
        metavar="BYTES",
        help=f"I/O buffer size per file (default: {DEFAULT_BUFFER_SIZE})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        help="More output on stderr (-v info, -vv debug, -vvv trace)",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Only report errors (overrides --verbose)"
    )
    return parser


def parse_args(argv=None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def _as_tuple(value, name: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{name}' must be a list of strings")
    return tuple(value)


def _as_bool(value, name: str) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ConfigError(f"'{name}' must be true or false, got {value!r}")
    return value


def settings_from_args(args: argparse.Namespace) -> MergeSettings:
    """
    Merge command-line arguments with the optional config file and validate them.

    Raises:
        ConfigError: On any missing or invalid setting
    """
    values = load_config_file(args.config_file) if args.config_file else {}
    for name, value in vars(args).items():
        if value is not None and name not in ("config_file", "quiet"):
            values[name] = value

    verbose = values.get("verbose") or 0
    if isinstance(verbose, bool) or not isinstance(verbose, int) or verbose < 0:
        raise ConfigError(f"'verbose' must be a non-negative integer, got {verbose!r}")
    verbosity = QUIET if args.quiet else verbose

    if values.get("delimiter") is None:
        raise ConfigError("We need a --delimiter parameter")
    delimiter = parse_delimiter(values["delimiter"])

    key_index = values.get("key_index")
    if key_index is None:
        raise ConfigError("We need a --key-index parameter")
    validate_extraction(delimiter, key_index)

    key_type_name = values.get("key_type")
    if key_type_name is None:
        log_progress("--key-type was not supplied, defaulting to String", verbosity)
        key_type = KeyType.STRING
    else:
        key_type = KeyType.from_name(str(key_type_name))

    key_start = parse_key_bound(values.get("key_start"), key_type, "--key-start")
    key_end = parse_key_bound(values.get("key_end"), key_type, "--key-end")
    if key_start is not None and key_end is not None and not key_start < key_end:
        raise ConfigError(
            f"--key-start ({key_start.value!r}) must be lower than --key-end ({key_end.value!r})"
        )

    globs = _as_tuple(values.get("globs"), "glob")
    exclude_patterns = _as_tuple(values.get("exclude_patterns"), "exclude")
    cache_path = values.get("cache_file")
    if not globs and not cache_path:
        raise ConfigError("Missing both --glob and --cache-file, we need at least one of them")
    if not globs and not os.path.isfile(cache_path):
        raise ConfigError(
            f"No --glob provided and the cache file {cache_path} doesn't exist, nothing to merge"
        )

    buffer_size = values.get("buffer_size", DEFAULT_BUFFER_SIZE)
    if isinstance(buffer_size, bool) or not isinstance(buffer_size, int) or buffer_size < 1:
        raise ConfigError(f"Buffer size must be a positive integer, got {buffer_size!r}")

    settings = MergeSettings(
        delimiter=delimiter,
        key_index=key_index,
        key_type=key_type,
        key_start=key_start,
        key_end=key_end,
        globs=globs,
        exclude_patterns=exclude_patterns,
        cache_path=cache_path,
        output=values.get("output") or "-",
        skip_invalid=_as_bool(values.get("skip_invalid_lines"), "skip_invalid_lines"),
        verify_cache=_as_bool(values.get("verify_cache"), "verify_cache"),
        buffer_size=buffer_size,
        verbosity=verbosity,
    )
    log_progress(f"[SETTINGS] {settings}", verbosity, level=DEBUG)
    return settings


def load_settings(argv=None) -> MergeSettings:
    """Parse argv (default: sys.argv[1:]) into validated MergeSettings."""
    return settings_from_args(parse_args(argv))
