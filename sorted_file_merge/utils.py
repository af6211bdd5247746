"""
Shared stderr logging helpers.

Every tool in this package reports progress on stderr so that stdout stays free
for merged data (``file-merge ... | gzip > out.gz``). Messages are tagged with a
bracketed category, e.g. ``[MERGE] Complete: 10 lines written``.

Verbosity levels (the ``-v`` flag may be repeated):

    -1  QUIET    only errors
     0  WARNING  warnings and errors (default)
     1  INFO     progress summaries (-v)
     2  DEBUG    per-file details (-vv)
     3  TRACE    per-line details (-vvv)
"""

import sys

QUIET = -1
WARNING = 0
INFO = 1
DEBUG = 2
TRACE = 3


def log_progress(message, verbosity=WARNING, level=INFO):
    """
    Log a progress message to stderr if the verbosity allows it.

    Args:
        message: Message to log
        verbosity: Verbosity chosen by the user
        level: Minimum verbosity needed for this message to be printed
    """
    if verbosity >= level:
        print(message, file=sys.stderr)


def log_warning(message, verbosity=WARNING):
    """Log a warning to stderr unless running quiet."""
    log_progress(f"[WARNING] {message}", verbosity, level=WARNING)


def log_error(message):
    """Log an error to stderr. Errors are never silenced."""
    print(f"[ERROR] {message}", file=sys.stderr)
