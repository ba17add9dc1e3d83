"""
Logging configuration, installed once by the CLI root command.

Modules log through ``logging.getLogger(__name__)`` and never configure
handlers themselves.  Level precedence is resolved by the caller:

    --debug / --verbose / --quiet  >  KUBEPIVOT_LOG_LEVEL  >  INFO

A run takes tens of minutes, so INFO (one line per stage event) is the
default.  ``KUBEPIVOT_LOG_FILE`` adds a file handler, optionally at its
own level (``KUBEPIVOT_LOG_FILE_LEVEL``), which is how DEBUG traces of
every tool invocation are kept without flooding the terminal.

Tool command lines and stderr end up in DEBUG records, and those can
carry GitHub tokens or cloud secrets, so every handler gets a
``RedactingFilter``.
"""

from __future__ import annotations

import logging
import re
import sys

CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s %(levelname)-5s %(message)s", "%H:%M:%S"),
}
CONSOLE_FORMAT_QUIET = "%(message)s"

FILE_FORMAT = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s"
FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

REDACTED = "***"

# GitHub tokens, then KEY=value secrets and base64 credential blobs in env dumps
_SECRET_PATTERNS = (
    (re.compile(r"\b(?:ghp|gho|ghs|ghu|github_pat)_[A-Za-z0-9_]{8,}"), REDACTED),
    (re.compile(r"\b([A-Z_]*(?:SECRET|TOKEN|PASSWORD)=)\S+"), rf"\g<1>{REDACTED}"),
    (re.compile(r"\b([A-Z_]*_B64(?:ENCODED_CREDENTIALS)?=)\S+"), rf"\g<1>{REDACTED}"),
)


def redact(text: str) -> str:
    """Mask anything that looks like a credential."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class RedactingFilter(logging.Filter):
    """Rewrite records in place so no handler ever formats a secret."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Replace the root logger's handlers with kubepivot's.

    Safe to call more than once; each call starts from a clean root.

    Args:
        level: Console level name.
        log_file: Optional log file path.
        log_file_level: Level for the file (defaults to ``level``).
    """
    console_level = _parse_level(level)
    handlers = [_console_handler(console_level)]

    if log_file:
        file_level = _parse_level(log_file_level, default=console_level)
        handlers.append(_file_handler(log_file, file_level))

    root = logging.getLogger()
    root.handlers.clear()
    redacting = RedactingFilter()
    for handler in handlers:
        handler.addFilter(redacting)
        root.addHandler(handler)

    # Root must let through whatever the most verbose handler wants
    root.setLevel(min(h.level for h in handlers))

    logging.raiseExceptions = False


def _console_handler(level: int) -> logging.Handler:
    if level <= logging.DEBUG:
        fmt, datefmt = CONSOLE_FORMATS[logging.DEBUG]
    elif level <= logging.INFO:
        fmt, datefmt = CONSOLE_FORMATS[logging.INFO]
    else:
        fmt, datefmt = CONSOLE_FORMAT_QUIET, None

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATEFMT))
    return handler


def _parse_level(level: str | None, default: int = logging.INFO) -> int:
    """Level name → numeric level; unknown names fall back to ``default``."""
    if not level:
        return default
    numeric = getattr(logging, level.upper(), None)
    return numeric if isinstance(numeric, int) else default
