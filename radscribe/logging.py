"""Logging setup for the CLI and the server.

The terminal handler writes to stderr at WARNING, or DEBUG with ``-v``.
The rotating file handler writes to ``<output_dir>/.radscribe/radscribe.log``
at ``RADSCRIBE_LOG_LEVEL`` (INFO unless set).

Pipeline code only ever logs entity types, counts and confidences.  As a
second line, both handlers carry a :class:`PiiScrubFilter` that runs the
default detector over each formatted message and logs the redacted text.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from radscribe.stages.pii_detection import detect

_LOG_DIRNAME = ".radscribe"
_LOG_FILENAME = "radscribe.log"

_MAX_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 2

_TERMINAL_FORMAT = "%(levelname)s | %(name)s | %(message)s"
_FILE_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

# The SDKs echo request bodies, i.e. prompts, at DEBUG
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic")


class PiiScrubFilter(logging.Filter):
    """Redact PII from a record's message before any handler formats it."""

    def filter(self, record: logging.LogRecord) -> bool:
        result = detect(record.getMessage())
        if result.detected:
            record.msg = result.redacted_text
            record.args = None
        return True


def _file_level() -> int:
    level = getattr(logging, os.environ.get("RADSCRIBE_LOG_LEVEL", "INFO").upper(), None)
    return level if isinstance(level, int) else logging.INFO


def log_path_for(output_dir: Path) -> Path:
    return output_dir / _LOG_DIRNAME / _LOG_FILENAME


def setup_logging(
    *,
    output_dir: Path | None = None,
    verbose: bool = False,
) -> None:
    """Install the stderr handler and, given *output_dir*, the log file.

    Replaces whatever handlers the root logger had, so ``generate`` and
    ``serve`` can both call it.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG)

    scrub = PiiScrubFilter()
    handlers: list[logging.Handler] = []

    terminal = logging.StreamHandler()
    terminal.setLevel(logging.DEBUG if verbose else logging.WARNING)
    terminal.setFormatter(logging.Formatter(_TERMINAL_FORMAT))
    handlers.append(terminal)

    if output_dir is not None:
        from logging.handlers import RotatingFileHandler

        log_path = log_path_for(output_dir)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8"
        )
        file_handler.setLevel(_file_level())
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        handlers.append(file_handler)

    for handler in handlers:
        handler.addFilter(scrub)
        root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
