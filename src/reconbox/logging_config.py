"""Console and file logging for the ``reconbox`` command."""
from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

from rich.console import Console
from rich.logging import RichHandler

LOG_FILE_ENV = "RECONBOX_LOG_FILE"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)


def level_for_verbosity(count: int) -> int:
    """Map the number of ``-v`` flags to a level: none warns, ``-vv`` debugs."""

    return _LEVELS[max(0, min(count, len(_LEVELS) - 1))]


def setup_logging(
    level: int = logging.WARNING,
    log_file: str | None = None,
    *,
    console: Console | None = None,
) -> None:
    """Route log records to a rich console handler on stderr.

    Per-port and per-echo chatter is logged at debug level, so the default
    keeps scan output readable. ``log_file`` (or ``$RECONBOX_LOG_FILE``)
    adds a rotating plain-text copy, useful for long sweeps.
    """
    handlers: list[logging.Handler] = [
        RichHandler(console=console or Console(stderr=True), rich_tracebacks=True, show_path=False)
    ]

    path = log_file or os.getenv(LOG_FILE_ENV)
    if path:
        file_handler = RotatingFileHandler(path, maxBytes=5_000_000, backupCount=5)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, format="%(message)s", force=True)


__all__ = ["LOG_FILE_ENV", "level_for_verbosity", "setup_logging"]
