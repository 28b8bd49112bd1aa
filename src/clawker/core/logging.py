"""Logging setup for the clawker CLI and its background daemons."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "clawker"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

_HANDLER_MARKER = "_clawker_handler"


def setup_logging(debug: bool = False, log_file: Path | None = None) -> logging.Logger:
    """Configure the package logger.

    Idempotent: handlers installed by a previous call are replaced, so the
    CLI callback and the bridge daemon can both call this safely.

    Args:
        debug: Also log DEBUG records to stderr through rich.
        log_file: Rotating log file; defaults to ``<clawker home>/logs/clawker.log``.

    Returns:
        The configured ``clawker`` logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()

    if log_file is None:
        from clawker.config import logs_dir

        log_file = logs_dir() / "clawker.log"

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUP_COUNT
        )
    except OSError as exc:
        logger.debug("file logging disabled: %s", exc)
    else:
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        setattr(file_handler, _HANDLER_MARKER, True)
        logger.addHandler(file_handler)

    if debug:
        console_handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        console_handler.setLevel(logging.DEBUG)
        setattr(console_handler, _HANDLER_MARKER, True)
        logger.addHandler(console_handler)

    return logger
