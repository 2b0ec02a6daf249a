"""
Logging configuration.

Structured logging for debugging and audit trail.
"""

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from engram.core.config import Settings

PACKAGE_LOGGER = "engram"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Marks handlers installed here so a repeated setup replaces them
_OWNED = "_engram_owned"


def setup_logging(
    level: int | str = logging.INFO,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure package logger with console and optional file output.

    Calling it again swaps the previously installed handlers for new ones.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level.upper() if isinstance(level, str) else level)

    for handler in [h for h in logger.handlers if getattr(h, _OWNED, False)]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        setattr(handler, _OWNED, True)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def configure_logging(settings: "Settings") -> logging.Logger:
    """Set up package logging from ENGRAM_LOG_LEVEL / ENGRAM_LOG_FILE."""
    logger = setup_logging(level=settings.log_level, log_file=settings.log_file)
    if settings.log_file:
        logger.info(f"Logging to {settings.log_file} at {settings.log_level.upper()}")
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger."""
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
