"""Logging utilities shared by the service layer."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from memberbook.utils.config import check_log_level, get_settings


_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process-wide logging once, for applications embedding the engine.

    Nothing in the package calls this; importing memberbook leaves the host's
    logging setup alone.
    """

    global _LOGGER_INITIALIZED
    resolved_level = check_log_level(level or get_settings().log_level)
    if _LOGGER_INITIALIZED:
        return

    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return the logger for the requested module without touching handlers."""
    return logging.getLogger(name)
