# mathdocx/logger.py
"""Logging setup for the export service."""
from __future__ import annotations

import logging

from .config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("mathdocx")


def init_logging(level: str | None = None) -> None:
    """Attach a console handler to the package logger (idempotent)."""
    logger.setLevel((level or settings.log_level).upper())
    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console_handler)
