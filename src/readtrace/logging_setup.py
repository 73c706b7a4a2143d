"""Centralized logging configuration for readtrace."""

from __future__ import annotations

import logging
import sys
from functools import lru_cache

from .config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@lru_cache(maxsize=None)
def setup_logging(log_level: str | None = None) -> None:
    """Configure the root logger once per process.

    ``log_level`` overrides ``READTRACE_LOG_LEVEL``; unknown names fall back to INFO.
    """

    level_name = (log_level or get_settings().log_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)


__all__ = ["LOG_FORMAT", "setup_logging"]
