"""Logging helpers for the match analytics service."""

from __future__ import annotations

import logging
from typing import Iterable

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(
    level: int | str = logging.INFO, handlers: Iterable[logging.Handler] | None = None
) -> None:
    """Configure root logging for the analysis service and CLI.

    The service runs continuously and logs a summary line per stage for every
    match on every tick, so a consistent format with the logger name makes
    it possible to follow one match through the trend, momentum and
    simulation stages.
    """

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=list(handlers) if handlers else None,
    )
