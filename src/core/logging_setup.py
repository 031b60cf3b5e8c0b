"""Loguru sink configuration used by the CLI and API entry points."""

from __future__ import annotations

import sys

from loguru import logger

from config import Settings


def configure_logging(settings: Settings, level: str | None = None) -> None:
    """Replace loguru's default sink with the configured stderr/file sinks."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level or settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(
            settings.log_file,
            level=settings.log_level,
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )
