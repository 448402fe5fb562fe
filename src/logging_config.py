from __future__ import annotations

import logging

from src.config import LoggingSettings

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
WORKER_LOG_FORMAT = "%(asctime)s | %(levelname)s | worker[%(process)d] | %(name)s | %(message)s"


def configure_logging(settings: LoggingSettings) -> None:
    """Configure process-wide logging once at startup."""

    logging.basicConfig(
        level=_resolve_level(settings.level),
        format=DEFAULT_LOG_FORMAT,
        force=True,
    )


def configure_worker_logging(level: str) -> None:
    """Configure logging inside a spawned background analysis process."""

    logging.basicConfig(level=_resolve_level(level), format=WORKER_LOG_FORMAT, force=True)


def _resolve_level(level: str) -> int:
    return getattr(logging, level.upper(), logging.INFO)
