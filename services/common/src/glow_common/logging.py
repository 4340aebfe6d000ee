"""Centralised logging configuration with JSON output."""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import structlog

DEFAULT_LOG_LEVEL = "INFO"

_configured = False


def _configure_structlog(level: str) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging(level: Optional[str] = None, force: bool = False) -> None:
    """Initialise stdlib + structlog JSON logging."""

    global _configured
    if _configured and not force:
        return

    if level is None:
        from .config import settings

        level = settings.log_level or DEFAULT_LOG_LEVEL

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    _configure_structlog(level)
    _configured = True


def get_logger(name: str, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Return a bound structured logger."""

    configure_logging()
    logger = structlog.get_logger(name)
    if initial_values:
        return logger.bind(**initial_values)
    return logger


def excerpt(text: Any, limit: int = 200) -> str:
    """Shorten an upstream payload for log output."""

    value = text if isinstance(text, str) else repr(text)
    if len(value) <= limit:
        return value
    return value[:limit] + f"...[{len(value) - limit} more chars]"


__all__ = ["configure_logging", "get_logger", "excerpt"]
