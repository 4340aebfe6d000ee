"""Shared configuration, logging and HTTP helpers for GlowCheck services."""

from .config import ConfigError, Settings, get_settings, settings
from .logging import configure_logging, get_logger

__all__ = [
    "ConfigError",
    "Settings",
    "configure_logging",
    "get_logger",
    "get_settings",
    "settings",
]
