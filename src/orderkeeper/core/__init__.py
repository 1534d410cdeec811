"""Core infrastructure: configuration and logging."""

from orderkeeper.core.config import ProcessorSettings, load_settings
from orderkeeper.core.logging import configure_logging, get_logger

__all__ = [
    "ProcessorSettings",
    "configure_logging",
    "get_logger",
    "load_settings",
]
