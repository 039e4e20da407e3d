"""Core application configuration and utilities.

This package contains core functionality including:
- Configuration management (config.py)
- Logging setup (logging.py)
- Application exceptions (exceptions.py)
"""

from blockflow.core.config import settings
from blockflow.core.exceptions import AppError, ResourceNotFoundError
from blockflow.core.logging import get_logger, setup_logging

__all__ = [
    "AppError",
    "ResourceNotFoundError",
    "get_logger",
    "settings",
    "setup_logging",
]
