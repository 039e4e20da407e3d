"""Blockflow workflow engine.

Asyncio engine that runs DAG workflows of typed blocks, with validation,
background jobs and execution tracking.
"""

from blockflow import db

__version__ = "0.1.0"

__all__ = [
    "db",
    "__version__",
]
