"""User record service with real-time change notifications."""

from __future__ import annotations

from typing import Any

from .broadcaster import Broadcaster
from .database import Database, resolve_database_path
from .service import RecordService

__version__ = "0.1.0"


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Broadcaster",
    "Database",
    "RecordService",
    "create_app",
    "resolve_database_path",
]
