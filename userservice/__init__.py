"""Core utilities for the user management service."""

from __future__ import annotations

from typing import Any

from .database import Database, StorageError, resolve_database_path
from .models import EventKind, User, UserPatch
from .users import (
    DuplicateEmailError,
    InvalidInputError,
    UserManager,
    UserNotFoundError,
    UserServiceError,
)


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP API application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Database",
    "DuplicateEmailError",
    "EventKind",
    "InvalidInputError",
    "StorageError",
    "User",
    "UserManager",
    "UserNotFoundError",
    "UserPatch",
    "UserServiceError",
    "create_app",
    "resolve_database_path",
]
