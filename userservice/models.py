"""Domain models for the user management service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


@dataclass(frozen=True)
class User:
    """Represents a user record stored in the users table."""

    id: int
    name: str
    email: str
    age: Optional[int]
    created_at: datetime
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class UserPatch:
    """Partial update for a user.

    A field left as ``None`` is absent from the patch and keeps its stored
    value. There is no way to clear a field.
    """

    name: Optional[str] = None
    email: Optional[str] = None
    age: Optional[int] = None

    def is_empty(self) -> bool:
        return self.name is None and self.email is None and self.age is None


class EventKind(str, Enum):
    CREATE = "CREATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class UserEvent:
    """Notification payload emitted after a successful write."""

    operation: EventKind
    email: str
    username: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "operation": self.operation.value,
            "email": self.email,
            "username": self.username,
        }


__all__ = ["EventKind", "User", "UserEvent", "UserPatch"]
