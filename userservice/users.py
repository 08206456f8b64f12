"""Validation, uniqueness and partial-update rules for user records."""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from .database import Database, EmailConstraintError
from .models import EventKind, User, UserPatch
from .notifications import Notifier, NullNotifier

logger = logging.getLogger("userservice.users")

MAX_NAME_LENGTH = 100
MIN_AGE = 0
MAX_AGE = 150

_EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9+_.-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")


class UserServiceError(RuntimeError):
    """Base class for failures reported by :class:`UserManager`."""

    code = "USER_SERVICE_ERROR"


class InvalidInputError(UserServiceError):
    """Raised when caller-supplied data is malformed or out of range."""

    code = "INVALID_INPUT"


class UserNotFoundError(UserServiceError):
    """Raised when an update targets an id with no stored record."""

    code = "NOT_FOUND"

    def __init__(self, user_id: int) -> None:
        super().__init__(f"User not found with ID: {user_id}")
        self.user_id = user_id


class DuplicateEmailError(UserServiceError):
    """Raised when a write would give two users the same email."""

    code = "DUPLICATE_EMAIL"

    def __init__(self, email: str) -> None:
        super().__init__(f"User with email {email} already exists")
        self.email = email


def validate_user_id(user_id: object) -> int:
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id <= 0:
        raise InvalidInputError(f"Invalid user ID: {user_id}")
    return user_id


def validate_name(name: Optional[str]) -> str:
    stripped = (name or "").strip()
    if not stripped:
        raise InvalidInputError("Name cannot be empty")
    if len(stripped) > MAX_NAME_LENGTH:
        raise InvalidInputError(f"Name must be at most {MAX_NAME_LENGTH} characters")
    return stripped


def validate_email(email: Optional[str]) -> str:
    stripped = (email or "").strip()
    if not stripped:
        raise InvalidInputError("Email cannot be empty")
    if not _EMAIL_PATTERN.match(stripped):
        raise InvalidInputError(f"Invalid email format: {stripped}")
    return stripped


def validate_age(age: Optional[int]) -> Optional[int]:
    if age is None:
        return None
    if isinstance(age, bool) or not isinstance(age, int):
        raise InvalidInputError(f"Age must be an integer, got {age!r}")
    if age < MIN_AGE or age > MAX_AGE:
        raise InvalidInputError(f"Age must be between {MIN_AGE} and {MAX_AGE}")
    return age


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class UserManager:
    """Create, read, update and delete users against an injected store.

    The manager owns no lock of its own. Each check-then-write sequence runs
    inside one ``store.transaction()`` and the store's unique email
    constraint has the final word. Notifications are sent only after the
    write has committed.
    """

    def __init__(self, store: Database, notifier: Optional[Notifier] = None) -> None:
        self._store = store
        self._notifier = notifier or NullNotifier()

    def create(self, name: str, email: str, age: Optional[int] = None) -> User:
        logger.info("Creating user with name: %s, email: %s, age: %s", name, email, age)

        clean_name = validate_name(name)
        clean_email = validate_email(email)
        clean_age = validate_age(age)

        try:
            with self._store.transaction():
                if self._store.exists_by_email(clean_email):
                    raise DuplicateEmailError(clean_email)
                user = self._store.insert(clean_name, clean_email, clean_age)
        except EmailConstraintError as exc:
            raise DuplicateEmailError(clean_email) from exc

        logger.info("Created user #%s <%s>", user.id, user.email)
        self._notifier.notify(EventKind.CREATE, user.email, user.name)
        return user

    def get_by_id(self, user_id: int) -> Optional[User]:
        logger.info("Getting user by ID: %s", user_id)
        return self._store.find_by_id(validate_user_id(user_id))

    def get_by_email(self, email: str) -> Optional[User]:
        logger.info("Getting user by email: %s", email)
        if _is_blank(email):
            raise InvalidInputError("Email cannot be empty")
        return self._store.find_by_email(email.strip())

    def list_all(self) -> List[User]:
        logger.info("Getting all users")
        return self._store.find_all()

    def update(self, user_id: int, patch: UserPatch) -> User:
        """Merge ``patch`` onto the stored record and persist it.

        Blank strings for name or email count as "no change". Email uniqueness
        is only re-checked when the email actually changes.
        """

        logger.info(
            "Updating user with ID: %s, name: %s, email: %s, age: %s",
            user_id,
            patch.name,
            patch.email,
            patch.age,
        )
        validate_user_id(user_id)

        new_name = None if _is_blank(patch.name) else validate_name(patch.name)
        new_email = None if _is_blank(patch.email) else validate_email(patch.email)
        new_age = validate_age(patch.age)

        try:
            with self._store.transaction():
                existing = self._store.find_by_id(user_id)
                if existing is None:
                    raise UserNotFoundError(user_id)

                name = existing.name if new_name is None else new_name
                email = existing.email
                if new_email is not None and new_email != existing.email:
                    if self._store.exists_by_email_excluding_id(new_email, user_id):
                        raise DuplicateEmailError(new_email)
                    email = new_email
                age = existing.age if patch.age is None else new_age

                merged = User(
                    id=existing.id,
                    name=name,
                    email=email,
                    age=age,
                    created_at=existing.created_at,
                    updated_at=existing.updated_at,
                )
                updated = self._store.update(merged)
        except EmailConstraintError as exc:
            raise DuplicateEmailError(new_email or "") from exc

        logger.info("Updated user #%s", updated.id)
        return updated

    def delete(self, user_id: int) -> bool:
        logger.info("Deleting user with ID: %s", user_id)
        validate_user_id(user_id)

        with self._store.transaction():
            existing = self._store.find_by_id(user_id)
            if existing is None:
                return False
            deleted = self._store.delete_by_id(user_id)

        if not deleted:
            return False
        logger.info("Deleted user #%s <%s>", existing.id, existing.email)
        self._notifier.notify(EventKind.DELETE, existing.email, existing.name)
        return True

    def search_by_name(self, fragment: str) -> List[User]:
        needle = (fragment or "").strip().lower()
        return [user for user in self.list_all() if needle in user.name.lower()]

    def search_by_age_range(self, min_age: int, max_age: int) -> List[User]:
        """Return users whose age lies in ``[min_age, max_age]``.

        The bounds are filters, not stored values, so they are not held to the
        0-150 range a record's age must respect.
        """

        if min_age > max_age:
            raise InvalidInputError("Minimum age cannot be greater than maximum age")
        return [
            user
            for user in self.list_all()
            if user.age is not None and min_age <= user.age <= max_age
        ]


__all__ = [
    "DuplicateEmailError",
    "InvalidInputError",
    "MAX_AGE",
    "MAX_NAME_LENGTH",
    "MIN_AGE",
    "UserManager",
    "UserNotFoundError",
    "UserServiceError",
    "validate_age",
    "validate_email",
    "validate_name",
    "validate_user_id",
]
