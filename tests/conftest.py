from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from userservice.database import Database
from userservice.models import UserEvent
from userservice.notifications import Notifier
from userservice.users import UserManager


class RecordingNotifier(Notifier):
    """Keeps every delivered event in memory."""

    def __init__(self) -> None:
        self.events: List[UserEvent] = []

    def _deliver(self, event: UserEvent) -> None:
        self.events.append(event)


@pytest.fixture()
def database(tmp_path: Path) -> Iterator[Database]:
    db = Database(tmp_path / "users.sqlite3")
    db.initialize()
    yield db
    db.close()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def manager(database: Database, notifier: RecordingNotifier) -> UserManager:
    return UserManager(database, notifier)
