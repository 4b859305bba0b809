"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap: import paths, the test environment required by
    pitchside.config, and fixtures that swap MongoDB and the event bus for
    in-memory fakes.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

_THIS_FILE = Path(__file__).resolve()
_BACKEND_DIR = _THIS_FILE.parents[1]
_TESTS_DIR = _THIS_FILE.parent

for candidate in (str(_BACKEND_DIR), str(_TESTS_DIR)):
    if candidate not in sys.path:
        sys.path.insert(0, candidate)

os.environ.setdefault("MONGO_URI", "mongodb://localhost:27017/?replicaSet=rs0")
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production-0123456789")

from fake_mongo import FakeClient, FakeDB  # noqa: E402


@pytest.fixture
def fake_db(monkeypatch):
    import pitchside.database as database

    db = FakeDB()
    monkeypatch.setattr(database, "db", db, raising=False)
    monkeypatch.setattr(database, "client", FakeClient(db), raising=False)
    return db


@pytest.fixture
def published(monkeypatch):
    """Events handed to the bus, in publish order."""
    from pitchside.services.event_bus import event_bus

    events: list = []

    async def _publish(event):
        events.append(event)

    monkeypatch.setattr(event_bus, "publish", _publish)
    return events
