"""Shared fixtures: a real SQLite value store plus fakes for the model and timers."""

from __future__ import annotations

import pytest
import pytest_asyncio

from ai_assistant.storage.database import Database
from ai_assistant.storage.value_store import SqliteValueStore
from tests.fakes import FakeOrchestrator, FakeScheduler


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(str(tmp_path / "test.db"))
    await db.initialize()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def store(database):
    return SqliteValueStore(database)


@pytest.fixture
def fake_scheduler():
    return FakeScheduler()


@pytest.fixture
def fake_orchestrator():
    return FakeOrchestrator()
