# tests/conftest.py

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from taskhub.core.config import Settings
from taskhub.core.database import Database
from taskhub.main import create_app

from .fakes import FakeRepairQueue


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway SQLite file, with no redis."""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'taskhub.sqlite3'}",
        REDIS_URL=None,
    )


@pytest.fixture()
def repairs() -> FakeRepairQueue:
    return FakeRepairQueue()


@pytest.fixture()
def client(settings: Settings, repairs: FakeRepairQueue):
    app = create_app(settings, repairs=repairs)
    with TestClient(app) as c:
        yield c


@pytest_asyncio.fixture()
async def db(settings: Settings):
    database = Database(settings.DATABASE_URL)
    await database.connect()
    yield database
    await database.dispose()


def create_user(client: TestClient, **payload) -> dict:
    r = client.post("/api/users", json=payload)
    assert r.status_code == 201, r.text
    return r.json()["data"]


def create_task(client: TestClient, **payload) -> dict:
    payload.setdefault("deadline", "2024-01-01")
    r = client.post("/api/tasks", json=payload)
    assert r.status_code == 201, r.text
    return r.json()["data"]


def get_user(client: TestClient, user_id: str) -> dict:
    r = client.get(f"/api/users/{user_id}")
    assert r.status_code == 200, r.text
    return r.json()["data"]
