"""Shared fixtures for the gatherer tests."""

import tempfile
from pathlib import Path

import pytest

from gatherer.storage import Database, LocalStore


@pytest.fixture
async def temp_db():
    """Create a temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        db = Database(db_path)
        await db.connect()
        yield db
        await db.close()


@pytest.fixture
async def store(temp_db):
    """Create a local store on the temporary database."""
    return LocalStore(temp_db)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's GATHERER_* variables out of the tests."""
    for name in ("GATHERER_CONFIG", "GATHERER_DB_PATH", "GATHERER_API_BASE", "GATHERER_REQUEST_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
