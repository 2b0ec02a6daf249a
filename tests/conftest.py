"""Shared fixtures for memory tests."""

from pathlib import Path

import pytest

from engram.memory.database import MemoryDatabase

from fakes import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def db(tmp_path: Path):
    """Create a temporary memory database."""
    database = MemoryDatabase(tmp_path / "test.db")
    await database.connect()
    yield database
    await database.close()
