"""SQLite storage handle shared by the memory stores."""

import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

import aiosqlite

from engram.core.errors import StorageFailure
from engram.core.logging import get_logger

logger = get_logger("memory.database")


# Fixed-width ISO strings keep lexicographic order equal to time order
def _adapt_datetime(dt: datetime) -> str:
    return dt.isoformat(timespec="microseconds")


def _convert_datetime(val: bytes) -> datetime:
    return datetime.fromisoformat(val.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)

SCHEMA = """
-- Semantic memory: content-addressed records with embeddings
CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    content TEXT NOT NULL,
    embedding BLOB NOT NULL,
    type TEXT NOT NULL DEFAULT 'note',
    source TEXT NOT NULL DEFAULT '',
    importance REAL NOT NULL DEFAULT 0.5,
    created_at DATETIME NOT NULL,
    access_count INTEGER NOT NULL DEFAULT 0,
    last_accessed DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(type);
CREATE INDEX IF NOT EXISTS idx_memories_importance ON memories(importance DESC);

-- Episodic memory: one structured summary per finished session
CREATE TABLE IF NOT EXISTS episodes (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    summary TEXT NOT NULL,
    turns TEXT NOT NULL,  -- JSON array
    started_at DATETIME NOT NULL,
    ended_at DATETIME NOT NULL,
    user_goal TEXT NOT NULL DEFAULT '',
    outcome TEXT NOT NULL,
    tools_used TEXT NOT NULL,  -- JSON array
    topics TEXT NOT NULL,  -- JSON array
    lessons TEXT NOT NULL  -- JSON array
);

CREATE INDEX IF NOT EXISTS idx_episodes_ended ON episodes(ended_at DESC);

-- Saved working contexts
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    turns TEXT NOT NULL,  -- JSON array
    summary TEXT,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
);
"""


@asynccontextmanager
async def storage_errors(operation: str) -> AsyncIterator[None]:
    """Re-raise SQLite errors as StorageFailure."""
    try:
        yield
    except sqlite3.Error as e:
        logger.error(f"Storage operation '{operation}' failed: {e}")
        raise StorageFailure(f"{operation} failed: {e}") from e


class MemoryDatabase:
    """Owns one aiosqlite connection; passed explicitly to each store."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with storage_errors("connect"):
            self._conn = await aiosqlite.connect(
                self.db_path,
                detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
            )
            await self._conn.execute("PRAGMA journal_mode = WAL")
            await self._conn.execute("PRAGMA busy_timeout = 5000")
            await self._conn.executescript(SCHEMA)
            await self._conn.commit()
        logger.info(f"Connected to memory database: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Memory database not connected. Call connect() first.")
        return self._conn

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def __aenter__(self) -> "MemoryDatabase":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
