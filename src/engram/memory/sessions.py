"""Session persistence: save and restore working-context turns."""

import json
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from engram.memory.base import Turn
from engram.memory.database import MemoryDatabase, storage_errors


@dataclass
class SessionInfo:
    id: str
    summary: str | None
    created_at: datetime
    updated_at: datetime


class SessionStore:
    """Upserts whole sessions keyed by session id."""

    def __init__(self, db: MemoryDatabase, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self._clock = clock

    async def save(self, session_id: str, turns: Sequence[Turn], summary: str | None = None) -> None:
        """Save turns, keeping the original creation time on overwrite."""
        now = self._clock()
        async with storage_errors("save session"):
            await self.db.conn.execute(
                """INSERT INTO sessions (id, turns, summary, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       turns = excluded.turns,
                       summary = excluded.summary,
                       updated_at = excluded.updated_at""",
                (session_id, json.dumps([t.to_dict() for t in turns]), summary, now, now),
            )
            await self.db.conn.commit()

    async def load(self, session_id: str) -> list[Turn] | None:
        async with storage_errors("load session"):
            async with self.db.conn.execute(
                "SELECT turns FROM sessions WHERE id = ?", (session_id,)
            ) as cursor:
                row = await cursor.fetchone()
        return [Turn.from_dict(t) for t in json.loads(row[0])] if row else None

    async def list_sessions(self, limit: int = 20) -> list[SessionInfo]:
        """Most recently updated sessions first."""
        async with storage_errors("list sessions"):
            async with self.db.conn.execute(
                "SELECT id, summary, created_at, updated_at FROM sessions "
                "ORDER BY updated_at DESC LIMIT ?",
                (limit,),
            ) as cursor:
                rows = await cursor.fetchall()
        return [SessionInfo(id=r[0], summary=r[1], created_at=r[2], updated_at=r[3]) for r in rows]

    async def delete(self, session_id: str) -> bool:
        async with storage_errors("delete session"):
            cursor = await self.db.conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            await self.db.conn.commit()
        return cursor.rowcount > 0
