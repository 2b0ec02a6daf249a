"""
Episodic log.

Persists one structured summary per finished session. The summarizer is
injected; the log itself only stores its decoded result. Search is plain
keyword matching over summary, goal and topics.
"""

import asyncio
import json
import re
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta
from uuid import uuid4

from engram.core.errors import CapabilityFailure, InvalidInputError
from engram.core.logging import get_logger
from engram.core.typing import Summarizer
from engram.memory.base import Episode, Outcome, Turn
from engram.memory.database import MemoryDatabase, storage_errors
from engram.memory.decode import decode_summary

logger = get_logger("memory.episodic")

_COLUMNS = (
    "id, session_id, summary, turns, started_at, ended_at, "
    "user_goal, outcome, tools_used, topics, lessons"
)

_WORD_RE = re.compile(r"\w+")


def _keywords(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) >= 3}


class EpisodicLog:
    """Per-session structured summaries, keyword-searchable."""

    def __init__(
        self,
        db: MemoryDatabase,
        summarize_timeout: float | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.summarize_timeout = summarize_timeout
        self._clock = clock

    async def save_episode(
        self,
        session_id: str,
        turns: Sequence[Turn],
        summarizer: Summarizer,
    ) -> str:
        """Summarize and persist a session. Input turns are not modified."""
        if not turns:
            raise InvalidInputError("Cannot save an episode without turns")

        snapshot = tuple(replace(t, metadata=dict(t.metadata)) for t in turns)

        try:
            raw = await asyncio.wait_for(summarizer(snapshot), timeout=self.summarize_timeout)
        except asyncio.TimeoutError as e:
            raise CapabilityFailure(f"Summarizer timed out after {self.summarize_timeout}s") from e
        except Exception as e:
            raise CapabilityFailure(f"Summarizer failed: {e}") from e

        summary = decode_summary(raw, snapshot)
        episode = Episode(
            id=uuid4().hex,
            session_id=session_id,
            summary=summary.summary,
            turns=snapshot,
            started_at=snapshot[0].timestamp,
            ended_at=self._clock(),
            outcome=summary.outcome,
            user_goal=summary.user_goal,
            tools_used=frozenset(summary.tools_used),
            topics=frozenset(summary.topics),
            lessons=tuple(summary.lessons),
        )

        async with storage_errors("save episode"):
            await self.db.conn.execute(
                f"INSERT INTO episodes ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    episode.id,
                    episode.session_id,
                    episode.summary,
                    json.dumps([t.to_dict() for t in episode.turns]),
                    episode.started_at,
                    episode.ended_at,
                    episode.user_goal,
                    episode.outcome.value,
                    json.dumps(sorted(episode.tools_used)),
                    json.dumps(sorted(episode.topics)),
                    json.dumps(list(episode.lessons)),
                ),
            )
            await self.db.conn.commit()

        logger.info(f"Saved episode {episode.id} for session {session_id} ({episode.outcome.value})")
        return episode.id

    async def get(self, episode_id: str) -> Episode | None:
        async with storage_errors("get episode"):
            async with self.db.conn.execute(
                f"SELECT {_COLUMNS} FROM episodes WHERE id = ?", (episode_id,)
            ) as cursor:
                row = await cursor.fetchone()
        return self._row_to_episode(row) if row else None

    async def get_recent(self, limit: int = 10) -> list[Episode]:
        """Most recently ended episodes first."""
        results = []
        async with storage_errors("list recent episodes"):
            async with self.db.conn.execute(
                f"SELECT {_COLUMNS} FROM episodes ORDER BY ended_at DESC LIMIT ?", (limit,)
            ) as cursor:
                async for row in cursor:
                    results.append(self._row_to_episode(row))
        return results

    async def _all(self) -> list[Episode]:
        results = []
        async with storage_errors("list episodes"):
            async with self.db.conn.execute(
                f"SELECT {_COLUMNS} FROM episodes ORDER BY ended_at DESC"
            ) as cursor:
                async for row in cursor:
                    results.append(self._row_to_episode(row))
        return results

    async def search_episodes(self, query: str, limit: int = 5) -> list[Episode]:
        """Keyword search over summary, user goal and topics.

        Episodes are ranked by the number of query keywords they contain,
        then by recency.
        """
        keywords = _keywords(query)
        if not keywords:
            if not query.strip():
                raise InvalidInputError("Search query must not be empty")
            # Only short words: fall back to substring match on the whole query
            needle = query.strip().lower()
            return [e for e in await self._all() if needle in self._haystack(e)][:limit]

        scored = []
        for episode in await self._all():
            hits = len(keywords & _keywords(self._haystack(episode)))
            if hits:
                scored.append((hits, episode))

        # _all() is newest first and sort is stable
        scored.sort(key=lambda item: item[0], reverse=True)
        return [episode for _, episode in scored[:limit]]

    @staticmethod
    def _haystack(episode: Episode) -> str:
        return " ".join([episode.summary, episode.user_goal, *sorted(episode.topics)]).lower()

    async def get_by_tool(self, tool_name: str) -> list[Episode]:
        """Episodes in which the given tool was used, newest first."""
        async with storage_errors("search episodes by tool"):
            async with self.db.conn.execute(
                f"SELECT {_COLUMNS} FROM episodes WHERE tools_used LIKE ? ORDER BY ended_at DESC",
                (f"%{json.dumps(tool_name)}%",),
            ) as cursor:
                rows = await cursor.fetchall()
        episodes = [self._row_to_episode(row) for row in rows]
        return [e for e in episodes if tool_name in e.tools_used]

    async def get_lessons(self) -> list[str]:
        """Deduplicated lessons across all episodes, oldest first."""
        lessons: dict[str, None] = {}
        for episode in reversed(await self._all()):
            for lesson in episode.lessons:
                lessons.setdefault(lesson, None)
        return list(lessons)

    async def delete(self, episode_id: str) -> bool:
        async with storage_errors("delete episode"):
            cursor = await self.db.conn.execute("DELETE FROM episodes WHERE id = ?", (episode_id,))
            await self.db.conn.commit()
        return cursor.rowcount > 0

    async def prune(self, max_age: timedelta) -> int:
        """Retention policy: delete episodes that ended more than max_age ago."""
        cutoff = self._clock() - max_age
        async with storage_errors("prune episodes"):
            cursor = await self.db.conn.execute(
                "DELETE FROM episodes WHERE ended_at < ?", (cutoff,)
            )
            await self.db.conn.commit()
        if cursor.rowcount:
            logger.info(f"Pruned {cursor.rowcount} episodes older than {max_age}")
        return cursor.rowcount

    def _row_to_episode(self, row) -> Episode:
        return Episode(
            id=row[0],
            session_id=row[1],
            summary=row[2],
            turns=tuple(Turn.from_dict(t) for t in json.loads(row[3])),
            started_at=row[4],
            ended_at=row[5],
            user_goal=row[6],
            outcome=Outcome(row[7]),
            tools_used=frozenset(json.loads(row[8])),
            topics=frozenset(json.loads(row[9])),
            lessons=tuple(json.loads(row[10])),
        )
