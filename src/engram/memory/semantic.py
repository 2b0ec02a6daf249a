"""
Semantic store (long-term memory).

Content-addressed records with embeddings, importance and access stats.
Search is a linear scan ranked by blended similarity/importance; every
returned record is touched (access_count + 1, last_accessed = now), which
is what keeps frequently recalled memories safe from decay.
"""

import asyncio
import hashlib
import sqlite3
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from engram.core.errors import CapabilityFailure, DimensionMismatchError, InvalidInputError
from engram.core.logging import get_logger
from engram.core.typing import Vector
from engram.memory.base import MemoryRecord, MemoryType, SearchResult, parse_memory_type
from engram.memory.database import MemoryDatabase, storage_errors
from engram.memory.embedding import (
    Embedder,
    HashEmbedder,
    cosine_similarity,
    pack_vector,
    unpack_vector,
)

if TYPE_CHECKING:
    from engram.core.config import Settings

logger = get_logger("memory.semantic")

_COLUMNS = (
    "id, content, embedding, type, source, importance, created_at, access_count, last_accessed"
)


def memory_id(content: str) -> str:
    """Stable id derived from content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:12]


@dataclass
class MemoryDraft:
    """Validated memory waiting to be written."""

    id: str
    content: str
    memory_type: MemoryType
    source: str
    importance: float
    embedding: Vector | None = None

    @classmethod
    def create(
        cls,
        content: str,
        memory_type: MemoryType | str = MemoryType.NOTE,
        source: str = "",
        importance: float = 0.5,
    ) -> "MemoryDraft":
        if not content or not content.strip():
            raise InvalidInputError("Memory content must not be empty")
        if not 0.0 <= importance <= 1.0:
            raise InvalidInputError(f"Importance must be within [0, 1], got {importance}")
        return cls(
            id=memory_id(content),
            content=content,
            memory_type=parse_memory_type(memory_type),
            source=source,
            importance=importance,
        )


class SemanticStore:
    """Embedding-indexed store of facts, preferences, procedures and notes."""

    def __init__(
        self,
        db: MemoryDatabase,
        embedder: Embedder | None = None,
        similarity_weight: float = 0.8,
        importance_weight: float = 0.2,
        embed_timeout: float | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.embedder = embedder or HashEmbedder()
        self.similarity_weight = similarity_weight
        self.importance_weight = importance_weight
        self.embed_timeout = embed_timeout
        self._clock = clock

    @classmethod
    def from_settings(
        cls, db: MemoryDatabase, settings: "Settings", embedder: Embedder | None = None
    ) -> "SemanticStore":
        return cls(
            db,
            embedder or HashEmbedder(settings.embedding_dimension),
            similarity_weight=settings.similarity_weight,
            importance_weight=settings.importance_weight,
            embed_timeout=settings.capability_timeout,
        )

    async def embed(self, text: str) -> Vector:
        """Call the embedder; failures become CapabilityFailure."""
        try:
            vec = await asyncio.wait_for(self.embedder.embed(text), timeout=self.embed_timeout)
        except asyncio.TimeoutError as e:
            raise CapabilityFailure(f"Embedding timed out after {self.embed_timeout}s") from e
        except (CapabilityFailure, DimensionMismatchError):
            raise
        except Exception as e:
            raise CapabilityFailure(f"Embedding failed: {e}") from e

        if len(vec) != self.embedder.dimension:
            raise DimensionMismatchError(self.embedder.dimension, len(vec))
        return vec

    async def store(
        self,
        content: str,
        memory_type: MemoryType | str = MemoryType.NOTE,
        source: str = "",
        importance: float = 0.5,
    ) -> str:
        """Store a memory, replacing any record with identical content.

        Replacement is a full overwrite: access statistics restart at zero.
        """
        draft = MemoryDraft.create(content, memory_type, source, importance)
        draft.embedding = await self.embed(content)
        [entry_id] = await self.store_many([draft])
        return entry_id

    async def store_many(self, drafts: Sequence[MemoryDraft]) -> list[str]:
        """Write already-embedded drafts in one transaction.

        Either every draft is written or none is.
        """
        if not drafts:
            return []
        for draft in drafts:
            if draft.embedding is None:
                raise InvalidInputError(f"Draft {draft.id} has no embedding")
            if len(draft.embedding) != self.embedder.dimension:
                raise DimensionMismatchError(self.embedder.dimension, len(draft.embedding))

        now = self._clock()
        rows = [
            (
                d.id,
                d.content,
                pack_vector(d.embedding),
                d.memory_type.value,
                d.source,
                d.importance,
                now,
                now,
            )
            for d in drafts
        ]
        async with storage_errors("store memories"):
            try:
                await self.db.conn.executemany(
                    f"""INSERT OR REPLACE INTO memories ({_COLUMNS})
                       VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?)""",
                    rows,
                )
                await self.db.conn.commit()
            except sqlite3.Error:
                await self.db.conn.rollback()
                raise

        for d in drafts:
            logger.debug(f"Stored {d.memory_type.value} memory {d.id}")
        return [d.id for d in drafts]

    async def find_duplicate(
        self, content: str, embedding: Vector, threshold: float
    ) -> SearchResult | None:
        """Closest existing record scoring at least ``threshold``, without touching it.

        A record with identical content always counts, whatever its importance.
        """
        existing = await self.get(memory_id(content))
        if existing is not None:
            return SearchResult(record=existing, score=self._score(1.0, existing))
        ranked = self._rank(embedding, await self.get_all(), limit=1, min_similarity=threshold)
        return ranked[0] if ranked else None

    def _score(self, similarity: float, record: MemoryRecord) -> float:
        return similarity * self.similarity_weight + record.importance * self.importance_weight

    def _rank(
        self,
        query_vec: Vector,
        records: list[MemoryRecord],
        limit: int,
        min_similarity: float,
    ) -> list[SearchResult]:
        scored = []
        for record in records:
            score = self._score(cosine_similarity(query_vec, record.embedding), record)
            if score >= min_similarity:
                scored.append(SearchResult(record=record, score=score))

        scored.sort(key=lambda r: (r.score, r.record.last_accessed), reverse=True)
        return scored[:limit]

    async def search(
        self,
        query: str,
        limit: int = 5,
        min_similarity: float = 0.1,
    ) -> list[SearchResult]:
        """Rank all records against the query.

        score = similarity * similarity_weight + importance * importance_weight.
        Ties go to the most recently accessed record.
        """
        if not query or not query.strip():
            raise InvalidInputError("Search query must not be empty")
        if limit <= 0:
            return []

        query_vec = await self.embed(query)
        records = await self.get_all()
        results = self._rank(query_vec, records, limit, min_similarity)

        if results:
            await self._touch([r.record for r in results])

        logger.debug(f"Semantic search returned {len(results)}/{len(records)} for: {query[:50]}")
        return results

    async def _touch(self, records: list[MemoryRecord]) -> None:
        now = self._clock()
        async with storage_errors("update access stats"):
            await self.db.conn.executemany(
                "UPDATE memories SET access_count = access_count + 1, last_accessed = ? "
                "WHERE id = ?",
                [(now, r.id) for r in records],
            )
            await self.db.conn.commit()
        for record in records:
            record.access_count += 1
            record.last_accessed = now

    async def get(self, entry_id: str) -> MemoryRecord | None:
        async with storage_errors("get memory"):
            async with self.db.conn.execute(
                f"SELECT {_COLUMNS} FROM memories WHERE id = ?", (entry_id,)
            ) as cursor:
                row = await cursor.fetchone()
        return self._row_to_record(row) if row else None

    async def get_all(self) -> list[MemoryRecord]:
        """All records, most important first."""
        results = []
        async with storage_errors("list memories"):
            async with self.db.conn.execute(
                f"SELECT {_COLUMNS} FROM memories ORDER BY importance DESC, created_at"
            ) as cursor:
                async for row in cursor:
                    results.append(self._row_to_record(row))
        return results

    async def count(self) -> int:
        async with storage_errors("count memories"):
            async with self.db.conn.execute("SELECT COUNT(*) FROM memories") as cursor:
                row = await cursor.fetchone()
        return row[0]

    async def delete(self, entry_id: str) -> bool:
        """Delete a memory. Returns False if it did not exist."""
        async with storage_errors("delete memory"):
            cursor = await self.db.conn.execute("DELETE FROM memories WHERE id = ?", (entry_id,))
            await self.db.conn.commit()
        return cursor.rowcount > 0

    async def decay(
        self,
        max_age: timedelta = timedelta(days=90),
        importance_floor: float = 0.7,
        access_floor: float = 3,
    ) -> int:
        """Remove old, unimportant, rarely accessed records.

        All three conditions must hold for a record to be removed.
        """
        cutoff = self._clock() - max_age
        async with storage_errors("decay memories"):
            cursor = await self.db.conn.execute(
                "DELETE FROM memories "
                "WHERE last_accessed <= ? AND importance < ? AND access_count < ?",
                (cutoff, importance_floor, access_floor),
            )
            await self.db.conn.commit()
        removed = cursor.rowcount
        if removed:
            logger.info(f"Decay removed {removed} memories")
        return removed

    def _row_to_record(self, row) -> MemoryRecord:
        return MemoryRecord(
            id=row[0],
            content=row[1],
            embedding=unpack_vector(row[2]),
            type=MemoryType(row[3]),
            source=row[4],
            importance=row[5],
            created_at=row[6],
            access_count=row[7],
            last_accessed=row[8],
        )
