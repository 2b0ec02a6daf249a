"""
Memory orchestrator.

Ties the working context, semantic store and episodic log together:
recall before a model call, extraction after it, an episode at session
end, and periodic decay. Extractor and summarizer are injected async
callables; the stores are never touched while one of them is running.
"""

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

from engram.core.errors import CapabilityFailure
from engram.core.logging import get_logger
from engram.core.typing import Extractor, Summarizer
from engram.memory.base import Episode, MemoryType, Role, SearchResult, Turn
from engram.memory.database import MemoryDatabase
from engram.memory.decode import NoMemories, decode_extraction
from engram.memory.embedding import cosine_similarity
from engram.memory.episodic import EpisodicLog
from engram.memory.semantic import MemoryDraft, SemanticStore
from engram.memory.working import WorkingContext

if TYPE_CHECKING:
    from engram.core.config import Settings
    from engram.memory.embedding import Embedder

logger = get_logger("memory.orchestrator")

REMEMBER_IMPORTANCE = 0.7


def format_recall(memories: list[SearchResult], episodes: list[Episode]) -> str:
    """Format recalled memories and episodes for prompt injection."""
    lines = []
    if memories:
        lines.append("Relevant information from memory:")
        for m in memories:
            ts = m.record.created_at.strftime("%Y-%m-%d")
            lines.append(f"- [{m.record.type.value}, {ts}] {m.record.content}")
    if episodes:
        lines.append("Related past sessions:")
        for e in episodes:
            ts = e.ended_at.strftime("%Y-%m-%d")
            lines.append(f"- [{e.outcome.value}, {ts}] {e.summary}")
            if e.lessons:
                lines.append(f"  Lessons: {'; '.join(e.lessons)}")
    return "\n".join(lines)


class MemoryOrchestrator:
    """Composes recall and extraction around the working context."""

    def __init__(
        self,
        working: WorkingContext,
        semantic: SemanticStore,
        episodic: EpisodicLog,
        session_id: str | None = None,
        recall_limit: int = 5,
        episode_limit: int = 3,
        dedup_threshold: float = 0.85,
        capability_timeout: float | None = None,
        decay_max_age: timedelta = timedelta(days=90),
        decay_importance_floor: float = 0.7,
        decay_access_floor: float = 3,
    ):
        self.working = working
        self.semantic = semantic
        self.episodic = episodic
        self.session_id = session_id or f"session_{uuid4().hex[:12]}"
        self.recall_limit = recall_limit
        self.episode_limit = episode_limit
        self.dedup_threshold = dedup_threshold
        self.capability_timeout = capability_timeout
        self.decay_max_age = decay_max_age
        self.decay_importance_floor = decay_importance_floor
        self.decay_access_floor = decay_access_floor

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        db: MemoryDatabase,
        system_prompt: str,
        embedder: "Embedder | None" = None,
        session_id: str | None = None,
    ) -> "MemoryOrchestrator":
        return cls(
            WorkingContext.from_settings(system_prompt, settings),
            SemanticStore.from_settings(db, settings, embedder),
            EpisodicLog(db, summarize_timeout=settings.capability_timeout),
            session_id=session_id,
            recall_limit=settings.recall_limit,
            episode_limit=settings.episode_limit,
            dedup_threshold=settings.dedup_threshold,
            capability_timeout=settings.capability_timeout,
            decay_max_age=timedelta(days=settings.decay_max_age_days),
            decay_importance_floor=settings.decay_importance_floor,
            decay_access_floor=settings.decay_access_floor,
        )

    async def build_context(self, user_message: str) -> list[Turn]:
        """Working context snapshot with recalled memories injected after the system turn.

        Returns the snapshot unchanged when nothing is recalled or recall fails.
        """
        turns = self.working.snapshot()
        if not user_message.strip():
            return turns

        try:
            memories = await self.semantic.search(user_message, limit=self.recall_limit)
        except CapabilityFailure as e:
            logger.warning(f"Memory recall failed, continuing without it: {e}")
            return turns
        episodes = await self.episodic.search_episodes(user_message, limit=self.episode_limit)

        logger.debug(f"Recall: {len(memories)} memories, {len(episodes)} episodes")
        if not memories and not episodes:
            return turns

        injected = Turn(role=Role.SYSTEM, content=format_recall(memories, episodes))
        return [turns[0], injected, *turns[1:]]

    async def process_exchange(
        self,
        user_message: str,
        assistant_message: str,
        extractor: Extractor,
    ) -> list[str]:
        """Extract memories from one exchange and store the new ones.

        Candidates that already match a stored memory at or above the dedup
        threshold, or share its content, are skipped. All new memories are
        written together; a capability failure stores none of them.
        Returns the ids stored.
        """
        try:
            raw = await asyncio.wait_for(
                extractor(user_message, assistant_message), timeout=self.capability_timeout
            )
        except Exception as e:
            logger.warning(f"Memory extraction failed: {e}")
            return []

        extraction = decode_extraction(raw)
        if isinstance(extraction, NoMemories):
            logger.debug(f"No memories extracted: {extraction.reason}")
            return []

        # Embed and dedup everything first so a failure leaves the store untouched
        drafts: list[MemoryDraft] = []
        try:
            for candidate in extraction.memories:
                draft = MemoryDraft.create(
                    candidate.content,
                    candidate.type,
                    source=self.session_id,
                    importance=candidate.importance,
                )
                draft.embedding = await self.semantic.embed(draft.content)
                if self._is_duplicate(draft, drafts):
                    continue
                duplicate = await self.semantic.find_duplicate(
                    draft.content, draft.embedding, self.dedup_threshold
                )
                if duplicate:
                    logger.debug(
                        f"Skipping duplicate memory (score {duplicate.score:.2f}): "
                        f"{draft.content[:50]}"
                    )
                    continue
                drafts.append(draft)
        except CapabilityFailure as e:
            logger.warning(f"Storing extracted memories aborted, nothing stored: {e}")
            return []

        stored = await self.semantic.store_many(drafts)
        if stored:
            logger.info(f"Stored {len(stored)} new memories from exchange")
        return stored

    def _is_duplicate(self, draft: MemoryDraft, pending: list[MemoryDraft]) -> bool:
        """Whether a draft repeats one already accepted from the same exchange."""
        return any(
            p.id == draft.id
            or cosine_similarity(p.embedding, draft.embedding) >= self.dedup_threshold
            for p in pending
        )

    async def remember(self, content: str, memory_type: MemoryType | str = MemoryType.NOTE) -> str:
        """Explicitly store a memory for the current session."""
        return await self.semantic.store(
            content, memory_type, source=self.session_id, importance=REMEMBER_IMPORTANCE
        )

    async def end_session(self, session_id: str | None, summarizer: Summarizer) -> str | None:
        """Save the session as an episode if it went past the first exchange."""
        turns = self.working.snapshot()
        if len(turns) <= self.working.head_size:
            logger.debug("Session too short for an episode")
            return None

        try:
            return await self.episodic.save_episode(session_id or self.session_id, turns, summarizer)
        except CapabilityFailure as e:
            logger.warning(f"Episode not saved: {e}")
            return None

    async def maintenance(self) -> int:
        """Run decay on the semantic store. Failures are logged, never raised."""
        try:
            removed = await self.semantic.decay(
                max_age=self.decay_max_age,
                importance_floor=self.decay_importance_floor,
                access_floor=self.decay_access_floor,
            )
        except Exception as e:
            logger.error(f"Memory maintenance failed: {e}")
            return 0

        logger.info(f"Maintenance removed {removed} memories")
        return removed
