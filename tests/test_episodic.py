"""Tests for the episodic log."""

import dataclasses
import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from engram.core.errors import CapabilityFailure, InvalidInputError
from engram.memory.base import Outcome, Role, Turn
from engram.memory.database import MemoryDatabase
from engram.memory.episodic import EpisodicLog

from fakes import FakeClock


@pytest.fixture
def log(db: MemoryDatabase, clock: FakeClock) -> EpisodicLog:
    return EpisodicLog(db, clock=clock)


def make_turns(user_text: str = "Help me deploy the API") -> list[Turn]:
    return [
        Turn(role=Role.SYSTEM, content="You are a test agent."),
        Turn(role=Role.USER, content=user_text),
        Turn(role=Role.ASSISTANT, content="Sure, running the deploy script."),
        Turn(role=Role.TOOL, content="deploy ok", metadata={"name": "shell"}),
    ]


def summarizer_for(**fields) -> AsyncMock:
    payload = {
        "summary": "Deployed the API to staging",
        "user_goal": "Deploy the API",
        "outcome": "success",
        "tools_used": ["shell"],
        "topics": ["deployment", "api"],
        "lessons": ["Run migrations before deploying"],
    }
    payload.update(fields)
    return AsyncMock(return_value=json.dumps(payload))


@pytest.mark.asyncio
async def test_save_and_get_episode(log: EpisodicLog, clock: FakeClock):
    """Structured summary and turn snapshot round-trip through storage."""
    turns = make_turns()
    summarizer = summarizer_for()

    episode_id = await log.save_episode("session-1", turns, summarizer)
    episode = await log.get(episode_id)

    summarizer.assert_awaited_once()
    assert episode.session_id == "session-1"
    assert episode.summary == "Deployed the API to staging"
    assert episode.user_goal == "Deploy the API"
    assert episode.outcome == Outcome.SUCCESS
    assert episode.tools_used == frozenset({"shell"})
    assert episode.topics == frozenset({"deployment", "api"})
    assert episode.lessons == ("Run migrations before deploying",)
    assert [t.content for t in episode.turns] == [t.content for t in turns]
    assert episode.turns[3].metadata == {"name": "shell"}
    assert episode.started_at == turns[0].timestamp
    assert episode.ended_at == clock.now


@pytest.mark.asyncio
async def test_save_does_not_mutate_turns(log: EpisodicLog):
    """Input turns are untouched, even if the summarizer mutates what it receives."""
    turns = make_turns()
    before = [t.to_dict() for t in turns]

    async def meddling_summarizer(received):
        received[1].content = "tampered"
        received[1].metadata["x"] = 1
        return json.dumps({"summary": "ok"})

    await log.save_episode("s", turns, meddling_summarizer)
    assert [t.to_dict() for t in turns] == before


@pytest.mark.asyncio
async def test_episode_is_immutable(log: EpisodicLog):
    """Episodes are frozen."""
    episode = await log.get(await log.save_episode("s", make_turns(), summarizer_for()))
    with pytest.raises(dataclasses.FrozenInstanceError):
        episode.summary = "rewritten"


@pytest.mark.asyncio
async def test_invalid_summary_uses_fallback(log: EpisodicLog):
    """Unparseable summarizer output still yields an episode."""
    episode_id = await log.save_episode(
        "s", make_turns("Fix the login bug"), AsyncMock(return_value="not json at all")
    )
    episode = await log.get(episode_id)
    assert episode.outcome == Outcome.PARTIAL
    assert "Fix the login bug" in episode.summary
    assert episode.lessons == ()


@pytest.mark.asyncio
async def test_summarizer_failure(log: EpisodicLog):
    """A raising summarizer is a capability failure; nothing is stored."""
    with pytest.raises(CapabilityFailure):
        await log.save_episode("s", make_turns(), AsyncMock(side_effect=RuntimeError("boom")))
    assert await log.get_recent() == []


@pytest.mark.asyncio
async def test_empty_turns_rejected(log: EpisodicLog):
    """An episode needs turns."""
    with pytest.raises(InvalidInputError):
        await log.save_episode("s", [], summarizer_for())


@pytest.mark.asyncio
async def test_get_recent(log: EpisodicLog, clock: FakeClock):
    """Most recent episodes come first, limited."""
    for i in range(3):
        await log.save_episode(f"s{i}", make_turns(), summarizer_for(summary=f"Episode {i}"))
        clock.advance(hours=1)

    recent = await log.get_recent(limit=2)
    assert [e.summary for e in recent] == ["Episode 2", "Episode 1"]


@pytest.mark.asyncio
async def test_search_episodes_by_keyword(log: EpisodicLog, clock: FakeClock):
    """Keyword search matches summary, goal and topics."""
    await log.save_episode(
        "a", make_turns(), summarizer_for(summary="Deployed the API", topics=["kubernetes"])
    )
    clock.advance(hours=1)
    await log.save_episode(
        "b",
        make_turns("Find a pasta recipe"),
        summarizer_for(summary="Found a recipe", user_goal="Cook dinner", topics=["cooking"]),
    )

    results = await log.search_episodes("how do I deploy to kubernetes", limit=5)
    assert [e.session_id for e in results] == ["a"]

    results = await log.search_episodes("dinner recipe")
    assert [e.session_id for e in results] == ["b"]

    assert await log.search_episodes("quantum chromodynamics") == []


@pytest.mark.asyncio
async def test_search_episodes_ranks_by_hits(log: EpisodicLog, clock: FakeClock):
    """More matching keywords rank higher than recency."""
    await log.save_episode(
        "both", make_turns(), summarizer_for(summary="Deploy the billing service", user_goal="")
    )
    clock.advance(hours=1)
    await log.save_episode(
        "one", make_turns(), summarizer_for(summary="Billing question answered", user_goal="")
    )

    results = await log.search_episodes("deploy billing")
    assert [e.session_id for e in results] == ["both", "one"]


@pytest.mark.asyncio
async def test_search_episodes_empty_query(log: EpisodicLog):
    """Blank queries are invalid."""
    with pytest.raises(InvalidInputError):
        await log.search_episodes("   ")


@pytest.mark.asyncio
async def test_get_by_tool(log: EpisodicLog):
    """Only episodes that used exactly that tool are returned."""
    await log.save_episode("search", make_turns(), summarizer_for(tools_used=["web_search"]))
    await log.save_episode("shell", make_turns(), summarizer_for(tools_used=["shell", "editor"]))

    assert [e.session_id for e in await log.get_by_tool("web_search")] == ["search"]
    assert [e.session_id for e in await log.get_by_tool("editor")] == ["shell"]
    assert await log.get_by_tool("web") == []


@pytest.mark.asyncio
async def test_get_lessons_deduplicated(log: EpisodicLog, clock: FakeClock):
    """Lessons are a deduplicated union across episodes."""
    await log.save_episode("a", make_turns(), summarizer_for(lessons=["Check logs", "Ask first"]))
    clock.advance(hours=1)
    await log.save_episode("b", make_turns(), summarizer_for(lessons=["Ask first", "Pin versions"]))

    assert await log.get_lessons() == ["Check logs", "Ask first", "Pin versions"]


@pytest.mark.asyncio
async def test_delete_and_prune(log: EpisodicLog, clock: FakeClock):
    """Retention removes old episodes; delete removes one."""
    old = await log.save_episode("old", make_turns(), summarizer_for())
    clock.advance(days=40)
    new = await log.save_episode("new", make_turns(), summarizer_for())

    assert await log.prune(timedelta(days=30)) == 1
    assert await log.get(old) is None
    assert await log.delete(new) is True
    assert await log.delete(new) is False
