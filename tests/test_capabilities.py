"""Tests for the model-backed extractor and summarizer."""

import json
from unittest.mock import AsyncMock

import pytest

from engram.llm.base import LLMConfig, LLMProvider, LLMResponse
from engram.llm.capabilities import format_transcript, make_extractor, make_summarizer
from engram.memory.base import Role, Turn
from engram.memory.database import MemoryDatabase
from engram.memory.episodic import EpisodicLog
from engram.memory.orchestrator import MemoryOrchestrator
from engram.memory.semantic import SemanticStore
from engram.memory.working import WorkingContext


def fake_llm(content: str) -> AsyncMock:
    llm = AsyncMock(spec=LLMProvider)
    llm.complete.return_value = LLMResponse(content=content, model="test-model")
    return llm


@pytest.mark.asyncio
async def test_extractor_prompts_with_exchange():
    """Extractor sends both messages and returns the stripped reply."""
    llm = fake_llm('  [{"content": "Likes tea"}]\n')
    extract = make_extractor(llm)

    result = await extract("I love tea", "Good to know!")

    assert result == '[{"content": "Likes tea"}]'
    messages, config = llm.complete.await_args.args
    assert "User: I love tea" in messages[0]["content"]
    assert "Assistant: Good to know!" in messages[0]["content"]
    assert isinstance(config, LLMConfig)


@pytest.mark.asyncio
async def test_extractor_custom_config():
    """A caller-supplied config is passed through."""
    llm = fake_llm("[]")
    config = LLMConfig(model="cheap-model", max_tokens=50)
    await make_extractor(llm, config)("a", "b")
    assert llm.complete.await_args.args[1] is config


def test_transcript_skips_system_and_truncates():
    """Transcript lists non-system turns, each capped."""
    turns = [
        Turn(role=Role.SYSTEM, content="secret system prompt"),
        Turn(role=Role.USER, content="Hi"),
        Turn(role=Role.TOOL, content="x" * 1000),
    ]
    transcript = format_transcript(turns)
    assert "secret" not in transcript
    assert transcript.splitlines()[0] == "[user] Hi"
    assert transcript.splitlines()[1] == "[tool] " + "x" * 500


@pytest.mark.asyncio
async def test_summarizer_prompts_with_transcript():
    """Summarizer sends the transcript to the model."""
    llm = fake_llm('{"summary": "ok"}')
    summarize = make_summarizer(llm)

    result = await summarize([Turn(role=Role.USER, content="Book a flight")])

    assert result == '{"summary": "ok"}'
    prompt = llm.complete.await_args.args[0][0]["content"]
    assert "[user] Book a flight" in prompt


@pytest.mark.asyncio
async def test_llm_backed_exchange_end_to_end(db: MemoryDatabase):
    """Extractor and summarizer plug into the orchestrator."""
    orch = MemoryOrchestrator(WorkingContext("sys"), SemanticStore(db), EpisodicLog(db))
    extract_llm = fake_llm(
        "```json\n"
        + json.dumps([{"content": "User's cat is named Miso", "type": "fact", "importance": 0.8}])
        + "\n```"
    )
    summary_llm = fake_llm(
        json.dumps({"summary": "Chatted about pets", "outcome": "success", "topics": ["pets"]})
    )

    for text in ("My cat is Miso", "Cute name!", "She is 3", "Nice."):
        orch.working.add_message(Role.USER, text)
    stored = await orch.process_exchange("My cat is Miso", "Cute name!", make_extractor(extract_llm))
    episode_id = await orch.end_session("s1", make_summarizer(summary_llm))

    assert len(stored) == 1
    assert (await orch.semantic.get(stored[0])).content == "User's cat is named Miso"
    episode = await orch.episodic.get(episode_id)
    assert episode.topics == frozenset({"pets"})
    context = await orch.build_context("what is my cat called")
    assert "Miso" in context[1].content
