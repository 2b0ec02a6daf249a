"""
Validated decoding of extractor and summarizer output.

Model output is untrusted: it may be fenced, malformed or partially valid.
Extraction decodes to a tagged variant (ExtractedMemories or NoMemories);
anything that does not parse becomes NoMemories. Summaries fall back to a
plain summary built from the turns themselves.
"""

import json
from collections.abc import Sequence
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from engram.core.logging import get_logger
from engram.core.typing import RawOutput
from engram.memory.base import MemoryType, Outcome, Role, Turn

logger = get_logger("memory.decode")


def load_model_json(raw: RawOutput) -> Any:
    """Parse model output, tolerating ```json fences. Raises ValueError."""
    if not isinstance(raw, str):
        return raw

    content = raw.strip()
    # Handle common LLM output patterns
    if content.startswith("```"):
        parts = content.split("```")
        content = parts[1] if len(parts) > 1 else ""
        if content.startswith("json"):
            content = content[4:]
    return json.loads(content)


class MemoryCandidate(BaseModel):
    """A memory proposed by the extractor."""

    content: str = Field(min_length=1)
    type: MemoryType = MemoryType.NOTE
    importance: float = Field(default=0.5, ge=0.0, le=1.0)

    @field_validator("content")
    @classmethod
    def _strip_content(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("content is blank")
        return value

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class ExtractedMemories(BaseModel):
    kind: Literal["memories"] = "memories"
    memories: list[MemoryCandidate]


class NoMemories(BaseModel):
    kind: Literal["none"] = "none"
    reason: str = ""


Extraction = ExtractedMemories | NoMemories


def decode_extraction(raw: RawOutput) -> Extraction:
    """Decode extractor output into memory candidates.

    Accepts a JSON array of candidates (objects or bare strings) or an
    object with a "memories" array. Invalid candidates are skipped.
    """
    try:
        data = load_model_json(raw)
    except ValueError as e:
        return NoMemories(reason=f"Unparseable extractor output: {e}")

    if isinstance(data, dict):
        if data.get("kind") == "none":
            return NoMemories(reason=str(data.get("reason", "")))
        items = data.get("memories")
    else:
        items = data

    if not isinstance(items, list):
        return NoMemories(reason="Extractor output has no memories list")

    candidates = []
    for item in items:
        if isinstance(item, str):
            item = {"content": item}
        try:
            candidates.append(MemoryCandidate.model_validate(item))
        except ValidationError as e:
            logger.debug(f"Skipping invalid memory candidate {item!r}: {e.error_count()} errors")

    if not candidates:
        return NoMemories(reason="No valid memory candidates")
    return ExtractedMemories(memories=candidates)


class EpisodeSummary(BaseModel):
    """Structured session summary produced by the summarizer."""

    summary: str = Field(min_length=1)
    user_goal: str = ""
    outcome: Outcome = Outcome.PARTIAL
    tools_used: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)
    lessons: list[str] = Field(default_factory=list)

    @field_validator("outcome", mode="before")
    @classmethod
    def _lower_outcome(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("user_goal", mode="before")
    @classmethod
    def _none_goal(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("tools_used", "topics", "lessons", mode="before")
    @classmethod
    def _clean_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list):
            return [str(v).strip() for v in value if str(v).strip()]
        return value


def fallback_summary(turns: Sequence[Turn]) -> EpisodeSummary:
    """Summary used when the summarizer output cannot be decoded."""
    first_user = next((t.content for t in turns if t.role is Role.USER), "")
    goal = " ".join(first_user[:100].split())
    summary = f"Session of {len(turns)} turns"
    if goal:
        summary += f": {goal}"
    return EpisodeSummary(summary=summary, user_goal=goal, outcome=Outcome.PARTIAL)


def decode_summary(raw: RawOutput, turns: Sequence[Turn]) -> EpisodeSummary:
    try:
        data = load_model_json(raw)
        return EpisodeSummary.model_validate(data)
    except (ValueError, ValidationError) as e:
        logger.warning(f"Summarizer output invalid, using fallback summary: {e}")
        return fallback_summary(turns)
