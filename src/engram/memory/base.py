"""
Memory data model shared by the working context, semantic store and episodic log.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from engram.core.errors import InvalidInputError
from engram.core.typing import MessageDict, Vector


class Role(Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class MemoryType(Enum):
    FACT = "fact"
    PREFERENCE = "preference"
    PROCEDURE = "procedure"
    NOTE = "note"


class Outcome(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    ABANDONED = "abandoned"


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ~4 chars per token for English."""
    return math.ceil(len(text) / 4)


@dataclass
class Turn:
    """Single conversation turn held by the working context."""

    role: Role
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    token_estimate: int = -1
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.role, str):
            self.role = Role(self.role)
        if self.token_estimate < 0:
            self.token_estimate = estimate_tokens(self.content)

    def set_content(self, content: str) -> None:
        """Replace content and recompute the estimate."""
        self.content = content
        self.token_estimate = estimate_tokens(content)

    def to_llm_format(self) -> MessageDict:
        return {"role": self.role.value, "content": self.content}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON storage."""
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "token_estimate": self.token_estimate,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Turn":
        return cls(
            role=Role(data["role"]),
            content=data["content"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            token_estimate=data.get("token_estimate", -1),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class MemoryRecord:
    """Long-term semantic memory record.

    The id is derived from the content, so storing the same content twice
    replaces the earlier record.
    """

    id: str
    content: str
    embedding: Vector
    type: MemoryType
    source: str
    importance: float
    created_at: datetime
    access_count: int = 0
    last_accessed: datetime = field(default_factory=datetime.now)


@dataclass
class SearchResult:
    record: MemoryRecord
    score: float


@dataclass(frozen=True)
class Episode:
    """Summary of one finished session. Immutable once saved."""

    id: str
    session_id: str
    summary: str
    turns: tuple[Turn, ...]
    started_at: datetime
    ended_at: datetime
    outcome: Outcome
    user_goal: str = ""
    tools_used: frozenset[str] = frozenset()
    topics: frozenset[str] = frozenset()
    lessons: tuple[str, ...] = ()


def parse_memory_type(value: "MemoryType | str") -> MemoryType:
    """Coerce a memory type name, rejecting unknown values."""
    if isinstance(value, MemoryType):
        return value
    try:
        return MemoryType(str(value).lower())
    except ValueError:
        raise InvalidInputError(f"Unknown memory type: {value!r}") from None
