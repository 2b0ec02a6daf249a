"""
LLM provider interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from engram.core.typing import MessageDict


@dataclass
class LLMResponse:
    """Response from LLM provider."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    metadata: dict | None = None


@dataclass
class LLMConfig:
    """Configuration for LLM call."""

    model: str | None = None
    max_tokens: int = 1024
    temperature: float = 0.3
    system_prompt: str | None = None


class LLMProvider(ABC):
    """Abstract LLM provider."""

    @abstractmethod
    async def complete(self, messages: list[MessageDict], config: LLMConfig) -> LLMResponse:
        """Generate completion from messages."""
        ...
