"""LiteLLM adapter - completions and remote embeddings for any provider."""

import asyncio
from typing import TYPE_CHECKING

import litellm
from litellm import acompletion, aembedding

from engram.core.errors import CapabilityFailure, DimensionMismatchError
from engram.core.logging import get_logger
from engram.core.typing import MessageDict, Vector
from engram.llm.base import LLMConfig, LLMProvider, LLMResponse
from engram.memory.embedding import Embedder, HashEmbedder, normalize

if TYPE_CHECKING:
    from engram.core.config import Settings

logger = get_logger("llm.litellm_adapter")

# Disable LiteLLM's verbose logging
litellm.suppress_debug_info = True


class LiteLLMProvider(LLMProvider):
    """Chat completions through LiteLLM."""

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        timeout: float | None = None,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.timeout = timeout

    async def complete(self, messages: list[MessageDict], config: LLMConfig) -> LLMResponse:
        if config.system_prompt:
            messages = [{"role": "system", "content": config.system_prompt}, *messages]

        params = {
            "model": config.model or self.model,
            "messages": messages,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
        }
        if self.api_key:
            params["api_key"] = self.api_key
        if self.api_base:
            params["api_base"] = self.api_base
        if self.timeout:
            params["timeout"] = self.timeout

        logger.debug(f"LiteLLM request: model={params['model']}, messages={len(messages)}")

        try:
            response = await acompletion(**params)
        except Exception as e:
            logger.error(f"LiteLLM error for {params['model']}: {e}")
            raise

        usage = response.usage
        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


class LiteLLMEmbedder:
    """Remote embedding provider behind the Embedder contract.

    Calls are bounded by a timeout so they can be abandoned without leaving
    partial store state; callers embed before touching storage.
    """

    def __init__(
        self,
        model: str,
        dimension: int,
        api_key: str | None = None,
        api_base: str | None = None,
        timeout: float | None = 30.0,
    ):
        self.model = model
        self.dimension = dimension
        self.api_key = api_key
        self.api_base = api_base
        self.timeout = timeout

    async def embed(self, text: str) -> Vector:
        params = {"model": self.model, "input": [text], "dimensions": self.dimension}
        if self.api_key:
            params["api_key"] = self.api_key
        if self.api_base:
            params["api_base"] = self.api_base

        try:
            response = await asyncio.wait_for(aembedding(**params), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise CapabilityFailure(f"Embedding request timed out after {self.timeout}s") from e

        item = response.data[0]
        vec = item["embedding"] if isinstance(item, dict) else item.embedding
        if len(vec) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(vec))
        return normalize([float(x) for x in vec])


def create_embedder(settings: "Settings") -> Embedder:
    """Embedder selected by settings.embedding_provider."""
    if settings.embedding_provider == "litellm":
        logger.info(f"Using remote embeddings: {settings.embedding_model}")
        return LiteLLMEmbedder(
            settings.embedding_model,
            settings.embedding_dimension,
            timeout=settings.capability_timeout,
        )
    return HashEmbedder(settings.embedding_dimension)
