"""Tests for the offline hash embedder and vector helpers."""

import math

import pytest

from engram.core.errors import DimensionMismatchError, InvalidInputError
from engram.memory.embedding import (
    Embedder,
    HashEmbedder,
    cosine_similarity,
    pack_vector,
    unpack_vector,
)


@pytest.fixture
def embedder() -> HashEmbedder:
    return HashEmbedder()


@pytest.mark.parametrize(
    "text",
    ["a", "ok", "User prefers dark mode", "Deploy with `make release`", "Grüße aus München"],
)
def test_self_similarity(embedder: HashEmbedder, text: str):
    """Any non-empty text is maximally similar to itself."""
    vec = embedder.encode(text)
    assert cosine_similarity(vec, vec) == pytest.approx(1.0, abs=1e-9)


def test_unit_norm(embedder: HashEmbedder):
    """Embeddings are L2-normalized."""
    vec = embedder.encode("The quick brown fox jumps over the lazy dog")
    assert math.sqrt(sum(x * x for x in vec)) == pytest.approx(1.0)
    assert len(vec) == 256


def test_deterministic_across_instances():
    """Same text gives the same vector, regardless of instance."""
    assert HashEmbedder().encode("hello world") == HashEmbedder().encode("hello world")


def test_case_insensitive(embedder: HashEmbedder):
    """Input is lower-cased before hashing."""
    assert embedder.encode("Dark Mode") == embedder.encode("dark mode")


def test_empty_text_is_zero_vector(embedder: HashEmbedder):
    """Blank text has no features."""
    vec = embedder.encode("   ")
    assert not any(vec)
    assert cosine_similarity(vec, embedder.encode("anything")) == 0


def test_related_text_more_similar(embedder: HashEmbedder):
    """Shared words raise similarity."""
    query = embedder.encode("deploy project")
    related = embedder.encode("How to deploy the project to production")
    unrelated = embedder.encode("Favourite colour is blue")
    assert cosine_similarity(query, related) > cosine_similarity(query, unrelated)


def test_custom_dimension():
    """Dimension is configurable."""
    assert len(HashEmbedder(dimension=64).encode("hello")) == 64
    with pytest.raises(ValueError):
        HashEmbedder(dimension=0)


def test_dimension_mismatch_raises():
    """Comparing vectors of different sizes is a programming error."""
    with pytest.raises(DimensionMismatchError) as exc_info:
        cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])
    assert isinstance(exc_info.value, InvalidInputError)
    assert exc_info.value.expected == 2
    assert exc_info.value.actual == 3


def test_pack_round_trip(embedder: HashEmbedder):
    """Byte serialization reproduces the vector within float32 precision."""
    vec = embedder.encode("round trip me")
    data = pack_vector(vec)
    assert len(data) == 4 * len(vec)
    assert unpack_vector(data) == pytest.approx(vec, abs=1e-6)


@pytest.mark.asyncio
async def test_async_embed_matches_encode(embedder: HashEmbedder):
    """Async contract returns the same vector as the sync encoder."""
    assert await embedder.embed("same text") == embedder.encode("same text")
    assert isinstance(embedder, Embedder)
