"""
Text embeddings and vector math.

The default HashEmbedder is a local feature hash: character trigrams and
whitespace-delimited words of the lower-cased text are hashed into a
fixed-size accumulator (trigrams contribute +/-1, words +/-2, the sign taken
from the hash parity) and the result is L2-normalized. Semantically weak,
but deterministic, pure and offline. Any provider satisfying the Embedder
protocol can replace it without changing search semantics.
"""

import hashlib
import math
import struct
from typing import Protocol, runtime_checkable

from engram.core.errors import DimensionMismatchError
from engram.core.typing import Vector

DEFAULT_DIMENSION = 256


@runtime_checkable
class Embedder(Protocol):
    """text -> unit vector of fixed dimension."""

    dimension: int

    async def embed(self, text: str) -> Vector: ...


def _feature_hash(feature: str) -> int:
    # blake2b is stable across processes, unlike the builtin hash()
    digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "little")


def normalize(vec: Vector) -> Vector:
    """L2-normalize a vector. Zero vectors are returned unchanged."""
    mag = math.sqrt(sum(x * x for x in vec))
    if mag == 0:
        return list(vec)
    return [x / mag for x in vec]


class HashEmbedder:
    """Offline character-trigram + word feature hash embedder."""

    def __init__(self, dimension: int = DEFAULT_DIMENSION):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def _add(self, vec: list[float], feature: str, weight: float) -> None:
        h = _feature_hash(feature)
        sign = 1.0 if (h >> 32) % 2 == 0 else -1.0
        vec[h % self.dimension] += sign * weight

    def encode(self, text: str) -> Vector:
        """Synchronous embedding; pure function of the text."""
        normalized = text.lower().strip()
        vec = [0.0] * self.dimension

        # Character trigrams; short inputs count as a single gram
        if len(normalized) < 3:
            if normalized:
                self._add(vec, normalized, 1.0)
        else:
            for i in range(len(normalized) - 2):
                self._add(vec, normalized[i : i + 3], 1.0)

        # Word-level features (weighted higher)
        for word in normalized.split():
            if len(word) < 2:
                continue
            self._add(vec, word, 2.0)

        return normalize(vec)

    async def embed(self, text: str) -> Vector:
        return self.encode(text)


def cosine_similarity(a: Vector, b: Vector) -> float:
    """Dot product of two unit vectors.

    Mismatched dimensions are a programming error and raise.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))
    return sum(x * y for x, y in zip(a, b))


def pack_vector(vec: Vector) -> bytes:
    """Serialize as little-endian float32."""
    return struct.pack(f"<{len(vec)}f", *vec)


def unpack_vector(data: bytes) -> Vector:
    count = len(data) // 4
    return list(struct.unpack(f"<{count}f", data))
