"""
Error hierarchy for the memory subsystem.

InvalidInputError fails fast and is never retried. StorageFailure always
propagates to the caller. CapabilityFailure is the only class the
orchestrator degrades on.
"""


class EngramError(Exception):
    """Base class for all memory subsystem errors."""


class InvalidInputError(EngramError, ValueError):
    """Empty content, malformed query or out-of-range argument."""


class DimensionMismatchError(InvalidInputError):
    """Vectors of different dimension were compared or produced."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class StorageFailure(EngramError):
    """Backing store I/O error."""


class CapabilityFailure(EngramError):
    """An external capability (embedder, extractor, summarizer) failed or timed out."""
