"""Shared typing aliases used across modules."""

from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any, TypeAlias

if TYPE_CHECKING:
    from engram.memory.base import Turn

JSONDict: TypeAlias = dict[str, Any]
MessageDict: TypeAlias = dict[str, Any]
Vector: TypeAlias = list[float]

# Raw model output: JSON text or an already-parsed structure
RawOutput: TypeAlias = str | dict[str, Any] | list[Any]

Extractor: TypeAlias = Callable[[str, str], Awaitable[RawOutput]]
Summarizer: TypeAlias = Callable[[Sequence["Turn"]], Awaitable[RawOutput]]
