"""
Working context (short-term memory).

Ordered turn sequence sent to the model. Self-compacts under a token budget:
1. Oversized tool results between head and tail are cut to a preview.
2. If still over budget, everything between the head (system turn + first
   exchange) and the tail (last N turns) collapses into one synthetic system
   turn built by string aggregation.
"""

from collections import Counter
from collections.abc import Iterable
from dataclasses import replace
from typing import TYPE_CHECKING

from engram.core.errors import InvalidInputError
from engram.core.logging import get_logger
from engram.core.typing import MessageDict
from engram.memory.base import Role, Turn

if TYPE_CHECKING:
    from engram.core.config import Settings

logger = get_logger("memory.working")

TRUNCATION_MARKER = "\n...[truncated for brevity]"
COMPACTED_KEY = "compacted"
SNIPPET_CHARS = 50


class WorkingContext:
    """Token-budgeted conversation buffer whose first turn is always the system prompt."""

    def __init__(
        self,
        system_prompt: str,
        max_tokens: int = 80_000,
        tool_truncate_threshold: int = 300,
        tool_preview_chars: int = 500,
        head_size: int = 3,
        tail_size: int = 8,
    ):
        self.max_tokens = max_tokens
        self.tool_truncate_threshold = tool_truncate_threshold
        self.tool_preview_chars = tool_preview_chars
        self.head_size = head_size
        self.tail_size = tail_size
        self.over_budget = False
        self._turns: list[Turn] = [Turn(role=Role.SYSTEM, content=system_prompt)]

    @classmethod
    def from_settings(cls, system_prompt: str, settings: "Settings") -> "WorkingContext":
        return cls(
            system_prompt,
            max_tokens=settings.max_context_tokens,
            tool_truncate_threshold=settings.tool_truncate_threshold,
            tool_preview_chars=settings.tool_preview_chars,
            head_size=settings.head_turns,
            tail_size=settings.tail_turns,
        )

    @classmethod
    def from_turns(cls, turns: Iterable[Turn], **kwargs) -> "WorkingContext":
        """Restore a buffer from saved turns (e.g. a loaded session)."""
        turns = list(turns)
        if not turns or turns[0].role is not Role.SYSTEM:
            raise InvalidInputError("First turn of a working context must be a system turn")
        ctx = cls(turns[0].content, **kwargs)
        ctx._turns = [replace(t, metadata=dict(t.metadata)) for t in turns]
        ctx.compact()
        return ctx

    def add(self, turn: Turn) -> None:
        """Append a turn and compact if over budget."""
        self._turns.append(turn)
        self.compact()

    append = add

    def add_message(self, role: Role | str, content: str) -> Turn:
        turn = Turn(role=Role(role), content=content)
        self.add(turn)
        return turn

    def snapshot(self) -> list[Turn]:
        """Copy of the current turns, in order."""
        return [replace(t, metadata=dict(t.metadata)) for t in self._turns]

    def get_messages(self) -> list[MessageDict]:
        """All turns formatted for an LLM API call."""
        return [t.to_llm_format() for t in self._turns]

    def get_token_count(self) -> int:
        return sum(t.token_estimate for t in self._turns)

    def summary(self) -> str:
        """Plain-text digest of the non-system turns."""
        return "\n".join(
            f"[{t.role.value}] {t.content[:200]}" for t in self._turns if t.role is not Role.SYSTEM
        )

    def __len__(self) -> int:
        return len(self._turns)

    # Compaction

    def compact(self) -> bool:
        """Run both compaction passes if over budget. Returns True if anything changed."""
        if self.get_token_count() <= self.max_tokens:
            self.over_budget = False
            return False

        before = self.get_token_count()
        changed = self._truncate_tool_results()
        if self.get_token_count() > self.max_tokens:
            changed = self._collapse_middle() or changed

        was_over = self.over_budget
        self.over_budget = self.get_token_count() > self.max_tokens
        if self.over_budget and not was_over:
            logger.warning(
                f"Working context over budget after compaction: "
                f"{self.get_token_count()} > {self.max_tokens} tokens ({len(self._turns)} turns)"
            )
        if changed:
            logger.debug(f"Compacted working context: {before} -> {self.get_token_count()} tokens")
        return changed

    def _middle_range(self) -> range:
        return range(self.head_size, len(self._turns) - self.tail_size)

    def _truncate_tool_results(self) -> bool:
        changed = False
        for i in self._middle_range():
            turn = self._turns[i]
            if turn.role is not Role.TOOL or turn.token_estimate <= self.tool_truncate_threshold:
                continue
            preview = turn.content[: self.tool_preview_chars] + TRUNCATION_MARKER
            if len(preview) >= len(turn.content):
                continue
            turn.set_content(preview)
            changed = True
        return changed

    def _collapse_middle(self) -> bool:
        if len(self._turns) <= self.head_size + self.tail_size:
            return False

        middle = self._turns[self.head_size : len(self._turns) - self.tail_size]
        if len(middle) == 1 and COMPACTED_KEY in middle[0].metadata:
            return False

        dropped = 0
        roles: Counter[str] = Counter()
        snippets: list[str] = []
        for turn in middle:
            info = turn.metadata.get(COMPACTED_KEY)
            if info:
                dropped += info["dropped"]
                roles.update(info["roles"])
                snippets.extend(info["user_snippets"])
                continue
            dropped += 1
            roles[turn.role.value] += 1
            if turn.role is Role.USER:
                snippets.append(" ".join(turn.content[:SNIPPET_CHARS].split()))

        budget = sum(t.token_estimate for t in middle)
        marker = Turn(
            role=Role.SYSTEM,
            content=_render_compaction(dropped, roles, snippets, max_chars=budget * 4),
            timestamp=middle[-1].timestamp,
            metadata={
                COMPACTED_KEY: {
                    "dropped": dropped,
                    "roles": dict(sorted(roles.items())),
                    "user_snippets": snippets,
                }
            },
        )

        head = self._turns[: self.head_size]
        tail = self._turns[len(self._turns) - self.tail_size :]
        self._turns = [*head, marker, *tail]
        return True


def _render_compaction(
    dropped: int, roles: Counter[str], snippets: list[str], max_chars: int
) -> str:
    """Describe dropped turns without exceeding the size of what they replace."""
    role_counts = ", ".join(f"{role}={count}" for role, count in sorted(roles.items()))
    lines = [f"[{dropped} earlier turns compacted: {role_counts}]"]

    for i, snippet in enumerate(snippets):
        line = f"- user: {snippet}"
        if len("\n".join([*lines, line])) > max_chars:
            note = f"- (+{len(snippets) - i} more user messages)"
            if len("\n".join([*lines, note])) <= max_chars:
                lines.append(note)
            break
        lines.append(line)

    return "\n".join(lines)[:max_chars]
