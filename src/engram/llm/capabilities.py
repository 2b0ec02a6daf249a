"""Model-backed extractor and summarizer for the memory orchestrator.

Both return the raw model text; validation happens in memory.decode.
"""

from collections.abc import Sequence

from engram.core.typing import Extractor, Summarizer
from engram.llm.base import LLMConfig, LLMProvider
from engram.memory.base import Role, Turn

EXTRACT_MEMORIES_PROMPT = """Analyze this exchange and extract durable memories worth keeping across sessions.
Focus on: user preferences, personal details, facts about their environment, procedures that worked.
Ignore small talk and anything that only matters right now.
Return a JSON array of objects with keys "content", "type" (fact, preference, procedure or note)
and "importance" (0.0 to 1.0). Return [] if nothing is worth remembering.

User: {user}
Assistant: {assistant}

Memories (JSON array):"""

SUMMARIZE_SESSION_PROMPT = """Summarize this agent session as a JSON object with keys:
"summary" (2-3 sentences), "user_goal", "outcome" (success, partial, failed or abandoned),
"tools_used" (list of tool names), "topics" (list of short keywords),
"lessons" (list of insights worth reusing in future sessions).

Transcript:
{transcript}

Summary (JSON object):"""

TRANSCRIPT_TURN_CHARS = 500


def format_transcript(turns: Sequence[Turn]) -> str:
    return "\n".join(
        f"[{t.role.value}] {t.content[:TRANSCRIPT_TURN_CHARS]}"
        for t in turns
        if t.role is not Role.SYSTEM
    )


def make_extractor(llm: LLMProvider, config: LLMConfig | None = None) -> Extractor:
    """Extractor proposing (content, type, importance) candidates from one exchange."""
    config = config or LLMConfig(max_tokens=500, temperature=0.3)

    async def extract(user_message: str, assistant_message: str) -> str:
        prompt = EXTRACT_MEMORIES_PROMPT.format(user=user_message, assistant=assistant_message)
        response = await llm.complete([{"role": "user", "content": prompt}], config)
        return response.content.strip()

    return extract


def make_summarizer(llm: LLMProvider, config: LLMConfig | None = None) -> Summarizer:
    """Summarizer reducing a session transcript to a structured episode."""
    config = config or LLMConfig(max_tokens=700, temperature=0.3)

    async def summarize(turns: Sequence[Turn]) -> str:
        prompt = SUMMARIZE_SESSION_PROMPT.format(transcript=format_transcript(turns))
        response = await llm.complete([{"role": "user", "content": prompt}], config)
        return response.content.strip()

    return summarize
