"""
Configuration management.

Loads settings from environment variables and .env file.
Prefix: ENGRAM_
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ENGRAM_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Storage
    data_dir: Path = Field(default=Path("data"), description="Data storage directory")
    db_name: str = Field(default="memory.db", description="SQLite database name")

    # Working context
    max_context_tokens: int = Field(default=80_000, description="Working context token budget")
    tool_truncate_threshold: int = Field(
        default=300, description="Tool results above this estimate get truncated"
    )
    tool_preview_chars: int = Field(default=500, description="Chars kept from truncated tool results")
    head_turns: int = Field(default=3, description="Turns always kept at the start")
    tail_turns: int = Field(default=8, description="Turns always kept at the end")

    # Embeddings
    embedding_provider: Literal["hash", "litellm"] = Field(
        default="hash", description="Offline feature hash or remote provider"
    )
    embedding_dimension: int = Field(default=256, description="Embedding vector size")
    embedding_model: str = Field(
        default="text-embedding-3-small", description="Remote embedding model"
    )
    capability_timeout: float = Field(
        default=30.0, description="Timeout for embedder/extractor/summarizer calls (s)"
    )

    # Retrieval
    similarity_weight: float = Field(default=0.8, description="Weight of cosine similarity")
    importance_weight: float = Field(default=0.2, description="Weight of stored importance")
    recall_limit: int = Field(default=5, description="Semantic memories injected per turn")
    episode_limit: int = Field(default=3, description="Past episodes injected per turn")
    dedup_threshold: float = Field(default=0.85, description="Score above which a fact is a duplicate")

    # Decay
    decay_max_age_days: float = Field(default=90.0, description="Idle age before decay applies")
    decay_importance_floor: float = Field(default=0.7, description="Only decay below this importance")
    decay_access_floor: float = Field(default=3, description="Only decay below this access count")

    # Model-backed capabilities
    extraction_model: str = Field(
        default="claude-3-haiku-20240307", description="Model used for extraction/summaries"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level name")
    log_file: Path | None = Field(default=None, description="Optional log file path")

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()
