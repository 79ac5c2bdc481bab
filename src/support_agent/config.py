"""Configuration models for the support agent.

The application builds one `AppConfig` at startup (usually via
`AppConfig.from_env`) and hands the relevant section to each component.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator


class EmbeddingConfig(BaseModel):
    """Configures the embedding client and its retry/throttle behavior."""

    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    api_url: str = "https://api-inference.huggingface.co/pipeline/feature-extraction"
    api_key: str | None = None
    dimension: int = Field(default=384, ge=1)
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=2.0, ge=0.0)
    batch_size: int = Field(default=5, ge=1)
    batch_pause_seconds: float = Field(default=0.5, ge=0.0)


class ChunkingConfig(BaseModel):
    """Configures paragraph-aware chunking with trailing overlap."""

    chunk_size: int = Field(default=1000, ge=10)
    overlap: int = Field(default=200, ge=0)
    min_chunk_length: int = Field(default=50, ge=0)

    @model_validator(mode="after")
    def _overlap_smaller_than_chunk(self) -> "ChunkingConfig":
        if self.overlap >= self.chunk_size:
            raise ValueError("overlap must be less than chunk_size")
        return self


class RetrievalConfig(BaseModel):
    """Configures similarity search used for prompt context and tools."""

    similarity_threshold: float = Field(default=0.7, ge=-1.0, le=1.0)
    context_k: int = Field(default=3, ge=1)
    tool_k: int = Field(default=5, ge=1)
    preview_chars: int = Field(default=100, ge=1)


class AgentConfig(BaseModel):
    """Configures conversation assembly and the tool-calling loop."""

    system_prompt: str = "You are a helpful AI customer support assistant."
    history_turns: int = Field(default=5, ge=0)
    max_tool_rounds: int = Field(default=5, ge=1)
    tool_workers: int = Field(default=4, ge=1)
    tool_timeout_seconds: float = Field(default=30.0, gt=0.0)
    read_only_retries: int = Field(default=1, ge=0)
    apology_message: str = (
        "I'm sorry, I wasn't able to process your request right now. "
        "Please try again in a moment."
    )


class ModelConfig(BaseModel):
    """Configures the chat completion model."""

    model: str = "gpt-4o-mini"
    api_key: str | None = None
    base_url: str | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=512, ge=1)
    timeout_seconds: float = Field(default=60.0, gt=0.0)


class CalendarConfig(BaseModel):
    """Configures the calendar provider and availability defaults."""

    api_url: str = "https://www.googleapis.com/calendar/v3"
    calendar_id: str = "primary"
    timeout_seconds: float = Field(default=15.0, gt=0.0)
    default_start: str = "09:00"
    default_end: str = "17:00"
    slot_minutes: int = Field(default=30, ge=5)
    time_zone: str = "UTC"


class StorageConfig(BaseModel):
    """Configures local persistence and uploaded file storage."""

    sqlite_path: str = "support_agent.db"
    upload_root: str = "data/uploads"
    log_file: str | None = None
    log_level: str = "INFO"


class AppConfig(BaseModel):
    """Aggregate configuration passed by reference into every component."""

    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    calendar: CalendarConfig = Field(default_factory=CalendarConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "AppConfig":
        """Build configuration from environment variables (and an optional .env)."""

        load_dotenv(env_file)
        model_api_key = os.getenv("OPENROUTER_API_KEY") or os.getenv("OPENAI_API_KEY")
        base_url = os.getenv("MODEL_BASE_URL")
        if base_url is None and os.getenv("OPENROUTER_API_KEY"):
            base_url = "https://openrouter.ai/api/v1"

        return cls(
            embedding=EmbeddingConfig(
                api_key=os.getenv("HUGGINGFACE_API_KEY") or None,
                model=os.getenv("EMBEDDING_MODEL", EmbeddingConfig().model),
            ),
            model=ModelConfig(
                api_key=model_api_key or None,
                base_url=base_url,
                model=os.getenv("CHAT_MODEL", ModelConfig().model),
            ),
            calendar=CalendarConfig(
                time_zone=os.getenv("CALENDAR_TIME_ZONE", CalendarConfig().time_zone),
            ),
            storage=StorageConfig(
                sqlite_path=os.getenv("SUPPORT_AGENT_DB", StorageConfig().sqlite_path),
                upload_root=os.getenv("SUPPORT_AGENT_UPLOADS", StorageConfig().upload_root),
                log_file=os.getenv("SUPPORT_AGENT_LOG_FILE") or None,
                log_level=os.getenv("SUPPORT_AGENT_LOG_LEVEL", "INFO"),
            ),
        )
