"""Multi-tenant customer-support agent: document ingestion, retrieval and tool-calling chat."""

from .config import (
    AgentConfig,
    AppConfig,
    CalendarConfig,
    ChunkingConfig,
    EmbeddingConfig,
    ModelConfig,
    RetrievalConfig,
    StorageConfig,
)

__all__ = [
    "AgentConfig",
    "AppConfig",
    "CalendarConfig",
    "ChunkingConfig",
    "EmbeddingConfig",
    "ModelConfig",
    "RetrievalConfig",
    "StorageConfig",
]
