"""Tenant-scoped semantic retriever that degrades to no context on failure."""

from __future__ import annotations

import logging

from support_agent.config import RetrievalConfig
from support_agent.errors import DegradableError
from support_agent.ingest.embedder import Embedder
from support_agent.retrieval.vector_store import VectorStore
from support_agent.types import RetrievalResult

logger = logging.getLogger(__name__)


class Retriever:
    """Embeds a query and asks the vector store for the closest chunks.

    `search` never raises into the conversation path: any failure while
    embedding or searching is logged and an empty list is returned, so a turn
    falls back to plain chat.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedder: Embedder,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.vector_store = vector_store
        self.embedder = embedder
        self.config = config or RetrievalConfig()

    def search(self, tenant_id: str, query: str, k: int | None = None) -> list[RetrievalResult]:
        if not query or not query.strip():
            return []
        limit = k or self.config.context_k
        try:
            return self._search(tenant_id, query.strip(), limit)
        except Exception as exc:
            error = DegradableError(f"Retrieval failed: {exc}")
            logger.warning("[retrieval] tenant=%s degraded to no context: %s", tenant_id, error)
            return []

    def _search(self, tenant_id: str, query: str, k: int) -> list[RetrievalResult]:
        query_vector = self.embedder.embed(query)
        matches = self.vector_store.match(
            tenant_id,
            query_vector,
            self.config.similarity_threshold,
            k,
        )
        results = [
            RetrievalResult(
                chunk_id=match.chunk.chunk_id,
                document_id=match.chunk.document_id,
                content=match.chunk.text,
                similarity=match.similarity,
                preview=_preview(match.chunk.text, self.config.preview_chars),
                source=str(match.chunk.metadata.get("file_name", "")),
            )
            for match in matches
        ]
        results.sort(key=lambda item: item.similarity, reverse=True)
        logger.info(
            "[retrieval] tenant=%s k=%d results=%d top=%s",
            tenant_id,
            k,
            len(results),
            [round(item.similarity, 4) for item in results[:3]],
        )
        return results[:k]


def _preview(text: str, limit: int) -> str:
    return text[:limit] + "..."
