"""Similarity-search collaborator contract and an in-memory adapter."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from math import sqrt
from typing import Protocol

from support_agent.types import DocumentChunk


@dataclass(slots=True)
class ChunkMatch:
    """A chunk returned by similarity search with its cosine similarity."""

    chunk: DocumentChunk
    similarity: float


class VectorStore(Protocol):
    """Minimal tenant-scoped vector store contract for ingestion and retrieval."""

    def add(self, chunks: list[DocumentChunk]) -> None:
        """Insert embedded chunks."""

    def delete_document(self, tenant_id: str, document_id: str) -> int:
        """Remove every chunk of a document; returns the number removed."""

    def match(
        self,
        tenant_id: str,
        query_vector: list[float],
        threshold: float,
        k: int,
    ) -> list[ChunkMatch]:
        """Return up to `k` chunks above `threshold`, most similar first."""


class InMemoryVectorStore:
    """Deterministic vector store used for tests and local prototyping.

    Chunks are partitioned by tenant, and a tenant's corpus keeps one
    embedding dimension: adding a vector of a different size is rejected.
    """

    def __init__(self) -> None:
        self._store: dict[str, dict[str, DocumentChunk]] = {}
        self._dimensions: dict[str, int] = {}
        self._lock = threading.Lock()

    def add(self, chunks: list[DocumentChunk]) -> None:
        with self._lock:
            for chunk in chunks:
                if chunk.embedding is None:
                    raise ValueError(f"Chunk {chunk.chunk_id} has no embedding")
                dimension = self._dimensions.setdefault(chunk.tenant_id, len(chunk.embedding))
                if len(chunk.embedding) != dimension:
                    raise ValueError(
                        f"Embedding dimension {len(chunk.embedding)} does not match "
                        f"tenant corpus dimension {dimension}"
                    )
                self._store.setdefault(chunk.tenant_id, {})[chunk.chunk_id] = chunk

    def delete_document(self, tenant_id: str, document_id: str) -> int:
        with self._lock:
            tenant_chunks = self._store.get(tenant_id, {})
            doomed = [cid for cid, c in tenant_chunks.items() if c.document_id == document_id]
            for chunk_id in doomed:
                del tenant_chunks[chunk_id]
            return len(doomed)

    def match(
        self,
        tenant_id: str,
        query_vector: list[float],
        threshold: float,
        k: int,
    ) -> list[ChunkMatch]:
        with self._lock:
            candidates = list(self._store.get(tenant_id, {}).values())
        scored = (
            ChunkMatch(chunk=chunk, similarity=_cosine_similarity(query_vector, chunk.embedding or []))
            for chunk in candidates
        )
        ranked = sorted(
            (item for item in scored if item.similarity >= threshold),
            key=lambda item: item.similarity,
            reverse=True,
        )
        return ranked[:k]

    def list_chunks(self, tenant_id: str, document_id: str | None = None) -> list[DocumentChunk]:
        with self._lock:
            chunks = list(self._store.get(tenant_id, {}).values())
        if document_id is not None:
            chunks = [chunk for chunk in chunks if chunk.document_id == document_id]
        return sorted(chunks, key=lambda chunk: (chunk.document_id, chunk.ordinal))

    def count(self, tenant_id: str) -> int:
        with self._lock:
            return len(self._store.get(tenant_id, {}))


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
