import pytest

from support_agent.config import RetrievalConfig
from support_agent.ingest.embedder import Embedder
from support_agent.retrieval.retriever import Retriever
from support_agent.retrieval.vector_store import InMemoryVectorStore
from support_agent.types import DocumentChunk


class _AxisEmbedder(Embedder):
    """Maps known words onto fixed axes so similarities are predictable."""

    def __init__(self) -> None:
        self.calls = 0

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        lowered = text.lower()
        return [
            1.0 if "refund" in lowered else 0.0,
            1.0 if "shipping" in lowered else 0.0,
            0.1,
        ]


class _BrokenStore:
    def match(self, tenant_id, query_vector, threshold, k):
        raise ConnectionError("vector store offline")


def _chunk(chunk_id: str, text: str, tenant_id: str = "t1") -> DocumentChunk:
    embedder = _AxisEmbedder()
    return DocumentChunk(
        chunk_id=chunk_id,
        document_id=chunk_id.split("-chunk")[0],
        tenant_id=tenant_id,
        text=text,
        ordinal=0,
        sibling_count=1,
        metadata={"file_name": f"{chunk_id}.txt"},
        embedding=embedder.embed(text),
    )


def test_search_ranks_matches_above_threshold() -> None:
    store = InMemoryVectorStore()
    store.add(
        [
            _chunk("refunds-chunk-0000", "Refund requests are processed within 5 days."),
            _chunk("shipping-chunk-0000", "Shipping takes 3 business days."),
        ]
    )
    retriever = Retriever(store, _AxisEmbedder(), RetrievalConfig(similarity_threshold=0.7, preview_chars=10))

    results = retriever.search("t1", "How do refund requests work?")

    assert [r.chunk_id for r in results] == ["refunds-chunk-0000"]
    assert results[0].similarity == pytest.approx(1.0)
    assert results[0].preview == "Refund req..."
    assert results[0].source == "refunds-chunk-0000.txt"


def test_search_is_tenant_scoped() -> None:
    store = InMemoryVectorStore()
    store.add([_chunk("refunds-chunk-0000", "Refund policy.", tenant_id="other")])
    retriever = Retriever(store, _AxisEmbedder())

    assert retriever.search("t1", "refund") == []


def test_store_failure_degrades_to_empty_results() -> None:
    retriever = Retriever(_BrokenStore(), _AxisEmbedder())

    assert retriever.search("t1", "refund") == []


def test_blank_query_skips_embedding() -> None:
    embedder = _AxisEmbedder()
    retriever = Retriever(InMemoryVectorStore(), embedder)

    assert retriever.search("t1", "   ") == []
    assert embedder.calls == 0


def test_vector_store_rejects_mixed_dimensions() -> None:
    store = InMemoryVectorStore()
    store.add([_chunk("a-chunk-0000", "refund")])
    odd = _chunk("b-chunk-0000", "shipping")
    odd.embedding = [1.0, 0.0]

    with pytest.raises(ValueError):
        store.add([odd])


def test_delete_document_removes_only_its_chunks() -> None:
    store = InMemoryVectorStore()
    store.add([_chunk("a-chunk-0000", "refund"), _chunk("b-chunk-0000", "shipping")])

    assert store.delete_document("t1", "a") == 1
    assert [c.chunk_id for c in store.list_chunks("t1")] == ["b-chunk-0000"]
