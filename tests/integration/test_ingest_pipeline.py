import pytest

from support_agent.config import ChunkingConfig
from support_agent.errors import ExtractionError, UnsupportedFileTypeError
from support_agent.ingest.chunker import ParagraphChunker
from support_agent.ingest.embedder import HashingEmbedder
from support_agent.ingest.parser import ExtractorRegistry
from support_agent.ingest.pipeline import IngestPipeline
from support_agent.ingest.storage import LocalSourceStore
from support_agent.retrieval.vector_store import InMemoryVectorStore
from support_agent.storage.repository import SqliteRepository
from support_agent.types import DocumentStatus


class PartiallyFailingEmbedder(HashingEmbedder):
    def embed(self, text: str) -> list[float]:
        if "POISON" in text:
            raise RuntimeError("upstream rejected input")
        return super().embed(text)


def _pipeline(tmp_path, embedder=None):
    store = LocalSourceStore(tmp_path / "uploads")
    repository = SqliteRepository(tmp_path / "agent.db")
    vector_store = InMemoryVectorStore()
    pipeline = IngestPipeline(
        ExtractorRegistry(),
        ParagraphChunker(ChunkingConfig(chunk_size=300, overlap=50)),
        embedder or HashingEmbedder(),
        vector_store,
        repository,
        store,
    )
    return pipeline, store, repository, vector_store


def _handbook() -> str:
    paragraphs = [
        f"Section {n}. Customers may return unworn items within thirty days of delivery for a full refund. "
        f"Refunds are issued to the original payment method after inspection at our warehouse."
        for n in range(6)
    ]
    return "\n\n".join(paragraphs)


def test_upload_processes_document_end_to_end(tmp_path) -> None:
    pipeline, store, repository, vector_store = _pipeline(tmp_path)
    store.save("t1/handbook.txt", _handbook().encode())

    result = pipeline.upload("t1", "t1/handbook.txt", "text/plain", document_id="doc-1")

    assert result.processed
    assert result.chunks_processed == result.total_chunks > 1
    document = repository.get_document("t1", "doc-1")
    assert document.status is DocumentStatus.PROCESSED
    assert document.chunk_count == result.chunks_processed
    assert document.file_name == "handbook.txt"
    assert vector_store.count("t1") == result.chunks_processed
    assert vector_store.count("t2") == 0


def test_reprocessing_is_idempotent(tmp_path) -> None:
    pipeline, store, _, vector_store = _pipeline(tmp_path)
    store.save("t1/handbook.txt", _handbook().encode())
    pipeline.upload("t1", "t1/handbook.txt", "txt", document_id="doc-1")
    first = [chunk.text for chunk in vector_store.list_chunks("t1", "doc-1")]

    for _ in range(2):
        result = pipeline.reprocess("t1", "doc-1")

    assert [chunk.text for chunk in vector_store.list_chunks("t1", "doc-1")] == first
    assert result.chunks_processed == len(first)


def test_unsupported_type_is_rejected_before_record_creation(tmp_path) -> None:
    pipeline, _, repository, _ = _pipeline(tmp_path)

    with pytest.raises(UnsupportedFileTypeError):
        pipeline.upload("t1", "t1/tool.exe", "application/x-msdownload", document_id="doc-x")

    assert repository.get_document("t1", "doc-x") is None


def test_empty_extraction_marks_document_failed(tmp_path) -> None:
    pipeline, store, repository, _ = _pipeline(tmp_path)
    store.save("t1/blank.txt", b"   \n  ")

    with pytest.raises(ExtractionError):
        pipeline.upload("t1", "t1/blank.txt", "txt", document_id="doc-2")

    document = repository.get_document("t1", "doc-2")
    assert document.status is DocumentStatus.FAILED
    assert "No text could be extracted" in document.error_message


def test_failed_embeddings_are_skipped_not_fatal(tmp_path) -> None:
    pipeline, store, repository, vector_store = _pipeline(tmp_path, PartiallyFailingEmbedder())
    text = _handbook() + "\n\n" + "POISON paragraph that the embedding provider refuses to handle at all, " * 3
    store.save("t1/mixed.txt", text.encode())

    result = pipeline.upload("t1", "t1/mixed.txt", "txt", document_id="doc-3")

    assert result.processed
    assert result.chunks_processed < result.total_chunks
    assert repository.get_document("t1", "doc-3").chunk_count == vector_store.count("t1")
