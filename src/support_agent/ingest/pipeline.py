"""End-to-end ingest pipeline: extract -> chunk -> embed -> persist."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import PurePosixPath

from support_agent.errors import DocumentNotFoundError, ExtractionError
from support_agent.ingest.chunker import ParagraphChunker
from support_agent.ingest.embedder import Embedder
from support_agent.ingest.parser import ExtractorRegistry
from support_agent.ingest.storage import SourceStore
from support_agent.retrieval.vector_store import VectorStore
from support_agent.storage.repository import Repository
from support_agent.types import Document, DocumentChunk, DocumentStatus, utc_now

logger = logging.getLogger(__name__)

_MIN_TEXT_LENGTH = 10


@dataclass(slots=True)
class IngestResult:
    """Outcome reported to the upload entry point."""

    document_id: str
    processed: bool
    chunks_processed: int
    total_chunks: int
    text_length: int


class IngestPipeline:
    """Coordinates extractor/chunker/embedder/vector store stages per document.

    State machine: Uploaded -> Extracting -> Chunking -> Embedding ->
    Processed | Failed. Every transition is written through the repository.

    Extraction or chunking failures mark the document Failed with the error
    message and re-raise; embedding never fails the document, a chunk whose
    embedding fails is simply not stored and `chunk_count` counts successes.
    """

    def __init__(
        self,
        extractors: ExtractorRegistry,
        chunker: ParagraphChunker,
        embedder: Embedder,
        vector_store: VectorStore,
        repository: Repository,
        source_store: SourceStore,
    ) -> None:
        self._extractors = extractors
        self._chunker = chunker
        self._embedder = embedder
        self._vector_store = vector_store
        self._repository = repository
        self._source_store = source_store

    def upload(
        self,
        tenant_id: str,
        storage_ref: str,
        declared_type: str,
        *,
        file_name: str | None = None,
        document_id: str | None = None,
    ) -> IngestResult:
        """Register an uploaded file and run it through the pipeline.

        Unsupported types are rejected before a document record is created.
        """

        self._extractors.resolve(declared_type)
        document = Document(
            document_id=document_id or str(uuid.uuid4()),
            tenant_id=tenant_id,
            storage_ref=storage_ref,
            declared_type=declared_type,
            file_name=file_name or PurePosixPath(storage_ref).name,
        )
        self._repository.create_document(document)
        logger.info(
            "[ingest] uploaded document=%s tenant=%s type=%s",
            document.document_id,
            tenant_id,
            declared_type,
        )
        return self.process(document)

    def process(self, document: Document) -> IngestResult:
        try:
            self._transition(document, DocumentStatus.EXTRACTING)
            data = self._source_store.fetch(document.storage_ref)
            extracted = self._extractors.extract(
                data,
                document.declared_type,
                document_id=document.document_id,
                metadata={
                    "file_name": document.file_name,
                    "declared_type": document.declared_type,
                    "storage_ref": document.storage_ref,
                },
            )
            if len(extracted.text.strip()) < _MIN_TEXT_LENGTH:
                raise ExtractionError("No text could be extracted from file")
            document.text_length = len(extracted.text)

            self._transition(document, DocumentStatus.CHUNKING)
            chunks = self._chunker.chunk_document(extracted, tenant_id=document.tenant_id)
        except Exception as exc:
            self._fail(document, exc)
            raise

        self._transition(document, DocumentStatus.EMBEDDING)
        stored = self._embed_and_store(chunks)

        document.chunk_count = stored
        document.error_message = None
        document.processed_at = utc_now()
        self._transition(document, DocumentStatus.PROCESSED)
        logger.info(
            "[ingest] processed document=%s chars=%d chunks=%d/%d",
            document.document_id,
            document.text_length,
            stored,
            len(chunks),
        )
        return IngestResult(
            document_id=document.document_id,
            processed=True,
            chunks_processed=stored,
            total_chunks=len(chunks),
            text_length=document.text_length,
        )

    def reprocess(self, tenant_id: str, document_id: str) -> IngestResult:
        """Delete a document's chunks, re-fetch its source and run the pipeline again."""

        document = self.status(tenant_id, document_id)
        removed = self._vector_store.delete_document(tenant_id, document_id)
        logger.info("[ingest] reprocessing document=%s removed_chunks=%d", document_id, removed)
        document.chunk_count = 0
        document.processed_at = None
        return self.process(document)

    def status(self, tenant_id: str, document_id: str) -> Document:
        document = self._repository.get_document(tenant_id, document_id)
        if document is None:
            raise DocumentNotFoundError(tenant_id, document_id)
        return document

    def _embed_and_store(self, chunks: list[DocumentChunk]) -> int:
        vectors = self._embedder.embed_batch([chunk.text for chunk in chunks])
        embedded: list[DocumentChunk] = []
        for chunk, vector in zip(chunks, vectors, strict=True):
            if vector is None:
                logger.warning("[ingest] skipping chunk=%s: embedding failed", chunk.chunk_id)
                continue
            chunk.embedding = vector
            embedded.append(chunk)

        stored = 0
        for chunk in embedded:
            try:
                self._vector_store.add([chunk])
                stored += 1
            except Exception as exc:
                logger.warning("[ingest] failed to store chunk=%s: %s", chunk.chunk_id, exc)
        return stored

    def _transition(self, document: Document, status: DocumentStatus) -> None:
        document.status = status
        self._repository.update_document(document)

    def _fail(self, document: Document, exc: Exception) -> None:
        document.status = DocumentStatus.FAILED
        document.error_message = str(exc)
        logger.error("[ingest] document=%s failed: %s", document.document_id, exc)
        try:
            self._repository.update_document(document)
        except Exception as persist_exc:
            logger.error(
                "[ingest] could not record failure for document=%s: %s",
                document.document_id,
                persist_exc,
            )
