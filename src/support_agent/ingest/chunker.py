"""Paragraph-aware chunking with trailing character overlap."""

from __future__ import annotations

import re
from hashlib import sha1

from support_agent.config import ChunkingConfig
from support_agent.types import DocumentChunk, ExtractedDocument

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_SEPARATOR = "\n\n"


class ParagraphChunker:
    """Builds bounded chunks along paragraph boundaries.

    Paragraphs are accumulated (joined by a blank line) until adding the next
    one would push the chunk past `chunk_size`. The chunk is then closed and
    the next chunk is seeded with the last `overlap` characters of the closed
    chunk, so every chunk after the first starts with its predecessor's tail.

    A paragraph that alone exceeds `chunk_size` is cut into `chunk_size`
    pieces first; the pieces are then packed like ordinary paragraphs.
    Chunks shorter than `min_chunk_length` are dropped and the survivors are
    numbered `0..n-1`.

    The output is a pure function of the input text, which is what makes
    document reprocessing idempotent.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def split_text(self, text: str) -> list[str]:
        size = self.config.chunk_size
        overlap = self.config.overlap
        chunks: list[str] = []
        current = ""

        for paragraph in self._paragraphs(text):
            candidate = f"{current}{_SEPARATOR}{paragraph}" if current else paragraph
            if len(candidate) > size and current:
                chunks.append(current)
                tail = current[-overlap:] if overlap else ""
                current = f"{tail}{_SEPARATOR}{paragraph}" if tail else paragraph
            else:
                current = candidate

        if current.strip():
            chunks.append(current)

        return [chunk for chunk in chunks if len(chunk) >= self.config.min_chunk_length]

    def chunk_document(
        self, document: ExtractedDocument, *, tenant_id: str
    ) -> list[DocumentChunk]:
        """Chunk an extracted document into ordered `DocumentChunk` records."""

        texts = self.split_text(document.text)
        total = len(texts)
        return [
            DocumentChunk(
                chunk_id=f"{document.document_id}-chunk-{ordinal:04d}",
                document_id=document.document_id,
                tenant_id=tenant_id,
                text=text,
                ordinal=ordinal,
                sibling_count=total,
                metadata={
                    **document.metadata,
                    "chunk_index": ordinal,
                    "total_chunks": total,
                    "fingerprint": fingerprint(text),
                },
            )
            for ordinal, text in enumerate(texts)
        ]

    def _paragraphs(self, text: str) -> list[str]:
        size = self.config.chunk_size
        pieces: list[str] = []
        for part in _PARAGRAPH_SPLIT.split(text):
            paragraph = part.strip()
            if not paragraph:
                continue
            if len(paragraph) <= size:
                pieces.append(paragraph)
                continue
            pieces.extend(paragraph[i : i + size] for i in range(0, len(paragraph), size))
        return pieces


def fingerprint(text: str) -> str:
    return sha1(text.encode("utf-8")).hexdigest()
