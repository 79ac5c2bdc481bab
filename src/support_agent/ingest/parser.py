"""Text extractors for heterogeneous upload formats, dispatched by declared type."""

from __future__ import annotations

import csv
import io
import json
import re
from abc import ABC, abstractmethod
from typing import Any

from support_agent.errors import ExtractionError, UnsupportedFileTypeError
from support_agent.types import ExtractedDocument

_MIME_TYPES = {
    "text/plain": "txt",
    "text/csv": "csv",
    "text/markdown": "md",
    "application/json": "json",
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
}


def normalize_type(declared_type: str) -> str:
    """Map an extension, file name or MIME type to a bare lowercase extension."""

    value = declared_type.strip().lower()
    if value in _MIME_TYPES:
        return _MIME_TYPES[value]
    if "/" in value:
        return value
    return value.rsplit(".", 1)[-1]


class Extractor(ABC):
    """Base extractor interface used by the ingest pipeline."""

    types: tuple[str, ...] = ()
    format_name: str = "text"

    @abstractmethod
    def extract_text(self, data: bytes) -> str:
        """Return normalized text for raw file bytes."""

    def extract(
        self,
        data: bytes,
        *,
        document_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> ExtractedDocument:
        return ExtractedDocument(
            document_id=document_id,
            text=self.extract_text(data),
            metadata={**(metadata or {}), "format": self.format_name},
        )


class TextExtractor(Extractor):
    """Plain text documents."""

    types = ("txt", "log")

    def extract_text(self, data: bytes) -> str:
        return _decode(data)


class MarkdownExtractor(Extractor):
    """Markdown with formatting syntax removed for cleaner embeddings."""

    types = ("md", "markdown")
    format_name = "markdown"

    def extract_text(self, data: bytes) -> str:
        text = _decode(data)
        text = re.sub(r"```[\s\S]*?```", "", text)
        text = re.sub(r"^#{1,6}\s+", "", text, flags=re.MULTILINE)
        text = re.sub(r"\*\*(.+?)\*\*", r"\1", text)
        text = re.sub(r"\*(.+?)\*", r"\1", text)
        text = re.sub(r"\[(.+?)\]\(.+?\)", r"\1", text)
        return text


class CsvExtractor(Extractor):
    """Tabular data rendered as one readable line per row."""

    types = ("csv",)
    format_name = "tabular"

    def extract_text(self, data: bytes) -> str:
        rows = [row for row in csv.reader(io.StringIO(_decode(data))) if any(cell.strip() for cell in row)]
        if not rows:
            return ""
        header, body = rows[0], rows[1:]
        lines = [f"Table with columns: {', '.join(header)}", ""]
        for idx, row in enumerate(body, start=1):
            lines.append(f"Row {idx}: {', '.join(row)}")
        return "\n".join(lines)


class JsonExtractor(Extractor):
    """Hierarchical JSON flattened into `path.to.key: value` lines."""

    types = ("json",)
    format_name = "hierarchical"

    def extract_text(self, data: bytes) -> str:
        try:
            payload: Any = json.loads(_decode(data))
        except json.JSONDecodeError as exc:
            raise ExtractionError(f"Invalid JSON document: {exc}") from exc
        return "\n".join(_flatten(payload))


class PdfExtractor(Extractor):
    """PDF text via pypdf, one section per page."""

    types = ("pdf",)
    format_name = "pdf"

    def extract_text(self, data: bytes) -> str:
        from pypdf import PdfReader

        try:
            reader = PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except Exception as exc:
            raise ExtractionError(f"PDF extraction failed: {exc}") from exc
        return "\n\n".join(
            f"--- Page {idx} ---\n{text.strip()}" for idx, text in enumerate(pages, start=1)
        ).strip()


class DocxExtractor(Extractor):
    """Word documents via python-docx, paragraph text only."""

    types = ("docx",)
    format_name = "docx"

    def extract_text(self, data: bytes) -> str:
        import docx

        try:
            document = docx.Document(io.BytesIO(data))
        except Exception as exc:
            raise ExtractionError(f"DOCX extraction failed: {exc}") from exc
        return "\n\n".join(p.text for p in document.paragraphs if p.text.strip())


class ExtractorRegistry:
    """Maps declared file type to extractor implementation."""

    def __init__(self, extractors: list[Extractor] | None = None) -> None:
        self._extractors: dict[str, Extractor] = {}
        for extractor in extractors or [
            TextExtractor(),
            MarkdownExtractor(),
            CsvExtractor(),
            JsonExtractor(),
            PdfExtractor(),
            DocxExtractor(),
        ]:
            self.register(extractor)

    def register(self, extractor: Extractor) -> None:
        for file_type in extractor.types:
            self._extractors[file_type.lower()] = extractor

    def supports(self, declared_type: str) -> bool:
        return normalize_type(declared_type) in self._extractors

    def resolve(self, declared_type: str) -> Extractor:
        extractor = self._extractors.get(normalize_type(declared_type))
        if extractor is None:
            raise UnsupportedFileTypeError(declared_type)
        return extractor

    def extract(
        self,
        data: bytes,
        declared_type: str,
        *,
        document_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> ExtractedDocument:
        return self.resolve(declared_type).extract(
            data, document_id=document_id, metadata=metadata
        )


def _decode(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace")


def _flatten(value: Any, prefix: str = "") -> list[str]:
    if isinstance(value, dict):
        lines: list[str] = []
        for key, item in value.items():
            lines.extend(_flatten(item, f"{prefix}{key}."))
        return lines
    if isinstance(value, list):
        lines = []
        for idx, item in enumerate(value):
            lines.extend(_flatten(item, f"{prefix}{idx}."))
        return lines
    return [f"{prefix.rstrip('.')}: {value}" if prefix else str(value)]
