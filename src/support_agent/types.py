"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DocumentStatus(str, Enum):
    UPLOADED = "uploaded"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    PROCESSED = "processed"
    FAILED = "failed"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(slots=True)
class Document:
    """An uploaded source document and its ingestion state."""

    document_id: str
    tenant_id: str
    storage_ref: str
    declared_type: str
    file_name: str
    status: DocumentStatus = DocumentStatus.UPLOADED
    chunk_count: int = 0
    error_message: str | None = None
    text_length: int = 0
    created_at: str = field(default_factory=utc_now)
    processed_at: str | None = None


@dataclass(slots=True)
class ExtractedDocument:
    """Normalized text extracted from a source document before chunking."""

    document_id: str
    text: str
    metadata: dict[str, Any]


@dataclass(slots=True)
class DocumentChunk:
    """A chunked section of a source document."""

    chunk_id: str
    document_id: str
    tenant_id: str
    text: str
    ordinal: int
    sibling_count: int
    metadata: dict[str, Any]
    embedding: list[float] | None = None


@dataclass(slots=True)
class RetrievalResult:
    """A similarity match surfaced as citation metadata for one turn."""

    chunk_id: str
    document_id: str
    content: str
    similarity: float
    preview: str
    source: str = ""


@dataclass(slots=True)
class ConversationMessage:
    """One persisted conversation entry. Append-only."""

    message_id: str
    tenant_id: str
    user_id: str
    role: Role
    content: str
    tool_call_id: str | None = None
    citations: list[dict[str, Any]] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)


@dataclass(slots=True, frozen=True)
class TurnContext:
    """Tenant/user scope and credentials established at the start of a turn."""

    tenant_id: str
    user_id: str
    user_email: str | None = None
    calendar_token: str | None = None


@dataclass(slots=True)
class ToolResult:
    """Outcome of one tool execution: a success payload or a structured error."""

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_type: str | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def ok(cls, **data: Any) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        *,
        error_type: str = "execution",
        errors: list[dict[str, Any]] | None = None,
        **data: Any,
    ) -> "ToolResult":
        return cls(success=False, error=error, error_type=error_type, errors=errors or [], data=data)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, **self.data}
        if not self.success:
            payload["error"] = self.error
            payload["error_type"] = self.error_type
            if self.errors:
                payload["errors"] = self.errors
        return payload


@dataclass(slots=True)
class ToolInvocation:
    """Audit record of a requested tool call and its outcome."""

    tool_name: str
    call_id: str
    arguments: dict[str, Any]
    result: ToolResult
    tenant_id: str
    user_id: str
    read_only: bool = True
    latency_ms: float = 0.0
    created_at: str = field(default_factory=utc_now)


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    success: bool = True
