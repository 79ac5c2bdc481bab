"""Error taxonomy shared by ingestion, retrieval, tools and the chat loop.

- `ValidationError`: malformed input, rejected before any external call.
- `TransientUpstreamError`: warming up / rate limited / timed out; retried with
  bounded backoff, then surfaced.
- `DegradableError`: swallowed by the caller, which continues without the result.
- `MutationError`: a failed external side effect; never retried automatically.
- `PersistenceError`: logging/audit write failure; never blocks an answer.
"""

from __future__ import annotations

from typing import Any


class SupportAgentError(Exception):
    """Base class for all application errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(SupportAgentError):
    """Raised when input fails validation before any external call."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class UnsupportedFileTypeError(ValidationError):
    """Raised when no extractor is registered for a declared file type."""

    def __init__(self, declared_type: str) -> None:
        super().__init__(f"Unsupported file type: {declared_type}")
        self.declared_type = declared_type


class TransientUpstreamError(SupportAgentError):
    """Raised when an upstream dependency is temporarily unavailable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DegradableError(SupportAgentError):
    """Raised when an optional capability fails and may be skipped."""


class MutationError(SupportAgentError):
    """Raised when an external side effect fails or its outcome is unknown."""

    def __init__(self, message: str, *, outcome_unknown: bool = False) -> None:
        super().__init__(message)
        self.outcome_unknown = outcome_unknown


class PersistenceError(SupportAgentError):
    """Raised when a message or audit record cannot be written."""


class ExtractionError(SupportAgentError):
    """Raised when text cannot be extracted from a source document."""


class EmbeddingError(SupportAgentError):
    """Raised when the embedding provider rejects a request."""


class ModelCallError(SupportAgentError):
    """Raised when the chat model call fails."""


class DocumentNotFoundError(SupportAgentError):
    """Raised when a document does not exist within the caller's tenant."""

    def __init__(self, tenant_id: str, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.tenant_id = tenant_id
        self.document_id = document_id
