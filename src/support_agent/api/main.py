"""FastAPI entrypoint for document, chat, search and trace endpoints."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import asdict, dataclass
from typing import Any, NoReturn

from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from support_agent import errors
from support_agent.agent.calendar import GoogleCalendarClient
from support_agent.agent.fallback import DeterministicChatModel
from support_agent.agent.loop import ToolCallingLoop
from support_agent.agent.model import ChatModel, create_chat_model
from support_agent.agent.orchestrator import ChatRequest, ChatResponse, ConversationOrchestrator
from support_agent.agent.registry import ToolRegistry
from support_agent.agent.tools import register_builtin_tools
from support_agent.config import AppConfig
from support_agent.ingest.chunker import ParagraphChunker
from support_agent.ingest.embedder import Embedder, HashingEmbedder, HuggingFaceEmbedder
from support_agent.ingest.parser import ExtractorRegistry
from support_agent.ingest.pipeline import IngestPipeline
from support_agent.ingest.storage import LocalSourceStore
from support_agent.obs.logging import configure_logging
from support_agent.obs.tracing import TraceStore
from support_agent.retrieval.retriever import Retriever
from support_agent.retrieval.vector_store import InMemoryVectorStore
from support_agent.storage.repository import SqliteRepository, new_id
from support_agent.types import TurnContext

logger = logging.getLogger(__name__)


class UploadRequest(BaseModel):
    storage_ref: str = Field(min_length=1)
    declared_type: str = Field(min_length=1)
    file_name: str | None = None
    content_base64: str | None = None


class SourceSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=5, ge=1, le=20)


@dataclass(slots=True)
class Services:
    """Every long-lived component, wired once from `AppConfig`."""

    config: AppConfig
    repository: SqliteRepository
    vector_store: InMemoryVectorStore
    source_store: LocalSourceStore
    pipeline: IngestPipeline
    retriever: Retriever
    registry: ToolRegistry
    orchestrator: ConversationOrchestrator
    trace_store: TraceStore
    model_mode: str


def build_services(
    config: AppConfig,
    *,
    model: ChatModel | None = None,
    embedder: Embedder | None = None,
    calendar: Any | None = None,
) -> Services:
    repository = SqliteRepository(config.storage.sqlite_path)
    vector_store = InMemoryVectorStore()
    source_store = LocalSourceStore(config.storage.upload_root)

    if embedder is None:
        embedder = (
            HuggingFaceEmbedder(config.embedding)
            if config.embedding.api_key
            else HashingEmbedder(dimension=config.embedding.dimension, batch_size=config.embedding.batch_size)
        )
    pipeline = IngestPipeline(
        ExtractorRegistry(),
        ParagraphChunker(config.chunking),
        embedder,
        vector_store,
        repository,
        source_store,
    )
    retriever = Retriever(vector_store, embedder, config.retrieval)

    registry = ToolRegistry(config.agent, audit_sink=repository.append_tool_invocation)
    register_builtin_tools(
        registry,
        retriever=retriever,
        repository=repository,
        calendar=calendar or GoogleCalendarClient(config.calendar),
        retrieval_config=config.retrieval,
        calendar_config=config.calendar,
    )
    registry.require_complete()

    model_mode = "langchain"
    if model is None:
        model = create_chat_model(config.model)
    if model is None:
        model = DeterministicChatModel()
        model_mode = "deterministic"

    trace_store = TraceStore()
    orchestrator = ConversationOrchestrator(
        loop=ToolCallingLoop(model, registry, config.agent),
        retriever=retriever,
        repository=repository,
        trace_store=trace_store,
        config=config.agent,
    )
    logger.info("[api] services ready (model=%s, tools=%d)", model_mode, len(registry.names()))
    return Services(
        config=config,
        repository=repository,
        vector_store=vector_store,
        source_store=source_store,
        pipeline=pipeline,
        retriever=retriever,
        registry=registry,
        orchestrator=orchestrator,
        trace_store=trace_store,
        model_mode=model_mode,
    )


def create_app(services: Services | None = None) -> FastAPI:
    if services is None:
        config = AppConfig.from_env()
        configure_logging(config.storage)
        services = build_services(config)

    app = FastAPI(title="Support Agent", version="0.1.0")
    app.state.services = services

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "model_mode": services.model_mode,
            "tools": services.registry.names(),
            "trace_count": len(services.trace_store.list_recent(limit=1000)),
        }

    @app.post("/documents")
    def upload_document(
        request: UploadRequest,
        tenant_id: str = Header(alias="X-Tenant-Id"),
    ) -> dict[str, Any]:
        document_id = new_id()
        try:
            if request.content_base64 is not None:
                services.source_store.save(request.storage_ref, _decode_upload(request.content_base64))
            result = services.pipeline.upload(
                tenant_id,
                request.storage_ref,
                request.declared_type,
                file_name=request.file_name,
                document_id=document_id,
            )
        except errors.SupportAgentError as exc:
            _raise_http(exc, document_id=document_id)
        return asdict(result)

    @app.get("/documents")
    def list_documents(
        tenant_id: str = Header(alias="X-Tenant-Id"),
        file_type: str | None = None,
        limit: int = 20,
    ) -> dict[str, Any]:
        documents = services.repository.list_documents(tenant_id, file_type, limit=limit)
        return {"items": [asdict(document) for document in documents]}

    @app.get("/documents/{document_id}")
    def document_status(document_id: str, tenant_id: str = Header(alias="X-Tenant-Id")) -> dict[str, Any]:
        try:
            document = services.pipeline.status(tenant_id, document_id)
        except errors.SupportAgentError as exc:
            _raise_http(exc)
        return asdict(document)

    @app.post("/documents/{document_id}/reprocess")
    def reprocess_document(document_id: str, tenant_id: str = Header(alias="X-Tenant-Id")) -> dict[str, Any]:
        try:
            result = services.pipeline.reprocess(tenant_id, document_id)
        except errors.SupportAgentError as exc:
            _raise_http(exc, document_id=document_id)
        return asdict(result)

    @app.post("/chat", response_model=ChatResponse)
    def chat(
        request: ChatRequest,
        tenant_id: str = Header(alias="X-Tenant-Id"),
        user_id: str = Header(alias="X-User-Id"),
        user_email: str | None = Header(default=None, alias="X-User-Email"),
    ) -> ChatResponse:
        context = TurnContext(tenant_id=tenant_id, user_id=user_id, user_email=user_email)
        return services.orchestrator.chat(request, context)

    @app.post("/sources/search")
    def source_search(request: SourceSearchRequest, tenant_id: str = Header(alias="X-Tenant-Id")) -> dict[str, Any]:
        hits = services.retriever.search(tenant_id, request.query, k=request.top_k)
        return {"items": [asdict(hit) for hit in hits]}

    @app.get("/traces")
    def traces(limit: int = 20, tenant_id: str | None = Header(default=None, alias="X-Tenant-Id")) -> dict[str, Any]:
        records = [asdict(record) for record in services.trace_store.list_recent(limit=limit, tenant_id=tenant_id)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = services.trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return services.trace_store.summary()

    return app


def _decode_upload(content: str) -> bytes:
    try:
        return base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise errors.ValidationError("content_base64 is not valid base64") from exc


def _raise_http(exc: errors.SupportAgentError, *, document_id: str | None = None) -> NoReturn:
    detail: dict[str, Any] = {"error": exc.message, "type": type(exc).__name__}
    if document_id is not None:
        detail["document_id"] = document_id
    if isinstance(exc, errors.ValidationError):
        if exc.errors:
            detail["errors"] = exc.errors
        raise HTTPException(status_code=400, detail=detail) from exc
    if isinstance(exc, errors.DocumentNotFoundError):
        raise HTTPException(status_code=404, detail=detail) from exc
    if isinstance(exc, errors.ExtractionError):
        raise HTTPException(status_code=422, detail=detail) from exc
    logger.error("[api] unhandled %s: %s", type(exc).__name__, exc)
    raise HTTPException(status_code=500, detail=detail) from exc


_app: FastAPI | None = None


def __getattr__(name: str) -> Any:
    # `uvicorn support_agent.api.main:app` builds the environment-configured app on first access.
    global _app
    if name == "app":
        if _app is None:
            _app = create_app()
        return _app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
