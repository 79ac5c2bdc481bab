"""Conversation orchestrator: one user turn from retrieval to persisted answer."""

from __future__ import annotations

import dataclasses
import json
import logging
from typing import Any, Literal

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, ConfigDict, Field

from support_agent.agent.loop import LoopResult, ToolCallingLoop
from support_agent.config import AgentConfig
from support_agent.errors import SupportAgentError
from support_agent.obs.tracing import Timer, TraceStore
from support_agent.retrieval.retriever import Retriever
from support_agent.storage.repository import Repository, new_id
from support_agent.types import (
    ConversationMessage,
    RetrievalResult,
    Role,
    ToolInvocation,
    ToolTrace,
    TurnContext,
)

logger = logging.getLogger(__name__)

CONTEXT_INSTRUCTIONS = (
    "Use the following information from the knowledge base to answer the user's question. "
    "Refer to it by number, and say so if it does not contain the answer."
)
TOOL_INSTRUCTIONS = (
    "You can call tools to look up information or take actions for the user. "
    "Only call a tool when it is needed, and confirm details before creating events or tickets."
)


class HistoryEntry(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ExternalCredentials(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    google_calendar_token: str | None = Field(default=None, alias="googleCalendarToken")


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    history: list[HistoryEntry] | None = None
    use_retrieval: bool = True
    enable_tools: bool = True
    external_credentials: ExternalCredentials | None = None


class ChatResponse(BaseModel):
    message: str
    sources: list[dict[str, Any]] = Field(default_factory=list)
    tools_used: list[dict[str, Any]] = Field(default_factory=list)
    has_context: bool = False
    failed: bool = False
    trace_id: str | None = None


class ConversationOrchestrator:
    """Runs one turn: retrieve -> assemble -> tool loop -> persist.

    A failed model call is not retried; the turn resolves to the configured
    apology with `failed=True`. Retrieval failures already degrade to no
    context inside the retriever. Message persistence failures are logged and
    never hide the computed answer. When a request omits `history`, the most
    recent persisted messages for the user are used instead.
    """

    def __init__(
        self,
        *,
        loop: ToolCallingLoop,
        retriever: Retriever | None,
        repository: Repository,
        trace_store: TraceStore | None = None,
        config: AgentConfig | None = None,
    ) -> None:
        self.loop = loop
        self.retriever = retriever
        self.repository = repository
        self.trace_store = trace_store or TraceStore()
        self.config = config or AgentConfig()

    def chat(self, request: ChatRequest, context: TurnContext) -> ChatResponse:
        turn = _with_credentials(context, request.external_credentials)
        result: LoopResult | None = None
        failed = False

        with Timer() as timer:
            sources: list[RetrievalResult] = []
            if request.use_retrieval and self.retriever is not None:
                sources = self.retriever.search(turn.tenant_id, request.message)

            messages = self.build_messages(request, sources, turn)
            try:
                result = self.loop.run(messages, turn, tools_enabled=request.enable_tools)
                answer = result.answer
            except SupportAgentError as exc:
                logger.error("[chat] tenant=%s model turn failed: %s", turn.tenant_id, exc)
                answer = self.config.apology_message
                failed = True

        citations = [_citation(source) for source in sources]
        invocations = result.tool_invocations if result else []
        self._persist(turn, request.message, answer, citations)

        record = self.trace_store.create_record(
            tenant_id=turn.tenant_id,
            question=request.message,
            answer=answer,
            sources=[source.chunk_id for source in sources],
            tool_traces=[_tool_trace(invocation) for invocation in invocations],
            latency_ms=timer.elapsed_ms,
            failed=failed,
            tool_rounds=result.rounds if result else 0,
            input_text="\n".join(str(m.content) for m in messages),
        )
        logger.info(
            "[chat] tenant=%s sources=%d tools=%d rounds=%d latency_ms=%.1f",
            turn.tenant_id,
            len(sources),
            len(invocations),
            record.tool_rounds,
            record.latency_ms,
        )

        return ChatResponse(
            message=answer,
            sources=citations,
            tools_used=[
                {
                    "name": invocation.tool_name,
                    "arguments": invocation.arguments,
                    "result": invocation.result.to_payload(),
                }
                for invocation in invocations
            ],
            has_context=bool(sources),
            failed=failed,
            trace_id=record.trace_id,
        )

    def build_messages(
        self,
        request: ChatRequest,
        sources: list[RetrievalResult],
        context: TurnContext,
    ) -> list[BaseMessage]:
        """System instructions, then the trimmed history, then the current message."""

        messages: list[BaseMessage] = [
            SystemMessage(content=build_system_prompt(self.config.system_prompt, sources, request.enable_tools))
        ]
        for entry in self._history(request, context):
            if entry.role == "user":
                messages.append(HumanMessage(content=entry.content))
            else:
                messages.append(AIMessage(content=entry.content))
        messages.append(HumanMessage(content=request.message))
        return messages

    def _history(self, request: ChatRequest, context: TurnContext) -> list[HistoryEntry]:
        limit = self.config.history_turns
        if limit == 0:
            return []
        if request.history is not None:
            return request.history[-limit:]
        try:
            stored = self.repository.list_messages(context.tenant_id, context.user_id, limit=limit)
        except SupportAgentError as exc:
            logger.warning("[chat] could not load history: %s", exc)
            return []
        return [
            HistoryEntry(role=message.role.value, content=message.content)
            for message in stored
            if message.role in (Role.USER, Role.ASSISTANT)
        ]

    def _persist(
        self,
        context: TurnContext,
        question: str,
        answer: str,
        citations: list[dict[str, Any]],
    ) -> None:
        for role, content, cited in (
            (Role.USER, question, []),
            (Role.ASSISTANT, answer, citations),
        ):
            try:
                self.repository.append_message(
                    ConversationMessage(
                        message_id=new_id(),
                        tenant_id=context.tenant_id,
                        user_id=context.user_id,
                        role=role,
                        content=content,
                        citations=cited,
                    )
                )
            except SupportAgentError as exc:
                logger.error("[chat] failed to persist %s message: %s", role.value, exc)


def build_system_prompt(base: str, sources: list[RetrievalResult], tools_enabled: bool = False) -> str:
    sections = [base.strip()]
    if tools_enabled:
        sections.append(TOOL_INSTRUCTIONS)
    if sources:
        snippets = "\n\n".join(f"[{idx}] {source.content}" for idx, source in enumerate(sources, start=1))
        sections.append(f"{CONTEXT_INSTRUCTIONS}\n\n{snippets}")
    return "\n\n".join(sections)


def _with_credentials(context: TurnContext, credentials: ExternalCredentials | None) -> TurnContext:
    if credentials is None or not credentials.google_calendar_token:
        return context
    return dataclasses.replace(context, calendar_token=credentials.google_calendar_token)


def _citation(source: RetrievalResult) -> dict[str, Any]:
    return {
        "document_id": source.document_id,
        "chunk_id": source.chunk_id,
        "source": source.source,
        "similarity": round(source.similarity, 4),
        "preview": source.preview,
    }


def _tool_trace(invocation: ToolInvocation) -> ToolTrace:
    output = json.dumps(invocation.result.to_payload(), ensure_ascii=False, default=str)
    return ToolTrace(
        name=invocation.tool_name,
        input_payload=invocation.arguments,
        output_preview=output[:200],
        latency_ms=invocation.latency_ms,
        success=invocation.result.success,
    )
