"""Tool registry and validated executor built on Pydantic v2 models."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
from time import perf_counter
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from support_agent.agent.model import ToolCall
from support_agent.config import AgentConfig
from support_agent.errors import MutationError, TransientUpstreamError
from support_agent.types import ToolInvocation, ToolResult, TurnContext

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    """Closed set of tools the model may request."""

    SEARCH_KNOWLEDGE_BASE = "search_knowledge_base"
    CHECK_CALENDAR_AVAILABILITY = "check_calendar_availability"
    CREATE_CALENDAR_EVENT = "create_calendar_event"
    GET_BUSINESS_INFO = "get_business_info"
    LIST_AVAILABLE_DOCUMENTS = "list_available_documents"
    CREATE_SUPPORT_TICKET = "create_support_ticket"
    SEND_EMAIL_NOTIFICATION = "send_email_notification"
    GET_ORDER_STATUS = "get_order_status"


ToolHandler = Callable[[Any, TurnContext], ToolResult]


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: ToolName
    description: str
    args_schema: type[BaseModel]
    handler: ToolHandler
    read_only: bool = True
    tags: list[str] = Field(default_factory=list)

    def parse_arguments(self, payload: dict[str, Any]) -> BaseModel:
        return self.args_schema.model_validate(payload)


class ToolRegistry:
    """Stores tool specs, validates arguments and dispatches to handlers.

    Validation happens before the handler runs, so malformed arguments never
    reach an external system; the model receives a structured failure it can
    correct within the same turn. Read-only tools are retried on transient
    upstream errors, mutating tools never are.
    """

    def __init__(
        self,
        config: AgentConfig | None = None,
        *,
        audit_sink: Callable[[ToolInvocation], None] | None = None,
    ) -> None:
        self.config = config or AgentConfig()
        self._tools: dict[ToolName, ToolSpec] = {}
        self._audit_sink = audit_sink

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name.value}")
        self._tools[spec.name] = spec

    def require_complete(self) -> None:
        """Fail loudly if any member of `ToolName` has no handler."""
        missing = [name.value for name in ToolName if name not in self._tools]
        if missing:
            raise RuntimeError(f"Tools without handlers: {', '.join(missing)}")

    def get(self, name: str) -> ToolSpec | None:
        try:
            return self._tools.get(ToolName(name))
        except ValueError:
            return None

    def names(self) -> list[str]:
        return [name.value for name in self._tools]

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def execute(self, name: str, payload: dict[str, Any], context: TurnContext) -> ToolResult:
        return self.invoke(ToolCall(id=f"call_{name}", name=name, arguments=payload), context).result

    def invoke(self, call: ToolCall, context: TurnContext) -> ToolInvocation:
        return self.execute_many([call], context)[0]

    def execute_many(self, calls: list[ToolCall], context: TurnContext) -> list[ToolInvocation]:
        """Run one round of tool calls concurrently; results keep request order."""

        if not calls:
            return []
        self._warn_duplicate_mutations(calls)

        pool = ThreadPoolExecutor(max_workers=min(len(calls), self.config.tool_workers))
        try:
            futures = [pool.submit(self._run, call, context) for call in calls]
            invocations: list[ToolInvocation] = []
            for call, future in zip(calls, futures, strict=True):
                try:
                    invocation = future.result(timeout=self.config.tool_timeout_seconds)
                except FutureTimeoutError:
                    invocation = self._timed_out(call, context)
                invocations.append(invocation)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        for invocation in invocations:
            self._audit(invocation)
        return invocations

    def as_langchain_tools(self, context: TurnContext) -> list[StructuredTool]:
        """Export specs as LangChain tools bound to one turn's context."""
        tools: list[StructuredTool] = []
        for spec in self._tools.values():
            tools.append(
                StructuredTool.from_function(
                    name=spec.name.value,
                    description=spec.description,
                    args_schema=spec.args_schema,
                    func=self._build_function(spec, context),
                )
            )
        return tools

    def _build_function(self, spec: ToolSpec, context: TurnContext) -> Callable[..., str]:
        def _callable(**kwargs: Any) -> str:
            result = self.execute(spec.name.value, kwargs, context)
            return json.dumps(result.to_payload(), ensure_ascii=False, default=str)

        return _callable

    def _run(self, call: ToolCall, context: TurnContext) -> ToolInvocation:
        start = perf_counter()
        spec = self.get(call.name)
        if spec is None:
            result = ToolResult.failure(f"Unknown tool: {call.name}", error_type="validation")
            return self._invocation(call, context, result, True, start)

        try:
            arguments = spec.parse_arguments(call.arguments)
        except PydanticValidationError as exc:
            errors = [
                {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ]
            logger.info("[tools] rejected %s arguments: %s", call.name, errors)
            result = ToolResult.failure(
                f"Invalid arguments for {call.name}",
                error_type="validation",
                errors=errors,
            )
            return self._invocation(call, context, result, spec.read_only, start)

        result = self._dispatch(spec, arguments, context)
        return self._invocation(call, context, result, spec.read_only, start)

    def _dispatch(self, spec: ToolSpec, arguments: BaseModel, context: TurnContext) -> ToolResult:
        attempts = 1 + (self.config.read_only_retries if spec.read_only else 0)
        for attempt in range(1, attempts + 1):
            try:
                return spec.handler(arguments, context)
            except TransientUpstreamError as exc:
                if attempt < attempts:
                    logger.info(
                        "[tools] %s transient failure (attempt %d/%d): %s",
                        spec.name.value,
                        attempt,
                        attempts,
                        exc,
                    )
                    continue
                return ToolResult.failure(exc.message, error_type="transient")
            except MutationError as exc:
                logger.error("[tools] %s side effect failed: %s", spec.name.value, exc)
                return ToolResult.failure(exc.message, error_type="mutation")
            except Exception as exc:
                logger.exception("[tools] %s failed", spec.name.value)
                return ToolResult.failure(str(exc), error_type="execution")
        raise AssertionError("unreachable")

    def _timed_out(self, call: ToolCall, context: TurnContext) -> ToolInvocation:
        spec = self.get(call.name)
        read_only = spec.read_only if spec else True
        message = f"Tool {call.name} timed out after {self.config.tool_timeout_seconds:.0f}s"
        if not read_only:
            message += "; the outcome is unknown, please verify before retrying"
        logger.error("[tools] %s", message)
        return ToolInvocation(
            tool_name=call.name,
            call_id=call.id,
            arguments=call.arguments,
            result=ToolResult.failure(message, error_type="timeout"),
            tenant_id=context.tenant_id,
            user_id=context.user_id,
            read_only=read_only,
            latency_ms=self.config.tool_timeout_seconds * 1000.0,
        )

    @staticmethod
    def _invocation(
        call: ToolCall,
        context: TurnContext,
        result: ToolResult,
        read_only: bool,
        start: float,
    ) -> ToolInvocation:
        return ToolInvocation(
            tool_name=call.name,
            call_id=call.id,
            arguments=call.arguments,
            result=result,
            tenant_id=context.tenant_id,
            user_id=context.user_id,
            read_only=read_only,
            latency_ms=(perf_counter() - start) * 1000.0,
        )

    def _audit(self, invocation: ToolInvocation) -> None:
        if self._audit_sink is None:
            return
        try:
            self._audit_sink(invocation)
        except Exception as exc:
            logger.error("[tools] audit write failed for %s: %s", invocation.tool_name, exc)

    def _warn_duplicate_mutations(self, calls: list[ToolCall]) -> None:
        seen: set[str] = set()
        for call in calls:
            spec = self.get(call.name)
            if spec is None or spec.read_only:
                continue
            key = call.name + json.dumps(call.arguments, sort_keys=True, default=str)
            if key in seen:
                # Not deduplicated; both calls execute.
                logger.warning("[tools] identical mutating call %s requested twice in one round", call.name)
            seen.add(key)
