"""Chat model contract and the LangChain-backed adapter."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

from langchain_core.messages import AIMessage, BaseMessage

from support_agent.config import ModelConfig
from support_agent.errors import ModelCallError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ModelResponse:
    """One model completion: free text and/or structured tool calls."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)


class ChatModel(Protocol):
    """Completion call: `{messages[], tools[]?}` -> `{content, tool_calls[]?}`."""

    def complete(
        self,
        messages: Sequence[BaseMessage],
        tools: Sequence[Any] | None = None,
    ) -> ModelResponse:
        """Return the model's next message."""


class LangChainChatModel:
    """Adapts any LangChain chat model (e.g. `ChatOpenAI`) to `ChatModel`.

    Tools are bound per call with `bind_tools`; any provider error is raised
    as `ModelCallError` and is not retried here.
    """

    def __init__(self, llm: Any) -> None:
        self.llm = llm

    def complete(
        self,
        messages: Sequence[BaseMessage],
        tools: Sequence[Any] | None = None,
    ) -> ModelResponse:
        try:
            runnable = self.llm.bind_tools(list(tools)) if tools else self.llm
            message = runnable.invoke(list(messages))
        except Exception as exc:
            raise ModelCallError(f"Model call failed: {exc}") from exc
        return to_model_response(message)


def to_model_response(message: Any) -> ModelResponse:
    content = _content_text(getattr(message, "content", message))
    tool_calls: list[ToolCall] = []
    for idx, raw in enumerate(getattr(message, "tool_calls", None) or []):
        arguments = raw.get("args", {})
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError:
                arguments = {}
        tool_calls.append(
            ToolCall(
                id=str(raw.get("id") or f"call_{idx}"),
                name=str(raw.get("name", "")),
                arguments=arguments if isinstance(arguments, dict) else {},
            )
        )
    return ModelResponse(content=content, tool_calls=tool_calls)


def to_ai_message(response: ModelResponse) -> AIMessage:
    """Rebuild the assistant turn that requested tools, for the follow-up call."""

    return AIMessage(
        content=response.content,
        tool_calls=[
            {"id": call.id, "name": call.name, "args": call.arguments}
            for call in response.tool_calls
        ],
    )


def create_chat_model(config: ModelConfig) -> ChatModel | None:
    """Build the configured LangChain model, or `None` when no key is set."""

    if not config.api_key:
        return None

    from langchain_openai import ChatOpenAI

    llm = ChatOpenAI(
        model=config.model,
        api_key=config.api_key,
        base_url=config.base_url,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        timeout=config.timeout_seconds,
        max_retries=0,
    )
    logger.info("[model] using %s (base_url=%s)", config.model, config.base_url or "default")
    return LangChainChatModel(llm)


def _content_text(content: Any) -> str:
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return " ".join(parts).strip()
    return str(content or "")
