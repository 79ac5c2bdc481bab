"""Bounded multi-round exchange between model output and tool results."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage

from support_agent.agent.extraction import (
    StructuredToolCallExtractor,
    TextualToolCallExtractor,
    ToolCallExtractor,
)
from support_agent.agent.model import ChatModel, ModelResponse, to_ai_message
from support_agent.agent.registry import ToolRegistry
from support_agent.config import AgentConfig
from support_agent.types import ToolInvocation, TurnContext

logger = logging.getLogger(__name__)

_REPHRASE_PROMPT = (
    "The tool `{name}` returned: {payload}\n\n"
    "Using this result, answer my previous message in natural language. "
    "Do not mention tools or function calls."
)


@dataclass(slots=True)
class LoopResult:
    """Terminal answer of one turn plus every tool invocation made on the way."""

    answer: str
    tool_invocations: list[ToolInvocation] = field(default_factory=list)
    rounds: int = 0
    raw_output: str = ""
    model_calls: int = 0
    capped: bool = False


class ToolCallingLoop:
    """Drives ModelCall -> (ExecuteTools -> ModelCall)* -> FinalAnswer.

    Structured tool calls all run in one round and their results are appended
    after the assistant's tool-call turn, in request order, before a single
    follow-up model call. When the model instead writes a call into its text,
    that one tool runs and the model is asked to phrase the result without
    tools. A response with neither is the final answer. After
    `max_tool_rounds` rounds the last raw model output is returned as is.
    """

    def __init__(
        self,
        model: ChatModel,
        registry: ToolRegistry,
        config: AgentConfig | None = None,
        *,
        structured: ToolCallExtractor | None = None,
        textual: ToolCallExtractor | None = None,
    ) -> None:
        self.model = model
        self.registry = registry
        self.config = config or AgentConfig()
        self.structured = structured or StructuredToolCallExtractor()
        self.textual = textual or TextualToolCallExtractor()

    def run(
        self,
        messages: Sequence[BaseMessage],
        context: TurnContext,
        *,
        tools_enabled: bool = True,
    ) -> LoopResult:
        history: list[BaseMessage] = list(messages)
        tools = self.registry.as_langchain_tools(context) if tools_enabled else None
        known = set(self.registry.names()) if tools_enabled else set()
        result = LoopResult(answer="")

        response = self._call(history, tools, result)
        while True:
            result.raw_output = response.content
            structured_calls = self.structured.extract(response, known) if tools_enabled else []
            textual_calls = [] if structured_calls or not tools_enabled else self.textual.extract(response, known)

            if not structured_calls and not textual_calls:
                result.answer = response.content
                return result

            if result.rounds >= self.config.max_tool_rounds:
                logger.warning(
                    "[loop] tool round cap (%d) reached without a final answer",
                    self.config.max_tool_rounds,
                )
                result.answer = response.content
                result.capped = True
                return result

            result.rounds += 1
            if structured_calls:
                invocations = self.registry.execute_many(structured_calls, context)
                result.tool_invocations.extend(invocations)
                history.append(to_ai_message(response))
                history.extend(
                    ToolMessage(
                        content=_payload(invocation),
                        tool_call_id=invocation.call_id,
                        name=invocation.tool_name,
                    )
                    for invocation in invocations
                )
                logger.info(
                    "[loop] round=%d structured tools=%s",
                    result.rounds,
                    [invocation.tool_name for invocation in invocations],
                )
                response = self._call(history, tools, result)
            else:
                invocation = self.registry.invoke(textual_calls[0], context)
                result.tool_invocations.append(invocation)
                history.append(AIMessage(content=response.content))
                history.append(
                    HumanMessage(
                        content=_REPHRASE_PROMPT.format(
                            name=invocation.tool_name, payload=_payload(invocation)
                        )
                    )
                )
                logger.info("[loop] round=%d textual tool=%s", result.rounds, invocation.tool_name)
                response = self._call(history, None, result)

    def _call(self, history: list[BaseMessage], tools: list | None, result: LoopResult) -> ModelResponse:
        result.model_calls += 1
        return self.model.complete(history, tools)


def _payload(invocation: ToolInvocation) -> str:
    return json.dumps(invocation.result.to_payload(), ensure_ascii=False, default=str)
