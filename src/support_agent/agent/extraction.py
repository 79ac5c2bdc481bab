"""Strategies for detecting tool calls in a model response.

Upstream models differ in how well they follow the function-calling
protocol, so detection sits behind one interface with two independent
strategies: the structured tool-call list, and a textual fallback for models
that write `tool_name(key="value", ...)` into their reply instead.
"""

from __future__ import annotations

import re
from typing import Protocol

from support_agent.agent.model import ModelResponse, ToolCall

_CALL_PATTERN = re.compile(r"\b(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*\((?P<args>[^()]*)\)")
_PAIR_PATTERN = re.compile(
    r"(?P<key>[A-Za-z_][A-Za-z0-9_]*)\s*=\s*(?:\"(?P<dq>[^\"]*)\"|'(?P<sq>[^']*)')"
)


class ToolCallExtractor(Protocol):
    def extract(self, response: ModelResponse, known_tools: set[str]) -> list[ToolCall]:
        """Return the tool calls requested by `response`, or an empty list."""


class StructuredToolCallExtractor:
    """Reads the model's native tool-call list."""

    def extract(self, response: ModelResponse, known_tools: set[str]) -> list[ToolCall]:
        # Unknown names are kept so the executor can answer with a structured error.
        return [call for call in response.tool_calls if call.name]


class TextualToolCallExtractor:
    """Parses the first `known_tool(key="value", ...)` occurrence in plain text."""

    def extract(self, response: ModelResponse, known_tools: set[str]) -> list[ToolCall]:
        for match in _CALL_PATTERN.finditer(response.content or ""):
            name = match.group("name")
            if name not in known_tools:
                continue
            arguments = {
                pair.group("key"): pair.group("dq") if pair.group("dq") is not None else pair.group("sq")
                for pair in _PAIR_PATTERN.finditer(match.group("args"))
            }
            return [ToolCall(id=f"text_call_{name}", name=name, arguments=arguments)]
        return []
