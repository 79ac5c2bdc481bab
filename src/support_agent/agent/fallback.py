"""Deterministic chat model used when no model credentials are configured."""

from __future__ import annotations

import re
from typing import Any, Sequence

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from support_agent.agent.model import ModelResponse

_SNIPPET = re.compile(r"^\[(?P<idx>\d+)\]\s+(?P<body>.+?)(?=\n\[\d+\]\s|\Z)", re.MULTILINE | re.DOTALL)

NO_EVIDENCE_ANSWER = (
    "I couldn't find verified information about that in the uploaded documents. "
    "Could you rephrase the question or share more details?"
)


class DeterministicChatModel:
    """`ChatModel` that answers from the numbered context snippets in the system message.

    Keeps the same contract as `LangChainChatModel` so the orchestrator and
    loop run unchanged in local and offline environments. It never requests
    tools.
    """

    def __init__(self, max_snippets: int = 3, snippet_chars: int = 220) -> None:
        self.max_snippets = max_snippets
        self.snippet_chars = snippet_chars

    def complete(
        self,
        messages: Sequence[BaseMessage],
        tools: Sequence[Any] | None = None,
    ) -> ModelResponse:
        del tools  # deterministic answers never call tools.
        system = next((m for m in messages if isinstance(m, SystemMessage)), None)
        snippets = _parse_snippets(str(system.content)) if system else []
        if not snippets:
            return ModelResponse(content=NO_EVIDENCE_ANSWER)

        question = next(
            (str(m.content) for m in reversed(messages) if isinstance(m, HumanMessage)),
            "",
        )
        lines = [f"Here is what I found about \"{question.strip()}\":"] if question.strip() else []
        for idx, body in snippets[: self.max_snippets]:
            lines.append(f"{idx}. {_truncate(' '.join(body.split()), self.snippet_chars)} [{idx}]")
        return ModelResponse(content="\n".join(lines))


def _parse_snippets(text: str) -> list[tuple[str, str]]:
    return [(match.group("idx"), match.group("body").strip()) for match in _SNIPPET.finditer(text)]


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
