from pydantic import BaseModel

from support_agent.agent.registry import ToolName, ToolRegistry, ToolSpec
from support_agent.types import ToolResult, TurnContext


class EchoInput(BaseModel):
    query: str


def _echo(data: EchoInput, context: TurnContext) -> ToolResult:
    return ToolResult.ok(text=data.query.upper())


def test_audit_sink_captures_latency_and_payload() -> None:
    observed = []
    registry = ToolRegistry(audit_sink=observed.append)
    registry.register(
        ToolSpec(
            name=ToolName.SEARCH_KNOWLEDGE_BASE,
            description="uppercase",
            args_schema=EchoInput,
            handler=_echo,
        )
    )

    result = registry.execute("search_knowledge_base", {"query": "hello"}, TurnContext("t1", "u1"))

    assert result.data == {"text": "HELLO"}
    assert len(observed) == 1
    assert observed[0].tool_name == "search_knowledge_base"
    assert observed[0].arguments == {"query": "hello"}
    assert observed[0].tenant_id == "t1"
    assert observed[0].read_only
    assert observed[0].latency_ms >= 0.0


def test_audit_sink_failure_does_not_fail_the_call() -> None:
    def _broken_sink(invocation) -> None:
        raise RuntimeError("audit table locked")

    registry = ToolRegistry(audit_sink=_broken_sink)
    registry.register(
        ToolSpec(
            name=ToolName.SEARCH_KNOWLEDGE_BASE,
            description="uppercase",
            args_schema=EchoInput,
            handler=_echo,
        )
    )

    result = registry.execute("search_knowledge_base", {"query": "hello"}, TurnContext("t1", "u1"))

    assert result.success
