from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from pydantic import BaseModel, Field

from support_agent.agent.loop import ToolCallingLoop
from support_agent.agent.model import ModelResponse, ToolCall
from support_agent.agent.registry import ToolName, ToolRegistry, ToolSpec
from support_agent.config import AgentConfig
from support_agent.types import ToolResult, TurnContext

CONTEXT = TurnContext(tenant_id="t1", user_id="u1")


class ScriptedModel:
    """Returns queued responses and records every message list it was given."""

    def __init__(self, *responses: ModelResponse) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[list, object]] = []

    def complete(self, messages, tools=None) -> ModelResponse:
        self.calls.append((list(messages), tools))
        return self.responses.pop(0)


class OrderInput(BaseModel):
    order_id: str = Field(alias="orderId")


class InfoInput(BaseModel):
    info_type: str = Field(alias="infoType")


def _registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(
        ToolSpec(
            name=ToolName.GET_ORDER_STATUS,
            description="order lookup",
            args_schema=OrderInput,
            handler=lambda args, ctx: ToolResult.ok(order_id=args.order_id, status="shipped"),
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.GET_BUSINESS_INFO,
            description="business info",
            args_schema=InfoInput,
            handler=lambda args, ctx: ToolResult.ok(records=[{"title": "Hours", "content": "9-5"}]),
        )
    )
    return registry


def _messages() -> list:
    return [SystemMessage(content="be helpful"), HumanMessage(content="Where is my order?")]


def test_plain_answer_returns_without_tools() -> None:
    model = ScriptedModel(ModelResponse(content="Hello there."))

    result = ToolCallingLoop(model, _registry()).run(_messages(), CONTEXT)

    assert result.answer == "Hello there."
    assert result.tool_invocations == []
    assert result.rounds == 0
    assert len(model.calls) == 1


def test_formatted_answer_is_returned_verbatim_with_tools_enabled() -> None:
    raw = (
        "Run this:\n\n"
        "    pip install foo\n\n"
        "| plan  | price  |\n"
        "|-------|--------|\n"
        "| basic | $10    |\n"
        "  - indented item\n"
    )
    model = ScriptedModel(ModelResponse(content=raw))

    result = ToolCallingLoop(model, _registry()).run(_messages(), CONTEXT, tools_enabled=True)

    assert result.answer == raw
    assert result.tool_invocations == []


def test_two_structured_calls_one_follow_up() -> None:
    model = ScriptedModel(
        ModelResponse(
            content="",
            tool_calls=[
                ToolCall(id="call-a", name="get_order_status", arguments={"orderId": "A-1"}),
                ToolCall(id="call-b", name="get_business_info", arguments={"infoType": "hours"}),
            ],
        ),
        ModelResponse(content="Order A-1 has shipped and we are open 9-5."),
    )

    result = ToolCallingLoop(model, _registry()).run(_messages(), CONTEXT)

    assert result.answer == "Order A-1 has shipped and we are open 9-5."
    assert [i.tool_name for i in result.tool_invocations] == ["get_order_status", "get_business_info"]
    assert len(model.calls) == 2

    follow_up, tools = model.calls[1]
    assert tools is not None
    assert isinstance(follow_up[2], AIMessage)
    assert [tc["id"] for tc in follow_up[2].tool_calls] == ["call-a", "call-b"]
    assert isinstance(follow_up[3], ToolMessage) and follow_up[3].tool_call_id == "call-a"
    assert isinstance(follow_up[4], ToolMessage) and follow_up[4].tool_call_id == "call-b"
    assert '"status": "shipped"' in follow_up[3].content


def test_textual_call_executes_and_reprompts_without_tools() -> None:
    model = ScriptedModel(
        ModelResponse(content='get_order_status(orderId="A-9")'),
        ModelResponse(content="Your order A-9 has shipped."),
    )

    result = ToolCallingLoop(model, _registry()).run(_messages(), CONTEXT)

    assert result.answer == "Your order A-9 has shipped."
    assert [i.result.data["order_id"] for i in result.tool_invocations] == ["A-9"]
    rephrase_messages, tools = model.calls[1]
    assert tools is None
    assert "shipped" in rephrase_messages[-1].content


def test_round_cap_returns_last_raw_output() -> None:
    looping = [
        ModelResponse(
            content=f"still checking {n}",
            tool_calls=[ToolCall(id=f"c{n}", name="get_order_status", arguments={"orderId": "A-1"})],
        )
        for n in range(3)
    ]
    model = ScriptedModel(*looping)

    result = ToolCallingLoop(model, _registry(), AgentConfig(max_tool_rounds=2)).run(_messages(), CONTEXT)

    assert result.capped
    assert result.rounds == 2
    assert result.answer == "still checking 2"
    assert len(model.calls) == 3


def test_tools_disabled_ignores_textual_calls() -> None:
    model = ScriptedModel(ModelResponse(content='get_order_status(orderId="A-1")'))

    result = ToolCallingLoop(model, _registry()).run(_messages(), CONTEXT, tools_enabled=False)

    assert result.tool_invocations == []
    assert model.calls[0][1] is None
    assert result.answer == 'get_order_status(orderId="A-1")'


def test_validation_failure_is_fed_back_to_model() -> None:
    model = ScriptedModel(
        ModelResponse(content="", tool_calls=[ToolCall(id="bad", name="get_order_status", arguments={})]),
        ModelResponse(content="Could you share your order number?"),
    )

    result = ToolCallingLoop(model, _registry()).run(_messages(), CONTEXT)

    assert result.answer == "Could you share your order number?"
    assert result.tool_invocations[0].result.error_type == "validation"
    tool_message = model.calls[1][0][-1]
    assert '"error_type": "validation"' in tool_message.content
