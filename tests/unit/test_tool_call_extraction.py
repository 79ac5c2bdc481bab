from support_agent.agent.extraction import (
    StructuredToolCallExtractor,
    TextualToolCallExtractor,
)
from support_agent.agent.model import ModelResponse, ToolCall, to_ai_message, to_model_response

KNOWN = {"get_order_status", "check_calendar_availability"}


def test_textual_call_with_mixed_quotes_is_parsed() -> None:
    response = ModelResponse(
        content="Let me check. check_calendar_availability(date=\"tomorrow\", timeMin='13:00')"
    )

    [call] = TextualToolCallExtractor().extract(response, KNOWN)

    assert call.name == "check_calendar_availability"
    assert call.arguments == {"date": "tomorrow", "timeMin": "13:00"}


def test_textual_extractor_ignores_unknown_names() -> None:
    response = ModelResponse(content="print(x='1') then nothing else")

    assert TextualToolCallExtractor().extract(response, KNOWN) == []


def test_structured_extractor_returns_all_calls() -> None:
    response = ModelResponse(
        content="",
        tool_calls=[
            ToolCall(id="a", name="get_order_status", arguments={"orderId": "1"}),
            ToolCall(id="b", name="check_calendar_availability", arguments={"date": "today"}),
        ],
    )

    calls = StructuredToolCallExtractor().extract(response, KNOWN)

    assert [call.id for call in calls] == ["a", "b"]


def test_ai_message_round_trip_keeps_tool_calls() -> None:
    response = ModelResponse(
        content="",
        tool_calls=[ToolCall(id="call-1", name="get_order_status", arguments={"orderId": "A-1"})],
    )

    restored = to_model_response(to_ai_message(response))

    assert restored.tool_calls == response.tool_calls
