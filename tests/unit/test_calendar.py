import json
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import httpx
import pytest

from support_agent.agent.calendar import (
    BusyInterval,
    GoogleCalendarClient,
    combine,
    free_slots,
    repair_window,
    resolve_date,
)
from support_agent.config import CalendarConfig
from support_agent.errors import MutationError, TransientUpstreamError

UTC = ZoneInfo("UTC")


def _client(handler) -> GoogleCalendarClient:
    return GoogleCalendarClient(CalendarConfig(), client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_resolve_relative_dates() -> None:
    today = date(2025, 3, 10)

    assert resolve_date("today", today) == today
    assert resolve_date("Tomorrow", today) == date(2025, 3, 11)
    assert resolve_date("2025-04-01", today) == date(2025, 4, 1)


def test_repair_window_rules() -> None:
    assert repair_window("13:00", "13:00") == ("13:00", "14:00")
    assert repair_window("15:00", "10:00") == ("15:00", "17:00")
    assert repair_window("09:00", "12:30") == ("09:00", "12:30")


def test_free_slots_skip_busy_intervals() -> None:
    day = date(2025, 3, 10)
    start, end = combine(day, "09:00", UTC), combine(day, "11:00", UTC)
    busy = [BusyInterval(start=combine(day, "09:30", UTC), end=combine(day, "10:15", UTC))]

    slots = free_slots(start, end, busy, 30)

    assert [(s.strftime("%H:%M"), e.strftime("%H:%M")) for s, e in slots] == [
        ("09:00", "09:30"),
        ("10:30", "11:00"),
    ]


def test_free_busy_request_and_parsing() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"calendars": {"primary": {"busy": [{"start": "2025-03-10T13:00:00Z", "end": "2025-03-10T13:30:00Z"}]}}},
        )

    day = date(2025, 3, 10)
    busy = _client(handler).free_busy("tok", combine(day, "13:00", UTC), combine(day, "14:00", UTC))

    body = json.loads(seen[0].content)
    assert seen[0].url.path.endswith("/freeBusy")
    assert seen[0].headers["Authorization"] == "Bearer tok"
    assert body["items"] == [{"id": "primary"}]
    assert body["timeMax"].startswith("2025-03-10T14:00:00")
    assert busy[0].start == datetime(2025, 3, 10, 13, 0, tzinfo=timezone.utc)


def test_free_busy_rate_limit_is_transient() -> None:
    client = _client(lambda request: httpx.Response(503))

    with pytest.raises(TransientUpstreamError):
        client.free_busy("tok", datetime(2025, 3, 10, 9, tzinfo=UTC), datetime(2025, 3, 10, 17, tzinfo=UTC))


def test_create_event_sends_reminders_and_attendee() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "evt-1", "htmlLink": "https://calendar.test/evt-1"})

    created = _client(handler).create_event(
        "tok",
        summary="Demo",
        description="",
        start=datetime(2025, 3, 10, 14, tzinfo=UTC),
        end=datetime(2025, 3, 10, 15, tzinfo=UTC),
        attendees=["guest@example.com"],
    )

    assert created == {"id": "evt-1", "link": "https://calendar.test/evt-1"}
    assert seen[0]["attendees"] == [{"email": "guest@example.com"}]
    assert seen[0]["reminders"]["overrides"] == [
        {"method": "email", "minutes": 1440},
        {"method": "popup", "minutes": 30},
    ]


def test_create_event_failure_is_a_mutation_error() -> None:
    client = _client(lambda request: httpx.Response(403, json={"error": {"message": "insufficient scope"}}))

    with pytest.raises(MutationError, match="insufficient scope"):
        client.create_event(
            "tok",
            summary="Demo",
            description="",
            start=datetime(2025, 3, 10, 14, tzinfo=UTC),
            end=datetime(2025, 3, 10, 15, tzinfo=UTC),
            attendees=[],
        )


def test_create_event_timeout_has_unknown_outcome() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(MutationError) as excinfo:
        _client(handler).create_event(
            "tok",
            summary="Demo",
            description="",
            start=datetime(2025, 3, 10, 14, tzinfo=UTC),
            end=datetime(2025, 3, 10, 15, tzinfo=UTC),
            attendees=[],
        )

    assert excinfo.value.outcome_unknown
