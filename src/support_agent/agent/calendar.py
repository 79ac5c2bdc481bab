"""Google Calendar REST client plus the pure availability helpers used by the calendar tools."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Protocol
from zoneinfo import ZoneInfo

import httpx

from support_agent.config import CalendarConfig
from support_agent.errors import MutationError, SupportAgentError, TransientUpstreamError

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass(slots=True)
class BusyInterval:
    start: datetime
    end: datetime


class CalendarClient(Protocol):
    def free_busy(self, token: str, time_min: datetime, time_max: datetime) -> list[BusyInterval]: ...

    def create_event(
        self,
        token: str,
        *,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        attendees: list[str],
    ) -> dict[str, Any]: ...


class GoogleCalendarClient:
    """Thin httpx wrapper over the Calendar v3 `freeBusy` and `events` endpoints.

    The OAuth access token is supplied per call from the turn context and is
    never stored on the client.
    """

    def __init__(self, config: CalendarConfig | None = None, *, client: httpx.Client | None = None) -> None:
        self.config = config or CalendarConfig()
        self._client = client or httpx.Client(timeout=self.config.timeout_seconds)

    def free_busy(self, token: str, time_min: datetime, time_max: datetime) -> list[BusyInterval]:
        body = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "timeZone": self.config.time_zone,
            "items": [{"id": self.config.calendar_id}],
        }
        try:
            response = self._client.post(
                f"{self.config.api_url}/freeBusy",
                json=body,
                headers=_auth_headers(token),
            )
        except httpx.TimeoutException as exc:
            raise TransientUpstreamError("Calendar availability request timed out") from exc
        except httpx.HTTPError as exc:
            raise SupportAgentError(f"Calendar availability request failed: {exc}") from exc

        if response.status_code in _RETRYABLE_STATUS:
            raise TransientUpstreamError(
                f"Calendar provider unavailable (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        if response.status_code != 200:
            raise SupportAgentError(
                f"Calendar availability request failed (HTTP {response.status_code}): {_error_detail(response)}"
            )

        calendars = response.json().get("calendars", {})
        busy = calendars.get(self.config.calendar_id, {}).get("busy", [])
        tz = ZoneInfo(self.config.time_zone)
        return [
            BusyInterval(start=parse_timestamp(item["start"], tz), end=parse_timestamp(item["end"], tz))
            for item in busy
        ]

    def create_event(
        self,
        token: str,
        *,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        attendees: list[str],
    ) -> dict[str, Any]:
        event = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start.isoformat(), "timeZone": self.config.time_zone},
            "end": {"dateTime": end.isoformat(), "timeZone": self.config.time_zone},
            "attendees": [{"email": email} for email in attendees],
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 30},
                ],
            },
        }
        url = f"{self.config.api_url}/calendars/{self.config.calendar_id}/events"
        try:
            response = self._client.post(url, json=event, headers=_auth_headers(token))
        except httpx.TimeoutException as exc:
            raise MutationError(
                "Calendar event request timed out; the event may or may not have been created",
                outcome_unknown=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise MutationError(f"Failed to create calendar event: {exc}") from exc

        if response.status_code not in (200, 201):
            raise MutationError(f"Failed to create calendar event: {_error_detail(response)}")

        created = response.json()
        logger.info("[calendar] created event id=%s", created.get("id"))
        return {"id": created.get("id"), "link": created.get("htmlLink")}


def resolve_date(value: str, today: date) -> date:
    """Accepts `today`, `tomorrow` or an ISO `YYYY-MM-DD` date."""
    lowered = value.strip().lower()
    if lowered == "today":
        return today
    if lowered == "tomorrow":
        return today + timedelta(days=1)
    return date.fromisoformat(lowered)


def repair_window(time_min: str, time_max: str, fallback_end: str = "17:00") -> tuple[str, str]:
    """Normalise an `HH:MM` window.

    Identical bounds mean "am I free at this time" and become a one hour
    window; an end that still is not after the start falls back to the end of
    the business day.
    """
    if time_min == time_max:
        hours, minutes = _split(time_min)
        time_max = f"{(hours + 1) % 24:02d}:{minutes:02d}"
    if _split(time_max) <= _split(time_min):
        time_max = fallback_end
    return time_min, time_max


def combine(day: date, hhmm: str, tz: ZoneInfo) -> datetime:
    hours, minutes = _split(hhmm)
    return datetime(day.year, day.month, day.day, hours, minutes, tzinfo=tz)


def free_slots(
    window_start: datetime,
    window_end: datetime,
    busy: list[BusyInterval],
    slot_minutes: int = 30,
) -> list[tuple[datetime, datetime]]:
    step = timedelta(minutes=slot_minutes)
    slots: list[tuple[datetime, datetime]] = []
    current = window_start
    while current + step <= window_end:
        slot_end = current + step
        if not any(current < interval.end and slot_end > interval.start for interval in busy):
            slots.append((current, slot_end))
        current = slot_end
    return slots


def parse_timestamp(value: str, tz: ZoneInfo) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def _split(hhmm: str) -> tuple[int, int]:
    hours, minutes = hhmm.split(":")
    return int(hours), int(minutes)


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}


def _error_detail(response: httpx.Response) -> str:
    try:
        error = response.json().get("error")
    except ValueError:
        return response.text
    if isinstance(error, dict):
        return str(error.get("message") or response.text)
    return str(error or response.text)
