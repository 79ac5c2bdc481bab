"""Built-in tool implementations for the support agent."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import date, datetime
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from support_agent.agent.calendar import (
    CalendarClient,
    combine,
    free_slots,
    repair_window,
    resolve_date,
)
from support_agent.agent.registry import ToolName, ToolRegistry, ToolSpec
from support_agent.config import CalendarConfig, RetrievalConfig
from support_agent.errors import MutationError, PersistenceError, SupportAgentError, TransientUpstreamError
from support_agent.retrieval.retriever import Retriever
from support_agent.storage.repository import Repository
from support_agent.types import ToolResult, TurnContext

logger = logging.getLogger(__name__)

_HHMM = r"^([01]\d|2[0-3]):[0-5]\d$"
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

CALENDAR_NOT_CONNECTED = (
    "It looks like your Google Calendar is not connected yet. To check availability or "
    "schedule meetings, open the Integrations tab and click 'Connect Google Calendar', "
    "then ask me again."
)


class InfoType(str, Enum):
    HOURS = "hours"
    CONTACT = "contact"
    POLICY = "policy"
    FAQ = "faq"
    GENERAL = "general"


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketCategory(str, Enum):
    TECHNICAL = "technical"
    BILLING = "billing"
    PRODUCT = "product"
    GENERAL = "general"


class EmailTemplate(str, Enum):
    CONFIRMATION = "confirmation"
    FOLLOWUP = "followup"
    INFORMATION = "information"
    ALERT = "alert"


class _ToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SearchKnowledgeBaseInput(_ToolInput):
    query: str = Field(min_length=1, description="What to look up in the uploaded documents.")


class CheckCalendarAvailabilityInput(_ToolInput):
    date: str = Field(description="Date to check: YYYY-MM-DD, 'today' or 'tomorrow'.")
    time_min: str | None = Field(default=None, alias="timeMin", pattern=_HHMM, description="Start time, 24h HH:MM.")
    time_max: str | None = Field(
        default=None,
        alias="timeMax",
        pattern=_HHMM,
        description="End time, 24h HH:MM. For a single time like 1pm use 14:00.",
    )

    @field_validator("date")
    @classmethod
    def _known_date(cls, value: str) -> str:
        lowered = value.strip().lower()
        if lowered not in ("today", "tomorrow"):
            date.fromisoformat(lowered)
        return lowered


class CreateCalendarEventInput(_ToolInput):
    title: str = Field(min_length=1)
    description: str | None = None
    start_date_time: datetime = Field(alias="startDateTime", description="ISO 8601 start, e.g. 2025-01-15T14:00:00.")
    end_date_time: datetime = Field(alias="endDateTime", description="ISO 8601 end.")
    attendee_email: str | None = Field(default=None, alias="attendeeEmail")

    @field_validator("attendee_email")
    @classmethod
    def _valid_email(cls, value: str | None) -> str | None:
        if value is not None and not _EMAIL.match(value):
            raise ValueError("must be an email address")
        return value

    @model_validator(mode="after")
    def _end_after_start(self) -> "CreateCalendarEventInput":
        if self.end_date_time <= self.start_date_time:
            raise ValueError("endDateTime must be after startDateTime")
        return self


class GetBusinessInfoInput(_ToolInput):
    info_type: InfoType = Field(alias="infoType")


class ListAvailableDocumentsInput(_ToolInput):
    file_type: str | None = Field(default=None, alias="fileType", description="Optional filter such as pdf or csv.")


class CreateSupportTicketInput(_ToolInput):
    subject: str = Field(min_length=1)
    description: str = Field(min_length=1)
    priority: TicketPriority = TicketPriority.MEDIUM
    category: TicketCategory = TicketCategory.GENERAL


class SendEmailNotificationInput(_ToolInput):
    recipient_email: str = Field(alias="recipientEmail")
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)
    template_type: EmailTemplate = Field(default=EmailTemplate.INFORMATION, alias="templateType")

    @field_validator("recipient_email")
    @classmethod
    def _valid_email(cls, value: str) -> str:
        if not _EMAIL.match(value):
            raise ValueError("must be an email address")
        return value


class GetOrderStatusInput(_ToolInput):
    order_id: str = Field(min_length=1, alias="orderId")


def register_builtin_tools(
    registry: ToolRegistry,
    *,
    retriever: Retriever,
    repository: Repository,
    calendar: CalendarClient | None = None,
    retrieval_config: RetrievalConfig | None = None,
    calendar_config: CalendarConfig | None = None,
    clock: Callable[[], datetime] | None = None,
) -> None:
    """Register the full `ToolName` set.

    Tools:
    - `search_knowledge_base`: similarity search over the tenant's documents.
    - `check_calendar_availability` / `create_calendar_event`: Google Calendar,
      using the token carried in the turn context.
    - `get_business_info`, `list_available_documents`, `get_order_status`:
      tenant record lookups.
    - `create_support_ticket`, `send_email_notification`: append-only writes.
    """

    retrieval_config = retrieval_config or RetrievalConfig()
    calendar_config = calendar_config or CalendarConfig()
    tz = ZoneInfo(calendar_config.time_zone)
    now = clock or (lambda: datetime.now(tz))

    def _search(args: SearchKnowledgeBaseInput, context: TurnContext) -> ToolResult:
        hits = retriever.search(context.tenant_id, args.query, k=retrieval_config.tool_k)
        if not hits:
            return ToolResult.ok(results=[], message="No relevant information found in the knowledge base.")
        return ToolResult.ok(
            results=[
                {
                    "content": hit.content,
                    "source": hit.source,
                    "similarity": round(hit.similarity, 4),
                }
                for hit in hits
            ],
            count=len(hits),
        )

    def _check_availability(args: CheckCalendarAvailabilityInput, context: TurnContext) -> ToolResult:
        if not context.calendar_token or calendar is None:
            return ToolResult.failure(CALENDAR_NOT_CONNECTED, error_type="credentials", needs_auth=True)

        day = resolve_date(args.date, now().date())
        time_min, time_max = repair_window(
            args.time_min or calendar_config.default_start,
            args.time_max or calendar_config.default_end,
            calendar_config.default_end,
        )
        window_start, window_end = combine(day, time_min, tz), combine(day, time_max, tz)
        try:
            busy = calendar.free_busy(context.calendar_token, window_start, window_end)
        except TransientUpstreamError:
            raise
        except SupportAgentError as exc:
            logger.warning("[tools] availability lookup failed: %s", exc)
            return ToolResult.failure(
                "Failed to check calendar availability. Please try reconnecting Google Calendar.",
                error_type="execution",
            )

        slots = free_slots(window_start, window_end, busy, calendar_config.slot_minutes)
        requested_free = any(start == window_start for start, _ in slots)
        label = day.strftime("%a, %b %d")
        if requested_free:
            message = f"Yes! You're free on {label} at {time_min}. "
        else:
            message = f"You're busy on {label} at {time_min}. "
        if slots:
            message += f"Available slots on this day: {len(slots)} slots between {time_min} and {time_max}."
        else:
            message += f"No available slots between {time_min} and {time_max}."

        return ToolResult.ok(
            date=day.isoformat(),
            time_min=time_min,
            time_max=time_max,
            available_slots=[{"start": start.isoformat(), "end": end.isoformat()} for start, end in slots],
            busy_slots=[{"start": item.start.isoformat(), "end": item.end.isoformat()} for item in busy],
            is_free_at_requested_time=requested_free,
            message=message,
        )

    def _create_event(args: CreateCalendarEventInput, context: TurnContext) -> ToolResult:
        if not context.calendar_token or calendar is None:
            return ToolResult.failure(CALENDAR_NOT_CONNECTED, error_type="credentials", needs_auth=True)

        start = _localize(args.start_date_time, tz)
        end = _localize(args.end_date_time, tz)
        attendees = [args.attendee_email] if args.attendee_email else []
        try:
            record_id: int | None = repository.record_calendar_event(
                context.tenant_id,
                title=args.title,
                description=args.description,
                start_time=start.isoformat(),
                end_time=end.isoformat(),
                attendee_email=args.attendee_email,
                remote_event_id=None,
                status="pending",
            )
        except PersistenceError as exc:
            logger.error("[tools] could not record pending event %r locally: %s", args.title, exc)
            record_id = None

        def _settle(status: str, remote_event_id: str | None = None) -> None:
            if record_id is None:
                return
            try:
                repository.update_calendar_event(
                    context.tenant_id, record_id, status=status, remote_event_id=remote_event_id
                )
            except PersistenceError as exc:
                logger.error("[tools] event record %d not marked %s: %s", record_id, status, exc)

        try:
            created = calendar.create_event(
                context.calendar_token,
                summary=args.title,
                description=args.description or "",
                start=start,
                end=end,
                attendees=attendees,
            )
        except MutationError as exc:
            _settle("unknown" if exc.outcome_unknown else "failed")
            raise
        _settle("confirmed", created.get("id"))

        message = f'Meeting "{args.title}" scheduled for {start.strftime("%a, %b %d %H:%M")}'
        if args.attendee_email:
            message += f". Calendar invite sent to {args.attendee_email}"
        return ToolResult.ok(event_id=created.get("id"), event_link=created.get("link"), message=message + ".")

    def _business_info(args: GetBusinessInfoInput, context: TurnContext) -> ToolResult:
        records = repository.get_business_info(context.tenant_id, args.info_type.value, limit=5)
        if not records:
            return ToolResult.ok(records=[], message=f"No {args.info_type.value} information is on file.")
        return ToolResult.ok(records=records, count=len(records))

    def _list_documents(args: ListAvailableDocumentsInput, context: TurnContext) -> ToolResult:
        documents = repository.list_documents(context.tenant_id, args.file_type, limit=20)
        return ToolResult.ok(
            documents=[
                {
                    "document_id": doc.document_id,
                    "file_name": doc.file_name,
                    "file_type": doc.declared_type,
                    "status": doc.status.value,
                    "chunk_count": doc.chunk_count,
                    "uploaded_at": doc.created_at,
                }
                for doc in documents
            ],
            count=len(documents),
        )

    def _create_ticket(args: CreateSupportTicketInput, context: TurnContext) -> ToolResult:
        ticket_id = repository.create_ticket(
            context.tenant_id,
            customer_email=context.user_email,
            subject=args.subject,
            description=args.description,
            priority=args.priority.value,
            category=args.category.value,
        )
        return ToolResult.ok(
            ticket_id=ticket_id,
            status="open",
            message=f"Support ticket #{ticket_id} created with {args.priority.value} priority.",
        )

    def _send_email(args: SendEmailNotificationInput, context: TurnContext) -> ToolResult:
        email_id = repository.queue_email(
            context.tenant_id,
            recipient_email=args.recipient_email,
            subject=args.subject,
            body=args.body,
            template_type=args.template_type.value,
        )
        return ToolResult.ok(
            email_id=email_id,
            status="queued",
            message=f"Email to {args.recipient_email} has been queued for delivery.",
        )

    def _order_status(args: GetOrderStatusInput, context: TurnContext) -> ToolResult:
        order = repository.get_order(context.tenant_id, args.order_id)
        if order is None:
            return ToolResult.failure(
                f"Order {args.order_id} was not found. Please double-check the order number.",
                error_type="not_found",
            )
        return ToolResult.ok(
            order_id=order["order_id"],
            status=order["status"],
            delivery_date=order["delivery_date"],
            details=order["details"],
        )

    specs: list[tuple[ToolName, str, type[BaseModel], Callable[[Any, TurnContext], ToolResult], bool, list[str]]] = [
        (
            ToolName.SEARCH_KNOWLEDGE_BASE,
            "Search the uploaded documents for information relevant to the customer's question.",
            SearchKnowledgeBaseInput,
            _search,
            True,
            ["retrieval"],
        ),
        (
            ToolName.CHECK_CALENDAR_AVAILABILITY,
            "Check whether the user is free at a time or list free slots in Google Calendar. "
            "For a single time such as 1pm set timeMin to 13:00 and timeMax one hour later.",
            CheckCalendarAvailabilityInput,
            _check_availability,
            True,
            ["calendar"],
        ),
        (
            ToolName.CREATE_CALENDAR_EVENT,
            "Create a Google Calendar event. Use only after confirming the meeting details.",
            CreateCalendarEventInput,
            _create_event,
            False,
            ["calendar"],
        ),
        (
            ToolName.GET_BUSINESS_INFO,
            "Look up business hours, contact details, policies or FAQs.",
            GetBusinessInfoInput,
            _business_info,
            True,
            ["records"],
        ),
        (
            ToolName.LIST_AVAILABLE_DOCUMENTS,
            "List the documents uploaded to the knowledge base.",
            ListAvailableDocumentsInput,
            _list_documents,
            True,
            ["records"],
        ),
        (
            ToolName.CREATE_SUPPORT_TICKET,
            "Open a support ticket for an issue that needs human follow-up.",
            CreateSupportTicketInput,
            _create_ticket,
            False,
            ["records"],
        ),
        (
            ToolName.SEND_EMAIL_NOTIFICATION,
            "Queue an email notification to a customer.",
            SendEmailNotificationInput,
            _send_email,
            False,
            ["email"],
        ),
        (
            ToolName.GET_ORDER_STATUS,
            "Look up the status and delivery date of an order.",
            GetOrderStatusInput,
            _order_status,
            True,
            ["records"],
        ),
    ]
    for name, description, schema, handler, read_only, tags in specs:
        registry.register(
            ToolSpec(
                name=name,
                description=description,
                args_schema=schema,
                handler=handler,
                read_only=read_only,
                tags=tags,
            )
        )


def _localize(value: datetime, tz: ZoneInfo) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=tz)
