"""Tenant-scoped persistence for documents, conversations, audits and business records."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Protocol

from support_agent.errors import PersistenceError
from support_agent.types import (
    ConversationMessage,
    Document,
    DocumentStatus,
    Role,
    ToolInvocation,
    utc_now,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    document_id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    storage_ref TEXT NOT NULL,
    declared_type TEXT NOT NULL,
    file_name TEXT NOT NULL,
    status TEXT NOT NULL,
    chunk_count INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    text_length INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    processed_at TEXT
);
CREATE TABLE IF NOT EXISTS messages (
    message_id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    tool_call_id TEXT,
    citations TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS tool_invocations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    tool_name TEXT NOT NULL,
    call_id TEXT NOT NULL,
    arguments TEXT NOT NULL,
    success INTEGER NOT NULL,
    outcome TEXT NOT NULL,
    read_only INTEGER NOT NULL,
    latency_ms REAL NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS business_info (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id TEXT NOT NULL,
    info_type TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS support_tickets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id TEXT NOT NULL,
    customer_email TEXT,
    subject TEXT NOT NULL,
    description TEXT NOT NULL,
    priority TEXT NOT NULL,
    category TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS email_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id TEXT NOT NULL,
    recipient_email TEXT NOT NULL,
    subject TEXT NOT NULL,
    body TEXT NOT NULL,
    template_type TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS calendar_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    attendee_email TEXT,
    remote_event_id TEXT,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS orders (
    order_id TEXT NOT NULL,
    tenant_id TEXT NOT NULL,
    status TEXT NOT NULL,
    delivery_date TEXT,
    details TEXT NOT NULL DEFAULT '{}',
    PRIMARY KEY (tenant_id, order_id)
);
"""


class Repository(Protocol):
    """Persistence collaborator used by ingestion, tools and the orchestrator."""

    def create_document(self, document: Document) -> None: ...

    def update_document(self, document: Document) -> None: ...

    def get_document(self, tenant_id: str, document_id: str) -> Document | None: ...

    def list_documents(
        self, tenant_id: str, file_type: str | None = None, limit: int = 20
    ) -> list[Document]: ...

    def append_message(self, message: ConversationMessage) -> None: ...

    def list_messages(self, tenant_id: str, user_id: str, limit: int = 10) -> list[ConversationMessage]: ...

    def append_tool_invocation(self, invocation: ToolInvocation) -> None: ...

    def get_business_info(self, tenant_id: str, info_type: str, limit: int = 5) -> list[dict[str, Any]]: ...

    def create_ticket(
        self,
        tenant_id: str,
        *,
        customer_email: str | None,
        subject: str,
        description: str,
        priority: str,
        category: str,
    ) -> int: ...

    def queue_email(
        self,
        tenant_id: str,
        *,
        recipient_email: str,
        subject: str,
        body: str,
        template_type: str,
    ) -> int: ...

    def record_calendar_event(
        self,
        tenant_id: str,
        *,
        title: str,
        description: str | None,
        start_time: str,
        end_time: str,
        attendee_email: str | None,
        remote_event_id: str | None,
        status: str,
    ) -> int: ...

    def update_calendar_event(
        self, tenant_id: str, record_id: int, *, status: str, remote_event_id: str | None = None
    ) -> None: ...

    def get_order(self, tenant_id: str, order_id: str) -> dict[str, Any] | None: ...


class SqliteRepository:
    """SQLite-backed repository. Every query is filtered by tenant id.

    Write failures are raised as `PersistenceError`; callers decide whether a
    failure is fatal (ingestion state) or merely logged (messages, audits).
    """

    def __init__(self, path: str | Path = "support_agent.db") -> None:
        self.path = str(path)
        self._lock = threading.Lock()
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._shared = sqlite3.connect(self.path, check_same_thread=False) if self.path == ":memory:" else None
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._shared or sqlite3.connect(self.path)
            conn.row_factory = sqlite3.Row
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise PersistenceError(f"Database error: {exc}") from exc
            finally:
                if self._shared is None:
                    conn.close()

    # -- documents ---------------------------------------------------------

    def create_document(self, document: Document) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO documents(document_id, tenant_id, storage_ref, declared_type, file_name,"
                " status, chunk_count, error_message, text_length, created_at, processed_at)"
                " VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                _document_row(document),
            )

    def update_document(self, document: Document) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE documents SET status = ?, chunk_count = ?, error_message = ?,"
                " text_length = ?, processed_at = ? WHERE document_id = ? AND tenant_id = ?",
                (
                    document.status.value,
                    document.chunk_count,
                    document.error_message,
                    document.text_length,
                    document.processed_at,
                    document.document_id,
                    document.tenant_id,
                ),
            )

    def get_document(self, tenant_id: str, document_id: str) -> Document | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE tenant_id = ? AND document_id = ?",
                (tenant_id, document_id),
            ).fetchone()
        return _row_to_document(row) if row else None

    def list_documents(
        self, tenant_id: str, file_type: str | None = None, limit: int = 20
    ) -> list[Document]:
        sql = "SELECT * FROM documents WHERE tenant_id = ?"
        params: list[Any] = [tenant_id]
        if file_type:
            sql += " AND lower(declared_type) LIKE ?"
            params.append(f"%{file_type.lower()}%")
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_document(row) for row in rows]

    # -- conversation ------------------------------------------------------

    def append_message(self, message: ConversationMessage) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO messages(message_id, tenant_id, user_id, role, content, tool_call_id,"
                " citations, created_at) VALUES(?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    message.message_id,
                    message.tenant_id,
                    message.user_id,
                    message.role.value,
                    message.content,
                    message.tool_call_id,
                    json.dumps(message.citations, ensure_ascii=False),
                    message.created_at,
                ),
            )

    def list_messages(self, tenant_id: str, user_id: str, limit: int = 10) -> list[ConversationMessage]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE tenant_id = ? AND user_id = ?"
                " ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (tenant_id, user_id, limit),
            ).fetchall()
        messages = [
            ConversationMessage(
                message_id=row["message_id"],
                tenant_id=row["tenant_id"],
                user_id=row["user_id"],
                role=Role(row["role"]),
                content=row["content"],
                tool_call_id=row["tool_call_id"],
                citations=json.loads(row["citations"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]
        messages.reverse()
        return messages

    # -- audit -------------------------------------------------------------

    def append_tool_invocation(self, invocation: ToolInvocation) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO tool_invocations(tenant_id, user_id, tool_name, call_id, arguments,"
                " success, outcome, read_only, latency_ms, created_at)"
                " VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    invocation.tenant_id,
                    invocation.user_id,
                    invocation.tool_name,
                    invocation.call_id,
                    json.dumps(invocation.arguments, ensure_ascii=False, default=str),
                    int(invocation.result.success),
                    json.dumps(invocation.result.to_payload(), ensure_ascii=False, default=str),
                    int(invocation.read_only),
                    invocation.latency_ms,
                    invocation.created_at,
                ),
            )

    def list_tool_invocations(self, tenant_id: str, limit: int = 50) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tool_invocations WHERE tenant_id = ? ORDER BY id DESC LIMIT ?",
                (tenant_id, limit),
            ).fetchall()
        return [dict(row) for row in rows]

    # -- business records --------------------------------------------------

    def add_business_info(self, tenant_id: str, info_type: str, title: str, content: str) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO business_info(tenant_id, info_type, title, content) VALUES(?, ?, ?, ?)",
                (tenant_id, info_type, title, content),
            )
            return int(cur.lastrowid)

    def get_business_info(self, tenant_id: str, info_type: str, limit: int = 5) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT info_type, title, content FROM business_info"
                " WHERE tenant_id = ? AND info_type = ? ORDER BY id LIMIT ?",
                (tenant_id, info_type, limit),
            ).fetchall()
        return [dict(row) for row in rows]

    def create_ticket(
        self,
        tenant_id: str,
        *,
        customer_email: str | None,
        subject: str,
        description: str,
        priority: str,
        category: str,
    ) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO support_tickets(tenant_id, customer_email, subject, description,"
                " priority, category, status, created_at) VALUES(?, ?, ?, ?, ?, ?, 'open', ?)",
                (tenant_id, customer_email, subject, description, priority, category, utc_now()),
            )
            return int(cur.lastrowid)

    def list_tickets(self, tenant_id: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM support_tickets WHERE tenant_id = ? ORDER BY id", (tenant_id,)
            ).fetchall()
        return [dict(row) for row in rows]

    def queue_email(
        self,
        tenant_id: str,
        *,
        recipient_email: str,
        subject: str,
        body: str,
        template_type: str,
    ) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO email_logs(tenant_id, recipient_email, subject, body, template_type,"
                " status, created_at) VALUES(?, ?, ?, ?, ?, 'queued', ?)",
                (tenant_id, recipient_email, subject, body, template_type, utc_now()),
            )
            return int(cur.lastrowid)

    def record_calendar_event(
        self,
        tenant_id: str,
        *,
        title: str,
        description: str | None,
        start_time: str,
        end_time: str,
        attendee_email: str | None,
        remote_event_id: str | None,
        status: str,
    ) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO calendar_events(tenant_id, title, description, start_time, end_time,"
                " attendee_email, remote_event_id, status, created_at)"
                " VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    tenant_id,
                    title,
                    description,
                    start_time,
                    end_time,
                    attendee_email,
                    remote_event_id,
                    status,
                    utc_now(),
                ),
            )
            return int(cur.lastrowid)

    def update_calendar_event(
        self, tenant_id: str, record_id: int, *, status: str, remote_event_id: str | None = None
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE calendar_events SET status = ?, remote_event_id = COALESCE(?, remote_event_id)"
                " WHERE id = ? AND tenant_id = ?",
                (status, remote_event_id, record_id, tenant_id),
            )

    def list_calendar_events(self, tenant_id: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM calendar_events WHERE tenant_id = ? ORDER BY id", (tenant_id,)
            ).fetchall()
        return [dict(row) for row in rows]

    def upsert_order(
        self,
        tenant_id: str,
        order_id: str,
        *,
        status: str,
        delivery_date: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO orders(order_id, tenant_id, status, delivery_date, details)"
                " VALUES(?, ?, ?, ?, ?) ON CONFLICT(tenant_id, order_id) DO UPDATE SET"
                " status=excluded.status, delivery_date=excluded.delivery_date,"
                " details=excluded.details",
                (order_id, tenant_id, status, delivery_date, json.dumps(details or {})),
            )

    def get_order(self, tenant_id: str, order_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM orders WHERE tenant_id = ? AND order_id = ?",
                (tenant_id, order_id),
            ).fetchone()
        if row is None:
            return None
        order = dict(row)
        order["details"] = json.loads(order["details"])
        return order


def new_id() -> str:
    return str(uuid.uuid4())


def _document_row(document: Document) -> tuple[Any, ...]:
    return (
        document.document_id,
        document.tenant_id,
        document.storage_ref,
        document.declared_type,
        document.file_name,
        document.status.value,
        document.chunk_count,
        document.error_message,
        document.text_length,
        document.created_at,
        document.processed_at,
    )


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        document_id=row["document_id"],
        tenant_id=row["tenant_id"],
        storage_ref=row["storage_ref"],
        declared_type=row["declared_type"],
        file_name=row["file_name"],
        status=DocumentStatus(row["status"]),
        chunk_count=row["chunk_count"],
        error_message=row["error_message"],
        text_length=row["text_length"],
        created_at=row["created_at"],
        processed_at=row["processed_at"],
    )
