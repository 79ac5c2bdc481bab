"""Per-turn traces and aggregate metrics."""

from __future__ import annotations

import re
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass

from support_agent.types import ToolTrace, utc_now

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    tenant_id: str
    question: str
    answer: str
    sources: list[str]
    tool_traces: list[ToolTrace]
    input_tokens: int
    output_tokens: int
    latency_ms: float
    failed: bool = False
    tool_rounds: int = 0


class TraceStore:
    """In-memory, bounded trace storage for API-level observability."""

    def __init__(self, max_records: int = 1000) -> None:
        self.max_records = max_records
        self._records: OrderedDict[str, TraceRecord] = OrderedDict()
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        tenant_id: str,
        question: str,
        answer: str,
        sources: list[str],
        tool_traces: list[ToolTrace],
        latency_ms: float,
        failed: bool = False,
        tool_rounds: int = 0,
        input_text: str | None = None,
    ) -> TraceRecord:
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=utc_now(),
            tenant_id=tenant_id,
            question=question,
            answer=answer,
            sources=sources,
            tool_traces=tool_traces,
            input_tokens=estimate_token_count(input_text if input_text is not None else question),
            output_tokens=estimate_token_count(answer),
            latency_ms=latency_ms,
            failed=failed,
            tool_rounds=tool_rounds,
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self.max_records:
                self._records.popitem(last=False)
        return record

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20, tenant_id: str | None = None) -> list[TraceRecord]:
        records = [r for r in self._records.values() if tenant_id is None or r.tenant_id == tenant_id]
        return records[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate core observability metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "failed_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "total_tool_calls": 0,
                "failed_tool_calls": 0,
                "total_input_tokens": 0,
                "total_output_tokens": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        tool_traces = [trace for record in records for trace in record.tool_traces]

        return {
            "total_requests": total,
            "failed_requests": sum(1 for record in records if record.failed),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "total_tool_calls": len(tool_traces),
            "failed_tool_calls": sum(1 for trace in tool_traces if not trace.success),
            "total_input_tokens": sum(record.input_tokens for record in records),
            "total_output_tokens": sum(record.output_tokens for record in records),
        }


class Timer:
    """Simple context timer used by the orchestrator."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
