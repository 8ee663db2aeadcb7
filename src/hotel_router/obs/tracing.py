"""Per-turn tracing and aggregate routing metrics."""

from __future__ import annotations

import threading
import time
import uuid
from collections import Counter, OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from hotel_router.types import ErrorCode, ToolTrace

_NON_FATAL_CODE = ErrorCode.RESULT_TRUNCATED.value


@dataclass(slots=True)
class TurnTrace:
    trace_id: str
    timestamp_utc: str
    thread_id: str
    message: str
    intent: str
    confidence: float
    entity_scope: str | None
    tool: str | None
    tool_traces: list[ToolTrace]
    error_code: str | None
    latency_ms: float


class TraceStore:
    """In-memory, bounded trace storage for API-level observability."""

    def __init__(self, *, max_records: int = 1000) -> None:
        self.max_records = max_records
        self._records: OrderedDict[str, TurnTrace] = OrderedDict()
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        thread_id: str,
        message: str,
        intent: str,
        confidence: float,
        entity_scope: str | None,
        tool: str | None,
        tool_traces: list[ToolTrace],
        error_code: str | None,
        latency_ms: float,
    ) -> TurnTrace:
        record = TurnTrace(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            thread_id=thread_id,
            message=message,
            intent=intent,
            confidence=confidence,
            entity_scope=entity_scope,
            tool=tool,
            tool_traces=tool_traces,
            error_code=error_code,
            latency_ms=latency_ms,
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self.max_records:
                self._records.popitem(last=False)
        return record

    def get(self, trace_id: str) -> TurnTrace:
        with self._lock:
            record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20, *, thread_id: str | None = None) -> list[TurnTrace]:
        with self._lock:
            records = list(self._records.values())
        if thread_id is not None:
            records = [record for record in records if record.thread_id == thread_id]
        return records[-limit:] if limit > 0 else []

    def summary(self) -> dict[str, Any]:
        """Routing metrics over the retained turns.

        `error_count` ignores `RESULT_TRUNCATED`, which still carries rows.
        Tool latency is averaged over the observed tool calls, not the turns.
        """
        with self._lock:
            records = list(self._records.values())
        if not records:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "requests_by_intent": {},
                "requests_by_tool": {},
                "errors_by_code": {},
                "error_count": 0,
                "scoped_share": 0.0,
                "avg_tool_latency_ms": {},
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        errors = Counter(
            record.error_code
            for record in records
            if record.error_code and record.error_code != _NON_FATAL_CODE
        )
        tool_latency: dict[str, list[float]] = {}
        for record in records:
            for call in record.tool_traces:
                tool_latency.setdefault(call.name, []).append(call.latency_ms)

        return {
            "total_requests": len(records),
            "avg_latency_ms": sum(latencies) / len(records),
            "p95_latency_ms": latencies[p95_index],
            "requests_by_intent": dict(Counter(record.intent for record in records)),
            "requests_by_tool": dict(Counter(record.tool or "none" for record in records)),
            "errors_by_code": dict(errors),
            "error_count": sum(errors.values()),
            "scoped_share": sum(1 for record in records if record.entity_scope) / len(records),
            "avg_tool_latency_ms": {
                name: sum(values) / len(values) for name, values in tool_latency.items()
            },
        }


class Timer:
    """Simple context timer used by the router service."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
