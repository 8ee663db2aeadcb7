"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class IntentType(str, Enum):
    WEATHER = "weather"
    BUSINESS = "business"
    CALCULATION = "calculation"
    DOCUMENT = "document"
    GENERAL = "general"


class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    FORBIDDEN_OPERATION = "FORBIDDEN_OPERATION"
    FORBIDDEN_KEYWORD = "FORBIDDEN_KEYWORD"
    TIMEOUT = "TIMEOUT"
    RESULT_TRUNCATED = "RESULT_TRUNCATED"
    RELATION_NOT_FOUND = "RELATION_NOT_FOUND"
    COLUMN_NOT_FOUND = "COLUMN_NOT_FOUND"
    SYNTAX_ERROR = "SYNTAX_ERROR"
    INSUFFICIENT_PRIVILEGE = "INSUFFICIENT_PRIVILEGE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ToolName(str, Enum):
    HTTP_CALL = "http_call"
    SQL_QUERY = "sql_query"
    CALC_EVAL = "calc_eval"
    DOCS_SEARCH = "docs_search"


@dataclass(frozen=True, slots=True)
class DictionaryEntry:
    """A known business entity and the keywords derived from its name."""

    canonical_name: str
    keywords: frozenset[str]


@dataclass(slots=True)
class ClassificationResult:
    """Outcome of intent classification for one message."""

    type: IntentType
    confidence: float
    extracted_entity: str | None = None
    extracted_location: str | None = None
    suggested_tools: list[str] = field(default_factory=list)
    spelling_corrected: bool = False
    source: str = "rules"
    reasoning: str | None = None


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    """One stored message of a conversation thread."""

    role: str
    content: str
    resolved_entity: str | None = None
    is_entity_related: bool = False
    off_topic: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class ColumnInfo:
    table: str
    column: str
    type: str


@dataclass(frozen=True, slots=True)
class TriageInfo:
    """Read-only schema snapshot attached to failed queries."""

    schema: str
    tables: list[str]
    columns: list[ColumnInfo]


@dataclass(frozen=True, slots=True)
class StoreResult:
    rows: list[dict[str, Any]]
    took_ms: float


@dataclass(frozen=True, slots=True)
class QueryExecutionResult:
    """Result of a single sandboxed query attempt.

    Instances are never mutated; a retry or fallback produces a new one.
    """

    rows: list[dict[str, Any]]
    row_count: int
    executed_query: str
    took_ms: int
    error: str | None = None
    error_code: ErrorCode | None = None
    triage: TriageInfo | None = None
    hint: str | None = None
    fallback_used: bool = False

    @property
    def ok(self) -> bool:
        return self.error_code in (None, ErrorCode.RESULT_TRUNCATED)


@dataclass(slots=True)
class ToolInvocation:
    """Concrete tool call chosen by the dispatch router."""

    tool: ToolName | None
    params: dict[str, Any] = field(default_factory=dict)
    entity_scope: str | None = None


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float


@dataclass(frozen=True, slots=True)
class ContextSnapshot:
    current_entity: str | None
    last_turn_was_entity_related: bool
    turn_count: int


@dataclass(slots=True)
class MessageOutcome:
    """Everything the surrounding chat layer needs after one turn."""

    thread_id: str
    classification: ClassificationResult
    invocation: ToolInvocation
    tool_result: dict[str, Any] | None
    context: ContextSnapshot
    trace_id: str
