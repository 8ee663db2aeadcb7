"""Built-in tool implementations for the query router."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Literal

import httpx
from pydantic import BaseModel, Field

from hotel_router.agent.calculator import CalculationError, SafeCalculator, extract_expression
from hotel_router.agent.registry import ToolRegistry, ToolSpec
from hotel_router.config import RouterConfig
from hotel_router.docs.index import InMemoryDocumentIndex
from hotel_router.sql.drafter import QueryDrafter
from hotel_router.sql.sandbox import SafeQuerySandbox
from hotel_router.types import ToolName

logger = logging.getLogger(__name__)


class HttpCallInput(BaseModel):
    endpoint: str = Field(min_length=1)
    method: Literal["GET", "POST", "PUT", "DELETE"] = "GET"
    payload: dict[str, Any] | None = None
    headers: dict[str, str] = Field(default_factory=dict)


class CalcEvalInput(BaseModel):
    expression: str = Field(min_length=1)
    variables: dict[str, float] | None = None


class DocsSearchInput(BaseModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=5, ge=1, le=20)


class SqlQueryInput(BaseModel):
    raw_intent: str = Field(min_length=1)
    entity_scope: str | None = None
    scope_mode: Literal["entity", "all"] = "all"


def register_builtin_tools(
    registry: ToolRegistry,
    *,
    sandbox: SafeQuerySandbox,
    drafter: QueryDrafter,
    document_index: InMemoryDocumentIndex | None = None,
    http_client: httpx.Client | None = None,
    config: RouterConfig | None = None,
    calculator: SafeCalculator | None = None,
) -> None:
    """Register the tool set the dispatch router can target.

    Tools:
    - `http_call`: whitelisted outbound HTTP (weather lookups).
    - `calc_eval`: arithmetic on the expression found in the message.
    - `docs_search`: similarity search over indexed documents.
    - `sql_query`: drafted statement run through the read-only sandbox.
    """

    cfg = config or RouterConfig()
    client = http_client or httpx.Client(timeout=cfg.http_timeout_seconds)
    index = document_index or InMemoryDocumentIndex()
    calc = calculator or SafeCalculator()

    def _http_call(input_data: HttpCallInput) -> dict[str, Any]:
        if not any(input_data.endpoint.startswith(prefix) for prefix in cfg.http_whitelist):
            logger.warning("http_call_blocked endpoint=%s", input_data.endpoint)
            return {
                "status": 403,
                "data": None,
                "error": (
                    f"Endpoint '{input_data.endpoint}' not whitelisted. "
                    f"Allowed: {', '.join(cfg.http_whitelist)}"
                ),
            }
        try:
            response = client.request(
                input_data.method,
                input_data.endpoint,
                json=input_data.payload,
                headers=input_data.headers,
                timeout=cfg.http_timeout_seconds,
            )
        except httpx.HTTPError as exc:
            logger.warning("http_call_failed endpoint=%s error=%s", input_data.endpoint, exc)
            return {"status": 502, "data": None, "error": str(exc) or type(exc).__name__}

        try:
            data: Any = response.json()
        except ValueError:
            data = response.text
        result: dict[str, Any] = {"status": response.status_code, "data": data}
        if response.is_error:
            result["error"] = f"HTTP {response.status_code}"
        return result

    def _calc_eval(input_data: CalcEvalInput) -> dict[str, Any]:
        try:
            expression = (
                input_data.expression
                if input_data.variables
                else extract_expression(input_data.expression)
            )
            outcome = calc.evaluate(expression, input_data.variables)
        except CalculationError as exc:
            return {"result": None, "steps": [], "error": str(exc)}
        return {
            "expression": outcome.expression,
            "result": outcome.result,
            "steps": outcome.steps,
        }

    def _docs_search(input_data: DocsSearchInput) -> dict[str, Any]:
        hits = index.search(input_data.query, top_k=input_data.top_k)
        return {"hits": [asdict(hit) for hit in hits], "total_found": len(hits)}

    def _sql_query(input_data: SqlQueryInput) -> dict[str, Any]:
        statement = drafter.draft(input_data.raw_intent, input_data.entity_scope)
        result = sandbox.execute(statement, input_data.entity_scope)
        payload = asdict(result)
        payload["error_code"] = result.error_code.value if result.error_code else None
        payload["ok"] = result.ok
        return payload

    registry.register(
        ToolSpec(
            name=ToolName.HTTP_CALL.value,
            description="Call a whitelisted HTTP endpoint.",
            args_schema=HttpCallInput,
            handler=_http_call,
            tags=["http", "weather"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.CALC_EVAL.value,
            description="Evaluate an arithmetic expression.",
            args_schema=CalcEvalInput,
            handler=_calc_eval,
            tags=["math"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.DOCS_SEARCH.value,
            description="Search uploaded documents.",
            args_schema=DocsSearchInput,
            handler=_docs_search,
            tags=["documents"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.SQL_QUERY.value,
            description="Run a read-only, entity-scoped query on pricing data.",
            args_schema=SqlQueryInput,
            handler=_sql_query,
            tags=["sql", "business"],
        )
    )
