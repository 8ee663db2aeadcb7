"""Turns a business request into a candidate SQL statement.

Drafted statements are untrusted: they are always passed through the sandbox,
which validates, repairs and scopes them before execution.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate

from hotel_router.config import SandboxConfig

logger = logging.getLogger(__name__)

_STATEMENT_PATTERN = re.compile(
    r"^\s*(select|with|explain|insert|update|delete|drop|alter|create|truncate|"
    r"grant|revoke|merge|call|copy|set)\b",
    flags=re.IGNORECASE,
)
_TABLE_REFERENCE_PATTERN = re.compile(
    r"\b(?:from|join|into|update|table)\s+\"?([a-z_][\w.]*)",
    flags=re.IGNORECASE,
)
_FENCE_PATTERN = re.compile(r"^```(?:sql)?\s*|\s*```$", flags=re.IGNORECASE)

_AVERAGE_WORDS = ("durchschnitt", "average", "avg", "schnitt", "mittel")
_LATEST_WORDS = ("letzte", "neueste", "latest", "last", "newest", "aktuell", "current")
_LIST_WORDS = ("alle", "all", "liste", "list", "übersicht", "overview")

_SCHEMA_DESCRIPTION = """
Table hotels(id, name, stars, room_count, location)
Table pricing_calculations(id, hotel_name, stars, room_count, occupancy_rate,
  average_price, voucher_price, operational_costs, vat_rate, vat_amount,
  profit_margin, total_price, discount_vs_market, created_at)
""".strip()

_SYSTEM_PROMPT = """
You write a single read-only PostgreSQL SELECT statement for a hotel pricing
dashboard. Use only these tables and columns:

{schema}

Rules:
1) Return only the SQL statement, no explanation and no code fences.
2) Never modify data.
3) When a hotel is given, filter pricing_calculations.hotel_name with ILIKE.
""".strip()


class QueryDrafter(Protocol):
    def draft(self, raw_intent: str, entity_scope: str | None = None) -> str:
        """Return a candidate statement for the request."""


def known_tables(config: SandboxConfig) -> set[str]:
    return {name.lower() for name in (config.entity_table, *config.hint_tables)}


def looks_like_statement(text: str, tables: set[str]) -> bool:
    """True when `text` opens with a SQL keyword and references a known table.

    Prose that only opens with a keyword, such as "Explain the profit numbers",
    is not a statement.
    """
    if _STATEMENT_PATTERN.match(text) is None:
        return False
    return any(
        reference.lower().rsplit(".", 1)[-1] in tables
        for reference in _TABLE_REFERENCE_PATTERN.findall(text)
    )


class TemplateQueryDrafter:
    """Keyword-driven drafter that needs no language model."""

    def __init__(self, config: SandboxConfig | None = None) -> None:
        self.config = config or SandboxConfig()
        self._tables = known_tables(self.config)

    def draft(self, raw_intent: str, entity_scope: str | None = None) -> str:
        del entity_scope  # scoping is applied by the sandbox
        if looks_like_statement(raw_intent, self._tables):
            return raw_intent.strip()

        table = self.config.entity_table
        recency = self.config.recency_column
        text = raw_intent.lower()
        if any(word in text for word in _AVERAGE_WORDS):
            return (
                f"SELECT {self.config.entity_column}, COUNT(*) AS calculations, "
                "AVG(profit_margin) AS avg_profit_margin, "
                "AVG(total_price) AS avg_total_price "
                f"FROM {table} GROUP BY {self.config.entity_column} "
                f"ORDER BY {self.config.entity_column}"
            )
        if any(word in text for word in _LATEST_WORDS):
            return f"SELECT * FROM {table} ORDER BY {recency} DESC LIMIT 1"
        if any(word in text for word in _LIST_WORDS):
            return f"SELECT * FROM {table} ORDER BY {recency} DESC"
        return f"SELECT * FROM {table} ORDER BY {recency} DESC LIMIT 10"


class LLMQueryDrafter:
    """Drafts statements with a LangChain chat model, falling back to templates."""

    def __init__(
        self,
        llm: Any,
        *,
        fallback: QueryDrafter | None = None,
        chain: Any | None = None,
        schema_description: str = _SCHEMA_DESCRIPTION,
        config: SandboxConfig | None = None,
    ) -> None:
        self.llm = llm
        self._tables = known_tables(config or SandboxConfig())
        self.fallback = fallback or TemplateQueryDrafter()
        self.schema_description = schema_description
        if chain is not None:
            self._chain = chain
        else:
            prompt = ChatPromptTemplate.from_messages(
                [
                    ("system", _SYSTEM_PROMPT),
                    ("human", "Hotel: {entity_scope}\nRequest: {raw_intent}"),
                ]
            )
            self._chain = prompt | llm | StrOutputParser()

    def draft(self, raw_intent: str, entity_scope: str | None = None) -> str:
        if looks_like_statement(raw_intent, self._tables):
            return raw_intent.strip()
        try:
            output = self._chain.invoke(
                {
                    "schema": self.schema_description,
                    "entity_scope": entity_scope or "any",
                    "raw_intent": raw_intent,
                }
            )
        except Exception as exc:  # model failures degrade to templates
            logger.warning("query_draft_failed fallback=templates error=%s", exc)
            return self.fallback.draft(raw_intent, entity_scope)

        statement = _FENCE_PATTERN.sub("", str(output).strip()).strip()
        if not statement:
            logger.warning("query_draft_empty fallback=templates")
            return self.fallback.draft(raw_intent, entity_scope)
        return statement
