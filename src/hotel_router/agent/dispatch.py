"""Maps a classification plus conversation context to a concrete tool call."""

from __future__ import annotations

import logging
from urllib.parse import quote

from hotel_router.config import RouterConfig
from hotel_router.types import ClassificationResult, IntentType, ToolInvocation, ToolName

logger = logging.getLogger(__name__)


class ToolDispatchRouter:
    """Decision table from intent type to tool invocation.

    Business queries are scoped to the entity extracted from the message, else
    to the thread's context entity. When neither is known the query is left
    unscoped (`scope_mode="all"`); no default entity is ever guessed.
    """

    def __init__(self, config: RouterConfig | None = None) -> None:
        self.config = config or RouterConfig()

    def route(
        self,
        classification: ClassificationResult,
        context_entity: str | None,
        message: str,
    ) -> ToolInvocation:
        intent = classification.type

        if intent == IntentType.WEATHER:
            location = classification.extracted_location or ""
            return ToolInvocation(
                tool=ToolName.HTTP_CALL,
                params={"endpoint": self.weather_endpoint(location), "method": "GET"},
            )

        if intent == IntentType.BUSINESS:
            scope = classification.extracted_entity or context_entity
            if scope is None:
                logger.info("business_query_unscoped reason=no_entity_resolved")
            return ToolInvocation(
                tool=ToolName.SQL_QUERY,
                params={
                    "raw_intent": message,
                    "entity_scope": scope,
                    "scope_mode": "entity" if scope else "all",
                },
                entity_scope=scope,
            )

        if intent == IntentType.CALCULATION:
            return ToolInvocation(tool=ToolName.CALC_EVAL, params={"expression": message})

        if intent == IntentType.DOCUMENT:
            return ToolInvocation(
                tool=ToolName.DOCS_SEARCH,
                params={"query": message, "top_k": self.config.docs_top_k},
            )

        return ToolInvocation(tool=None)

    def weather_endpoint(self, location: str) -> str:
        return self.config.weather_endpoint_template.format(location=quote(location))
