"""Per-message orchestration: classify, route, execute, remember."""

from __future__ import annotations

import logging
import threading
from typing import Any

import httpx

from hotel_router.agent.dispatch import ToolDispatchRouter
from hotel_router.agent.registry import ToolRegistry
from hotel_router.agent.tools import register_builtin_tools
from hotel_router.config import RouterSettings
from hotel_router.context.tracker import ConversationContextStore
from hotel_router.docs.index import InMemoryDocumentIndex
from hotel_router.entities.aliases import EntityAliasIndex
from hotel_router.entities.dictionary import DictionarySnapshot, EntityDictionaryCache
from hotel_router.entities.fuzzy import FuzzyMatcher
from hotel_router.intent.classifier import IntentClassifier
from hotel_router.intent.semantic import LLMSemanticClassifier
from hotel_router.obs.tracing import Timer, TraceStore
from hotel_router.sql.drafter import LLMQueryDrafter, QueryDrafter, TemplateQueryDrafter
from hotel_router.sql.sandbox import SafeQuerySandbox
from hotel_router.sql.store import DataStore
from hotel_router.types import (
    ClassificationResult,
    ContextSnapshot,
    ErrorCode,
    IntentType,
    MessageOutcome,
    ToolInvocation,
    ToolTrace,
)

logger = logging.getLogger(__name__)


class QueryRouterService:
    """Entry point for the surrounding chat layer.

    `handle_message` never raises: invalid input and tool failures come back
    as structured error payloads in `MessageOutcome.tool_result`.
    """

    def __init__(
        self,
        *,
        dictionary: EntityDictionaryCache,
        classifier: IntentClassifier,
        router: ToolDispatchRouter,
        registry: ToolRegistry,
        contexts: ConversationContextStore,
        trace_store: TraceStore | None = None,
        settings: RouterSettings | None = None,
        sandbox: SafeQuerySandbox | None = None,
        owned_http_client: httpx.Client | None = None,
    ) -> None:
        self.dictionary = dictionary
        self.classifier = classifier
        self.router = router
        self.registry = registry
        self.contexts = contexts
        self.trace_store = trace_store or TraceStore()
        self.settings = settings or RouterSettings()
        self.sandbox = sandbox
        self._owned_http_client = owned_http_client
        self._alias_lock = threading.Lock()
        self._alias_cache: tuple[DictionarySnapshot, EntityAliasIndex] | None = None

    @classmethod
    def from_store(
        cls,
        store: DataStore,
        *,
        settings: RouterSettings | None = None,
        llm: Any | None = None,
        http_client: httpx.Client | None = None,
        document_index: InMemoryDocumentIndex | None = None,
        drafter: QueryDrafter | None = None,
    ) -> "QueryRouterService":
        """Wire the default component graph around a data store."""
        settings = settings or RouterSettings()
        dictionary = EntityDictionaryCache(store, settings.dictionary)
        classifier = IntentClassifier(
            dictionary,
            settings.classifier,
            fuzzy_matcher=FuzzyMatcher(settings.fuzzy),
            semantic_classifier=LLMSemanticClassifier(llm) if llm is not None else None,
            generic_name_tokens=settings.context.ignored_alias_tokens,
        )
        sandbox = SafeQuerySandbox(store, settings.sandbox)
        owned_http_client = None
        if http_client is None:
            owned_http_client = http_client = httpx.Client(timeout=settings.router.http_timeout_seconds)
        if drafter is None:
            template_drafter = TemplateQueryDrafter(settings.sandbox)
            drafter = (
                LLMQueryDrafter(llm, fallback=template_drafter, config=settings.sandbox)
                if llm is not None
                else template_drafter
            )

        registry = ToolRegistry()
        register_builtin_tools(
            registry,
            sandbox=sandbox,
            drafter=drafter,
            document_index=document_index,
            http_client=http_client,
            config=settings.router,
        )
        return cls(
            dictionary=dictionary,
            classifier=classifier,
            router=ToolDispatchRouter(settings.router),
            registry=registry,
            contexts=ConversationContextStore(settings.context),
            settings=settings,
            sandbox=sandbox,
            owned_http_client=owned_http_client,
        )

    def handle_message(self, thread_id: str, message: Any) -> MessageOutcome:
        context = self.contexts.get(thread_id)
        observed: list[ToolTrace] = []

        with Timer() as timer:
            if not isinstance(message, str) or not message.strip():
                classification = ClassificationResult(
                    type=IntentType.GENERAL,
                    confidence=self.settings.classifier.general_confidence,
                )
                invocation = ToolInvocation(tool=None)
                tool_result: dict[str, Any] | None = {
                    "error": "Message is required and must be a non-empty string",
                    "error_code": ErrorCode.INVALID_INPUT.value,
                }
            else:
                context_entity = context.current_entity()
                classification = self.classifier.classify(
                    message,
                    context_entity=context_entity,
                    topic_continues=context.last_turn_was_entity_related,
                )
                invocation = self.router.route(classification, context_entity, message)
                tool_result = self._execute(invocation, observed)
                context.record_user_turn(
                    message,
                    self._alias_index(),
                    resolved_hint=classification.extracted_entity,
                    topical=classification.type == IntentType.BUSINESS,
                )

        error_code = tool_result.get("error_code") if tool_result else None
        record = self.trace_store.create_record(
            thread_id=thread_id,
            message=message if isinstance(message, str) else "",
            intent=classification.type.value,
            confidence=classification.confidence,
            entity_scope=invocation.entity_scope,
            tool=invocation.tool.value if invocation.tool else None,
            tool_traces=observed,
            error_code=error_code,
            latency_ms=timer.elapsed_ms,
        )
        logger.info(
            "message_routed thread=%s intent=%s confidence=%.2f tool=%s scope=%s error_code=%s",
            thread_id,
            classification.type.value,
            classification.confidence,
            record.tool,
            invocation.entity_scope,
            error_code,
        )
        return MessageOutcome(
            thread_id=thread_id,
            classification=classification,
            invocation=invocation,
            tool_result=tool_result,
            context=context.snapshot(),
            trace_id=record.trace_id,
        )

    def record_assistant_reply(self, thread_id: str, content: str) -> ContextSnapshot:
        context = self.contexts.get(thread_id)
        context.record_assistant_turn(content)
        return context.snapshot()

    def clear_thread(self, thread_id: str) -> bool:
        """Forget a thread's history; returns False for unknown threads."""
        if self.contexts.find(thread_id) is None:
            return False
        self.contexts.clear(thread_id)
        return True

    def context_snapshot(self, thread_id: str) -> ContextSnapshot:
        context = self.contexts.find(thread_id)
        if context is None:
            raise KeyError(f"Thread not found: {thread_id}")
        return context.snapshot()

    def known_entities(self) -> list[str]:
        self.dictionary.refresh()
        return self.dictionary.names()

    def close(self) -> None:
        if self.sandbox is not None:
            self.sandbox.close()
        if self._owned_http_client is not None:
            self._owned_http_client.close()

    def _execute(
        self,
        invocation: ToolInvocation,
        observed: list[ToolTrace],
    ) -> dict[str, Any] | None:
        if invocation.tool is None:
            return None
        self.registry.set_observer(observed.append)
        try:
            return self.registry.execute(invocation.tool.value, invocation.params)
        except Exception as exc:  # tool failures are reported, never raised
            logger.exception("tool_failed tool=%s", invocation.tool.value)
            return {"error": str(exc), "error_code": ErrorCode.UNKNOWN_ERROR.value}
        finally:
            self.registry.set_observer(None)

    def _alias_index(self) -> EntityAliasIndex:
        snapshot = self.dictionary.snapshot()
        with self._alias_lock:
            if self._alias_cache is None or self._alias_cache[0] is not snapshot:
                context_config = self.settings.context
                index = EntityAliasIndex.from_snapshot(
                    snapshot,
                    extra_aliases=context_config.extra_aliases,
                    ignored_tokens=context_config.ignored_alias_tokens,
                )
                self._alias_cache = (snapshot, index)
            return self._alias_cache[1]
