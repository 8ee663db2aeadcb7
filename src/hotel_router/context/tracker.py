"""Per-thread conversation context: recent turns and the entity under discussion."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Iterable

from hotel_router.config import ContextConfig
from hotel_router.entities.aliases import EntityAliasIndex
from hotel_router.types import ContextSnapshot, ConversationTurn

logger = logging.getLogger(__name__)


class ConversationContext:
    """Tracks which entity a single conversation thread is about.

    Off-topic detection always wins over stale entity memory: a user turn that
    is clearly about something else clears the current entity, and history
    lookback never reaches past such a turn.
    """

    def __init__(
        self,
        config: ContextConfig | None = None,
        *,
        turns: Iterable[ConversationTurn] = (),
    ) -> None:
        self.config = config or ContextConfig()
        self._lock = threading.Lock()
        self._turns: deque[ConversationTurn] = deque(turns, maxlen=self.config.max_turns)
        self._current_entity: str | None = None
        self._last_turn_was_entity_related = False

    def is_off_topic(self, text: str, aliases: EntityAliasIndex | None = None) -> bool:
        lowered = text.lower()
        if not any(keyword in lowered for keyword in self.config.off_topic_keywords):
            return False
        if any(keyword in lowered for keyword in self.config.entity_keywords):
            return False
        return aliases is None or aliases.detect(lowered) is None

    def record_user_turn(
        self,
        content: str,
        aliases: EntityAliasIndex | None = None,
        *,
        resolved_hint: str | None = None,
        topical: bool = False,
    ) -> str | None:
        """Store a user turn and update the entity state; returns the current entity."""
        with self._lock:
            if self.is_off_topic(content, aliases):
                if self._current_entity is not None:
                    logger.debug("context_cleared reason=off_topic entity=%s", self._current_entity)
                self._current_entity = None
                self._last_turn_was_entity_related = False
                self._turns.append(ConversationTurn(role="user", content=content, off_topic=True))
                return None

            detected = aliases.detect(content) if aliases is not None else None
            entity = detected or resolved_hint
            if entity is not None:
                self._current_entity = entity
                self._last_turn_was_entity_related = True
                self._turns.append(
                    ConversationTurn(
                        role="user",
                        content=content,
                        resolved_entity=entity,
                        is_entity_related=True,
                    )
                )
                return entity

            self._last_turn_was_entity_related = topical and self._current_entity is not None
            self._turns.append(
                ConversationTurn(
                    role="user",
                    content=content,
                    is_entity_related=self._last_turn_was_entity_related,
                )
            )
            return self._current_entity

    def record_assistant_turn(self, content: str) -> None:
        with self._lock:
            self._turns.append(ConversationTurn(role="assistant", content=content))

    def current_entity(self) -> str | None:
        """Return the explicit entity, or the most recent one found in history."""
        with self._lock:
            if self._current_entity is not None:
                return self._current_entity
            for turn in reversed(self._turns):
                if turn.off_topic:
                    return None
                if turn.resolved_entity:
                    return turn.resolved_entity
            return None

    @property
    def last_turn_was_entity_related(self) -> bool:
        return self._last_turn_was_entity_related

    def turns(self) -> list[ConversationTurn]:
        with self._lock:
            return list(self._turns)

    def snapshot(self) -> ContextSnapshot:
        return ContextSnapshot(
            current_entity=self.current_entity(),
            last_turn_was_entity_related=self._last_turn_was_entity_related,
            turn_count=len(self._turns),
        )

    def clear(self) -> None:
        with self._lock:
            self._turns.clear()
            self._current_entity = None
            self._last_turn_was_entity_related = False


class ConversationContextStore:
    """Owns one `ConversationContext` per thread id."""

    def __init__(self, config: ContextConfig | None = None) -> None:
        self.config = config or ContextConfig()
        self._contexts: dict[str, ConversationContext] = {}
        self._lock = threading.Lock()

    def get(self, thread_id: str) -> ConversationContext:
        with self._lock:
            context = self._contexts.get(thread_id)
            if context is None:
                context = ConversationContext(self.config)
                self._contexts[thread_id] = context
            return context

    def find(self, thread_id: str) -> ConversationContext | None:
        with self._lock:
            return self._contexts.get(thread_id)

    def clear(self, thread_id: str) -> None:
        context = self.find(thread_id)
        if context is not None:
            context.clear()

    def discard(self, thread_id: str) -> bool:
        with self._lock:
            return self._contexts.pop(thread_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)
