"""TTL-gated, single-flight cache of known business entities."""

from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable, Iterable

from hotel_router.config import DictionaryConfig
from hotel_router.sql.store import DataStore
from hotel_router.types import DictionaryEntry

logger = logging.getLogger(__name__)

_KEYWORD_SPLIT = re.compile(r"[\s\-_]+")


def derive_keywords(name: str, min_length: int = 3) -> frozenset[str]:
    """Tokenize a name on whitespace/hyphen/underscore, keeping tokens >= `min_length`."""
    return frozenset(
        token for token in _KEYWORD_SPLIT.split(name.lower()) if len(token) >= min_length
    )


class DictionarySnapshot:
    """Immutable view of the entity dictionary at one refresh."""

    def __init__(self, entries: Iterable[DictionaryEntry] = ()) -> None:
        self._entries = tuple(entries)
        self._names = [entry.canonical_name for entry in self._entries]

        vocabulary: list[str] = []
        owners: dict[str, str] = {}
        owner_counts: dict[str, int] = {}
        for entry in self._entries:
            # Iterate tokens in name order so vocabulary order is deterministic.
            for token in _KEYWORD_SPLIT.split(entry.canonical_name):
                if token not in entry.keywords:
                    continue
                if token not in owners:
                    owners[token] = entry.canonical_name
                    vocabulary.append(token)
            for keyword in entry.keywords:
                owner_counts[keyword] = owner_counts.get(keyword, 0) + 1
        self._vocabulary = vocabulary
        self._owners = owners
        self._owner_counts = owner_counts

    @classmethod
    def build(cls, names: Iterable[str], min_keyword_length: int = 3) -> "DictionarySnapshot":
        entries: list[DictionaryEntry] = []
        seen: set[str] = set()
        for raw in names:
            name = " ".join(str(raw).lower().split())
            if not name or name in seen:
                continue
            seen.add(name)
            entries.append(
                DictionaryEntry(
                    canonical_name=name,
                    keywords=derive_keywords(name, min_keyword_length),
                )
            )
        return cls(entries)

    @property
    def entries(self) -> tuple[DictionaryEntry, ...]:
        return self._entries

    @property
    def names(self) -> list[str]:
        return list(self._names)

    @property
    def keywords(self) -> set[str]:
        return set(self._owners)

    @property
    def vocabulary(self) -> list[str]:
        """Keywords in first-seen dictionary order."""
        return list(self._vocabulary)

    def owner_of(self, keyword: str) -> str | None:
        return self._owners.get(keyword)

    def is_unique_keyword(self, keyword: str) -> bool:
        return self._owner_counts.get(keyword, 0) == 1

    def __len__(self) -> int:
        return len(self._entries)


class EntityDictionaryCache:
    """Holds the current entity dictionary and refreshes it from the store.

    Refreshes are time-gated by `ttl_seconds` and single-flighted: while one
    caller loads from the store, other callers keep reading the previous
    snapshot, or wait for the load when nothing has been loaded yet. Store
    failures are logged and the last good snapshot keeps being served.
    """

    def __init__(
        self,
        store: DataStore,
        config: DictionaryConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self.config = config or DictionaryConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot = DictionarySnapshot()
        self._loaded = False
        self._last_refresh: float | None = None
        self._last_failure: float | None = None
        self._inflight: threading.Event | None = None

    def refresh(self, now: float | None = None) -> None:
        now = self._clock() if now is None else now
        with self._lock:
            if self._is_fresh(now):
                return
            if self._inflight is not None:
                pending = self._inflight
                leader = False
            else:
                pending = threading.Event()
                self._inflight = pending
                leader = True

        if not leader:
            if not self._loaded:
                pending.wait(self.config.initial_load_wait_seconds)
            return

        try:
            self._load(now)
        finally:
            with self._lock:
                self._inflight = None
            pending.set()

    def _is_fresh(self, now: float) -> bool:
        if self._last_refresh is not None and now - self._last_refresh < self.config.ttl_seconds:
            return True
        if (
            self._last_failure is not None
            and now - self._last_failure < self.config.failure_backoff_seconds
        ):
            return True
        return False

    def _load(self, now: float) -> None:
        try:
            names = self._store.list_entity_names()
        except Exception as exc:
            with self._lock:
                self._last_failure = now
            logger.warning(
                "entity_dictionary_refresh_failed serving_stale=%s entries=%d error=%s",
                self._loaded,
                len(self._snapshot),
                exc,
            )
            return

        snapshot = DictionarySnapshot.build(names, self.config.min_keyword_length)
        with self._lock:
            self._snapshot = snapshot
            self._loaded = True
            self._last_refresh = now
            self._last_failure = None
        logger.info(
            "entity_dictionary_refreshed entities=%d keywords=%d",
            len(snapshot),
            len(snapshot.keywords),
        )

    def snapshot(self) -> DictionarySnapshot:
        return self._snapshot

    def names(self) -> list[str]:
        return self._snapshot.names

    def keywords(self) -> set[str]:
        return self._snapshot.keywords

    @property
    def loaded(self) -> bool:
        return self._loaded
