import logging
import threading
import time

from hotel_router.config import DictionaryConfig
from hotel_router.entities.aliases import EntityAliasIndex
from hotel_router.entities.dictionary import DictionarySnapshot, EntityDictionaryCache, derive_keywords
from hotel_router.types import StoreResult, TriageInfo


def test_derive_keywords_splits_and_drops_short_tokens() -> None:
    keywords = derive_keywords("Vier-Jahreszeiten_Hamburg am See")

    assert keywords == frozenset({"vier", "jahreszeiten", "hamburg", "see"})


def test_snapshot_normalizes_and_deduplicates_names() -> None:
    snapshot = DictionarySnapshot.build(["Dolder  Grand", "dolder grand", " ", "Adlon Kempinski"])

    assert snapshot.names == ["dolder grand", "adlon kempinski"]
    assert snapshot.vocabulary == ["dolder", "grand", "adlon", "kempinski"]
    assert snapshot.owner_of("grand") == "dolder grand"


def test_refresh_is_gated_by_ttl(make_store) -> None:
    store = make_store(["Dolder Grand"])
    cache = EntityDictionaryCache(store, DictionaryConfig(ttl_seconds=300))

    cache.refresh(now=0.0)
    store.names = ["Dolder Grand", "Adlon Kempinski"]
    cache.refresh(now=100.0)

    assert cache.names() == ["dolder grand"]
    assert store.name_calls == 1

    cache.refresh(now=301.0)

    assert cache.names() == ["dolder grand", "adlon kempinski"]
    assert "kempinski" in cache.keywords()
    assert store.name_calls == 2


def test_refresh_failure_keeps_last_good_snapshot(make_store, caplog) -> None:
    store = make_store(["Dolder Grand"])
    cache = EntityDictionaryCache(store, DictionaryConfig(ttl_seconds=300, failure_backoff_seconds=30))
    cache.refresh(now=0.0)

    store.fail_names = True
    with caplog.at_level(logging.WARNING, logger="hotel_router.entities.dictionary"):
        cache.refresh(now=400.0)

    assert cache.names() == ["dolder grand"]
    assert "entity_dictionary_refresh_failed" in caplog.text

    cache.refresh(now=410.0)
    assert store.name_calls == 2

    store.fail_names = False
    cache.refresh(now=431.0)
    assert store.name_calls == 3


def test_initial_refresh_failure_degrades_to_empty_dictionary(make_store) -> None:
    store = make_store()
    store.fail_names = True
    cache = EntityDictionaryCache(store)

    cache.refresh(now=0.0)

    assert cache.loaded is False
    assert cache.names() == []


class _BlockingStore:
    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()
        self.name_calls = 0

    def list_entity_names(self) -> list[str]:
        self.name_calls += 1
        self.started.set()
        self.release.wait(5)
        return ["Dolder Grand"]

    def run_read_only_query(self, sql: str, timeout_ms: int) -> StoreResult:
        raise NotImplementedError

    def introspect_schema(self) -> TriageInfo:
        raise NotImplementedError


def test_concurrent_refreshes_issue_a_single_load() -> None:
    store = _BlockingStore()
    cache = EntityDictionaryCache(store)

    leader = threading.Thread(target=cache.refresh)
    leader.start()
    assert store.started.wait(5)

    followers = [threading.Thread(target=cache.refresh) for _ in range(4)]
    for thread in followers:
        thread.start()
    time.sleep(0.05)
    store.release.set()

    for thread in [leader, *followers]:
        thread.join(5)

    assert store.name_calls == 1
    assert cache.names() == ["dolder grand"]


def test_alias_index_skips_shared_and_ignored_keywords() -> None:
    snapshot = DictionarySnapshot.build(
        ["Vier Jahreszeiten Hamburg", "Vier Jahreszeiten München", "Dolder Grand"]
    )
    index = EntityAliasIndex.from_snapshot(
        snapshot,
        extra_aliases={"the dolder": "Dolder Grand"},
        ignored_tokens=["hamburg", "münchen"],
    )

    assert "vier" not in index.aliases()
    assert "hamburg" not in index.aliases()
    assert index.detect("Wie läuft das Vier Jahreszeiten München?") == "vier jahreszeiten münchen"
    assert index.detect("zahlen vom grand bitte") == "dolder grand"
    assert index.detect("how is the dolder doing") == "dolder grand"
    assert index.detect("nichts davon") is None


def test_alias_index_prefers_longest_alias() -> None:
    index = EntityAliasIndex({"grand": "grand hotel", "dolder grand": "dolder grand"})

    assert index.detect("zeige dolder grand") == "dolder grand"
