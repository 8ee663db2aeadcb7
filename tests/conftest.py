from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from typing import Any

import httpx
import pytest

from hotel_router.config import RouterSettings
from hotel_router.entities.dictionary import EntityDictionaryCache
from hotel_router.errors import StoreError
from hotel_router.intent.classifier import IntentClassifier
from hotel_router.service import QueryRouterService
from hotel_router.types import ColumnInfo, StoreResult, TriageInfo

HOTEL_NAMES = ["Vier Jahreszeiten Hamburg", "Dolder Grand", "Adlon Kempinski"]

SAMPLE_ROW = {
    "hotel_name": "dolder grand",
    "stars": 5,
    "room_count": 175,
    "profit_margin": 23.5,
    "total_price": 48210.0,
}

WEATHER_PAYLOAD = {"current_condition": [{"temp_C": "12", "weatherDesc": [{"value": "Cloudy"}]}]}


class FakeDataStore:
    """Records every statement; rows come from `handler`, which may raise `StoreError`."""

    def __init__(
        self,
        names: list[str] | None = None,
        *,
        handler: Callable[[str], list[dict[str, Any]]] | None = None,
        delay_seconds: float = 0.0,
    ) -> None:
        self.names = list(HOTEL_NAMES if names is None else names)
        self.handler = handler or (lambda sql: [dict(SAMPLE_ROW)])
        self.delay_seconds = delay_seconds
        self.fail_names = False
        self.name_calls = 0
        self.queries: list[str] = []
        self.timeouts_ms: list[int] = []
        self.introspect_error: Exception | None = None

    def list_entity_names(self) -> list[str]:
        self.name_calls += 1
        if self.fail_names:
            raise StoreError("connection refused")
        return list(self.names)

    def run_read_only_query(self, sql: str, timeout_ms: int) -> StoreResult:
        self.queries.append(sql)
        self.timeouts_ms.append(timeout_ms)
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        return StoreResult(rows=self.handler(sql), took_ms=1.0)

    def introspect_schema(self) -> TriageInfo:
        if self.introspect_error is not None:
            raise self.introspect_error
        return TriageInfo(
            schema="public",
            tables=["hotels", "pricing_calculations"],
            columns=[
                ColumnInfo(table="hotels", column="name", type="TEXT"),
                ColumnInfo(table="pricing_calculations", column="hotel_name", type="TEXT"),
            ],
        )


def _weather_transport(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"url": str(request.url), **WEATHER_PAYLOAD})


@pytest.fixture
def make_store() -> Callable[..., FakeDataStore]:
    return FakeDataStore


@pytest.fixture
def store() -> FakeDataStore:
    return FakeDataStore()


@pytest.fixture
def dictionary(store: FakeDataStore) -> EntityDictionaryCache:
    return EntityDictionaryCache(store)


@pytest.fixture
def classifier(dictionary: EntityDictionaryCache) -> IntentClassifier:
    return IntentClassifier(dictionary)


@pytest.fixture
def http_client() -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(_weather_transport))


@pytest.fixture
def service(store: FakeDataStore, http_client: httpx.Client) -> Iterator[QueryRouterService]:
    router_service = QueryRouterService.from_store(
        store,
        settings=RouterSettings(),
        http_client=http_client,
    )
    yield router_service
    router_service.close()
