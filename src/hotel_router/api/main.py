"""FastAPI entrypoint for message routing, thread context and trace endpoints."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from hotel_router.config import load_settings
from hotel_router.service import QueryRouterService
from hotel_router.sql.store import SqlAlchemyDataStore
from hotel_router.types import MessageOutcome

logger = logging.getLogger(__name__)


def _create_llm() -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)


def build_service_from_env() -> QueryRouterService:
    """Build the service from `QUERY_ROUTER_SETTINGS`, `DATABASE_URL` and the OpenAI variables."""
    settings = load_settings(os.getenv("QUERY_ROUTER_SETTINGS"))
    store = SqlAlchemyDataStore(os.getenv("DATABASE_URL", "sqlite://"))
    return QueryRouterService.from_store(store, settings=settings, llm=_create_llm())


class MessageRequest(BaseModel):
    thread_id: str = Field(min_length=1, max_length=200)
    message: str


class ReplyRequest(BaseModel):
    content: str = Field(min_length=1)


def _outcome_payload(outcome: MessageOutcome) -> dict[str, Any]:
    payload = asdict(outcome)
    payload["classification"]["type"] = outcome.classification.type.value
    payload["invocation"]["tool"] = outcome.invocation.tool.value if outcome.invocation.tool else None
    return payload


def create_app(service: QueryRouterService | None = None) -> FastAPI:
    router_service = service or build_service_from_env()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        logger.info("query_router_shutdown threads=%d", len(router_service.contexts))
        router_service.close()

    app = FastAPI(title="Hotel Query Router", version="0.1.0", lifespan=lifespan)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "semantic_classifier": router_service.classifier.semantic_classifier is not None,
            "dictionary_loaded": router_service.dictionary.loaded,
            "known_entities": len(router_service.dictionary.names()),
            "active_threads": len(router_service.contexts),
        }

    @app.post("/messages")
    def handle_message(request: MessageRequest) -> dict[str, Any]:
        outcome = router_service.handle_message(request.thread_id, request.message)
        return _outcome_payload(outcome)

    @app.post("/threads/{thread_id}/replies")
    def record_reply(thread_id: str, request: ReplyRequest) -> dict[str, Any]:
        return asdict(router_service.record_assistant_reply(thread_id, request.content))

    @app.get("/threads/{thread_id}/context")
    def thread_context(thread_id: str) -> dict[str, Any]:
        try:
            snapshot = router_service.context_snapshot(thread_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(snapshot)

    @app.delete("/threads/{thread_id}")
    def clear_thread(thread_id: str) -> dict[str, Any]:
        if not router_service.clear_thread(thread_id):
            raise HTTPException(status_code=404, detail=f"Thread not found: {thread_id}")
        return {"thread_id": thread_id, "cleared": True}

    @app.get("/entities")
    def entities() -> dict[str, Any]:
        names = router_service.known_entities()
        return {"items": names, "count": len(names)}

    @app.get("/tools")
    def tools(tag: str | None = None) -> dict[str, Any]:
        catalog = router_service.registry.catalog()
        if tag is not None:
            selected = set(router_service.registry.with_tag(tag))
            catalog = [item for item in catalog if item["name"] in selected]
        return {"items": catalog}

    @app.get("/traces")
    def traces(limit: int = 20, thread_id: str | None = None) -> dict[str, Any]:
        recent = router_service.trace_store.list_recent(limit=limit, thread_id=thread_id)
        records = [asdict(record) for record in recent]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = router_service.trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return router_service.trace_store.summary()

    return app
