"""In-memory document index backing the `docs_search` tool."""

from __future__ import annotations

import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from hashlib import blake2b
from math import sqrt
from typing import Any

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_TOKEN_PATTERN = re.compile(r"\w+", flags=re.UNICODE)


class Embedder(ABC):
    """Embedder interface used by the document index."""

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many passages."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


class HashingEmbedder(Embedder):
    """Deterministic hashed bag-of-words embedding without external model calls."""

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = _TOKEN_PATTERN.findall(text.lower())
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


@dataclass(slots=True)
class DocumentPassage:
    passage_id: str
    doc_id: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DocumentHit:
    doc_id: str
    passage_id: str
    score: float
    preview: str


@dataclass(slots=True)
class _StoredPassage:
    passage: DocumentPassage
    embedding: list[float]


class InMemoryDocumentIndex:
    """Paragraph-level cosine-similarity index over uploaded documents."""

    def __init__(self, embedder: Embedder | None = None, *, preview_length: int = 220) -> None:
        self.embedder = embedder or HashingEmbedder()
        self.preview_length = preview_length
        self._passages: dict[str, _StoredPassage] = {}
        self._lock = threading.Lock()

    def add_document(self, doc_id: str, text: str, metadata: dict[str, Any] | None = None) -> int:
        """Index a document, replacing any earlier version; returns the passage count."""
        paragraphs = [part.strip() for part in _PARAGRAPH_SPLIT.split(text) if part.strip()]
        passages = [
            DocumentPassage(
                passage_id=f"{doc_id}-p{index:04d}",
                doc_id=doc_id,
                text=paragraph,
                metadata=dict(metadata or {}),
            )
            for index, paragraph in enumerate(paragraphs)
        ]
        embeddings = self.embedder.embed_documents([passage.text for passage in passages])
        with self._lock:
            self._passages = {
                key: stored for key, stored in self._passages.items() if stored.passage.doc_id != doc_id
            }
            for passage, embedding in zip(passages, embeddings, strict=True):
                self._passages[passage.passage_id] = _StoredPassage(passage=passage, embedding=embedding)
        return len(passages)

    def search(self, query: str, top_k: int = 5) -> list[DocumentHit]:
        query_embedding = self.embedder.embed_query(query)
        with self._lock:
            stored = list(self._passages.values())
        ranked = sorted(
            (
                (_cosine_similarity(query_embedding, record.embedding), record.passage)
                for record in stored
            ),
            key=lambda item: item[0],
            reverse=True,
        )
        return [
            DocumentHit(
                doc_id=passage.doc_id,
                passage_id=passage.passage_id,
                score=score,
                preview=_truncate(passage.text.replace("\n", " "), self.preview_length),
            )
            for score, passage in ranked[:top_k]
            if score > 0.0
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._passages)


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
