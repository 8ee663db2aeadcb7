"""Optional model-based intent classification."""

from __future__ import annotations

import json
from typing import Any, Literal, Protocol

from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel, Field, ValidationError

from hotel_router.errors import SemanticClassificationError

_SYSTEM_PROMPT = """
You are a query classification system for a hotel pricing dashboard.
Classify the user's message into exactly one category:

1. business - hotel calculations, pricing, profit margins, room rates, occupancy, revenue
2. weather - weather information, temperature, forecasts
3. calculation - pure arithmetic
4. document - searching uploaded documents or files
5. general - everything else (politics, history, science, small talk)

Focus on INTENT, not keywords. Return the category, a confidence between 0 and 1
and a brief reasoning.
""".strip()

_TYPE_ALIASES = {"hotel_business": "business"}


class SemanticVerdict(BaseModel):
    """Structured output expected from the semantic classifier."""

    type: Literal["weather", "business", "calculation", "document", "general"]
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


class SemanticClassifier(Protocol):
    def classify_semantic(self, message: str) -> Any:
        """Return a verdict (model, mapping or JSON string); may raise."""


def coerce_verdict(payload: Any) -> SemanticVerdict:
    """Validate a raw classifier payload, raising `SemanticClassificationError`."""
    if isinstance(payload, SemanticVerdict):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise SemanticClassificationError(f"Verdict is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise SemanticClassificationError(f"Unsupported verdict payload: {type(payload).__name__}")

    data = dict(payload)
    raw_type = str(data.get("type", "")).strip().lower()
    data["type"] = _TYPE_ALIASES.get(raw_type, raw_type)
    try:
        return SemanticVerdict.model_validate(data)
    except ValidationError as exc:
        raise SemanticClassificationError(f"Invalid verdict: {exc}") from exc


class LLMSemanticClassifier:
    """Semantic classifier backed by a LangChain chat model with structured output."""

    def __init__(self, llm: Any, *, chain: Any | None = None) -> None:
        self.llm = llm
        if chain is not None:
            self._chain = chain
        else:
            prompt = ChatPromptTemplate.from_messages(
                [
                    ("system", _SYSTEM_PROMPT),
                    ("human", "Classify this message: {message}"),
                ]
            )
            self._chain = prompt | llm.with_structured_output(SemanticVerdict)

    def classify_semantic(self, message: str) -> SemanticVerdict:
        return coerce_verdict(self._chain.invoke({"message": message}))
