"""Tool registry: pydantic-validated tool arguments and per-call tracing."""

from __future__ import annotations

import json
from collections.abc import Callable
from time import perf_counter
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hotel_router.types import ErrorCode, ToolTrace

ToolOutput = dict[str, Any]


class ToolSpec(BaseModel):
    """A routable tool: argument model, handler and catalogue metadata."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], ToolOutput]
    tags: list[str] = Field(default_factory=list)

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "tags": list(self.tags),
            "parameters": self.args_schema.model_json_schema(),
        }


class ToolRegistry:
    """Executes tools by name.

    Arguments that fail validation do not reach the handler; the call returns
    an `INVALID_INPUT` payload instead. Handler exceptions propagate after the
    observer has seen the failed call.
    """

    def __init__(self, *, preview_length: int = 320) -> None:
        self.preview_length = preview_length
        self._tools: dict[str, ToolSpec] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        self._observer = observer

    def execute(self, name: str, payload: dict[str, Any]) -> ToolOutput:
        try:
            spec = self._tools[name]
        except KeyError:
            raise KeyError(f"Unknown tool: {name}") from None

        start = perf_counter()
        try:
            arguments = spec.args_schema.model_validate(payload)
        except ValidationError as exc:
            output: ToolOutput = {
                "error": _validation_message(exc),
                "error_code": ErrorCode.INVALID_INPUT.value,
            }
        else:
            try:
                output = spec.handler(arguments)
            except Exception as exc:
                self._notify(spec.name, payload, f"{type(exc).__name__}: {exc}", start)
                raise
        self._notify(spec.name, payload, self._preview(output), start)
        return output

    def with_tag(self, tag: str) -> list[str]:
        return [spec.name for spec in self._tools.values() if tag in spec.tags]

    def catalog(self) -> list[dict[str, Any]]:
        return [spec.describe() for spec in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def _notify(self, name: str, payload: dict[str, Any], preview: str, start: float) -> None:
        if self._observer is None:
            return
        self._observer(
            ToolTrace(
                name=name,
                input_payload=payload,
                output_preview=preview[: self.preview_length],
                latency_ms=(perf_counter() - start) * 1000.0,
            )
        )

    def _preview(self, output: ToolOutput) -> str:
        return json.dumps(output, default=str, ensure_ascii=False)


def _validation_message(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "arguments"
        problems.append(f"{location}: {error['msg']}")
    return "Invalid tool arguments: " + "; ".join(problems)
