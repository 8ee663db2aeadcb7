"""Exception hierarchy for the query router.

These exceptions are raised and handled inside the package; callers of
`QueryRouterService.handle_message` only ever see structured results.
"""

from __future__ import annotations

from hotel_router.types import ErrorCode


class QueryRouterError(Exception):
    """Base exception for router failures."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.UNKNOWN_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class QueryRejectedError(QueryRouterError):
    """A statement failed read-only validation and must not be executed."""


class StoreError(QueryRouterError):
    """A data store reported a runtime failure.

    `sqlstate` carries the native (PostgreSQL-style) error code when the
    driver exposes one.
    """

    def __init__(self, message: str, *, sqlstate: str | None = None) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


class SemanticClassificationError(QueryRouterError):
    """The semantic classifier returned an unusable verdict."""
