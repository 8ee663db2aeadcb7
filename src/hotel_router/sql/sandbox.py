"""Sandboxed execution of read-only statements against a `DataStore`."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from time import perf_counter
from typing import Any

from hotel_router.config import SandboxConfig
from hotel_router.errors import QueryRejectedError, StoreError
from hotel_router.sql.guard import SafeQueryBuilder
from hotel_router.sql.store import DataStore
from hotel_router.types import ErrorCode, QueryExecutionResult, StoreResult, TriageInfo

logger = logging.getLogger(__name__)

_SQLSTATE_CODES = {
    "42P01": ErrorCode.RELATION_NOT_FOUND,
    "42703": ErrorCode.COLUMN_NOT_FOUND,
    "42601": ErrorCode.SYNTAX_ERROR,
    "42501": ErrorCode.INSUFFICIENT_PRIVILEGE,
    "57014": ErrorCode.TIMEOUT,
}


def classify_store_error(error: StoreError) -> ErrorCode:
    """Map a store failure to an `ErrorCode`, by SQLSTATE first, then by message."""
    if error.sqlstate and error.sqlstate in _SQLSTATE_CODES:
        return _SQLSTATE_CODES[error.sqlstate]
    message = error.message.lower()
    if "no such column" in message or ("column" in message and "does not exist" in message):
        return ErrorCode.COLUMN_NOT_FOUND
    if "no such table" in message or ("relation" in message and "does not exist" in message):
        return ErrorCode.RELATION_NOT_FOUND
    if "syntax error" in message:
        return ErrorCode.SYNTAX_ERROR
    if "permission denied" in message:
        return ErrorCode.INSUFFICIENT_PRIVILEGE
    if "canceling statement" in message or "statement timeout" in message:
        return ErrorCode.TIMEOUT
    return ErrorCode.UNKNOWN_ERROR


def _elapsed_ms(start: float) -> int:
    return int(round((perf_counter() - start) * 1000.0))


class SafeQuerySandbox:
    """Validates, scopes and executes statements; never raises.

    Every outcome, including rejections and store failures, is returned as a
    `QueryExecutionResult`. Rejected statements never reach the store.
    """

    def __init__(
        self,
        store: DataStore,
        config: SandboxConfig | None = None,
        builder: SafeQueryBuilder | None = None,
    ) -> None:
        self.store = store
        self.config = config or SandboxConfig()
        self.builder = builder or SafeQueryBuilder(self.config)
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="query-sandbox",
        )

    def execute(self, raw_query: Any, entity_scope: str | None = None) -> QueryExecutionResult:
        start = perf_counter()
        try:
            sql = self.builder.build(raw_query, entity_scope)
        except QueryRejectedError as exc:
            logger.info("query_rejected code=%s reason=%s", exc.code.value, exc.message)
            return QueryExecutionResult(
                rows=[],
                row_count=0,
                executed_query=raw_query if isinstance(raw_query, str) else "",
                took_ms=_elapsed_ms(start),
                error=exc.message,
                error_code=exc.code,
            )

        timeout = self.config.timeout_seconds
        try:
            result = self._run(sql, timeout)
        except FuturesTimeoutError:
            logger.warning("query_timeout timeout_s=%s scope=%s", timeout, entity_scope)
            return self._failure(sql, start, f"Query timed out after {timeout:g}s", ErrorCode.TIMEOUT)
        except StoreError as exc:
            code = classify_store_error(exc)
            logger.info("query_failed code=%s sqlstate=%s error=%s", code.value, exc.sqlstate, exc.message)
            triage = None
            if code in (ErrorCode.RELATION_NOT_FOUND, ErrorCode.COLUMN_NOT_FOUND):
                triage = self._triage()
            return self._failure(sql, start, exc.message, code, triage=triage)
        except Exception as exc:  # any other driver failure is reported, not raised
            logger.exception("query_failed code=UNKNOWN_ERROR")
            return self._failure(sql, start, str(exc), ErrorCode.UNKNOWN_ERROR)

        if not result.rows:
            return self._fallback(sql, entity_scope, start)
        return self._shape(result.rows, sql, start)

    def fallback_query(self, entity_scope: str | None) -> str:
        """Statement used once when the original returned no rows."""
        cfg = self.config
        if entity_scope and entity_scope.strip():
            return (
                f"SELECT * FROM {cfg.entity_table} "
                f"WHERE {self.builder.scope_filter(entity_scope)} "
                f"ORDER BY {cfg.recency_column} DESC LIMIT 1"
            )
        return cfg.summary_query

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _run(self, sql: str, timeout_seconds: float) -> StoreResult:
        future = self._executor.submit(
            self.store.run_read_only_query, sql, int(timeout_seconds * 1000)
        )
        try:
            return future.result(timeout=timeout_seconds)
        except FuturesTimeoutError:
            future.cancel()
            raise

    def _shape(
        self,
        rows: list[dict[str, Any]],
        executed_query: str,
        start: float,
        *,
        fallback_used: bool = False,
    ) -> QueryExecutionResult:
        max_rows = self.config.max_rows
        if len(rows) > max_rows:
            logger.info("query_truncated rows=%d max_rows=%d", len(rows), max_rows)
            return QueryExecutionResult(
                rows=rows[:max_rows],
                row_count=max_rows,
                executed_query=executed_query,
                took_ms=_elapsed_ms(start),
                error=f"Result truncated to {max_rows} rows ({len(rows)} returned)",
                error_code=ErrorCode.RESULT_TRUNCATED,
                fallback_used=fallback_used,
            )
        return QueryExecutionResult(
            rows=rows,
            row_count=len(rows),
            executed_query=executed_query,
            took_ms=_elapsed_ms(start),
            fallback_used=fallback_used,
        )

    def _fallback(self, sql: str, entity_scope: str | None, start: float) -> QueryExecutionResult:
        fallback_sql = self.fallback_query(entity_scope)
        combined = f"{sql} -- fallback: {fallback_sql}"
        try:
            result = self._run(fallback_sql, self.config.fallback_timeout_seconds)
        except Exception as exc:
            logger.warning("query_fallback_failed scope=%s error=%s", entity_scope, exc)
            result = None

        if result is not None and result.rows:
            logger.info("query_fallback_used scope=%s rows=%d", entity_scope, len(result.rows))
            return self._shape(result.rows, combined, start, fallback_used=True)

        return QueryExecutionResult(
            rows=[],
            row_count=0,
            executed_query=combined,
            took_ms=_elapsed_ms(start),
            hint=self._hint(),
        )

    def _hint(self) -> str:
        counts: list[str] = []
        for table in self.config.hint_tables:
            try:
                result = self._run(
                    f"SELECT COUNT(*) AS row_count FROM {table}",
                    self.config.fallback_timeout_seconds,
                )
            except Exception as exc:
                logger.warning("query_hint_count_failed table=%s error=%s", table, exc)
                continue
            if result.rows:
                value = next(iter(result.rows[0].values()), None)
                counts.append(f"{table}={value}")
        if not counts:
            return "Query returned no rows."
        return "Query returned no rows. Available data: " + ", ".join(counts) + "."

    def _triage(self) -> TriageInfo | None:
        try:
            triage = self.store.introspect_schema()
        except Exception as exc:
            logger.warning("schema_triage_failed error=%s", exc)
            return None
        logger.info("schema_triage tables=%d columns=%d", len(triage.tables), len(triage.columns))
        return triage

    @staticmethod
    def _failure(
        sql: str,
        start: float,
        message: str,
        code: ErrorCode,
        *,
        triage: TriageInfo | None = None,
    ) -> QueryExecutionResult:
        return QueryExecutionResult(
            rows=[],
            row_count=0,
            executed_query=sql,
            took_ms=_elapsed_ms(start),
            error=message,
            error_code=code,
            triage=triage,
        )
