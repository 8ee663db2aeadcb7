"""Data store contract and a SQLAlchemy-backed adapter."""

from __future__ import annotations

import logging
from time import perf_counter
from typing import Any, Protocol

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from hotel_router.errors import StoreError
from hotel_router.types import ColumnInfo, StoreResult, TriageInfo

logger = logging.getLogger(__name__)


class DataStore(Protocol):
    """Minimal data store contract used by the dictionary cache and sandbox."""

    def list_entity_names(self) -> list[str]:
        """Return every canonical entity (hotel) name."""

    def run_read_only_query(self, sql: str, timeout_ms: int) -> StoreResult:
        """Execute one read-only statement; raise `StoreError` on failure."""

    def introspect_schema(self) -> TriageInfo:
        """Return tables and columns of the current schema."""


class SqlAlchemyDataStore:
    """Data store over a SQLAlchemy engine.

    PostgreSQL connections run every statement in a read-only transaction with
    a server-side `statement_timeout`, so an abandoned query cannot hold the
    connection past its deadline. Other dialects rely on the sandbox timeout.
    """

    def __init__(
        self,
        engine: Engine | str,
        *,
        entity_names_query: str = "SELECT name FROM hotels ORDER BY id",
        max_tables: int = 50,
        max_columns: int = 200,
    ) -> None:
        self.engine = create_engine(engine) if isinstance(engine, str) else engine
        self.entity_names_query = entity_names_query
        self.max_tables = max_tables
        self.max_columns = max_columns

    @property
    def _is_postgres(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    def list_entity_names(self) -> list[str]:
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(self.entity_names_query))
                return [str(row[0]) for row in result if row[0] is not None]
        except SQLAlchemyError as exc:
            raise _to_store_error(exc) from exc

    def run_read_only_query(self, sql: str, timeout_ms: int) -> StoreResult:
        start = perf_counter()
        try:
            with self.engine.connect() as conn:
                with conn.begin():
                    if self._is_postgres:
                        conn.execute(text("SET TRANSACTION READ ONLY"))
                        conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
                    result = conn.execute(text(sql))
                    rows: list[dict[str, Any]] = (
                        [dict(row._mapping) for row in result] if result.returns_rows else []
                    )
        except SQLAlchemyError as exc:
            raise _to_store_error(exc) from exc
        return StoreResult(rows=rows, took_ms=(perf_counter() - start) * 1000.0)

    def introspect_schema(self) -> TriageInfo:
        try:
            inspector = inspect(self.engine)
            schema = inspector.default_schema_name or "public"
            tables = sorted(inspector.get_table_names())[: self.max_tables]
            columns: list[ColumnInfo] = []
            for table in tables:
                for column in inspector.get_columns(table):
                    if len(columns) >= self.max_columns:
                        break
                    columns.append(
                        ColumnInfo(table=table, column=column["name"], type=str(column["type"]))
                    )
        except SQLAlchemyError as exc:
            raise _to_store_error(exc) from exc
        return TriageInfo(schema=schema, tables=tables, columns=columns)


def _to_store_error(exc: SQLAlchemyError) -> StoreError:
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        orig = exc.orig
        sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        return StoreError(str(orig).strip(), sqlstate=sqlstate)
    return StoreError(str(exc))
