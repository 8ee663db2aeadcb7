import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from hotel_router.errors import StoreError
from hotel_router.sql.sandbox import SafeQuerySandbox
from hotel_router.sql.store import SqlAlchemyDataStore
from hotel_router.types import ErrorCode


@pytest.fixture
def sqlite_store() -> SqlAlchemyDataStore:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE hotels (id INTEGER PRIMARY KEY, name TEXT, stars INTEGER)"))
        conn.execute(
            text(
                "CREATE TABLE pricing_calculations ("
                "id INTEGER PRIMARY KEY, hotel_name TEXT, total_price REAL, created_at TEXT)"
            )
        )
        conn.execute(
            text(
                "INSERT INTO hotels (id, name, stars) VALUES "
                "(1, 'Dolder Grand', 5), (2, 'Adlon Kempinski', 5), (3, NULL, 3)"
            )
        )
        conn.execute(
            text(
                "INSERT INTO pricing_calculations (hotel_name, total_price, created_at) VALUES "
                "('dolder grand', 48210.0, '2024-03-01'), ('adlon kempinski', 39150.5, '2024-03-02')"
            )
        )
    return SqlAlchemyDataStore(engine)


def test_entity_names_skip_nulls(sqlite_store: SqlAlchemyDataStore) -> None:
    assert sqlite_store.list_entity_names() == ["Dolder Grand", "Adlon Kempinski"]


def test_read_only_query_returns_mappings(sqlite_store: SqlAlchemyDataStore) -> None:
    result = sqlite_store.run_read_only_query(
        "SELECT hotel_name, total_price FROM pricing_calculations ORDER BY created_at DESC",
        timeout_ms=1000,
    )

    assert result.rows == [
        {"hotel_name": "adlon kempinski", "total_price": 39150.5},
        {"hotel_name": "dolder grand", "total_price": 48210.0},
    ]
    assert result.took_ms >= 0


def test_schema_introspection_lists_tables_and_columns(sqlite_store: SqlAlchemyDataStore) -> None:
    triage = sqlite_store.introspect_schema()

    assert triage.tables == ["hotels", "pricing_calculations"]
    assert ("pricing_calculations", "hotel_name") in {(c.table, c.column) for c in triage.columns}


def test_driver_errors_become_store_errors(sqlite_store: SqlAlchemyDataStore) -> None:
    with pytest.raises(StoreError) as excinfo:
        sqlite_store.run_read_only_query("SELECT * FROM bookings", timeout_ms=1000)

    assert "no such table" in str(excinfo.value)


def test_sandbox_classifies_sqlite_failures(sqlite_store: SqlAlchemyDataStore) -> None:
    sandbox = SafeQuerySandbox(sqlite_store)

    missing_table = sandbox.execute("SELECT * FROM bookings")
    missing_column = sandbox.execute("SELECT margin FROM hotels")
    ok = sandbox.execute("SELECT name FROM hotels WHERE stars = 5 ORDER BY id")
    sandbox.close()

    assert missing_table.error_code == ErrorCode.RELATION_NOT_FOUND
    assert missing_table.triage is not None
    assert "pricing_calculations" in missing_table.triage.tables
    assert missing_column.error_code == ErrorCode.COLUMN_NOT_FOUND
    assert ok.rows == [{"name": "Dolder Grand"}, {"name": "Adlon Kempinski"}]
