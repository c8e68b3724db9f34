"""Pytest fixtures and configuration.

Provides an in-process fake warehouse (driver, connection, cursor) so every
test runs without network access, plus shared tenant/store fixtures.
"""
import sys
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from snowquery.config import Settings
from snowquery.metadata_store import InMemoryMetadataStore
from snowquery.query_log import InMemoryQueryLog
from snowquery.schemas_tenant import TenantConnectionConfig
from snowquery.warehouse import WarehouseDriver


class FakeWarehouse:
    """Answers INFORMATION_SCHEMA queries from a table dict and user queries from a callable.

    tables: {"MEMBERS": [("MEMBER_ID", "NUMBER", "NO", "Member key"), ...]}
    """

    def __init__(
        self,
        tables: Optional[dict[str, list[tuple]]] = None,
        row_counts: Optional[dict[str, Any]] = None,
        query_handler: Optional[Callable[[str], tuple[list[str], list[tuple]]]] = None
    ):
        self.tables = tables or {}
        self.row_counts = row_counts or {}
        self.query_handler = query_handler or (lambda sql: ([], []))
        self.introspection_delay = 0.0
        self.fail_columns_for: Optional[str] = None
        self.fail_queries_with: Optional[Exception] = None
        self.table_queries = 0
        self.statements: list[tuple[str, Any, Any]] = []
        self._lock = threading.Lock()

    def respond(self, sql: str, params: Any, timeout: Any) -> tuple[list[str], list[tuple]]:
        with self._lock:
            self.statements.append((sql, params, timeout))
        if "INFORMATION_SCHEMA.TABLES" in sql:
            with self._lock:
                self.table_queries += 1
            if self.introspection_delay:
                time.sleep(self.introspection_delay)
            rows = [
                (name, "BASE TABLE", f"{name.title()} table", self.row_counts.get(name, 10))
                for name in sorted(self.tables)
            ]
            return ["TABLE_NAME", "TABLE_TYPE", "COMMENT", "ROW_COUNT"], rows
        if "INFORMATION_SCHEMA.COLUMNS" in sql:
            table_name = params[1]
            if table_name == self.fail_columns_for:
                raise RuntimeError(f"Object '{table_name}' does not exist or not authorized")
            return ["COLUMN_NAME", "DATA_TYPE", "IS_NULLABLE", "COMMENT"], list(self.tables[table_name])
        if sql.startswith("ALTER SESSION"):
            return [], []
        if sql == "SELECT 1":
            return ["1"], [(1,)]
        if self.fail_queries_with is not None:
            raise self.fail_queries_with
        return self.query_handler(sql)


class FakeCursor:
    def __init__(self, connection: "FakeConnection"):
        self._connection = connection
        self.description = None
        self._rows: list[tuple] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def execute(self, sql: str, params: Any = None, timeout: Any = None):
        if self._connection.closed:
            raise RuntimeError("Connection is closed")
        columns, rows = self._connection.warehouse.respond(sql, params, timeout)
        self.description = [(c, None, None, None, None, None, None) for c in columns] or None
        self._rows = list(rows)
        return self

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def fetchmany(self, size: int):
        rows, self._rows = self._rows[:size], self._rows[size:]
        return rows

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def close(self):
        pass


class FakeConnection:
    def __init__(self, warehouse: FakeWarehouse, config: TenantConnectionConfig):
        self.warehouse = warehouse
        self.config = config
        self.closed = False
        self.ping_ok = True

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def is_closed(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True


class FakeDriver(WarehouseDriver):
    """Counts handshakes; can be told to fail or to be slow."""

    def __init__(self, warehouse: Optional[FakeWarehouse] = None):
        self.warehouse = warehouse or FakeWarehouse()
        self.connect_count = 0
        self.connect_delay = 0.0
        self.fail_with: Optional[Exception] = None
        self.connections: list[FakeConnection] = []
        self._lock = threading.Lock()

    def connect(self, config: TenantConnectionConfig) -> FakeConnection:
        with self._lock:
            self.connect_count += 1
        if self.connect_delay:
            time.sleep(self.connect_delay)
        if self.fail_with is not None:
            raise self.fail_with
        conn = FakeConnection(self.warehouse, config)
        with self._lock:
            self.connections.append(conn)
        return conn

    def is_alive(self, connection: FakeConnection) -> bool:
        return not connection.closed

    def ping(self, connection: FakeConnection) -> bool:
        return not connection.closed and connection.ping_ok

    def close(self, connection: FakeConnection) -> None:
        connection.close()


MEMBERS_COLUMNS = [
    ("MEMBER_ID", "NUMBER", "NO", "Member key"),
    ("STATUS", "VARCHAR", "YES", ""),
    ("CREATED_AT", "TIMESTAMP_NTZ", "YES", "Enrollment time"),
]

CLAIMS_COLUMNS = [
    ("CLAIM_ID", "NUMBER", "NO", ""),
    ("MEMBER_ID", "NUMBER", "NO", ""),
    ("PAID_AMOUNT", "NUMBER(12,2)", "YES", "Paid amount"),
]


@pytest.fixture
def tenant_config() -> TenantConnectionConfig:
    return TenantConnectionConfig(
        account="acme-xy12345",
        user="SVC_SNOWQUERY",
        password="secret",
        warehouse="COMPUTE_WH",
        database="ANALYTICS_DB",
        schemas=["PUBLIC"],
        max_rows_per_query=500,
        query_timeout_secs=30,
    )


@pytest.fixture
def warehouse() -> FakeWarehouse:
    return FakeWarehouse(
        tables={"MEMBERS": MEMBERS_COLUMNS, "CLAIMS": CLAIMS_COLUMNS},
        row_counts={"MEMBERS": 42, "CLAIMS": "n/a"},
    )


@pytest.fixture
def driver(warehouse: FakeWarehouse) -> FakeDriver:
    return FakeDriver(warehouse)


@pytest.fixture
def store(tenant_config: TenantConnectionConfig) -> InMemoryMetadataStore:
    store = InMemoryMetadataStore()
    store.add_tenant("acme", tenant_config)
    return store


@pytest.fixture
def query_log() -> InMemoryQueryLog:
    return InMemoryQueryLog()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        request_timeout_seconds=30.0,
        translation_timeout_seconds=10.0,
        introspection_workers=4,
    )
