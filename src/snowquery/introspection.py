"""Schema introspection over the warehouse's INFORMATION_SCHEMA.

For each configured schema: list tables (name, kind, comment, approximate
row count), then fetch every table's ordered column list concurrently on a
bounded thread pool. Any failing metadata query aborts the whole pass; a
partial snapshot is never returned.
"""
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Sequence

from .errors import IntrospectionError
from .schemas_metadata import ColumnMetadata, SchemaSnapshot, TableMetadata

logger = logging.getLogger(__name__)

_SIMPLE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")

TABLES_SQL = """
SELECT TABLE_NAME, TABLE_TYPE, COMMENT, ROW_COUNT
FROM {database}.INFORMATION_SCHEMA.TABLES
WHERE TABLE_SCHEMA = %s
ORDER BY TABLE_NAME
"""

COLUMNS_SQL = """
SELECT COLUMN_NAME, DATA_TYPE, IS_NULLABLE, COMMENT
FROM {database}.INFORMATION_SCHEMA.COLUMNS
WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
ORDER BY ORDINAL_POSITION
"""


def quote_identifier(name: str) -> str:
    """Render an identifier for interpolation into metadata SQL.

    Plain identifiers are left bare so Snowflake resolves them
    case-insensitively; anything else is double-quoted with quotes doubled.

    Example:
        >>> quote_identifier("ANALYTICS_DB")
        'ANALYTICS_DB'
        >>> quote_identifier("my-db")
        '"my-db"'
    """
    if _SIMPLE_IDENTIFIER.match(name):
        return name
    return '"' + name.replace('"', '""') + '"'


def fetch_dicts(connection: Any, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
    """Run a query and return rows as {COLUMN_NAME: value} dicts."""
    with connection.cursor() as cur:
        cur.execute(sql, tuple(params))
        names = [d[0] for d in (cur.description or [])]
        return [dict(zip(names, row)) for row in cur.fetchall()]


def _row_count(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


class SchemaIntrospector:
    """Enumerates tables and columns for a tenant's configured schemas.

    Example:
        >>> introspector = SchemaIntrospector(max_workers=8)
        >>> snapshot = introspector.introspect(conn, "ANALYTICS_DB", ["PUBLIC"])
        >>> [t.name for t in snapshot.tables]
        ['CLAIMS', 'MEMBERS']
    """

    def __init__(self, max_workers: int = 8):
        self._max_workers = max_workers

    def introspect(self, connection: Any, database: str, schemas: Sequence[str]) -> SchemaSnapshot:
        """Capture a full snapshot of the given schemas.

        Raises:
            IntrospectionError: If any metadata query fails.
        """
        db = quote_identifier(database)
        tables: list[TableMetadata] = []
        try:
            for schema in schemas:
                tables.extend(self._introspect_schema(connection, db, schema))
        except IntrospectionError:
            raise
        except Exception as e:
            logger.error("Schema introspection failed for %s: %s", database, e)
            raise IntrospectionError(
                f"Schema introspection failed: {e}",
                details={"database": database, "schemas": list(schemas)}
            ) from e

        logger.info("Introspected %d tables from %s (%s)", len(tables), database, ", ".join(schemas))
        return SchemaSnapshot(tables=tables)

    def _introspect_schema(self, connection: Any, db: str, schema: str) -> list[TableMetadata]:
        table_rows = fetch_dicts(connection, TABLES_SQL.format(database=db), (schema,))
        if not table_rows:
            return []

        columns_sql = COLUMNS_SQL.format(database=db)

        def columns_for(table_name: str) -> list[ColumnMetadata]:
            return [
                ColumnMetadata(
                    name=c["COLUMN_NAME"],
                    data_type=c["DATA_TYPE"],
                    nullable=c.get("IS_NULLABLE") == "YES",
                    comment=c.get("COMMENT") or "",
                )
                for c in fetch_dicts(connection, columns_sql, (schema, table_name))
            ]

        workers = max(1, min(self._max_workers, len(table_rows)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="introspect") as pool:
            # map re-raises the first failure when results are consumed
            column_lists = list(pool.map(columns_for, [t["TABLE_NAME"] for t in table_rows]))

        return [
            TableMetadata(
                name=t["TABLE_NAME"],
                schema_name=schema,
                kind=t.get("TABLE_TYPE") or "BASE TABLE",
                comment=t.get("COMMENT") or "",
                row_count=_row_count(t.get("ROW_COUNT")),
                columns=columns,
            )
            for t, columns in zip(table_rows, column_lists)
        ]
