"""Metadata store: tenant records, curated metadata, glossary, schema cache.

The pipeline only reads curated metadata and only writes schema snapshots.
Three implementations share the MetadataStore interface:

- NullMetadataStore: no metadata database at all (public/demo mode). Every
  lookup is absent/empty and writes are dropped.
- InMemoryMetadataStore: thread-safe dict-backed store for tests and demos.
- PostgresMetadataStore: the production store over psycopg (tables in
  sql/001_init.sql).

Example:
    >>> store = InMemoryMetadataStore()
    >>> store.get_tenant_config("acme") is None
    True
"""
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from threading import Lock
from typing import Any, Callable, Optional

from pydantic import ValidationError
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from .db import get_connection
from .errors import ConfigurationError
from .schemas_metadata import BusinessTerm, SchemaSnapshot, TableOverlay
from .schemas_tenant import TenantConnectionConfig

logger = logging.getLogger(__name__)


class MetadataStore(ABC):
    """Read-mostly view of per-tenant records.

    Implementations must be safe for concurrent use. Lookups return None or
    an empty list when nothing is known about the tenant.
    """

    @abstractmethod
    def get_tenant_config(self, tenant_id: str) -> Optional[TenantConnectionConfig]:
        """Return the active tenant's warehouse config, or None.

        Raises:
            ConfigurationError: If a tenant record exists but is unusable.
        """

    @abstractmethod
    def get_cached_schema(self, tenant_id: str) -> Optional[SchemaSnapshot]:
        """Return the last saved schema snapshot, or None."""

    @abstractmethod
    def save_schema(self, tenant_id: str, snapshot: SchemaSnapshot) -> None:
        """Persist a schema snapshot against the tenant record."""

    @abstractmethod
    def get_table_metadata(self, tenant_id: str) -> list[TableOverlay]:
        """Return curated table/column metadata."""

    @abstractmethod
    def get_business_terms(self, tenant_id: str) -> list[BusinessTerm]:
        """Return the tenant's business glossary."""


class NullMetadataStore(MetadataStore):
    """Store used when no metadata database is configured."""

    def get_tenant_config(self, tenant_id: str) -> None:
        return None

    def get_cached_schema(self, tenant_id: str) -> None:
        return None

    def save_schema(self, tenant_id: str, snapshot: SchemaSnapshot) -> None:
        return None

    def get_table_metadata(self, tenant_id: str) -> list[TableOverlay]:
        return []

    def get_business_terms(self, tenant_id: str) -> list[BusinessTerm]:
        return []


class InMemoryMetadataStore(MetadataStore):
    """Dict-backed store.

    Example:
        >>> store = InMemoryMetadataStore()
        >>> store.add_business_term("acme", BusinessTerm(term="Active member"))
        >>> [t.term for t in store.get_business_terms("acme")]
        ['Active member']
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._tenants: dict[str, TenantConnectionConfig] = {}
        self._schemas: dict[str, SchemaSnapshot] = {}
        self._tables: dict[str, list[TableOverlay]] = defaultdict(list)
        self._terms: dict[str, list[BusinessTerm]] = defaultdict(list)
        self.save_count = 0

    def add_tenant(self, tenant_id: str, config: TenantConnectionConfig) -> None:
        with self._lock:
            self._tenants[tenant_id] = config

    def remove_tenant(self, tenant_id: str) -> None:
        with self._lock:
            self._tenants.pop(tenant_id, None)
            self._schemas.pop(tenant_id, None)

    def add_table_metadata(self, tenant_id: str, overlay: TableOverlay) -> None:
        with self._lock:
            self._tables[tenant_id].append(overlay)

    def add_business_term(self, tenant_id: str, term: BusinessTerm) -> None:
        with self._lock:
            self._terms[tenant_id].append(term)

    def get_tenant_config(self, tenant_id: str) -> Optional[TenantConnectionConfig]:
        with self._lock:
            return self._tenants.get(tenant_id)

    def get_cached_schema(self, tenant_id: str) -> Optional[SchemaSnapshot]:
        with self._lock:
            return self._schemas.get(tenant_id)

    def save_schema(self, tenant_id: str, snapshot: SchemaSnapshot) -> None:
        with self._lock:
            self._schemas[tenant_id] = snapshot
            self.save_count += 1

    def get_table_metadata(self, tenant_id: str) -> list[TableOverlay]:
        with self._lock:
            return list(self._tables.get(tenant_id, []))

    def get_business_terms(self, tenant_id: str) -> list[BusinessTerm]:
        with self._lock:
            return list(self._terms.get(tenant_id, []))


# ---------------------------------------------------------------------------
# Postgres
# ---------------------------------------------------------------------------

def tenant_config_from_row(row: dict[str, Any]) -> TenantConnectionConfig:
    """Map a tenant row to a config.

    Raises:
        ConfigurationError: If the stored credentials are incomplete or invalid.
    """
    try:
        return TenantConnectionConfig(
            account=row["sf_account"],
            user=row["sf_user"],
            password=row.get("sf_password") or None,
            private_key=row.get("sf_private_key") or None,
            private_key_passphrase=row.get("sf_private_key_passphrase") or None,
            warehouse=row["sf_warehouse"],
            database=row["sf_database"],
            schemas=row.get("sf_schema") or "PUBLIC",
            role=row.get("sf_role") or "PUBLIC",
            max_rows_per_query=row.get("max_rows_per_query") or 500,
            query_timeout_secs=row.get("query_timeout_secs") or 30,
        )
    except (KeyError, ValidationError) as e:
        raise ConfigurationError(
            f"Tenant {row.get('id', '?')} has invalid warehouse credentials: {e}",
            details={"tenant_id": row.get("id")}
        ) from e


def table_overlay_from_rows(table_row: dict[str, Any], column_rows: list[dict[str, Any]]) -> TableOverlay:
    """Map a table_metadata row and its column_metadata rows to an overlay."""
    return TableOverlay(
        table_name=table_row["table_name"],
        display_name=table_row.get("display_name"),
        description=table_row.get("description"),
        grain_description=table_row.get("grain_description"),
        data_source=table_row.get("data_source"),
        update_frequency=table_row.get("update_frequency"),
        common_joins=table_row.get("common_joins"),
        common_filters=table_row.get("common_filters"),
        important_notes=table_row.get("important_notes"),
        sample_queries=table_row.get("sample_queries"),
        columns=[
            {
                "column_name": c["column_name"],
                "display_name": c.get("display_name"),
                "description": c.get("description"),
                "synonyms": c.get("synonyms"),
                "sample_values": c.get("sample_values"),
                "value_mapping": c.get("value_mapping"),
                "unit": c.get("unit"),
                "computed_logic": c.get("computed_logic"),
                "is_primary_key": bool(c.get("is_primary_key")),
                "is_foreign_key": bool(c.get("is_foreign_key")),
                "foreign_key_ref": c.get("foreign_key_ref"),
            }
            for c in column_rows
        ],
    )


class PostgresMetadataStore(MetadataStore):
    """Metadata store over the Postgres metadata database.

    Reads degrade to absent/empty when the database is unreachable so that a
    metadata outage falls back to environment credentials instead of failing
    every request. Writes raise.
    """

    def __init__(
        self,
        dsn: Optional[str] = None,
        connection_factory: Callable = get_connection
    ):
        """Initialize the store.

        Args:
            dsn: Connection string (default: METADATA_DATABASE_URL / METADATA_DB_*)
            connection_factory: Context manager factory yielding psycopg connections
        """
        self._dsn = dsn
        self._connect = connection_factory

    def _fetch(self, sql: str, params: tuple) -> list[dict[str, Any]]:
        with self._connect(self._dsn) as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(sql, params)
                return list(cur.fetchall())

    def get_tenant_config(self, tenant_id: str) -> Optional[TenantConnectionConfig]:
        try:
            rows = self._fetch(
                """
                SELECT id, sf_account, sf_user, sf_password, sf_private_key,
                       sf_private_key_passphrase, sf_warehouse, sf_database,
                       sf_schema, sf_role, max_rows_per_query, query_timeout_secs
                FROM tenant
                WHERE id = %s AND is_active
                """,
                (tenant_id,)
            )
        except Exception as e:
            logger.warning(
                "Tenant lookup failed for %s, falling back to environment configuration: %s", tenant_id, e
            )
            return None
        if not rows:
            return None
        return tenant_config_from_row(rows[0])

    def get_cached_schema(self, tenant_id: str) -> Optional[SchemaSnapshot]:
        try:
            rows = self._fetch(
                "SELECT schema_cache, schema_cached_at FROM tenant WHERE id = %s",
                (tenant_id,)
            )
        except Exception as e:
            logger.warning("Schema cache lookup failed for %s: %s", tenant_id, e)
            return None
        if not rows or rows[0]["schema_cache"] is None or rows[0]["schema_cached_at"] is None:
            return None
        try:
            return SchemaSnapshot.from_document(rows[0]["schema_cache"], rows[0]["schema_cached_at"])
        except (ValueError, ValidationError) as e:
            # A corrupt cache is a miss, never an error
            logger.warning("Discarding unreadable schema cache for %s: %s", tenant_id, e)
            return None

    def save_schema(self, tenant_id: str, snapshot: SchemaSnapshot) -> None:
        with self._connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE tenant
                    SET schema_cache = %s, schema_cached_at = %s
                    WHERE id = %s
                    """,
                    (Jsonb(snapshot.to_document()), snapshot.captured_at, tenant_id)
                )
            conn.commit()

    def get_table_metadata(self, tenant_id: str) -> list[TableOverlay]:
        try:
            tables = self._fetch(
                "SELECT * FROM table_metadata WHERE tenant_id = %s ORDER BY table_name",
                (tenant_id,)
            )
            columns = self._fetch(
                """
                SELECT c.*
                FROM column_metadata c
                JOIN table_metadata t ON t.id = c.table_metadata_id
                WHERE t.tenant_id = %s
                ORDER BY c.column_name
                """,
                (tenant_id,)
            )
        except Exception as e:
            logger.warning("Table metadata lookup failed for %s: %s", tenant_id, e)
            return []

        by_table: dict[Any, list[dict[str, Any]]] = defaultdict(list)
        for col in columns:
            by_table[col["table_metadata_id"]].append(col)
        return [table_overlay_from_rows(t, by_table.get(t["id"], [])) for t in tables]

    def get_business_terms(self, tenant_id: str) -> list[BusinessTerm]:
        try:
            rows = self._fetch(
                """
                SELECT term, definition, sql_mapping, related_tables
                FROM business_term
                WHERE tenant_id = %s
                ORDER BY term
                """,
                (tenant_id,)
            )
        except Exception as e:
            logger.warning("Business glossary lookup failed for %s: %s", tenant_id, e)
            return []
        return [BusinessTerm(**row) for row in rows]
