#!/usr/bin/env python3
"""
Initialize the snowquery metadata database.

Usage:
    python scripts/init_db.py                 # create tables
    python scripts/init_db.py acme "Acme Co"  # also upsert tenant 'acme' from SNOWFLAKE_* env vars
"""
import sys
from pathlib import Path

# Add src to path so we can import from snowquery
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from snowquery.db import get_connection
from snowquery.errors import ConfigurationError
from snowquery.tenants import EnvironmentConfigBackend

UPSERT_TENANT = """
    INSERT INTO tenant (
        id, name, sf_account, sf_user, sf_password, sf_private_key,
        sf_private_key_passphrase, sf_warehouse, sf_database, sf_schema,
        sf_role, max_rows_per_query, query_timeout_secs
    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (id) DO UPDATE SET
        name = EXCLUDED.name,
        sf_account = EXCLUDED.sf_account,
        sf_user = EXCLUDED.sf_user,
        sf_password = EXCLUDED.sf_password,
        sf_private_key = EXCLUDED.sf_private_key,
        sf_private_key_passphrase = EXCLUDED.sf_private_key_passphrase,
        sf_warehouse = EXCLUDED.sf_warehouse,
        sf_database = EXCLUDED.sf_database,
        sf_schema = EXCLUDED.sf_schema,
        sf_role = EXCLUDED.sf_role,
        max_rows_per_query = EXCLUDED.max_rows_per_query,
        query_timeout_secs = EXCLUDED.query_timeout_secs,
        schema_cache = NULL,
        schema_cached_at = NULL
"""


def seed_tenant(cur, tenant_id: str, name: str) -> None:
    """Upsert one tenant using the SNOWFLAKE_* environment variables."""
    config = EnvironmentConfigBackend().lookup(tenant_id)
    if config is None:
        raise ConfigurationError("SNOWFLAKE_* environment variables are incomplete; cannot seed tenant")
    cur.execute(
        UPSERT_TENANT,
        (
            tenant_id, name, config.account, config.user, config.password,
            config.private_key, config.private_key_passphrase, config.warehouse,
            config.database, ",".join(config.schemas), config.role,
            config.max_rows_per_query, config.query_timeout_secs,
        )
    )


def init_database(tenant_id: str | None = None, tenant_name: str | None = None):
    """Execute the SQL schema initialization script."""
    sql_file = Path(__file__).parent.parent / "sql" / "001_init.sql"

    if not sql_file.exists():
        print(f"Error: SQL file not found at {sql_file}")
        sys.exit(1)

    sql_content = sql_file.read_text(encoding="utf-8")

    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql_content)
                if tenant_id:
                    seed_tenant(cur, tenant_id, tenant_name or tenant_id)
                conn.commit()
                print("[OK] Metadata database initialized successfully")
                print(f"   - Executed: {sql_file}")
                if tenant_id:
                    print(f"   - Tenant upserted: {tenant_id}")

                cur.execute("""
                    SELECT table_name
                    FROM information_schema.tables
                    WHERE table_schema = 'public'
                    ORDER BY table_name
                """)
                tables = [row[0] for row in cur.fetchall()]
                print(f"   - Tables present: {', '.join(tables)}")

    except Exception as e:
        print(f"[ERROR] Database initialization failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    args = sys.argv[1:]
    init_database(args[0] if args else None, args[1] if len(args) > 1 else None)
