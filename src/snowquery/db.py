"""Connection helper for the Postgres metadata database.

The metadata database holds tenant records, curated metadata, the business
glossary, cached schema snapshots and the query log. It is never the
warehouse itself.
"""
import os
from contextlib import contextmanager
from typing import Generator, Optional

import psycopg


class DatabaseConfig:
    """Metadata database configuration from environment variables."""

    def __init__(self) -> None:
        self.url = os.getenv("METADATA_DATABASE_URL")
        self.host = os.getenv("METADATA_DB_HOST", "localhost")
        self.port = int(os.getenv("METADATA_DB_PORT", "5432"))
        self.name = os.getenv("METADATA_DB_NAME", "snowquery")
        self.user = os.getenv("METADATA_DB_USER", "snowquery")
        self.password = os.getenv("METADATA_DB_PASSWORD", "snowquery")

    def connection_string(self) -> str:
        """Return a PostgreSQL connection string; METADATA_DATABASE_URL wins."""
        if self.url:
            return self.url
        return (
            f"host={self.host} "
            f"port={self.port} "
            f"dbname={self.name} "
            f"user={self.user} "
            f"password={self.password}"
        )


@contextmanager
def get_connection(dsn: Optional[str] = None) -> Generator[psycopg.Connection, None, None]:
    """Get a metadata database connection as a context manager.

    Usage:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT ...")
    """
    conn = psycopg.connect(dsn or DatabaseConfig().connection_string())
    try:
        yield conn
    finally:
        conn.close()
