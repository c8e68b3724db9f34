"""At most one live warehouse connection per tenant.

Acquisition for one tenant is serialized by a per-tenant lock so two
concurrent cold requests open exactly one connection. Different tenants use
different locks and never wait on each other.

Example:
    >>> pool = ConnectionPool(SnowflakeDriver())
    >>> conn = pool.acquire("acme", config)
    >>> pool.acquire("acme", config) is conn
    True
    >>> pool.destroy("acme")
"""
import logging
from threading import Lock
from typing import Any, Dict

from .errors import ConfigurationError, ConnectionError
from .schemas_tenant import TenantConnectionConfig
from .warehouse import WarehouseDriver

logger = logging.getLogger(__name__)


class ConnectionPool:
    """Process-wide registry of tenant connections.

    Only the pool mutates its registry. Liveness is checked on acquire; a
    dead connection is closed, evicted and replaced, never handed out.
    """

    def __init__(self, driver: WarehouseDriver):
        self._driver = driver
        self._connections: Dict[str, Any] = {}
        self._guard = Lock()
        self._tenant_locks: Dict[str, Lock] = {}

    def _lock_for(self, tenant_id: str) -> Lock:
        with self._guard:
            lock = self._tenant_locks.get(tenant_id)
            if lock is None:
                lock = self._tenant_locks[tenant_id] = Lock()
            return lock

    def acquire(self, tenant_id: str, config: TenantConnectionConfig) -> Any:
        """Return the tenant's live connection, opening one if needed.

        Args:
            tenant_id: Pool key; connections are never shared across tenants
            config: Credentials used when a new connection must be opened

        Returns:
            A DB-API connection

        Raises:
            ConnectionError: If the connect handshake fails
            ConfigurationError: If the credentials cannot be used (bad key)
        """
        with self._lock_for(tenant_id):
            existing = self._connections.get(tenant_id)
            if existing is not None:
                if self._driver.is_alive(existing):
                    return existing
                logger.info("Evicting dead connection for tenant %s", tenant_id)
                self._evict(tenant_id)

            try:
                conn = self._driver.connect(config)
            except ConfigurationError:
                raise
            except Exception as e:
                logger.error("Snowflake connection failed for tenant %s: %s", tenant_id, e)
                raise ConnectionError(
                    f"Snowflake connection failed: {e}",
                    details={"tenant_id": tenant_id, "account": config.account}
                ) from e

            self._connections[tenant_id] = conn
            return conn

    def verify(self, tenant_id: str) -> bool:
        """Ping the tenant's connection; destroy it if the ping fails.

        Used after a failed or timed-out statement so that a broken session
        is not reused by the next request.

        Returns:
            True when a live connection remains pooled
        """
        with self._lock_for(tenant_id):
            conn = self._connections.get(tenant_id)
            if conn is None:
                return False
            if self._driver.ping(conn):
                return True
            logger.warning("Connection for tenant %s failed ping, destroying", tenant_id)
            self._evict(tenant_id)
            return False

    def destroy(self, tenant_id: str) -> None:
        """Close and evict (credential rotation, deactivation)."""
        with self._lock_for(tenant_id):
            self._evict(tenant_id)

    def close_all(self) -> None:
        """Close every pooled connection. The pool's single teardown path."""
        with self._guard:
            tenant_ids = list(self._connections)
        for tenant_id in tenant_ids:
            self.destroy(tenant_id)

    def _evict(self, tenant_id: str) -> None:
        # Caller holds the tenant lock
        conn = self._connections.pop(tenant_id, None)
        if conn is not None:
            self._driver.close(conn)

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._connections
