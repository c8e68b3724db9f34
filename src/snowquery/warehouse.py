"""Warehouse driver: opens, checks and closes Snowflake connections.

The pool talks to the warehouse only through WarehouseDriver so tests can
substitute a fake driver and never touch the network. Connections follow
DB-API 2.0: cursor(), close(), and cursor.execute/description/fetchmany.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from cryptography.hazmat.primitives import serialization

from .errors import ConfigurationError
from .schemas_tenant import TenantConnectionConfig

logger = logging.getLogger(__name__)


class WarehouseDriver(ABC):
    """Connection factory and liveness checks for one warehouse product."""

    @abstractmethod
    def connect(self, config: TenantConnectionConfig) -> Any:
        """Open an authenticated connection. Raises on handshake failure."""

    @abstractmethod
    def is_alive(self, connection: Any) -> bool:
        """Cheap local check that the session has not been closed."""

    @abstractmethod
    def ping(self, connection: Any) -> bool:
        """Round-trip check; False when the session is unusable."""

    @abstractmethod
    def close(self, connection: Any) -> None:
        """Close the session. Must not raise."""


def load_private_key(pem: str, passphrase: Optional[str] = None) -> bytes:
    """Convert a PEM private key to the DER PKCS#8 bytes the connector expects.

    Raises:
        ConfigurationError: If the key cannot be decoded.
    """
    try:
        key = serialization.load_pem_private_key(
            pem.encode("utf-8"),
            password=passphrase.encode("utf-8") if passphrase else None,
        )
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid Snowflake private key: {e}") from e
    return key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def connection_params(config: TenantConnectionConfig) -> Dict[str, Any]:
    """Keyword arguments for snowflake.connector.connect.

    Example:
        >>> params = connection_params(config)
        >>> sorted(params)[:3]
        ['account', 'database', 'password']
    """
    params: Dict[str, Any] = {
        "account": config.account,
        "user": config.user,
        "warehouse": config.warehouse,
        "database": config.database,
        "schema": config.default_schema,
        "role": config.role,
        "application": "snowquery",
    }
    if config.uses_key_pair:
        params["private_key"] = load_private_key(config.private_key, config.private_key_passphrase)
    else:
        params["password"] = config.password
    return params


class SnowflakeDriver(WarehouseDriver):
    """snowflake-connector-python backed driver."""

    def __init__(self, connect_fn: Optional[Callable[..., Any]] = None, login_timeout: int = 30):
        """Initialize driver.

        Args:
            connect_fn: Replacement for snowflake.connector.connect (tests)
            login_timeout: Handshake timeout in seconds
        """
        self._connect_fn = connect_fn
        self._login_timeout = login_timeout

    def _connector(self) -> Callable[..., Any]:
        if self._connect_fn is None:
            # Lazy import keeps the connector off the import path of tests
            import snowflake.connector
            self._connect_fn = snowflake.connector.connect
        return self._connect_fn

    def connect(self, config: TenantConnectionConfig) -> Any:
        params = connection_params(config)
        logger.info(
            "Connecting to Snowflake account=%s warehouse=%s database=%s auth=%s",
            config.account, config.warehouse, config.database,
            "key_pair" if config.uses_key_pair else "password"
        )
        return self._connector()(login_timeout=self._login_timeout, **params)

    def is_alive(self, connection: Any) -> bool:
        is_closed = getattr(connection, "is_closed", None)
        if callable(is_closed):
            return not is_closed()
        return True

    def ping(self, connection: Any) -> bool:
        if not self.is_alive(connection):
            return False
        try:
            cur = connection.cursor()
            try:
                cur.execute("SELECT 1")
                cur.fetchone()
            finally:
                cur.close()
        except Exception as e:
            logger.info("Snowflake ping failed: %s", e)
            return False
        return True

    def close(self, connection: Any) -> None:
        try:
            connection.close()
        except Exception as e:
            logger.warning("Error closing Snowflake connection: %s", e)
