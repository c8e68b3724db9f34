"""Tenant credential resolution.

One resolver, two backends:

- StoreConfigBackend: tenant records from the metadata store (multi-tenant).
- EnvironmentConfigBackend: one process-wide warehouse described by
  SNOWFLAKE_* environment variables, used for unauthenticated/demo operation.

Backends are consulted in order; the first that knows the tenant wins. The
rest of the pipeline never knows which backend answered, except through
ResolvedTenant.persistent (which selects where schema snapshots live).

Example:
    >>> resolver = TenantConfigResolver([StoreConfigBackend(store), EnvironmentConfigBackend()])
    >>> resolved = resolver.resolve("default")
    >>> resolved.config.database
    'ANALYTICS_DB'
"""
import logging
import os
from pathlib import Path
from typing import Mapping, Optional, Protocol, Sequence

from pydantic import ValidationError

from .errors import ConfigurationError
from .metadata_store import MetadataStore
from .schemas_tenant import ResolvedTenant, TenantConnectionConfig

logger = logging.getLogger(__name__)


class TenantConfigBackend(Protocol):
    persistent: bool

    def lookup(self, tenant_id: str) -> Optional[TenantConnectionConfig]:
        ...


class StoreConfigBackend:
    """Tenant configs held in the metadata store."""
    persistent = True

    def __init__(self, store: MetadataStore):
        self._store = store

    def lookup(self, tenant_id: str) -> Optional[TenantConnectionConfig]:
        return self._store.get_tenant_config(tenant_id)


class EnvironmentConfigBackend:
    """Process-wide fallback warehouse from environment variables.

    Serves any tenant id the store does not know. Returns None when the
    environment does not describe a complete warehouse.
    """
    persistent = False

    REQUIRED = ("SNOWFLAKE_ACCOUNT", "SNOWFLAKE_WAREHOUSE", "SNOWFLAKE_DATABASE", "SNOWFLAKE_SCHEMA")

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        """Initialize backend.

        Args:
            environ: Variables to read (default: os.environ, read on every lookup)
        """
        self._environ = environ

    def lookup(self, tenant_id: str) -> Optional[TenantConnectionConfig]:
        env = self._environ if self._environ is not None else os.environ
        user = env.get("SNOWFLAKE_USER") or env.get("SNOWFLAKE_USERNAME")
        if not user or any(not env.get(name) for name in self.REQUIRED):
            return None
        password = env.get("SNOWFLAKE_PASSWORD") or None
        private_key = self._private_key(env)
        if password is None and private_key is None:
            return None

        try:
            return TenantConnectionConfig(
                account=env["SNOWFLAKE_ACCOUNT"],
                user=user,
                password=password,
                private_key=private_key,
                private_key_passphrase=env.get("SNOWFLAKE_PRIVATE_KEY_PASSPHRASE") or None,
                warehouse=env["SNOWFLAKE_WAREHOUSE"],
                database=env["SNOWFLAKE_DATABASE"],
                schemas=env["SNOWFLAKE_SCHEMA"],
                role=env.get("SNOWFLAKE_ROLE") or "PUBLIC",
                max_rows_per_query=int(env.get("MAX_ROWS_PER_QUERY") or 1000),
                query_timeout_secs=int(env.get("QUERY_TIMEOUT_SECS") or 60),
            )
        except (ValueError, ValidationError) as e:
            raise ConfigurationError(
                f"Invalid SNOWFLAKE_* environment configuration: {e}",
                details={"backend": "environment"}
            ) from e

    @staticmethod
    def _private_key(env: Mapping[str, str]) -> Optional[str]:
        """PEM text from SNOWFLAKE_PRIVATE_KEY (\\n-escaped) or SNOWFLAKE_PRIVATE_KEY_PATH."""
        inline = env.get("SNOWFLAKE_PRIVATE_KEY")
        if inline:
            return inline.replace("\\n", "\n")
        path = env.get("SNOWFLAKE_PRIVATE_KEY_PATH")
        if path:
            try:
                return Path(path).read_text(encoding="utf-8")
            except OSError as e:
                raise ConfigurationError(
                    f"Cannot read SNOWFLAKE_PRIVATE_KEY_PATH {path}: {e}",
                    details={"backend": "environment"}
                ) from e
        return None


class TenantConfigResolver:
    """Resolve the active warehouse config for a tenant.

    Re-resolved on every request; lookups are cheap and nothing is cached
    here, so credential rotation takes effect on the next request.
    """

    def __init__(self, backends: Sequence[TenantConfigBackend]):
        self._backends = list(backends)

    def resolve(self, tenant_id: str) -> ResolvedTenant:
        """Return the tenant's config from the first backend that has one.

        Raises:
            ConfigurationError: If no backend yields a usable config.
        """
        for backend in self._backends:
            config = backend.lookup(tenant_id)
            if config is not None:
                return ResolvedTenant(tenant_id=tenant_id, config=config, persistent=backend.persistent)
        logger.warning("No warehouse configuration for tenant %s", tenant_id)
        raise ConfigurationError(
            "Snowflake configuration not found",
            details={"tenant_id": tenant_id}
        )
