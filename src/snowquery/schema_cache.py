"""Staleness-bounded cache of tenant schema snapshots.

Where a snapshot lives depends on where the tenant's config came from:

- persistent tenants (metadata store): snapshot saved against the tenant
  record, fresh for SCHEMA_CACHE_TTL_SECONDS (1 hour)
- fallback tenants (environment): snapshot kept in process memory, fresh
  for MEMORY_SCHEMA_CACHE_TTL_SECONDS (30 minutes); the first request after
  start always misses

Refreshes are single-flighted per tenant: N concurrent requests hitting a
cold cache run exactly one introspection pass. A failed refresh propagates
and the stale snapshot is never served in its place.

Example:
    >>> cache = SchemaCache(resolver, pool, SchemaIntrospector(), store)
    >>> snapshot = cache.get("acme")      # introspects
    >>> cache.get("acme") is snapshot      # within TTL, no introspection
    True
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Optional

from .connection_pool import ConnectionPool
from .errors import IntrospectionError
from .introspection import SchemaIntrospector
from .metadata_store import MetadataStore
from .schemas_metadata import SchemaSnapshot
from .schemas_tenant import ResolvedTenant
from .tenants import TenantConfigResolver

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheStats:
    """Cache statistics for monitoring."""
    hits: int
    misses: int
    refreshes: int
    errors: int

    @property
    def total_requests(self) -> int:
        """Total cache requests (hits + misses)."""
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Cache hit rate (0.0-1.0)."""
        if self.total_requests == 0:
            return 0.0
        return self.hits / self.total_requests

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "refreshes": self.refreshes,
            "errors": self.errors,
            "total_requests": self.total_requests,
            "hit_rate": self.hit_rate
        }


class SchemaCache:
    """Per-tenant schema snapshots with TTL and single-flight refresh."""

    def __init__(
        self,
        resolver: TenantConfigResolver,
        pool: ConnectionPool,
        introspector: SchemaIntrospector,
        store: MetadataStore,
        ttl_seconds: int = 3600,
        memory_ttl_seconds: int = 1800,
        clock: Callable[[], datetime] = _utcnow
    ):
        """Initialize schema cache.

        Args:
            resolver: Tenant config resolver
            pool: Connection pool used for introspection
            introspector: Runs the metadata queries
            store: Metadata store holding persisted snapshots
            ttl_seconds: Freshness bound for persistent tenants (default: 1 hour)
            memory_ttl_seconds: Freshness bound for in-memory tenants (default: 30 minutes)
            clock: Returns the current UTC time (injectable for tests)
        """
        self._resolver = resolver
        self._pool = pool
        self._introspector = introspector
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._memory_ttl_seconds = memory_ttl_seconds
        self._clock = clock

        self._memory: Dict[str, SchemaSnapshot] = {}
        self._guard = Lock()
        self._tenant_locks: Dict[str, Lock] = {}
        self._stats = CacheStats(hits=0, misses=0, refreshes=0, errors=0)

    def _lock_for(self, tenant_id: str) -> Lock:
        with self._guard:
            lock = self._tenant_locks.get(tenant_id)
            if lock is None:
                lock = self._tenant_locks[tenant_id] = Lock()
            return lock

    def _count(self, field: str) -> None:
        with self._guard:
            setattr(self._stats, field, getattr(self._stats, field) + 1)

    def get(self, tenant_id: str, resolved: Optional[ResolvedTenant] = None) -> SchemaSnapshot:
        """Return a snapshot no older than the tenant's TTL.

        Args:
            tenant_id: Tenant to look up
            resolved: Already-resolved config for this request, if the caller has one

        Raises:
            ConfigurationError: If the tenant has no usable config
            ConnectionError: If a refresh cannot connect
            IntrospectionError: If a refresh fails
        """
        resolved = resolved or self._resolver.resolve(tenant_id)

        cached = self._fresh(resolved)
        if cached is not None:
            self._count("hits")
            return cached

        with self._lock_for(tenant_id):
            # Another request may have refreshed while we waited
            cached = self._fresh(resolved)
            if cached is not None:
                self._count("hits")
                return cached
            self._count("misses")
            return self._refresh_locked(resolved)

    def refresh(self, tenant_id: str) -> SchemaSnapshot:
        """Introspect now regardless of TTL and replace the cached snapshot."""
        resolved = self._resolver.resolve(tenant_id)
        with self._lock_for(tenant_id):
            return self._refresh_locked(resolved)

    def invalidate(self, tenant_id: str) -> None:
        """Drop the in-memory snapshot so the next get introspects.

        Persisted snapshots are left to expire by TTL; use refresh() to
        replace one immediately.
        """
        with self._lock_for(tenant_id):
            self._memory.pop(tenant_id, None)

    def get_stats(self) -> CacheStats:
        with self._guard:
            return CacheStats(**vars(self._stats))

    def _ttl_for(self, resolved: ResolvedTenant) -> int:
        return self._ttl_seconds if resolved.persistent else self._memory_ttl_seconds

    def _fresh(self, resolved: ResolvedTenant) -> Optional[SchemaSnapshot]:
        if resolved.persistent:
            snapshot = self._store.get_cached_schema(resolved.tenant_id)
        else:
            with self._guard:
                snapshot = self._memory.get(resolved.tenant_id)
        if snapshot is None:
            return None
        if snapshot.age_seconds(self._clock()) >= self._ttl_for(resolved):
            return None
        return snapshot

    def _refresh_locked(self, resolved: ResolvedTenant) -> SchemaSnapshot:
        tenant_id = resolved.tenant_id
        config = resolved.config
        connection = self._pool.acquire(tenant_id, config)
        try:
            snapshot = self._introspector.introspect(connection, config.database, config.schemas)
        except IntrospectionError:
            self._count("errors")
            self._pool.verify(tenant_id)
            raise

        snapshot = snapshot.model_copy(update={"captured_at": self._clock()})
        self._count("refreshes")

        if resolved.persistent:
            try:
                self._store.save_schema(tenant_id, snapshot)
            except Exception as e:
                logger.warning("Failed to persist schema snapshot for tenant %s: %s", tenant_id, e)
        else:
            with self._guard:
                self._memory[tenant_id] = snapshot

        logger.info("Schema cache refreshed for tenant %s (%d tables)", tenant_id, len(snapshot.tables))
        return snapshot
