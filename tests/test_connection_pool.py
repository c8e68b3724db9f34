"""Tests for the per-tenant connection pool."""
import threading

import pytest

from snowquery.connection_pool import ConnectionPool
from snowquery.errors import ConfigurationError, ConnectionError


class TestConnectionPool:

    def test_acquire_reuses_live_connection(self, driver, tenant_config):
        pool = ConnectionPool(driver)

        first = pool.acquire("acme", tenant_config)
        second = pool.acquire("acme", tenant_config)

        assert first is second
        assert driver.connect_count == 1
        assert "acme" in pool
        assert len(pool) == 1

    def test_tenants_never_share_connections(self, driver, tenant_config):
        pool = ConnectionPool(driver)

        acme = pool.acquire("acme", tenant_config)
        globex = pool.acquire("globex", tenant_config)

        assert acme is not globex
        assert len(pool) == 2

    def test_dead_connection_is_replaced_on_acquire(self, driver, tenant_config):
        pool = ConnectionPool(driver)
        first = pool.acquire("acme", tenant_config)
        first.close()

        second = pool.acquire("acme", tenant_config)

        assert second is not first
        assert driver.connect_count == 2

    def test_destroy_closes_and_evicts(self, driver, tenant_config):
        pool = ConnectionPool(driver)
        conn = pool.acquire("acme", tenant_config)

        pool.destroy("acme")

        assert conn.closed
        assert "acme" not in pool
        assert pool.acquire("acme", tenant_config) is not conn

    def test_destroy_unknown_tenant_is_noop(self, driver):
        ConnectionPool(driver).destroy("nobody")

    def test_handshake_failure_becomes_connection_error(self, driver, tenant_config):
        driver.fail_with = RuntimeError("Incorrect username or password was specified.")
        pool = ConnectionPool(driver)

        with pytest.raises(ConnectionError) as exc_info:
            pool.acquire("acme", tenant_config)

        assert "Incorrect username or password" in exc_info.value.message
        assert exc_info.value.retryable is True
        assert exc_info.value.details["tenant_id"] == "acme"
        assert "acme" not in pool

    def test_configuration_error_passes_through(self, driver, tenant_config):
        driver.fail_with = ConfigurationError("Invalid Snowflake private key: bad PEM")

        with pytest.raises(ConfigurationError):
            ConnectionPool(driver).acquire("acme", tenant_config)

    def test_verify_keeps_healthy_connection(self, driver, tenant_config):
        pool = ConnectionPool(driver)
        conn = pool.acquire("acme", tenant_config)

        assert pool.verify("acme") is True
        assert pool.acquire("acme", tenant_config) is conn

    def test_verify_destroys_connection_that_fails_ping(self, driver, tenant_config):
        pool = ConnectionPool(driver)
        conn = pool.acquire("acme", tenant_config)
        conn.ping_ok = False

        assert pool.verify("acme") is False
        assert conn.closed
        assert "acme" not in pool

    def test_verify_without_connection(self, driver):
        assert ConnectionPool(driver).verify("acme") is False

    def test_close_all(self, driver, tenant_config):
        pool = ConnectionPool(driver)
        conns = [pool.acquire(t, tenant_config) for t in ("a", "b", "c")]

        pool.close_all()

        assert len(pool) == 0
        assert all(c.closed for c in conns)


class TestConnectionPoolConcurrency:

    def test_concurrent_acquire_for_same_tenant_opens_one_connection(self, driver, tenant_config):
        """Two cold requests for one tenant must not both handshake."""
        driver.connect_delay = 0.05
        pool = ConnectionPool(driver)
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(pool.acquire("acme", tenant_config))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert driver.connect_count == 1
        assert len({id(c) for c in results}) == 1

    def test_different_tenants_connect_in_parallel(self, driver, tenant_config):
        driver.connect_delay = 0.05
        pool = ConnectionPool(driver)
        tenants = [f"tenant-{i}" for i in range(6)]

        threads = [threading.Thread(target=pool.acquire, args=(t, tenant_config)) for t in tenants]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert driver.connect_count == 6
        assert len(pool) == 6
