"""Query executor: run one validated statement against a tenant's warehouse.

Flow:
  1. Resolve the tenant config
  2. SafetyValidator.validate (every statement, including model output)
  3. Acquire the tenant's pooled connection
  4. ALTER SESSION SET STATEMENT_TIMEOUT_IN_SECONDS to
     min(query_timeout_secs, time left on the request deadline)
  5. Execute, fetch at most max_rows_per_query rows
  6. Serialize every cell to a JSON primitive

No second query is issued to count rows; truncated only says the cap was hit.
"""
import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional

from .connection_pool import ConnectionPool
from .deadline import Deadline
from .errors import ExecutionError
from .schemas_sql import QueryResult
from .schemas_tenant import ResolvedTenant
from .sql_safety import SafetyValidator
from .tenants import TenantConfigResolver

logger = logging.getLogger(__name__)


def serialize_value(value: Any) -> Any:
    """Convert a driver value to a JSON primitive.

    Example:
        >>> serialize_value(date(2024, 1, 31))
        '2024-01-31'
        >>> serialize_value(b"\\x01\\xff")
        '01ff'
        >>> serialize_value(Decimal("12.50"))
        12.5
    """
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, Decimal):
        # Convert Decimal to float for JSON serialization
        return float(value)
    return value


class QueryExecutor:
    """Runs validated SELECT statements with a timeout and a row cap.

    Example:
        >>> executor = QueryExecutor(resolver, pool, SafetyValidator())
        >>> result = executor.execute("acme", 'SELECT COUNT(*) AS MEMBER_COUNT FROM "MEMBERS"')
        >>> result.data
        [{'MEMBER_COUNT': 42}]
    """

    def __init__(self, resolver: TenantConfigResolver, pool: ConnectionPool, validator: SafetyValidator):
        self._resolver = resolver
        self._pool = pool
        self._validator = validator

    def execute(
        self,
        tenant_id: str,
        sql: str,
        deadline: Optional[Deadline] = None,
        resolved: Optional[ResolvedTenant] = None
    ) -> QueryResult:
        """Execute a statement for a tenant.

        Args:
            tenant_id: Tenant whose warehouse to query
            sql: Candidate statement (validated here)
            deadline: Request deadline composed with the tenant's statement timeout
            resolved: Already-resolved config for this request, if any

        Returns:
            QueryResult with serialized rows

        Raises:
            ConfigurationError: No usable tenant config
            UnsafeQueryError: Statement failed the safety rules
            ConnectionError: Warehouse handshake failed
            TimeoutError: Request deadline ran out before execution
            ExecutionError: Warehouse rejected or failed the statement
        """
        deadline = deadline or Deadline.unbounded()
        resolved = resolved or self._resolver.resolve(tenant_id)
        config = resolved.config

        self._validator.validate(sql)

        connection = self._pool.acquire(tenant_id, config)
        timeout_secs = deadline.budget_seconds(config.query_timeout_secs, stage="execution")
        cap = config.max_rows_per_query

        logger.debug("Executing for tenant %s (timeout=%ss, cap=%d): %s", tenant_id, timeout_secs, cap, sql)
        try:
            with connection.cursor() as cur:
                cur.execute(f"ALTER SESSION SET STATEMENT_TIMEOUT_IN_SECONDS = {int(timeout_secs)}")
                cur.execute(sql, timeout=timeout_secs)
                columns = [d[0] for d in (cur.description or [])]
                rows = cur.fetchmany(cap)
        except Exception as e:
            logger.error("Query failed for tenant %s: %s", tenant_id, e)
            # The statement may have died with the session; keep the connection only if it still answers
            self._pool.verify(tenant_id)
            raise ExecutionError(
                f"Query error: {e}",
                details={"tenant_id": tenant_id}
            ) from e

        data = [
            {col: serialize_value(value) for col, value in zip(columns, row)}
            for row in rows
        ]
        logger.info("Query for tenant %s returned %d rows", tenant_id, len(data))
        return QueryResult(
            columns=columns,
            data=data,
            row_count=len(data),
            truncated=len(rows) >= cap,
        )
