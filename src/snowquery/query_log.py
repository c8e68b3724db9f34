"""Query log: one append-only record per answered question.

Write-only from the pipeline's point of view. The pipeline swallows (and
logs) any failure raised here so that a broken log never changes a response.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Optional

from .db import get_connection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryLogEntry:
    tenant_id: str
    user_id: Optional[str]
    question: str
    generated_sql: Optional[str] = None
    explanation: Optional[str] = None
    row_count: Optional[int] = None
    execution_ms: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class QueryLog(ABC):
    """Sink for query log records."""

    def record(
        self,
        tenant_id: str,
        user_id: Optional[str],
        question: str,
        generated_sql: Optional[str] = None,
        explanation: Optional[str] = None,
        row_count: Optional[int] = None,
        execution_ms: Optional[int] = None,
        error: Optional[str] = None
    ) -> None:
        """Write one record.

        Args:
            tenant_id: Tenant the question ran against
            user_id: Caller identity, if known
            question: Natural-language question as asked
            generated_sql: SQL produced by translation, if any
            explanation: Model explanation of the SQL, if any
            row_count: Rows returned on success
            execution_ms: Wall-clock time of the whole request
            error: Error text on failure

        Raises:
            Exception: Whatever the backend raises; callers must not let it escape.
        """
        self.write(QueryLogEntry(
            tenant_id=tenant_id,
            user_id=user_id,
            question=question,
            generated_sql=generated_sql,
            explanation=explanation,
            row_count=row_count,
            execution_ms=execution_ms,
            error=error,
        ))

    @abstractmethod
    def write(self, entry: QueryLogEntry) -> None:
        ...


class InMemoryQueryLog(QueryLog):
    """Keeps records in a list (tests, demo mode)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._entries: list[QueryLogEntry] = []

    def write(self, entry: QueryLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    @property
    def entries(self) -> list[QueryLogEntry]:
        with self._lock:
            return list(self._entries)


class PostgresQueryLog(QueryLog):
    """Appends to the query_log table of the metadata database."""

    def __init__(self, dsn: Optional[str] = None, connection_factory: Callable = get_connection):
        self._dsn = dsn
        self._connect = connection_factory

    def write(self, entry: QueryLogEntry) -> None:
        with self._connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO query_log (
                        tenant_id, user_id, question, generated_sql,
                        explanation, row_count, execution_ms, error, created_at
                    ) VALUES (
                        %s, %s, %s, %s, %s, %s, %s, %s, %s
                    )
                    """,
                    (
                        entry.tenant_id,
                        entry.user_id,
                        entry.question,
                        entry.generated_sql,
                        entry.explanation,
                        entry.row_count,
                        entry.execution_ms,
                        entry.error,
                        entry.created_at,
                    )
                )
            conn.commit()
