"""Query pipeline: question in, uniform response envelope out.

States:
    received -> translating -> translated | translate_failed
    translated -> executing | skip_execute
    executing -> succeeded | exec_failed

Every terminal state produces the same QueryResponse shape and one
QueryLog record. Nothing raises past QueryPipeline.run: structured errors
become the response's error field, and a failing log write is logged and
otherwise ignored.

Process-wide state (connection pool, schema cache) lives on an explicitly
constructed PipelineContext with a single teardown path, close().
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from .config import Settings, settings as default_settings
from .connection_pool import ConnectionPool
from .context_builder import ContextBuilder
from .deadline import Deadline
from .errors import StructuredError
from .executor import QueryExecutor
from .introspection import SchemaIntrospector
from .llm.base import LLMProvider
from .metadata_store import MetadataStore, NullMetadataStore
from .query_log import InMemoryQueryLog, QueryLog
from .schema_cache import SchemaCache
from .schemas import ConversationTurn, PipelineState, QueryResponse
from .sql_safety import SafetyValidator
from .tenants import EnvironmentConfigBackend, StoreConfigBackend, TenantConfigResolver
from .translator import Translator
from .warehouse import SnowflakeDriver, WarehouseDriver

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """Everything one process shares across requests."""
    settings: Settings
    store: MetadataStore
    query_log: QueryLog
    resolver: TenantConfigResolver
    pool: ConnectionPool
    schema_cache: SchemaCache
    context_builder: ContextBuilder
    translator: Translator
    validator: SafetyValidator
    executor: QueryExecutor
    closed: bool = field(default=False, init=False)

    @classmethod
    def create(
        cls,
        llm_provider: LLMProvider,
        store: Optional[MetadataStore] = None,
        query_log: Optional[QueryLog] = None,
        driver: Optional[WarehouseDriver] = None,
        settings: Optional[Settings] = None,
        environ: Optional[Mapping[str, str]] = None
    ) -> "PipelineContext":
        """Wire the pipeline's collaborators.

        Args:
            llm_provider: Language-model service
            store: Metadata store (default: none, environment-only mode)
            query_log: Query log sink (default: in-memory)
            driver: Warehouse driver (default: Snowflake)
            settings: Settings (default: from env)
            environ: Environment for the fallback tenant backend (default: os.environ)
        """
        settings = settings or default_settings
        store = store or NullMetadataStore()
        resolver = TenantConfigResolver([
            StoreConfigBackend(store),
            EnvironmentConfigBackend(environ),
        ])
        pool = ConnectionPool(driver or SnowflakeDriver())
        schema_cache = SchemaCache(
            resolver,
            pool,
            SchemaIntrospector(max_workers=settings.introspection_workers),
            store,
            ttl_seconds=settings.schema_cache_ttl_seconds,
            memory_ttl_seconds=settings.memory_schema_cache_ttl_seconds,
        )
        context_builder = ContextBuilder(resolver, schema_cache, store)
        validator = SafetyValidator(strict=settings.strict_sql_validation)
        return cls(
            settings=settings,
            store=store,
            query_log=query_log or InMemoryQueryLog(),
            resolver=resolver,
            pool=pool,
            schema_cache=schema_cache,
            context_builder=context_builder,
            translator=Translator(resolver, context_builder, llm_provider, settings),
            validator=validator,
            executor=QueryExecutor(resolver, pool, validator),
        )

    def close(self) -> None:
        """Release warehouse connections. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        self.pool.close_all()


class QueryPipeline:
    """Orchestrates translate -> validate -> execute for one question.

    Example:
        >>> pipeline = QueryPipeline(PipelineContext.create(MockProvider(responses=[...])))
        >>> response = pipeline.run("How many members are there?", "acme")
        >>> response.data
        [{'MEMBER_COUNT': 42}]
    """

    def __init__(self, context: PipelineContext):
        self._ctx = context

    @property
    def context(self) -> PipelineContext:
        return self._ctx

    def run(
        self,
        question: str,
        tenant_id: str,
        execute: bool = True,
        history: Sequence[ConversationTurn] = (),
        user_id: Optional[str] = None
    ) -> QueryResponse:
        """Answer one question for one tenant.

        Args:
            question: Natural-language question
            tenant_id: Tenant to answer against
            execute: False for translation only (skip_execute)
            history: Prior conversation turns, oldest first
            user_id: Caller identity recorded in the query log

        Returns:
            QueryResponse; error is set on every failure path
        """
        start = time.perf_counter()
        deadline = Deadline(self._ctx.settings.request_timeout_seconds)

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        def finish(response: QueryResponse) -> QueryResponse:
            if response.sql is None and response.error is None:
                response = response.model_copy(update={"error": "No SQL generated"})
            response = response.model_copy(update={"execution_time_ms": elapsed_ms()})
            self._record(tenant_id, user_id, response)
            return response

        # received -> translating
        try:
            translation = self._ctx.translator.translate(question, tenant_id, history, deadline=deadline)
        except StructuredError as e:
            logger.warning("Translation aborted for tenant %s: %s", tenant_id, e.message)
            return finish(QueryResponse(question=question, error=e.message, state=PipelineState.TRANSLATE_FAILED))
        except Exception as e:
            logger.exception("Unexpected translation failure for tenant %s", tenant_id)
            return finish(QueryResponse(
                question=question,
                error=f"Unexpected error: {e}",
                state=PipelineState.TRANSLATE_FAILED
            ))

        if translation.error or not translation.sql:
            return finish(QueryResponse(
                question=question,
                explanation=translation.explanation,
                assumptions=translation.assumptions,
                error=translation.error,
                tokens_input=translation.tokens_input,
                tokens_output=translation.tokens_output,
                cost_usd=translation.cost_usd,
                state=PipelineState.TRANSLATE_FAILED
            ))

        # translated
        translated = QueryResponse(
            question=question,
            sql=translation.sql,
            explanation=translation.explanation,
            assumptions=translation.assumptions,
            tokens_input=translation.tokens_input,
            tokens_output=translation.tokens_output,
            cost_usd=translation.cost_usd,
            state=PipelineState.TRANSLATED
        )
        if not execute:
            return finish(translated.model_copy(update={"state": PipelineState.SKIP_EXECUTE}))

        # executing
        try:
            result = self._ctx.executor.execute(tenant_id, translation.sql, deadline=deadline)
        except StructuredError as e:
            logger.warning("Execution failed for tenant %s: %s", tenant_id, e.message)
            return finish(translated.model_copy(update={"error": e.message, "state": PipelineState.EXEC_FAILED}))
        except Exception as e:
            logger.exception("Unexpected execution failure for tenant %s", tenant_id)
            return finish(translated.model_copy(update={
                "error": f"Unexpected error: {e}",
                "state": PipelineState.EXEC_FAILED
            }))

        return finish(translated.model_copy(update={
            "columns": result.columns,
            "data": result.data,
            "row_count": result.row_count,
            "truncated": result.truncated,
            "state": PipelineState.SUCCEEDED,
        }))

    def _record(self, tenant_id: str, user_id: Optional[str], response: QueryResponse) -> None:
        succeeded = response.state == PipelineState.SUCCEEDED
        try:
            self._ctx.query_log.record(
                tenant_id=tenant_id,
                user_id=user_id,
                question=response.question,
                generated_sql=response.sql,
                explanation=response.explanation,
                row_count=response.row_count if succeeded else None,
                execution_ms=response.execution_time_ms,
                error=response.error,
            )
        except Exception as e:
            logger.warning("Query log write failed for tenant %s: %s", tenant_id, e)
