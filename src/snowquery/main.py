import os
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

from .config import settings
from .errors import ErrorCategory, StructuredError
from .llm.base import LLMError, LLMProvider
from .llm.providers import AnthropicProvider, OpenAIProvider, OpenRouterProvider
from .logging import setup_logging, correlation_id_middleware, logger
from .metadata_store import NullMetadataStore, PostgresMetadataStore
from .pipeline import PipelineContext, QueryPipeline
from .query_log import InMemoryQueryLog, PostgresQueryLog
from .schemas import QueryRequest, QueryResponse

setup_logging()

REQS = Counter("snowquery_requests_total", "Total questions", ["state"])
LAT = Histogram("snowquery_request_duration_ms", "Question duration in ms")
TOKENS_IN = Counter("snowquery_tokens_input_total", "Total input tokens consumed")
TOKENS_OUT = Counter("snowquery_tokens_output_total", "Total output tokens generated")
COST = Counter("snowquery_cost_usd_total", "Total estimated cost in USD")

STATUS_BY_CATEGORY = {
    ErrorCategory.CONFIGURATION: 503,
    ErrorCategory.CONNECTION: 502,
    ErrorCategory.INTROSPECTION: 502,
    ErrorCategory.TIMEOUT: 504,
}


def detect_llm_provider() -> LLMProvider:
    """Pick a provider from whichever API key is set.

    Order: ANTHROPIC_API_KEY, OPENAI_API_KEY, OPENROUTER_API_KEY.

    Raises:
        LLMError: If no key is configured
    """
    if os.getenv("ANTHROPIC_API_KEY"):
        return AnthropicProvider()
    if os.getenv("OPENAI_API_KEY"):
        return OpenAIProvider()
    if os.getenv("OPENROUTER_API_KEY"):
        return OpenRouterProvider()
    raise LLMError("No LLM provider configured (set ANTHROPIC_API_KEY, OPENAI_API_KEY or OPENROUTER_API_KEY)")


def _metadata_db_configured() -> bool:
    return bool(settings.metadata_database_url or os.getenv("METADATA_DB_HOST"))


@lru_cache(maxsize=1)
def get_pipeline() -> QueryPipeline:
    if _metadata_db_configured():
        store = PostgresMetadataStore(settings.metadata_database_url)
        query_log = PostgresQueryLog(settings.metadata_database_url)
    else:
        logger.info("No metadata database configured; using SNOWFLAKE_* environment tenant only")
        store = NullMetadataStore()
        query_log = InMemoryQueryLog()
    context = PipelineContext.create(detect_llm_provider(), store=store, query_log=query_log, settings=settings)
    return QueryPipeline(context)


def tenant_header(x_tenant_id: Optional[str] = Header(default=None)) -> str:
    return x_tenant_id or settings.default_tenant_id


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if get_pipeline.cache_info().currsize:
        get_pipeline().context.close()


app = FastAPI(title="snowquery", version="0.1.0", lifespan=lifespan)
app.middleware("http")(correlation_id_middleware)


@app.exception_handler(StructuredError)
async def structured_error_handler(request: Request, exc: StructuredError):
    return JSONResponse(status_code=STATUS_BY_CATEGORY.get(exc.category, 500), content=exc.to_dict())


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/query", response_model=QueryResponse)
def query(
    req: QueryRequest,
    tenant_id: str = Depends(tenant_header),
    x_user_id: Optional[str] = Header(default=None),
    pipeline: QueryPipeline = Depends(get_pipeline),
):
    response = pipeline.run(
        req.question,
        tenant_id,
        execute=req.execute,
        history=req.conversation_history,
        user_id=x_user_id,
    )
    REQS.labels(state=response.state.value).inc()
    if response.execution_time_ms is not None:
        LAT.observe(response.execution_time_ms)

    if response.tokens_input > 0:
        TOKENS_IN.inc(response.tokens_input)
    if response.tokens_output > 0:
        TOKENS_OUT.inc(response.tokens_output)
    if response.cost_usd > 0:
        COST.inc(response.cost_usd)

    return response


@app.get("/schema")
def get_schema(tenant_id: str = Depends(tenant_header), pipeline: QueryPipeline = Depends(get_pipeline)):
    snapshot = pipeline.context.schema_cache.get(tenant_id)
    return {
        "tenant_id": tenant_id,
        "captured_at": snapshot.captured_at.isoformat(),
        **snapshot.to_document(),
    }


@app.post("/schema/refresh")
def refresh_schema(tenant_id: str = Depends(tenant_header), pipeline: QueryPipeline = Depends(get_pipeline)):
    snapshot = pipeline.context.schema_cache.refresh(tenant_id)
    return {"status": "ok", "table_count": len(snapshot.tables)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("snowquery.main:app", host="127.0.0.1", port=8000, reload=True)
