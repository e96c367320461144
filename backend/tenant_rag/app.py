"""FastAPI application setup for Tenant RAG."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tenant_rag.api.dependencies import (
    get_answer_cache,
    get_app_settings,
    get_database,
    get_ledger,
    get_vector_store,
)
from tenant_rag.api.routes_admin import router as admin_router
from tenant_rag.api.routes_chat import router as chat_router
from tenant_rag.api.routes_sources import router as sources_router
from tenant_rag.core.errors import (
    DocumentLimitReached,
    DuplicateSource,
    EmbeddingServiceFailure,
    ExtractionFailure,
    GenerationServiceFailure,
    InsufficientTokens,
    InvalidTransition,
    NotFound,
    QuotaExceeded,
    RateLimitExceeded,
    StorageFailure,
    TenantRagError,
    ValidationError,
    ZeroBalance,
)
from tenant_rag.core.logging import configure_logging, get_logger
from tenant_rag.core.metrics import metrics_response

configure_logging()
logger = get_logger(__name__)

# Looked up along the exception's MRO, so the most specific class wins.
STATUS_BY_ERROR: dict[type[TenantRagError], int] = {
    ValidationError: 400,
    DuplicateSource: 409,
    InvalidTransition: 409,
    NotFound: 404,
    QuotaExceeded: 402,
    DocumentLimitReached: 409,
    RateLimitExceeded: 429,
    ZeroBalance: 402,
    InsufficientTokens: 402,
    ExtractionFailure: 422,
    EmbeddingServiceFailure: 502,
    GenerationServiceFailure: 502,
    StorageFailure: 503,
}

app = FastAPI(
    title="Tenant RAG",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sources_router, prefix="/tenants/{tenant_id}", tags=["sources"])
app.include_router(chat_router, prefix="/tenants/{tenant_id}", tags=["chat"])
app.include_router(admin_router, prefix="/tenants/{tenant_id}", tags=["admin"])


def status_for(exc: TenantRagError) -> int:
    for cls in type(exc).__mro__:
        status = STATUS_BY_ERROR.get(cls)
        if status is not None:
            return status
    return 500


@app.exception_handler(TenantRagError)
async def handle_tenant_rag_error(request: Request, exc: TenantRagError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc)
    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {"Retry-After": str(int(exc.retry_after) + 1)}
    return JSONResponse(
        status_code=status,
        content={"error": exc.code, "detail": exc.user_message},
        headers=headers,
    )


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons and reclaim expired cached answers."""
    get_app_settings()
    get_database()
    get_vector_store()
    get_ledger()
    cache = get_answer_cache()
    if cache is not None:
        cache.purge_expired()


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}


@app.get("/metrics", tags=["admin"], summary="Prometheus metrics")
def get_metrics():
    return metrics_response()
