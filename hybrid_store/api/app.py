"""FastAPI application entry point.

Configures the application with logging, metrics, exception handling, the
document store and health checks.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from hybrid_store import __version__
from hybrid_store.api.routes import router
from hybrid_store.config import Settings, get_settings
from hybrid_store.embeddings.service import HTTPEmbeddingService
from hybrid_store.exceptions import ErrorCode, HybridStoreError
from hybrid_store.llm.client import OpenAICompatibleClient
from hybrid_store.llm.keywords import KeywordExtractor
from hybrid_store.logging_config import get_logger, setup_logging
from hybrid_store.observability.metrics import (
    MetricsMiddleware,
    get_metrics,
    get_metrics_content_type,
)
from hybrid_store.vectorstore.service import HybridStore

logger = get_logger(__name__)


def build_store(settings: Settings) -> tuple[HybridStore, list[Any]]:
    """Wire the store and its collaborators from settings.

    Returns:
        The store and the collaborators that must be closed on shutdown.
    """
    closeables: list[Any] = []

    embedder = None
    if settings.store.mode.has_vector_index:
        embedder = HTTPEmbeddingService(settings.embedding)
        closeables.append(embedder)

    extractor = None
    if settings.llm.enabled:
        llm = OpenAICompatibleClient(settings.llm)
        closeables.append(llm)
        extractor = KeywordExtractor(llm)

    store = HybridStore(
        embedder=embedder,
        settings=settings.store,
        keyword_extractor=extractor,
    )
    return store, closeables


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Opens and initializes the store on startup and closes it on shutdown.
    """
    # Startup
    settings = get_settings()
    setup_logging(level=settings.log_level)
    logger.info(
        "Starting Hybrid Document Store",
        extra={
            "version": __version__,
            "environment": settings.environment.value,
            "mode": settings.store.mode.value,
        },
    )

    store, closeables = build_store(settings)
    await store.initialize()
    app.state.store = store

    yield

    # Shutdown
    logger.info("Shutting down Hybrid Document Store")
    await store.close()
    for closeable in closeables:
        await closeable.close()
    app.state.store = None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Hybrid Document Store",
        description="SQLite document store with vector, BM25 and fused retrieval",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.store = None

    app.add_middleware(MetricsMiddleware)

    # Register exception handlers
    app.add_exception_handler(HybridStoreError, store_exception_handler)

    # Register routes
    app.include_router(router)
    app.add_api_route("/health", health_check, methods=["GET"], tags=["Health"])
    app.add_api_route("/health/ready", readiness_check, methods=["GET"], tags=["Health"])
    app.add_api_route("/health/live", liveness_check, methods=["GET"], tags=["Health"])
    app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], tags=["Metrics"])

    return app


async def store_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle HybridStoreError exceptions.

    Converts exceptions to structured JSON responses.
    """
    if not isinstance(exc, HybridStoreError):
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": ErrorCode.INTERNAL_ERROR.value,
                    "message": str(exc),
                    "details": {},
                }
            },
        )

    logger.error(
        f"Request failed: {exc.message}",
        extra={
            "error_code": exc.code.value,
            "path": request.url.path,
            "details": exc.details,
        },
    )

    return JSONResponse(
        status_code=_get_status_code(exc.code),
        content=exc.to_dict(),
    )


_STATUS_BY_CODE: dict[ErrorCode, int] = {
    # Bad input -> 400
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.UNSUPPORTED_OPERATION: 400,
    ErrorCode.FILTER_ERROR: 400,
    # Upstream collaborators -> 502
    ErrorCode.EMBEDDING_SERVICE_ERROR: 502,
    ErrorCode.EMBEDDING_DIMENSION_MISMATCH: 502,
    ErrorCode.EMBEDDING_COUNT_MISMATCH: 502,
    ErrorCode.LLM_SERVICE_ERROR: 502,
    # Rate limit -> 429
    ErrorCode.LLM_RATE_LIMIT: 429,
    # Timeout -> 504
    ErrorCode.LLM_TIMEOUT: 504,
    # Database busy or failed transaction -> 503
    ErrorCode.TRANSACTION_FAILED: 503,
}


def _get_status_code(error_code: ErrorCode) -> int:
    """Map error code to HTTP status code, defaulting to 500."""
    return _STATUS_BY_CODE.get(error_code, 500)


async def health_check() -> dict[str, Any]:
    """Basic health check endpoint.

    Returns:
        Health status with version and timestamp.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def readiness_check(request: Request) -> dict[str, Any]:
    """Kubernetes readiness probe.

    Ready when the store answers a row count and its shadow indexes hold
    the same number of rows as the primary table.

    Returns:
        Readiness status with component checks and index row counts.
    """
    checks: dict[str, str] = {"config": "ok"}
    counts: dict[str, Any] = {}

    store: HybridStore | None = getattr(request.app.state, "store", None)
    if store is None:
        checks["store"] = "not_configured"
    else:
        try:
            index_counts = await store.count_documents()
        except HybridStoreError as e:
            logger.warning(f"Readiness check failed: {e.message}")
            checks["store"] = "error"
        else:
            counts = index_counts.model_dump(exclude_none=True)
            checks["store"] = "ok" if index_counts.in_lockstep else "out_of_sync"

    all_ok = all(v == "ok" for v in checks.values())

    return {
        "status": "ready" if all_ok else "not_ready",
        "checks": checks,
        "counts": counts,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def liveness_check() -> dict[str, str]:
    """Kubernetes liveness probe.

    Simple check that the service is running.

    Returns:
        Liveness status.
    """
    return {"status": "alive"}


async def metrics_endpoint() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


# Create the application instance
app = create_app()
