"""Prometheus metrics for the hybrid store.

Provides metrics instrumentation for:
- HTTP request latency and counts
- Embedding request latency and batch sizes
- Keyword extraction outcomes
- Store operation latency (ingest, delete, search)
- Search result counts and top scores per search mode
"""

import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from hybrid_store.logging_config import get_logger

logger = get_logger(__name__)

# HTTP Request Metrics
HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

HTTP_REQUEST_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

# Embedding Metrics
EMBEDDING_REQUEST_DURATION = Histogram(
    "embedding_request_duration_seconds",
    "Embedding request duration in seconds",
    ["model", "status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

EMBEDDING_REQUEST_TOTAL = Counter(
    "embedding_requests_total",
    "Total embedding requests",
    ["model", "status"],
)

EMBEDDING_BATCH_SIZE = Histogram(
    "embedding_batch_size",
    "Embedding batch size",
    ["model"],
    buckets=[1, 5, 10, 25, 50, 100, 250, 500],
)

# Keyword Extraction Metrics
KEYWORD_EXTRACTION_TOTAL = Counter(
    "keyword_extraction_total",
    "Keyword extraction attempts by outcome",
    ["outcome"],  # "outcome" label values: rewritten, fallback
)

KEYWORD_EXTRACTION_DURATION = Histogram(
    "keyword_extraction_duration_seconds",
    "Keyword model call duration",
    ["outcome"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

KEYWORD_EXTRACTION_TOKENS = Counter(
    "keyword_extraction_tokens_total",
    "Tokens reported by the keyword model",
    ["model"],
)

# Store Metrics
STORE_OPERATION_DURATION = Histogram(
    "store_operation_duration_seconds",
    "Store operation duration while holding the storage lock",
    ["operation", "status"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0],
)

SEARCH_RESULTS_RETURNED = Histogram(
    "search_results_returned",
    "Number of results returned per search",
    ["mode"],
    buckets=[0, 1, 2, 3, 5, 10, 20, 50],
)

SEARCH_TOP_SCORE = Histogram(
    "search_top_score",
    "Top result score per search",
    ["mode"],
    buckets=[0.01, 0.02, 0.05, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect HTTP request metrics."""

    def __init__(self, app: ASGIApp) -> None:
        """Initialize the middleware."""
        super().__init__(app)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Process request and collect metrics."""
        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()

        response = await call_next(request)

        duration = time.perf_counter() - start_time
        endpoint = self._normalize_endpoint(request.url.path)

        HTTP_REQUEST_DURATION.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).observe(duration)

        HTTP_REQUEST_TOTAL.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()

        return response

    def _normalize_endpoint(self, path: str) -> str:
        """Normalize endpoint path to reduce cardinality."""
        if path.startswith("/health"):
            return "/health"
        if path.startswith("/api/v1/"):
            parts = path.split("/")
            if len(parts) >= 4:
                return f"/api/v1/{parts[3]}"
        return path


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Get the content type for metrics response."""
    return CONTENT_TYPE_LATEST


def track_embedding_request(
    model: str,
    duration: float,
    batch_size: int,
    success: bool = True,
) -> None:
    """Track embedding request metrics.

    Args:
        model: Embedding model name.
        duration: Request duration in seconds, including retries.
        batch_size: Number of texts in the batch.
        success: Whether the request succeeded.
    """
    status = "success" if success else "error"

    EMBEDDING_REQUEST_DURATION.labels(model=model, status=status).observe(duration)
    EMBEDDING_REQUEST_TOTAL.labels(model=model, status=status).inc()
    EMBEDDING_BATCH_SIZE.labels(model=model).observe(batch_size)


def track_keyword_extraction(
    rewritten: bool,
    duration: float | None = None,
    model: str | None = None,
    tokens: int = 0,
) -> None:
    """Track one keyword extraction attempt.

    Args:
        rewritten: Whether the query was rewritten or fell back to the raw text.
        duration: Model call duration in seconds, if a call was made.
        model: Model that served the call.
        tokens: Tokens reported by the model.
    """
    outcome = "rewritten" if rewritten else "fallback"
    KEYWORD_EXTRACTION_TOTAL.labels(outcome=outcome).inc()
    if duration is not None:
        KEYWORD_EXTRACTION_DURATION.labels(outcome=outcome).observe(duration)
    if model and tokens:
        KEYWORD_EXTRACTION_TOKENS.labels(model=model).inc(tokens)


def track_store_operation(
    operation: str,
    duration: float,
    success: bool = True,
) -> None:
    """Track a storage operation.

    Args:
        operation: Operation name (add, delete_ids, vector_search, ...).
        duration: Time spent in the storage engine, in seconds.
        success: Whether the operation committed.
    """
    status = "success" if success else "error"
    STORE_OPERATION_DURATION.labels(operation=operation, status=status).observe(duration)


def track_search_results(
    mode: str,
    results_returned: int,
    top_score: float,
) -> None:
    """Track search result metrics.

    Args:
        mode: Search mode (vector, keyword, hybrid).
        results_returned: Number of results returned.
        top_score: Highest relevance score.
    """
    SEARCH_RESULTS_RETURNED.labels(mode=mode).observe(results_returned)
    if top_score > 0:
        SEARCH_TOP_SCORE.labels(mode=mode).observe(top_score)
