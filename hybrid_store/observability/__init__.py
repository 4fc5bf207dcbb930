"""Observability module for metrics and monitoring."""

from hybrid_store.observability.metrics import (
    MetricsMiddleware,
    get_metrics,
    track_embedding_request,
    track_keyword_extraction,
    track_search_results,
    track_store_operation,
)

__all__ = [
    "MetricsMiddleware",
    "get_metrics",
    "track_embedding_request",
    "track_keyword_extraction",
    "track_search_results",
    "track_store_operation",
]
