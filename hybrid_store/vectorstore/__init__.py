"""Hybrid document store module."""

from hybrid_store.vectorstore.filters import CompiledFilter, compile_filter
from hybrid_store.vectorstore.models import (
    Document,
    IndexCounts,
    SearchResult,
    VecStoreOptions,
)
from hybrid_store.vectorstore.schema import ConnectionManager, validate_identifier
from hybrid_store.vectorstore.service import HybridStore, VectorStore

__all__ = [
    "CompiledFilter",
    "ConnectionManager",
    "Document",
    "HybridStore",
    "IndexCounts",
    "SearchResult",
    "VecStoreOptions",
    "VectorStore",
    "compile_filter",
    "validate_identifier",
]
