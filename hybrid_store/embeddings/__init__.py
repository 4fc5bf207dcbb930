"""Embedding service module."""

from hybrid_store.embeddings.service import EmbeddingService, HTTPEmbeddingService

__all__ = [
    "EmbeddingService",
    "HTTPEmbeddingService",
]
