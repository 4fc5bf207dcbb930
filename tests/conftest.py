"""Pytest configuration and shared fixtures."""

import math
import re
import zlib
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from hybrid_store.api.app import app
from hybrid_store.config import StoreMode, StoreSettings, SyncStrategy
from hybrid_store.embeddings.service import EmbeddingService
from hybrid_store.vectorstore.models import Document
from hybrid_store.vectorstore.service import HybridStore

TEST_DIMENSIONS = 16

SAMPLE_TEXTS = [
    "langchain-rust is a port of the langchain python library to rust and was written in 2024.",
    "langchaingo is a port of the langchain python library to go language and was written in 2023.",
    "Capital of United States of America (USA) is Washington D.C. and the capital of France is Paris.",
    "Capital of France is Paris.",
]


class HashingEmbedder(EmbeddingService):
    """Deterministic bag-of-words embedder for tests.

    Each lowercase word is hashed into one of ``dimensions`` buckets and the
    counts are L2-normalized, so texts sharing words land close together.
    """

    def __init__(self, dimensions: int = TEST_DIMENSIONS) -> None:
        self.dimensions = dimensions
        self.calls: list[list[str]] = []

    @property
    def model_name(self) -> str:
        return "hashing-test"

    def vector(self, text: str) -> list[float]:
        counts = [0.0] * self.dimensions
        for word in re.findall(r"\w+", text.lower()):
            counts[zlib.crc32(word.encode()) % self.dimensions] += 1.0
        norm = math.sqrt(sum(c * c for c in counts)) or 1.0
        return [c / norm for c in counts]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self.vector(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        return self.vector(text)


StoreFactory = Callable[..., Awaitable[HybridStore]]


def store_settings(**overrides: Any) -> StoreSettings:
    values: dict[str, Any] = {
        "database_path": ":memory:",
        "table": "documents",
        "vector_dimensions": TEST_DIMENSIONS,
        "mode": StoreMode.HYBRID,
        "sync_strategy": SyncStrategy.TRIGGER,
    }
    values.update(overrides)
    return StoreSettings(**values)


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def sample_documents() -> list[Document]:
    return [Document(page_content=text) for text in SAMPLE_TEXTS]


@pytest.fixture
async def make_store(embedder: HashingEmbedder) -> AsyncGenerator[StoreFactory, None]:
    """Factory for initialized in-memory stores, closed after the test.

    Yields:
        Coroutine function taking store setting overrides plus optional
        ``embedder`` and ``keyword_extractor`` keywords.
    """
    stores: list[HybridStore] = []

    async def factory(**overrides: Any) -> HybridStore:
        store_embedder = overrides.pop("embedder", embedder)
        extractor = overrides.pop("keyword_extractor", None)
        store = HybridStore(
            embedder=store_embedder,
            settings=store_settings(**overrides),
            keyword_extractor=extractor,
        )
        await store.initialize()
        stores.append(store)
        return store

    yield factory

    for store in stores:
        await store.close()


@pytest.fixture
async def store(make_store: StoreFactory) -> HybridStore:
    """Initialized hybrid store with trigger sync."""
    return await make_store()


@pytest.fixture
async def client(store: HybridStore) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client for FastAPI app backed by an in-memory store.

    Yields:
        AsyncClient configured for testing.
    """
    app.state.store = store
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        app.state.store = None
