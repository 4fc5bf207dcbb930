"""Integration tests for health check endpoints."""

from unittest.mock import AsyncMock, patch

from httpx import AsyncClient

from hybrid_store import __version__
from hybrid_store.api.app import app
from hybrid_store.exceptions import StorageError
from hybrid_store.vectorstore.models import Document
from hybrid_store.vectorstore.service import HybridStore


class TestHealthEndpoint:
    """Tests for /health and /health/live."""

    async def test_health(self, client: AsyncClient) -> None:
        """Health reports status, version and an ISO timestamp."""
        response = await client.get("/health")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert "T" in data["timestamp"]

    async def test_liveness(self, client: AsyncClient) -> None:
        """Liveness needs nothing but the process."""
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}


class TestReadinessEndpoint:
    """Tests for /health/ready."""

    async def test_ready_with_empty_store(self, client: AsyncClient) -> None:
        """An initialized empty store is ready with zero counts."""
        response = await client.get("/health/ready")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "ready"
        assert data["checks"] == {"config": "ok", "store": "ok"}
        assert data["counts"] == {"documents": 0, "vector": 0, "lexical": 0}

    async def test_reports_index_counts(
        self,
        client: AsyncClient,
        store: HybridStore,
        sample_documents: list[Document],
    ) -> None:
        """Readiness reports row counts of the table and both indexes."""
        await store.add_documents(sample_documents)

        data = (await client.get("/health/ready")).json()

        assert data["checks"]["store"] == "ok"
        assert data["counts"] == {"documents": 4, "vector": 4, "lexical": 4}

    async def test_out_of_sync_indexes(
        self,
        client: AsyncClient,
        store: HybridStore,
        sample_documents: list[Document],
    ) -> None:
        """A shadow index missing rows makes the service not ready."""
        await store.add_documents(sample_documents)
        manager = store.connection_manager
        manager.connection.execute(f"DELETE FROM {manager.vec_table} WHERE rowid = 1")

        data = (await client.get("/health/ready")).json()

        assert data["status"] == "not_ready"
        assert data["checks"]["store"] == "out_of_sync"
        assert data["counts"]["vector"] == 3

    async def test_store_error(self, client: AsyncClient, store: HybridStore) -> None:
        """A failing count is reported as a store error."""
        with patch.object(
            store, "count_documents", AsyncMock(side_effect=StorageError("disk I/O error"))
        ):
            data = (await client.get("/health/ready")).json()

        assert data["status"] == "not_ready"
        assert data["checks"]["store"] == "error"
        assert data["counts"] == {}

    async def test_without_store(self, client: AsyncClient) -> None:
        """Readiness is not ready before the store is created."""
        app.state.store = None

        data = (await client.get("/health/ready")).json()

        assert data["status"] == "not_ready"
        assert data["checks"]["store"] == "not_configured"
