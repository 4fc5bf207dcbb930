"""Tests for embedding service."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from hybrid_store.config import EmbeddingSettings
from hybrid_store.embeddings.service import HTTPEmbeddingService
from hybrid_store.exceptions import EmbeddingError, EmbeddingMismatchError, ErrorCode


def _ok_response(data: list[dict[str, Any]]) -> MagicMock:
    response = MagicMock()
    response.json.return_value = {"data": data}
    response.raise_for_status = MagicMock()
    return response


def _error_response(status_code: int) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.raise_for_status.side_effect = httpx.HTTPStatusError(
        f"HTTP {status_code}",
        request=MagicMock(),
        response=response,
    )
    return response


@pytest.fixture
def settings() -> EmbeddingSettings:
    return EmbeddingSettings(
        base_url="http://test:8080",
        model="test-model",
        max_tries=3,
        retry_max_time=30.0,
    )


@pytest.fixture
def no_sleep() -> Any:
    """Skip backoff waits."""
    with patch("asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


class TestHTTPEmbeddingService:
    """Tests for HTTPEmbeddingService."""

    def test_model_name(self, settings: EmbeddingSettings) -> None:
        """Service returns configured model name."""
        service = HTTPEmbeddingService(settings=settings)
        assert service.model_name == "test-model"

    async def test_embed_query(self, settings: EmbeddingSettings) -> None:
        """Single query embedding works."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.post.return_value = _ok_response([{"embedding": [0.1, 0.2, 0.3]}])

        service = HTTPEmbeddingService(settings=settings, client=mock_client)
        result = await service.embed_query("test text")

        assert result == [0.1, 0.2, 0.3]
        _, kwargs = mock_client.post.call_args
        assert kwargs["json"] == {"input": ["test text"], "model": "test-model"}

    async def test_embed_documents_in_one_request(self, settings: EmbeddingSettings) -> None:
        """A batch of texts is sent in a single request."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.post.return_value = _ok_response(
            [{"embedding": [0.1, 0.2]}, {"embedding": [0.3, 0.4]}]
        )

        service = HTTPEmbeddingService(settings=settings, client=mock_client)
        results = await service.embed_documents(["text1", "text2"])

        assert results == [[0.1, 0.2], [0.3, 0.4]]
        assert mock_client.post.call_count == 1

    async def test_embed_documents_orders_by_index(self, settings: EmbeddingSettings) -> None:
        """Vectors are returned in input order when the server reorders them."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.post.return_value = _ok_response(
            [
                {"index": 1, "embedding": [2.0]},
                {"index": 0, "embedding": [1.0]},
            ]
        )

        service = HTTPEmbeddingService(settings=settings, client=mock_client)
        results = await service.embed_documents(["first", "second"])

        assert results == [[1.0], [2.0]]

    async def test_embed_empty_list(self, settings: EmbeddingSettings) -> None:
        """Empty list returns empty results without a request."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        service = HTTPEmbeddingService(settings=settings, client=mock_client)

        assert await service.embed_documents([]) == []
        mock_client.post.assert_not_called()

    async def test_sends_bearer_token(self) -> None:
        """Configured API key is sent as a bearer token."""
        settings = EmbeddingSettings(base_url="http://test:8080", api_key="secret")
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.post.return_value = _ok_response([{"embedding": [0.5]}])

        service = HTTPEmbeddingService(settings=settings, client=mock_client)
        await service.embed_query("q")

        _, kwargs = mock_client.post.call_args
        assert kwargs["headers"] == {"Authorization": "Bearer secret"}

    async def test_count_mismatch(self, settings: EmbeddingSettings) -> None:
        """Fewer vectors than texts raises EmbeddingMismatchError."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.post.return_value = _ok_response([{"embedding": [0.1]}])

        service = HTTPEmbeddingService(settings=settings, client=mock_client)

        with pytest.raises(EmbeddingMismatchError):
            await service.embed_documents(["a", "b"])

    async def test_malformed_response(self, settings: EmbeddingSettings) -> None:
        """A response without embeddings raises EmbeddingError."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        response = MagicMock()
        response.json.return_value = {"unexpected": True}
        mock_client.post.return_value = response

        service = HTTPEmbeddingService(settings=settings, client=mock_client)

        with pytest.raises(EmbeddingError):
            await service.embed_query("test")

    async def test_client_error_is_not_retried(
        self,
        settings: EmbeddingSettings,
        no_sleep: AsyncMock,
    ) -> None:
        """4xx responses fail immediately."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.post.return_value = _error_response(400)

        service = HTTPEmbeddingService(settings=settings, client=mock_client)

        with pytest.raises(EmbeddingError) as exc_info:
            await service.embed_query("test")

        assert exc_info.value.details["status_code"] == 400
        assert mock_client.post.call_count == 1

    async def test_retries_transient_status(
        self,
        settings: EmbeddingSettings,
        no_sleep: AsyncMock,
    ) -> None:
        """A 503 followed by success returns the vectors."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.post.side_effect = [
            _error_response(503),
            _ok_response([{"embedding": [0.7]}]),
        ]

        service = HTTPEmbeddingService(settings=settings, client=mock_client)
        result = await service.embed_query("test")

        assert result == [0.7]
        assert mock_client.post.call_count == 2

    async def test_retries_exhausted(
        self,
        settings: EmbeddingSettings,
        no_sleep: AsyncMock,
    ) -> None:
        """Persistent 5xx raises EmbeddingError after max_tries attempts."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.post.side_effect = lambda *_a, **_k: _error_response(500)

        service = HTTPEmbeddingService(settings=settings, client=mock_client)

        with pytest.raises(EmbeddingError) as exc_info:
            await service.embed_query("test")

        assert exc_info.value.code == ErrorCode.EMBEDDING_SERVICE_ERROR
        assert mock_client.post.call_count == 3

    async def test_connection_error_retried(
        self,
        settings: EmbeddingSettings,
        no_sleep: AsyncMock,
    ) -> None:
        """Connection errors are retried and then surface as EmbeddingError."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.post.side_effect = httpx.ConnectError("Connection failed")

        service = HTTPEmbeddingService(settings=settings, client=mock_client)

        with pytest.raises(EmbeddingError):
            await service.embed_query("test")

        assert mock_client.post.call_count == 3

    async def test_close(self, settings: EmbeddingSettings) -> None:
        """Service closes owned client."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        service = HTTPEmbeddingService(settings=settings, client=mock_client)
        service._owns_client = True  # Simulate owning the client

        await service.close()
        mock_client.aclose.assert_called_once()

    async def test_close_leaves_injected_client(self, settings: EmbeddingSettings) -> None:
        """An injected client is not closed by the service."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        service = HTTPEmbeddingService(settings=settings, client=mock_client)

        await service.close()
        mock_client.aclose.assert_not_called()
