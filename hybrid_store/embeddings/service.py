"""Embedding service interface and implementations."""

import time
from abc import ABC, abstractmethod
from typing import Any

import backoff
import httpx

from hybrid_store.config import EmbeddingSettings, get_settings
from hybrid_store.exceptions import EmbeddingError, EmbeddingMismatchError, ErrorCode
from hybrid_store.logging_config import get_logger
from hybrid_store.observability.metrics import track_embedding_request

logger = get_logger(__name__)


class EmbeddingService(ABC):
    """Abstract base class for embedding services.

    Implementations are order-preserving: one vector per input text, and a
    batch either succeeds as a whole or raises.
    """

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts.

        Args:
            texts: Texts to embed.

        Returns:
            One vector per text, in input order.

        Raises:
            EmbeddingError: If embedding fails.
        """
        ...

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Generate the embedding for a search query.

        Args:
            text: Query text.

        Returns:
            Query vector.

        Raises:
            EmbeddingError: If embedding fails.
        """
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Get the model name used for embeddings."""
        ...


class _TransientEmbeddingFailure(Exception):
    """A failure worth retrying: connection errors, timeouts, 429 and 5xx."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _log_backoff(details: dict[str, Any]) -> None:
    logger.warning(
        f"Retrying embedding request in {details['wait']:.2f}s",
        extra={"attempt": details["tries"], "elapsed": round(details["elapsed"], 3)},
    )


class HTTPEmbeddingService(EmbeddingService):
    """Embedding service using HTTP API.

    Compatible with OpenAI-style embedding APIs and
    text-embeddings-inference (TEI) servers. Transient failures are
    retried with exponential backoff within the configured time budget.
    """

    RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

    def __init__(
        self,
        settings: EmbeddingSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the HTTP embedding service.

        Args:
            settings: Embedding configuration. Uses defaults if not provided.
            client: HTTP client. Creates new one if not provided.
        """
        self._settings = settings or get_settings().embedding
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def model_name(self) -> str:
        """Get the model name."""
        return self._settings.model

    async def embed_query(self, text: str) -> list[float]:
        """Generate embedding for a single query text."""
        vectors = await self.embed_documents([text])
        return vectors[0]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a batch of texts in one request."""
        if not texts:
            return []

        client = await self._get_client()
        url = f"{self._settings.base_url}/embeddings"
        payload = {
            "input": texts,
            "model": self._settings.model,
        }

        send = backoff.on_exception(
            backoff.expo,
            _TransientEmbeddingFailure,
            max_tries=self._settings.max_tries,
            max_time=self._settings.retry_max_time,
            on_backoff=_log_backoff,
        )(self._post)

        start = time.perf_counter()
        try:
            data = await send(client, url, payload)
            vectors = self._parse_vectors(data, expected=len(texts))
        except _TransientEmbeddingFailure as e:
            track_embedding_request(
                self.model_name, time.perf_counter() - start, len(texts), success=False
            )
            logger.error(
                f"Embedding request failed after retries: {e}",
                extra={"url": url, "status": e.status_code},
            )
            raise EmbeddingError(
                f"Embedding service unavailable: {e}",
                code=ErrorCode.EMBEDDING_SERVICE_ERROR,
                details={"url": url, "status_code": e.status_code},
            ) from e
        except EmbeddingError:
            track_embedding_request(
                self.model_name, time.perf_counter() - start, len(texts), success=False
            )
            raise

        track_embedding_request(self.model_name, time.perf_counter() - start, len(texts))
        return vectors

    async def _post(
        self,
        client: httpx.AsyncClient,
        url: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """Make a single embedding request.

        Raises:
            _TransientEmbeddingFailure: For failures that may succeed on retry.
            EmbeddingError: For permanent failures.
        """
        headers = {}
        if self._settings.api_key is not None:
            headers["Authorization"] = f"Bearer {self._settings.api_key.get_secret_value()}"

        try:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in self.RETRYABLE_STATUS_CODES:
                raise _TransientEmbeddingFailure(
                    f"Embedding service returned {status}", status_code=status
                ) from e
            logger.error(
                f"Embedding request failed: {status}",
                extra={"url": url, "status": status},
            )
            raise EmbeddingError(
                f"Embedding service returned {status}",
                code=ErrorCode.EMBEDDING_SERVICE_ERROR,
                details={"status_code": status},
            ) from e
        except httpx.TransportError as e:
            raise _TransientEmbeddingFailure(
                f"Failed to connect to embedding service: {e}"
            ) from e

        try:
            return response.json()
        except ValueError as e:
            raise EmbeddingError(
                f"Invalid response from embedding service: {e}",
                code=ErrorCode.EMBEDDING_SERVICE_ERROR,
                details={"error": str(e)},
            ) from e

    def _parse_vectors(self, data: dict[str, Any], expected: int) -> list[list[float]]:
        """Extract vectors from an OpenAI-style response, ordered by ``index``."""
        try:
            items = data["data"]
            if all("index" in item for item in items):
                items = sorted(items, key=lambda item: item["index"])
            vectors = [[float(x) for x in item["embedding"]] for item in items]
        except (KeyError, TypeError, ValueError) as e:
            raise EmbeddingError(
                f"Invalid response from embedding service: {e}",
                code=ErrorCode.EMBEDDING_SERVICE_ERROR,
                details={"error": str(e)},
            ) from e

        if len(vectors) != expected:
            raise EmbeddingMismatchError(
                f"Embedding service returned {len(vectors)} vectors for {expected} texts",
                details={"expected": expected, "received": len(vectors)},
            )
        return vectors
