"""Chat-completions client used to rewrite queries into keywords."""

from abc import ABC, abstractmethod
from typing import Any

import httpx

from hybrid_store.config import LLMSettings, get_settings
from hybrid_store.exceptions import ErrorCode, LLMError
from hybrid_store.llm.models import KeywordCompletion
from hybrid_store.logging_config import get_logger

logger = get_logger(__name__)


class LLMClient(ABC):
    """A model that completes a single prompt."""

    @abstractmethod
    async def complete(
        self, prompt: str, system_prompt: str | None = None
    ) -> KeywordCompletion:
        """Complete one prompt.

        Args:
            prompt: User prompt.
            system_prompt: Optional instructions sent ahead of the prompt.

        Returns:
            KeywordCompletion with the text and token usage.

        Raises:
            LLMError: If the model cannot be reached or replies malformed.
        """
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Get the model name."""
        ...

    async def invoke(self, prompt: str, system_prompt: str | None = None) -> str:
        """Complete a prompt and return only the text."""
        completion = await self.complete(prompt, system_prompt=system_prompt)
        return completion.text


def _to_llm_error(error: httpx.HTTPError, url: str, timeout: float) -> LLMError:
    """Map an httpx failure onto the LLM error codes."""
    if isinstance(error, httpx.TimeoutException):
        return LLMError(
            "LLM request timed out",
            code=ErrorCode.LLM_TIMEOUT,
            details={"timeout": timeout},
        )
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        code = ErrorCode.LLM_RATE_LIMIT if status == 429 else ErrorCode.LLM_SERVICE_ERROR
        return LLMError(
            f"LLM service returned {status}",
            code=code,
            details={"status_code": status},
        )
    return LLMError(
        f"Failed to connect to LLM service: {error}",
        code=ErrorCode.LLM_SERVICE_ERROR,
        details={"url": url},
    )


class OpenAICompatibleClient(LLMClient):
    """Client for any OpenAI-compatible ``/chat/completions`` endpoint.

    Sampling is fixed by ``LLMSettings`` (temperature 0 and a short token
    cap by default) since keyword lists are short and should be stable.
    """

    def __init__(
        self,
        settings: LLMSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: LLM configuration.
            client: HTTP client (for testing).
        """
        self._settings = settings or get_settings().llm
        self._client = client
        self._owns_client = client is None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.timeout)
        return self._client

    def _headers(self) -> dict[str, str]:
        api_key = self._settings.api_key.get_secret_value()
        if api_key == "not-required":
            return {}
        return {"Authorization": f"Bearer {api_key}"}

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def model_name(self) -> str:
        """Get the model name."""
        return self._settings.model

    async def complete(
        self, prompt: str, system_prompt: str | None = None
    ) -> KeywordCompletion:
        url = f"{self._settings.base_url}/chat/completions"
        messages = [{"role": "user", "content": prompt}]
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})

        payload: dict[str, Any] = {
            "model": self._settings.model,
            "messages": messages,
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
        }

        try:
            response = await self._http().post(url, json=payload, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPError as e:
            error = _to_llm_error(e, url, self._settings.timeout)
            logger.error(
                f"Keyword model request failed: {error.message}",
                extra={"code": error.code.value, "model": self._settings.model},
            )
            raise error from e

        try:
            data = response.json()
            text = data["choices"][0]["message"]["content"] or ""
            usage = data.get("usage") or {}
            return KeywordCompletion(
                text=text,
                model=data.get("model", self._settings.model),
                total_tokens=usage.get("total_tokens", 0),
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise LLMError(
                f"Invalid response from LLM: {e}",
                code=ErrorCode.LLM_SERVICE_ERROR,
                details={"error": str(e)},
            ) from e
