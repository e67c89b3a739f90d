"""Google Gemini embeddings over httpx."""

import logging
from typing import List

import httpx

from archrag.embedding.base import EmbeddingProvider
from archrag.errors import ProviderError, TransientProviderError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def raise_for_provider_status(response: httpx.Response, provider: str) -> None:
    """Translate an HTTP error response into a typed provider error."""
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        message = f"{provider} API error: {status} - {e.response.text[:500]}"
        if status in RETRYABLE_STATUS_CODES:
            raise TransientProviderError(message, status_code=status) from e
        raise ProviderError(message, status_code=status) from e


class GeminiEmbeddingProvider(EmbeddingProvider):
    """Gemini embedding API adapter.

    Uses the ``batchEmbedContents`` endpoint so a whole batch costs one
    request.
    """

    API_BASE = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(
        self,
        model: str = "models/text-embedding-004",
        api_key: str = "",
        dimension: int = 768,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize Gemini embeddings.

        Args:
            model: Model name (models/text-embedding-004, models/gemini-embedding-001, ...)
            api_key: Google API key
            dimension: Output dimensionality requested from the API
            timeout: Request timeout in seconds
            client: Optional shared AsyncClient
        """
        if not api_key:
            raise ValueError("Google API key is required for Gemini embeddings")

        self._model = model if model.startswith("models/") else f"models/{model}"
        self._api_key = api_key
        self._dimension = dimension
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def dimension(self) -> int:
        return self._dimension

    async def generate_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed a batch of texts.

        Raises:
            TransientProviderError: Network failures, timeouts, 429 and 5xx
            ProviderError: Other HTTP errors or an unexpected payload
        """
        if not texts:
            return []

        url = f"{self.API_BASE}/{self._model}:batchEmbedContents?key={self._api_key}"

        # Gemini API format
        data = {
            "requests": [
                {
                    "model": self._model,
                    "content": {"parts": [{"text": text}]},
                    "outputDimensionality": self._dimension,
                }
                for text in texts
            ]
        }

        try:
            response = await self._client.post(
                url, json=data, headers={"Content-Type": "application/json"}
            )
        except httpx.TransportError as e:
            raise TransientProviderError(f"Gemini embedding request failed: {e}") from e

        raise_for_provider_status(response, "Gemini")
        try:
            result = response.json()
            vectors = [list(embedding["values"]) for embedding in result["embeddings"]]
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(
                f"Gemini API returned unexpected response: {response.text[:200]}"
            ) from e

        logger.debug("Gemini returned %d embeddings for %d texts", len(vectors), len(texts))
        return vectors

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
