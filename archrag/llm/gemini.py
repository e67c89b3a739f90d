"""Gemini LLM implementation using Google Generative AI API."""

import logging
from typing import Optional

import httpx

from archrag.embedding.gemini import raise_for_provider_status
from archrag.errors import ProviderError, TransientProviderError
from archrag.llm.base import BaseLLM, LLMResponse

logger = logging.getLogger(__name__)


class GeminiLLM(BaseLLM):
    """Google Gemini LLM implementation.

    Uses the Gemini ``generateContent`` endpoint for text generation.
    """

    API_BASE = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(
        self,
        model: str = "gemini-2.5-flash",
        api_key: str = "",
        temperature: float = 0.2,
        max_tokens: int = 2048,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize Gemini LLM.

        Args:
            model: Model name (e.g., "gemini-2.5-flash", "gemini-2.5-pro")
            api_key: Google API key
            temperature: Sampling temperature (0.0 - 1.0)
            max_tokens: Maximum tokens to generate
            timeout: Request timeout in seconds
            client: Optional shared AsyncClient
        """
        super().__init__(model=model, temperature=temperature, max_tokens=max_tokens)
        self._api_key = api_key

        if not self._api_key:
            raise ValueError("Google API key is required for Gemini LLM")

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def generate(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Generate text from prompt using Gemini API.

        Raises:
            TransientProviderError: Network failures, 429 and 5xx
            ProviderError: Other HTTP errors or an unexpected payload
        """
        temp = temperature if temperature is not None else self.temperature
        max_tok = max_tokens if max_tokens is not None else self.max_tokens

        # gemini-2.5-flash -> models/gemini-2.5-flash
        model_id = (
            f"models/{self.model}"
            if not self.model.startswith("models/")
            else self.model
        )

        url = f"{self.API_BASE}/{model_id}:generateContent?key={self._api_key}"

        data = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temp,
                "maxOutputTokens": max_tok,
            },
        }

        try:
            response = await self._client.post(
                url, json=data, headers={"Content-Type": "application/json"}
            )
        except httpx.TransportError as e:
            raise TransientProviderError(f"Gemini LLM request failed: {e}") from e

        raise_for_provider_status(response, "Gemini")
        try:
            result = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Gemini API returned a non-JSON response: {response.text[:200]}"
            ) from e
        if not isinstance(result, dict):
            raise ProviderError(f"Unexpected Gemini API response format: {result}")

        usage = result.get("usageMetadata") or {}
        return LLMResponse(
            content=self._extract_content(result),
            model=self.model,
            tokens_used=usage.get("totalTokenCount"),
            finish_reason=self._extract_finish_reason(result),
            input_tokens=usage.get("promptTokenCount"),
            output_tokens=usage.get("candidatesTokenCount"),
        )

    def _extract_content(self, result: dict) -> str:
        """Extract text content from API response.

        Args:
            result: Raw API response

        Returns:
            Generated text content
        """
        try:
            parts = result["candidates"][0]["content"]["parts"]
            return "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ProviderError(f"Unexpected Gemini API response format: {result}") from e

    def _extract_finish_reason(self, result: dict) -> Optional[str]:
        try:
            return result["candidates"][0].get("finishReason")
        except (KeyError, IndexError, TypeError, AttributeError):
            return None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
