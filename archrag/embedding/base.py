"""Embedding provider interface."""

from abc import ABC, abstractmethod
from typing import List


class EmbeddingProvider(ABC):
    """Converts text into fixed-dimension vectors.

    Implementations only talk to the model; rate limiting, retries and
    circuit breaking are layered on top by ``ResilientEmbeddingService``.
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model identifier stored alongside generated vectors."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of every returned vector."""

    async def generate(self, text: str) -> List[float]:
        """Embed a single text."""
        vectors = await self.generate_batch([text])
        return vectors[0]

    @abstractmethod
    async def generate_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed ``texts``; result ``i`` belongs to ``texts[i]``."""

    async def aclose(self) -> None:
        """Release network resources."""
