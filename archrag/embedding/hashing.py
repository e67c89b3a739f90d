"""Deterministic offline embeddings."""

import hashlib
import re
from typing import List

import numpy as np

from archrag.embedding.base import EmbeddingProvider

_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*|\d+")


class HashingEmbeddingProvider(EmbeddingProvider):
    """Feature-hashing embeddings for local runs and tests.

    Each identifier-like token contributes a pseudo-random unit vector seeded
    from its SHA-256, so texts sharing vocabulary end up close in cosine
    space. Identical text always maps to the identical vector.
    """

    MODEL_NAME = "hashing-embedding"

    def __init__(self, dimension: int = 256):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self._dimension = dimension

    @property
    def model_name(self) -> str:
        return self.MODEL_NAME

    @property
    def dimension(self) -> int:
        return self._dimension

    async def generate_batch(self, texts: List[str]) -> List[List[float]]:
        return [self.embed(text) for text in texts]

    def embed(self, text: str) -> List[float]:
        vector = np.zeros(self._dimension, dtype=np.float64)
        tokens = [token.lower() for token in _TOKEN_RE.findall(text)] or [text]

        for token in tokens:
            vector += self._token_vector(token)

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector.tolist()

    def _token_vector(self, token: str) -> np.ndarray:
        seed = int.from_bytes(hashlib.sha256(token.encode("utf-8")).digest()[:8], "big")
        return np.random.default_rng(seed).standard_normal(self._dimension)
