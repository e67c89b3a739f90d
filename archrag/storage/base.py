"""Storage interfaces used by the retrieval orchestrator."""

from abc import ABC, abstractmethod
from typing import List, Sequence, Tuple

from archrag.domain.chunk import Chunk
from archrag.domain.vector import VectorMetadata, VectorSearchResult

VectorItem = Tuple[str, List[float], VectorMetadata]


class VectorIndex(ABC):
    """Project-scoped vector index.

    Re-indexing an existing id replaces it (at-least-once safe). Queries rank
    by similarity, highest first, breaking ties by insertion order.
    """

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def index(self, items: Sequence[VectorItem]) -> None:
        """Upsert ``(chunk_id, vector, metadata)`` items."""

    @abstractmethod
    async def query(
        self, vector: List[float], top_k: int, project_id: str
    ) -> List[VectorSearchResult]:
        """Top ``top_k`` results within ``project_id``."""

    @abstractmethod
    async def delete_by_project(self, project_id: str) -> None:
        pass

    @abstractmethod
    async def count(self, project_id: str) -> int:
        pass


class ChunkStore(ABC):
    """Persistence for chunk records (hash-set diffing plus bulk add/delete)."""

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def get_hashes(self, project_id: str) -> set[str]:
        """Chunk hashes already stored for the project."""

    @abstractmethod
    async def get_by_project(self, project_id: str) -> List[Chunk]:
        pass

    @abstractmethod
    async def add_range(self, chunks: Sequence[Chunk]) -> None:
        """Insert chunks; an existing (project, hash) is replaced."""

    @abstractmethod
    async def delete_by_project(self, project_id: str) -> None:
        pass

    @abstractmethod
    async def count(self, project_id: str) -> int:
        pass
