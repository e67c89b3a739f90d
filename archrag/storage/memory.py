"""In-process vector index and chunk store."""

from typing import Dict, List, Sequence

import numpy as np

from archrag.domain.chunk import Chunk
from archrag.domain.vector import VectorMetadata, VectorSearchResult
from archrag.storage.base import ChunkStore, VectorIndex, VectorItem


def _normalize(vector: Sequence[float]) -> np.ndarray:
    array = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(array)
    if norm == 0:
        return array
    return array / norm


class InMemoryVectorIndex(VectorIndex):
    """Cosine-similarity index held in a dict per project.

    Dicts keep insertion order and replacing a key keeps its slot, so ties
    resolve by first insertion.
    """

    def __init__(self):
        self._projects: Dict[str, Dict[str, tuple[np.ndarray, VectorMetadata]]] = {}

    async def index(self, items: Sequence[VectorItem]) -> None:
        for chunk_id, vector, metadata in items:
            entries = self._projects.setdefault(metadata.project_id, {})
            entries[chunk_id] = (_normalize(vector), metadata)

    async def query(
        self, vector: List[float], top_k: int, project_id: str
    ) -> List[VectorSearchResult]:
        entries = self._projects.get(project_id)
        if not entries or top_k <= 0:
            return []

        ids = list(entries.keys())
        matrix = np.vstack([entries[chunk_id][0] for chunk_id in ids])
        scores = matrix @ _normalize(vector)

        # Stable sort on negated scores keeps insertion order for ties
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            VectorSearchResult(
                chunk_id=ids[i],
                score=float(scores[i]),
                metadata=entries[ids[i]][1],
            )
            for i in order
        ]

    async def delete_by_project(self, project_id: str) -> None:
        self._projects.pop(project_id, None)

    async def count(self, project_id: str) -> int:
        return len(self._projects.get(project_id, {}))


class InMemoryChunkStore(ChunkStore):
    """Chunk records keyed by (project, chunk hash)."""

    def __init__(self):
        self._projects: Dict[str, Dict[str, Chunk]] = {}

    async def get_hashes(self, project_id: str) -> set[str]:
        return set(self._projects.get(project_id, {}))

    async def get_by_project(self, project_id: str) -> List[Chunk]:
        return list(self._projects.get(project_id, {}).values())

    async def add_range(self, chunks: Sequence[Chunk]) -> None:
        for chunk in chunks:
            self._projects.setdefault(chunk.project_id, {})[chunk.chunk_hash] = chunk

    async def delete_by_project(self, project_id: str) -> None:
        self._projects.pop(project_id, None)

    async def count(self, project_id: str) -> int:
        return len(self._projects.get(project_id, {}))
