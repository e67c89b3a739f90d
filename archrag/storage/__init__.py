"""Storage adapters for vectors and chunk records."""

from archrag.storage.base import ChunkStore, VectorIndex, VectorItem
from archrag.storage.chunkstore import PgChunkStore
from archrag.storage.memory import InMemoryChunkStore, InMemoryVectorIndex
from archrag.storage.vectorstore import PgVectorIndex

__all__ = [
    "ChunkStore",
    "VectorIndex",
    "VectorItem",
    "InMemoryChunkStore",
    "InMemoryVectorIndex",
    "PgChunkStore",
    "PgVectorIndex",
]
