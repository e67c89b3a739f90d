"""Domain entities for the code indexing pipeline.

This module contains the data structures passed between the chunker, the
embedding layer, the vector index and the retrieval orchestrator.
"""

from archrag.domain.chunk import Chunk
from archrag.domain.vector import VectorMetadata, VectorSearchResult
from archrag.domain.results import IndexingResult, RetrievalResult, SourceReference

__all__ = [
    "Chunk",
    "VectorMetadata",
    "VectorSearchResult",
    "IndexingResult",
    "RetrievalResult",
    "SourceReference",
]
