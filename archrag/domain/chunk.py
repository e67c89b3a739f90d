"""Chunk entity for the code indexing pipeline."""

from dataclasses import dataclass, asdict, field, replace
from datetime import datetime, timezone

from archrag.domain.vector import VectorMetadata


@dataclass(frozen=True, slots=True)
class Chunk:
    """Immutable chunk entity.

    A contiguous, semantically bounded span of one source file. The chunk is
    the unit of embedding and retrieval.

    Attributes:
        chunk_hash: Stable identity (SHA-256 over project, path, line range and text hash)
        project_id: Owning project
        file_path: Path relative to the project root
        start_line: First line, 1-based inclusive
        end_line: Last line, 1-based inclusive
        token_count: Exact token count of the chunk text
        language: Language tag detected from the file extension
        text_hash: SHA-256 of the chunk text, for change detection
        semantic_type: Kind of the enclosing unit ("class", "function", "file", ...)
        semantic_name: Name of the enclosing unit
        chunk_index: Position within the parent semantic unit
        total_chunks: Number of chunks the parent semantic unit was split into
        content: Raw text (None when not stored)
        embedding: Embedding vector (None until the embedding call succeeds)
        embedding_model: Model that produced the embedding
        embedded_at: UTC timestamp of embedding generation
    """

    chunk_hash: str
    project_id: str
    file_path: str
    start_line: int
    end_line: int
    token_count: int
    language: str
    text_hash: str
    semantic_type: str = "file"
    semantic_name: str = ""
    chunk_index: int = 0
    total_chunks: int = 1
    content: str | None = None
    embedding: list[float] | None = field(default=None, repr=False)
    embedding_model: str | None = None
    embedded_at: datetime | None = None

    def with_embedding(self, embedding: list[float], model: str) -> "Chunk":
        """Return a copy carrying ``embedding``."""
        return replace(
            self,
            embedding=list(embedding),
            embedding_model=model,
            embedded_at=datetime.now(timezone.utc),
        )

    def without_content(self) -> "Chunk":
        """Return a copy with the raw text cleared; hash and embedding are kept."""
        return replace(self, content=None)

    def to_metadata(self) -> VectorMetadata:
        """Build the payload stored next to this chunk's vector."""
        return VectorMetadata(
            project_id=self.project_id,
            file_path=self.file_path,
            start_line=self.start_line,
            end_line=self.end_line,
            language=self.language,
            semantic_type=self.semantic_type,
            semantic_name=self.semantic_name,
            token_count=self.token_count,
            content=self.content,
        )

    def to_dict(self) -> dict:
        """Convert chunk to dictionary for serialization."""
        return asdict(self)
