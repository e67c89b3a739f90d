"""Vector index payload and search result types."""

from dataclasses import dataclass, asdict


@dataclass(frozen=True, slots=True)
class VectorMetadata:
    """Payload stored alongside a vector in the index.

    Attributes:
        project_id: Owning project (every index operation is scoped by it)
        file_path: Source file path
        start_line: First line, 1-based inclusive
        end_line: Last line, 1-based inclusive
        language: Language tag
        semantic_type: Kind of the enclosing unit
        semantic_name: Name of the enclosing unit
        token_count: Token count of the chunk
        content: Raw chunk text, when stored
    """

    project_id: str
    file_path: str
    start_line: int
    end_line: int
    language: str
    semantic_type: str = "file"
    semantic_name: str = ""
    token_count: int = 0
    content: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "VectorMetadata":
        return cls(
            project_id=data["project_id"],
            file_path=data["file_path"],
            start_line=int(data.get("start_line", 0)),
            end_line=int(data.get("end_line", 0)),
            language=data.get("language", "text"),
            semantic_type=data.get("semantic_type") or "file",
            semantic_name=data.get("semantic_name") or "",
            token_count=int(data.get("token_count", 0)),
            content=data.get("content"),
        )


@dataclass(frozen=True, slots=True)
class VectorSearchResult:
    """One hit of a project-scoped top-K query.

    Attributes:
        chunk_id: Chunk hash of the hit
        score: Similarity score (higher = more relevant)
        metadata: Stored payload
    """

    chunk_id: str
    score: float
    metadata: VectorMetadata
