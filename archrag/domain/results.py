"""Result types returned by the retrieval orchestrator."""

from dataclasses import dataclass, asdict, field


@dataclass
class IndexingResult:
    """Counters for one indexing run.

    Attributes:
        project_id: Indexed project
        files_processed: Files that were chunked
        chunks_created: New chunks embedded and stored
        chunks_skipped: Chunks already present (by hash) and not re-embedded
        embeddings_generated: Embedding vectors returned by the provider
        total_tokens: Token count of all created chunks
        elapsed: Wall time in seconds
        errors: Non-fatal problems (unreadable files, ...)
    """

    project_id: str
    files_processed: int = 0
    chunks_created: int = 0
    chunks_skipped: int = 0
    embeddings_generated: int = 0
    total_tokens: int = 0
    elapsed: float = 0.0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class SourceReference:
    """A chunk that contributed to a retrieval context."""

    chunk_id: str
    file_path: str
    start_line: int
    end_line: int
    score: float
    semantic_type: str | None = None
    semantic_name: str | None = None


@dataclass
class RetrievalResult:
    """Output of a context query.

    Attributes:
        context: Assembled context text (direct or summarized)
        token_count: Tokenizer count of ``context``
        sources: Chunks the context was built from, best first
        was_summarized: Whether hierarchical summarization ran
        raw_chunk_count: Number of chunks retrieved before summarization
        elapsed: Wall time in seconds
    """

    context: str
    token_count: int
    sources: list[SourceReference] = field(default_factory=list)
    was_summarized: bool = False
    raw_chunk_count: int = 0
    elapsed: float = 0.0

    @classmethod
    def empty(cls, elapsed: float = 0.0) -> "RetrievalResult":
        return cls(context="", token_count=0, elapsed=elapsed)
