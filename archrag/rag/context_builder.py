"""Context building for retrieval results."""

from typing import List, Sequence

from archrag.domain.vector import VectorSearchResult

DIRECT_CONTEXT_TITLE = "# Retrieved Code Context"
SUMMARY_CONTEXT_TITLE = "# Code Analysis Context (Summarized)"
CONTENT_NOT_STORED = "[Content not stored]"


def format_result(result: VectorSearchResult) -> str:
    """Format a single search result as a fenced block with its location.

    Args:
        result: Search result to format

    Returns:
        Markdown section for the chunk
    """
    meta = result.metadata
    semantic = f" ({meta.semantic_type}: {meta.semantic_name})" if meta.semantic_type else ""
    content = meta.content if meta.content is not None else CONTENT_NOT_STORED

    return "\n".join([
        f"## {meta.file_path}:{meta.start_line}-{meta.end_line}{semantic}",
        f"Score: {result.score:.3f}",
        f"```{meta.language or ''}",
        content,
        "```",
        "",
    ])


def build_direct_context(results: Sequence[VectorSearchResult]) -> str:
    """Concatenate results, in the given order, under the direct-context title.

    Args:
        results: Search results ranked by score

    Returns:
        Context string
    """
    parts: List[str] = [DIRECT_CONTEXT_TITLE, ""]
    for result in results:
        parts.append(format_result(result))
    return "\n".join(parts)


def build_summary_context(summaries: Sequence[str]) -> str:
    """Join bucket summaries under numbered section headers.

    Args:
        summaries: One summary per bucket, in bucket order

    Returns:
        Combined context string
    """
    parts: List[str] = [SUMMARY_CONTEXT_TITLE, ""]
    for i, summary in enumerate(summaries, start=1):
        parts.append(f"## Section {i}")
        parts.append(summary)
        parts.append("")
    return "\n".join(parts)


def bucket_results(
    results: Sequence[VectorSearchResult], bucket_size: int
) -> List[List[VectorSearchResult]]:
    """Split results into consecutive buckets, preserving order."""
    return [list(results[i:i + bucket_size]) for i in range(0, len(results), bucket_size)]
