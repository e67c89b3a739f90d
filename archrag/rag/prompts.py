"""Prompt templates for retrieval-time summarization."""


# ========== Summarization Prompts ==========

SUMMARIZE_PROMPT = """Summarize the following code sections concisely, preserving:
1. Key classes, methods, and their purposes
2. Important patterns and architectures used
3. Notable dependencies and relationships
4. Any potential issues or concerns

Keep the summary technical and focused. Include file paths and line ranges for key elements.

Code sections:
{context}

Provide a structured summary:"""


def build_summarize_prompt(context: str) -> str:
    """Build the summarization prompt for one bucket of retrieved code.

    Args:
        context: Direct context built from the bucket's chunks

    Returns:
        Complete prompt for the summarizer
    """
    return SUMMARIZE_PROMPT.format(context=context)
