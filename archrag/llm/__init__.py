"""LLM providers and the summarization capability."""

from archrag.llm.base import BaseLLM, LLMResponse
from archrag.llm.factory import create_llm
from archrag.llm.gemini import GeminiLLM
from archrag.llm.summarizer import LLMSummarizer, SummarizationProvider

__all__ = [
    "BaseLLM",
    "LLMResponse",
    "GeminiLLM",
    "create_llm",
    "LLMSummarizer",
    "SummarizationProvider",
]
