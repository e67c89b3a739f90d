"""Pytest configuration for archrag tests."""

import logging
import sys
from pathlib import Path

import pytest

# Add project root to path for imports
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from archrag.embedding.hashing import HashingEmbeddingProvider  # noqa: E402
from archrag.embedding.service import ResilientEmbeddingService  # noqa: E402
from archrag.llm.summarizer import SummarizationProvider  # noqa: E402
from archrag.monitoring.metrics import InMemoryMetrics  # noqa: E402
from archrag.pipeline.chunk import SemanticChunker  # noqa: E402
from archrag.pipeline.config import ChunkingConfig, EmbeddingConfig  # noqa: E402
from archrag.pipeline.tokenizer import HeuristicTokenizer  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSummarizer(SummarizationProvider):
    """Summarizer that returns canned text and remembers its prompts."""

    def __init__(self, reply: str = "Summary of the section."):
        self.reply = reply
        self.prompts: list[str] = []

    async def summarize(self, prompt, project_id=None, cancel_token=None) -> str:
        self.prompts.append(prompt)
        return self.reply


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tokenizer():
    return HeuristicTokenizer()


@pytest.fixture
def chunker(tokenizer):
    return SemanticChunker(tokenizer, ChunkingConfig(min_chunk_tokens=1))


@pytest.fixture
def metrics():
    return InMemoryMetrics()


@pytest.fixture
def embedding_config():
    return EmbeddingConfig(
        provider="hashing",
        dimension=64,
        batch_size=8,
        timeout_seconds=5.0,
        retry_base_delay_ms=1,
        semaphore_wait_seconds=1.0,
    )


@pytest.fixture
def embedding_service(embedding_config, metrics):
    provider = HashingEmbeddingProvider(dimension=embedding_config.dimension)
    return ResilientEmbeddingService(provider, embedding_config, metrics=metrics)


@pytest.fixture
def recording_summarizer():
    return RecordingSummarizer


@pytest.fixture
def restore_archrag_logger():
    """Undo handler, level and propagate changes made to the ``archrag`` logger."""
    logger = logging.getLogger("archrag")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in logger.handlers:
            logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate
