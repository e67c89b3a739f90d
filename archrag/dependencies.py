"""Component wiring: builds a ready-to-use orchestrator from a Config."""

import logging
from dataclasses import dataclass

from archrag.embedding.base import EmbeddingProvider
from archrag.embedding.factory import create_embedding_provider
from archrag.embedding.resilience import CircuitBreaker, ResiliencePolicy
from archrag.embedding.service import ResilientEmbeddingService
from archrag.llm.factory import create_llm
from archrag.llm.summarizer import LLMSummarizer, SummarizationProvider
from archrag.monitoring.metrics import InMemoryMetrics, MetricsSink
from archrag.monitoring.telemetry import AnalysisTelemetry
from archrag.monitoring.watchdog import BatchProcessingWatchdog
from archrag.pipeline.chunk import SemanticChunker
from archrag.pipeline.config import Config
from archrag.pipeline.tokenizer import Tokenizer, create_tokenizer
from archrag.rag.orchestrator import RetrievalOrchestrator
from archrag.storage.base import ChunkStore, VectorIndex
from archrag.storage.chunkstore import PgChunkStore
from archrag.storage.memory import InMemoryChunkStore, InMemoryVectorIndex
from archrag.storage.vectorstore import PgVectorIndex

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Every long-lived component of one process."""

    config: Config
    tokenizer: Tokenizer
    chunker: SemanticChunker
    provider: EmbeddingProvider
    embeddings: ResilientEmbeddingService
    vector_index: VectorIndex
    chunk_store: ChunkStore
    summarizer: SummarizationProvider | None
    watchdog: BatchProcessingWatchdog
    telemetry: AnalysisTelemetry
    metrics: MetricsSink
    orchestrator: RetrievalOrchestrator

    async def initialize(self) -> None:
        """Open storage connections."""
        await self.vector_index.initialize()
        await self.chunk_store.initialize()

    async def aclose(self) -> None:
        """Stop the watchdog and release network and database resources."""
        await self.watchdog.stop()
        await self.provider.aclose()
        if self.summarizer is not None:
            await self.summarizer.aclose()
        await self.vector_index.close()
        await self.chunk_store.close()


def create_stores(config: Config, dimension: int) -> tuple[VectorIndex, ChunkStore]:
    """Create the vector index and chunk store for the configured backend.

    Args:
        config: Root configuration
        dimension: Embedding dimension of the vector column

    Returns:
        (vector_index, chunk_store), not yet initialized
    """
    storage = config.storage
    if storage.backend == "postgres":
        return (
            PgVectorIndex(
                database_url=storage.database_url,
                dimension=dimension,
                table_name=storage.vector_table_name,
            ),
            PgChunkStore(
                database_url=storage.database_url,
                table_name=storage.chunk_table_name,
            ),
        )
    return InMemoryVectorIndex(), InMemoryChunkStore()


def build_orchestrator(config: Config, metrics: MetricsSink | None = None) -> Services:
    """Construct every component from ``config``.

    Storage is created but not connected; call ``Services.initialize()``
    before use.
    """
    metrics = metrics or InMemoryMetrics()
    telemetry = AnalysisTelemetry(metrics)

    tokenizer = create_tokenizer(config.tokenizer)
    chunker = SemanticChunker(tokenizer, config.chunking)

    provider = create_embedding_provider(config.embedding)
    embeddings = ResilientEmbeddingService(provider, config.embedding, metrics=metrics)

    vector_index, chunk_store = create_stores(config, provider.dimension)

    summarizer = None
    llm = create_llm(config.llm)
    if llm is not None:
        policy = ResiliencePolicy.from_config("llm", config.llm)
        summarizer = LLMSummarizer(llm, policy, CircuitBreaker(policy), telemetry)
    else:
        logger.info("No LLM provider configured; large contexts will not be summarized")

    watchdog = BatchProcessingWatchdog(config.watchdog, metrics)

    orchestrator = RetrievalOrchestrator(
        chunker=chunker,
        tokenizer=tokenizer,
        embedding_service=embeddings,
        vector_index=vector_index,
        chunk_store=chunk_store,
        summarizer=summarizer,
        config=config.retrieval,
        watchdog=watchdog,
        telemetry=telemetry,
        metrics=metrics,
        source_config=config.sources,
    )

    logger.info(
        "Built orchestrator: storage=%s, embedding=%s (%s), llm=%s",
        config.storage.backend, config.embedding.provider, provider.model_name,
        config.llm.provider or "none",
    )
    return Services(
        config=config,
        tokenizer=tokenizer,
        chunker=chunker,
        provider=provider,
        embeddings=embeddings,
        vector_index=vector_index,
        chunk_store=chunk_store,
        summarizer=summarizer,
        watchdog=watchdog,
        telemetry=telemetry,
        metrics=metrics,
        orchestrator=orchestrator,
    )
