"""Indexing and context retrieval over a project's code chunks."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from pathlib import Path
from typing import AsyncIterator, Callable, Iterable, List, Mapping, Sequence

from archrag.cancellation import CancellationToken
from archrag.domain.chunk import Chunk
from archrag.domain.results import IndexingResult, RetrievalResult, SourceReference
from archrag.domain.vector import VectorSearchResult
from archrag.embedding.service import ResilientEmbeddingService
from archrag.errors import ArchRagError, IndexingError
from archrag.llm.summarizer import SummarizationProvider
from archrag.monitoring.metrics import MetricsSink, NullMetrics
from archrag.monitoring.telemetry import AnalysisTelemetry
from archrag.monitoring.watchdog import BatchProcessingWatchdog
from archrag.pipeline.chunk import SemanticChunker
from archrag.pipeline.config import RetrievalConfig, SourceConfig
from archrag.pipeline.files import iter_source_files, read_source_file
from archrag.pipeline.tokenizer import Tokenizer, estimate_tokens
from archrag.rag.context_builder import (
    bucket_results,
    build_direct_context,
    build_summary_context,
)
from archrag.rag.prompts import build_summarize_prompt
from archrag.storage.base import ChunkStore, VectorIndex

logger = logging.getLogger(__name__)

IndexProgressCallback = Callable[[int, int], None]


class RetrievalOrchestrator:
    """Drives the write path (chunk, embed, store) and the query path.

    Indexing runs are tracked by the watchdog when one is attached: the run
    reports phases and heartbeats, and observes the linked token the
    watchdog may cancel.
    """

    def __init__(
        self,
        chunker: SemanticChunker,
        tokenizer: Tokenizer,
        embedding_service: ResilientEmbeddingService,
        vector_index: VectorIndex,
        chunk_store: ChunkStore,
        summarizer: SummarizationProvider | None = None,
        config: RetrievalConfig | None = None,
        watchdog: BatchProcessingWatchdog | None = None,
        telemetry: AnalysisTelemetry | None = None,
        metrics: MetricsSink | None = None,
        source_config: SourceConfig | None = None,
    ):
        """Initialize RetrievalOrchestrator.

        Args:
            chunker: Semantic chunker
            tokenizer: Tokenizer used to measure assembled contexts
            embedding_service: Rate-limited, resilient embedding service
            vector_index: Project-scoped vector index
            chunk_store: Chunk record store
            summarizer: Summarization capability (required only when contexts
                exceed the summarization threshold)
            config: Batch sizes and retrieval budgets
            watchdog: Optional stuck-job supervisor
            telemetry: Optional usage and cost accounting
            metrics: Metrics sink
            source_config: File discovery filters for index_directory
        """
        self._chunker = chunker
        self._tokenizer = tokenizer
        self._embeddings = embedding_service
        self._vector_index = vector_index
        self._chunk_store = chunk_store
        self._summarizer = summarizer
        self._config = config or RetrievalConfig()
        self._watchdog = watchdog
        self._telemetry = telemetry
        self._metrics = metrics or NullMetrics()
        self._source_config = source_config or SourceConfig()

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    # ----- indexing ---------------------------------------------------------

    async def index_project(
        self,
        project_id: str,
        files: Mapping[str, str],
        cancel_token: CancellationToken | None = None,
        progress: IndexProgressCallback | None = None,
    ) -> IndexingResult:
        """Replace a project's index with the given files.

        Existing vectors and chunk records are deleted first.

        Args:
            project_id: Project to index
            files: Mapping of relative path to file content
            cancel_token: Caller's cancellation token
            progress: Called with (files_done, total_files) after each file batch

        Returns:
            IndexingResult with counters for the run
        """
        return await self._run_indexing(
            project_id,
            self._batches_from_mapping(files),
            total_files=len(files),
            incremental=False,
            cancel_token=cancel_token,
            progress=progress,
        )

    async def incremental_index(
        self,
        project_id: str,
        files: Mapping[str, str],
        cancel_token: CancellationToken | None = None,
        progress: IndexProgressCallback | None = None,
    ) -> IndexingResult:
        """Embed and store only chunks whose hash is not indexed yet.

        Args:
            project_id: Project to update
            files: Mapping of relative path to file content
            cancel_token: Caller's cancellation token
            progress: Called with (files_done, total_files) after each file batch

        Returns:
            IndexingResult; unchanged chunks are counted in ``chunks_skipped``
        """
        return await self._run_indexing(
            project_id,
            self._batches_from_mapping(files),
            total_files=len(files),
            incremental=True,
            cancel_token=cancel_token,
            progress=progress,
        )

    async def index_directory(
        self,
        project_id: str,
        root: str | Path,
        incremental: bool = False,
        cancel_token: CancellationToken | None = None,
        progress: IndexProgressCallback | None = None,
    ) -> IndexingResult:
        """Index source files under ``root``, reading one file batch at a time.

        Args:
            project_id: Project to index
            root: Repository root directory
            incremental: Skip already indexed chunks instead of replacing the index
            cancel_token: Caller's cancellation token
            progress: Called with (files_done, total_files) after each file batch

        Returns:
            IndexingResult with counters for the run
        """
        root = Path(root)
        paths = await asyncio.to_thread(lambda: list(iter_source_files(root, self._source_config)))
        logger.info("Found %d source files under %s", len(paths), root)

        return await self._run_indexing(
            project_id,
            self._batches_from_disk(root, paths),
            total_files=len(paths),
            incremental=incremental,
            cancel_token=cancel_token,
            progress=progress,
        )

    async def repair_project_vectors(
        self, project_id: str, cancel_token: CancellationToken | None = None
    ) -> int:
        """Rebuild the vector index of a project from stored chunk records.

        Stored embeddings are re-upserted as is. Chunks without an embedding
        are re-embedded when their content was stored, and skipped otherwise.

        Returns:
            Number of vectors written
        """
        logger.info("Repairing vectors for project %s", project_id)
        chunks = await self._chunk_store.get_by_project(project_id)
        if not chunks:
            logger.info("No stored chunks found for project %s", project_id)
            return 0

        with_embedding = [c for c in chunks if c.embedding is not None]
        to_embed = [c for c in chunks if c.embedding is None and c.content]
        skipped = len(chunks) - len(with_embedding) - len(to_embed)
        if skipped:
            logger.warning(
                "Skipping %d chunks of project %s with neither embedding nor content",
                skipped, project_id,
            )

        written = 0
        batch_size = self._config.chunk_batch_size
        for i in range(0, len(with_embedding), batch_size):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            batch = with_embedding[i : i + batch_size]
            await self._vector_index.index(
                [(c.chunk_hash, c.embedding, c.to_metadata()) for c in batch]
            )
            written += len(batch)

        if to_embed:
            result = IndexingResult(project_id=project_id)
            for i in range(0, len(to_embed), batch_size):
                await self._embed_and_store(
                    project_id, to_embed[i : i + batch_size], cancel_token, result
                )
            written += result.embeddings_generated

        logger.info("Repair completed for project %s: %d vectors written", project_id, written)
        return written

    async def _run_indexing(
        self,
        project_id: str,
        file_batches: AsyncIterator[dict[str, str]],
        total_files: int,
        incremental: bool,
        cancel_token: CancellationToken | None,
        progress: IndexProgressCallback | None,
    ) -> IndexingResult:
        started = time.perf_counter()
        result = IndexingResult(project_id=project_id)
        total_batches = max(1, math.ceil(total_files / self._config.file_batch_size))
        mode = "incremental" if incremental else "full"
        logger.info(
            "Starting %s indexing for project %s: %d files in %d batches",
            mode, project_id, total_files, total_batches,
        )

        token = cancel_token
        if self._watchdog is not None:
            token = self._watchdog.track_batch(project_id, 0, total_batches, cancel_token)

        try:
            if incremental:
                seen = await self._chunk_store.get_hashes(project_id)
                logger.info("Project %s has %d indexed chunks", project_id, len(seen))
            else:
                await self._vector_index.delete_by_project(project_id)
                await self._chunk_store.delete_by_project(project_id)
                seen = set()

            batch_number = 0
            async for files in file_batches:
                if token is not None:
                    token.raise_if_cancelled()
                batch_number += 1
                self._update_phase(
                    project_id, f"Chunking files (batch {batch_number}/{total_batches})", batch_number
                )

                chunks = self._chunker.chunk_files(project_id, files)
                result.files_processed += len(files)

                new_chunks: List[Chunk] = []
                for chunk in chunks:
                    if chunk.chunk_hash in seen:
                        result.chunks_skipped += 1
                        continue
                    seen.add(chunk.chunk_hash)
                    new_chunks.append(chunk)

                for i in range(0, len(new_chunks), self._config.chunk_batch_size):
                    group = new_chunks[i : i + self._config.chunk_batch_size]
                    self._update_phase(
                        project_id,
                        f"Embedding chunks {i + 1}-{i + len(group)} of {len(new_chunks)} "
                        f"(batch {batch_number}/{total_batches})",
                        batch_number,
                    )
                    await self._embed_and_store(project_id, group, token, result)

                if progress is not None:
                    progress(result.files_processed, total_files)

        except ArchRagError:
            raise
        except Exception as e:
            logger.exception("Indexing failed for project %s", project_id)
            raise IndexingError(project_id, str(e)) from e
        finally:
            if self._watchdog is not None:
                self._watchdog.complete(project_id)

        if self._telemetry is not None and self._telemetry.exceeds_max_cost(
            project_id, self._config.max_job_cost
        ):
            message = (
                f"Estimated cost exceeds the job limit of ${self._config.max_job_cost:.2f}"
            )
            logger.warning("Project %s: %s", project_id, message)
            result.errors.append(message)

        result.elapsed = time.perf_counter() - started
        self._metrics.histogram("indexing_run_seconds", result.elapsed, mode=mode)
        logger.info(
            "Indexed project %s: %d files, %d chunks created, %d skipped, %d tokens in %.2fs",
            project_id, result.files_processed, result.chunks_created,
            result.chunks_skipped, result.total_tokens, result.elapsed,
        )
        return result

    async def _embed_and_store(
        self,
        project_id: str,
        group: Sequence[Chunk],
        cancel_token: CancellationToken | None,
        result: IndexingResult,
    ) -> None:
        """Embed one chunk group, then persist records and upsert vectors.

        Nothing is written unless every embedding of the group succeeded.
        """
        texts = [chunk.content or "" for chunk in group]
        started = time.perf_counter()
        vectors = await self._embeddings.create_embeddings_batched(
            texts,
            progress=lambda done, total: self._heartbeat(project_id),
            cancel_token=cancel_token,
        )
        duration = time.perf_counter() - started

        model = self._embeddings.model_name
        embedded = [chunk.with_embedding(vector, model) for chunk, vector in zip(group, vectors)]
        if not self._chunker.config.store_chunk_text:
            embedded = [chunk.without_content() for chunk in embedded]

        await self._chunk_store.add_range(embedded)
        await self._vector_index.index(
            [(chunk.chunk_hash, chunk.embedding, chunk.to_metadata()) for chunk in embedded]
        )

        tokens = sum(chunk.token_count for chunk in group)
        result.chunks_created += len(embedded)
        result.embeddings_generated += len(vectors)
        result.total_tokens += tokens

        if self._telemetry is not None:
            self._telemetry.record_embedding_call(project_id, len(texts), tokens, model, duration)
        self._heartbeat(project_id)

    async def _batches_from_mapping(
        self, files: Mapping[str, str]
    ) -> AsyncIterator[dict[str, str]]:
        items = list(files.items())
        size = self._config.file_batch_size
        for i in range(0, len(items), size):
            yield dict(items[i : i + size])

    async def _batches_from_disk(
        self, root: Path, paths: Iterable[str]
    ) -> AsyncIterator[dict[str, str]]:
        paths = list(paths)
        size = self._config.file_batch_size
        for i in range(0, len(paths), size):
            batch = paths[i : i + size]
            contents = await asyncio.to_thread(
                lambda: [read_source_file(root / path) for path in batch]
            )
            yield dict(zip(batch, contents))

    def _update_phase(self, project_id: str, phase: str, batch_number: int) -> None:
        if self._watchdog is not None:
            self._watchdog.update_phase(project_id, phase, batch_number)

    def _heartbeat(self, project_id: str) -> None:
        if self._watchdog is not None:
            self._watchdog.heartbeat(project_id)

    # ----- retrieval --------------------------------------------------------

    async def retrieve_context(
        self,
        project_id: str,
        query: str,
        max_tokens: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RetrievalResult:
        """Build a context for ``query`` from the project's most similar chunks.

        Contexts up to the summarization threshold are returned verbatim.
        Larger ones are summarized bucket by bucket, with one extra pass if
        the combined summary still exceeds ``max_tokens``.

        Args:
            project_id: Project to search
            query: Natural-language query
            max_tokens: Token budget for a summarized context
            cancel_token: Caller's cancellation token

        Returns:
            RetrievalResult (empty when the project has no chunks)
        """
        started = time.perf_counter()
        if max_tokens is None:
            max_tokens = self._config.default_max_tokens
        logger.info("Retrieving context for project %s, max tokens: %d", project_id, max_tokens)

        query_vector = await self._embeddings.create_embedding(query, cancel_token)
        if self._telemetry is not None:
            self._telemetry.record_embedding_call(
                project_id, 1, estimate_tokens(query), self._embeddings.model_name,
                time.perf_counter() - started,
            )

        results = await self._vector_index.query(query_vector, self._config.top_k, project_id)
        if not results:
            logger.warning("No chunks found for project %s", project_id)
            return RetrievalResult.empty(elapsed=time.perf_counter() - started)

        sources = [
            SourceReference(
                chunk_id=r.chunk_id,
                file_path=r.metadata.file_path,
                start_line=r.metadata.start_line,
                end_line=r.metadata.end_line,
                score=r.score,
                semantic_type=r.metadata.semantic_type,
                semantic_name=r.metadata.semantic_name,
            )
            for r in results
        ]

        total_tokens = sum(r.metadata.token_count for r in results)
        was_summarized = total_tokens > self._config.summarization_threshold
        if was_summarized and self._summarizer is None:
            logger.warning(
                "Context of %d tokens exceeds threshold (%d) but no summarizer is configured; "
                "returning it unsummarized",
                total_tokens, self._config.summarization_threshold,
            )
            was_summarized = False

        if was_summarized:
            logger.info(
                "Total tokens (%d) exceeds threshold (%d), using hierarchical summarization",
                total_tokens, self._config.summarization_threshold,
            )
            context = await self._summarize_hierarchically(
                project_id, results, max_tokens, cancel_token
            )
            self._metrics.increment("retrieval_summarized")
        else:
            context = build_direct_context(results)

        token_count = self._tokenizer.count_tokens(context)
        elapsed = time.perf_counter() - started

        self._metrics.histogram("retrieval_duration_seconds", elapsed)
        if self._telemetry is not None:
            self._telemetry.record_retrieval(project_id, len(results), elapsed, was_summarized)

        logger.info(
            "Retrieved context: %d tokens, %d sources, summarized: %s, time: %.2fs",
            token_count, len(sources), was_summarized, elapsed,
        )
        return RetrievalResult(
            context=context,
            token_count=token_count,
            sources=sources,
            was_summarized=was_summarized,
            raw_chunk_count=len(results),
            elapsed=elapsed,
        )

    async def _summarize_hierarchically(
        self,
        project_id: str,
        results: Sequence[VectorSearchResult],
        max_tokens: int,
        cancel_token: CancellationToken | None,
    ) -> str:
        buckets = bucket_results(results, self._config.chunks_per_bucket)
        logger.debug("Created %d buckets for summarization", len(buckets))

        summaries: List[str] = []
        for bucket in buckets:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            summaries.append(
                await self._summarize(project_id, build_direct_context(bucket), cancel_token)
            )

        combined = build_summary_context(summaries)
        token_count = self._tokenizer.count_tokens(combined)

        if token_count > max_tokens and len(summaries) > 1:
            logger.debug(
                "Combined summaries (%d tokens) still exceed max, re-summarizing", token_count
            )
            return await self._summarize(project_id, combined, cancel_token)

        return combined

    async def _summarize(
        self, project_id: str, content: str, cancel_token: CancellationToken | None
    ) -> str:
        return await self._summarizer.summarize(
            build_summarize_prompt(content), project_id=project_id, cancel_token=cancel_token
        )
