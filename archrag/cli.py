#!/usr/bin/env python3
"""
archrag - Index a source repository and retrieve code context from it.

Usage:
    archrag index ./repo --project demo                 # Full (re)index
    archrag index ./repo --project demo --incremental   # Only new/changed chunks
    archrag index ./repo --project demo --query "How is auth wired?"
    archrag index ./repo --project demo --yes           # Proceed past the approval threshold
    archrag query --project demo "Where are retries configured?"
    archrag repair --project demo                       # Rebuild vectors from chunk records
    archrag --config custom.yaml index ./repo --project demo

Configuration:
    Config file: archrag/config.yaml (default)
    Environment variables are used as fallback if config file not found
    Set DATABASE_URL and GEMINI_API_KEY environment variables for production
"""

import argparse
import asyncio
import os
import sys
import traceback
from pathlib import Path

from tqdm import tqdm

from archrag.cancellation import CancellationToken
from archrag.dependencies import Services, build_orchestrator
from archrag.domain.results import IndexingResult, RetrievalResult
from archrag.errors import ArchRagError
from archrag.logging_config import configure_logging
from archrag.monitoring.telemetry import estimate_cost, evaluate_job_approval
from archrag.pipeline.config import Config
from archrag.pipeline.files import iter_source_files, read_source_file
from archrag.pipeline.tokenizer import estimate_tokens

PACKAGE_ROOT = Path(__file__).parent


def get_default_config_path() -> str:
    """Get default config path inside the package."""
    return str(PACKAGE_ROOT / "config.yaml")


def load_config(config_path: str | None = None) -> Config:
    """Load config from YAML file or environment variables.

    Args:
        config_path: Path to YAML config file. If None, uses default path.

    Returns:
        Config object
    """
    if config_path is None:
        config_path = get_default_config_path()

    # Try YAML config first
    if os.path.exists(config_path):
        print(f"Loading config from: {config_path}")
        return Config.from_yaml(config_path)

    # Fallback to environment variables
    print(f"Config file not found: {config_path}")
    print("Loading from environment variables...")
    return Config.from_env()


def print_header(text: str):
    """Print section header."""
    print(f"\n{'=' * 50}\n{text}\n{'=' * 50}\n")


def print_indexing_result(result: IndexingResult):
    print(f"✓ Files processed: {result.files_processed}")
    print(f"  Chunks created: {result.chunks_created}")
    print(f"  Chunks skipped: {result.chunks_skipped}")
    print(f"  Embeddings generated: {result.embeddings_generated}")
    print(f"  Total tokens: {result.total_tokens}")
    print(f"  Elapsed: {result.elapsed:.2f}s")
    for err in result.errors[:5]:
        print(f"  Warning: {err}")


def print_retrieval_result(result: RetrievalResult):
    if not result.sources:
        print("No indexed chunks matched this project.")
        return

    print(result.context)
    print_header("Sources")
    for source in result.sources:
        print(
            f"  {source.score:.3f}  {source.file_path}:{source.start_line}-{source.end_line}"
            f"  ({source.semantic_type}: {source.semantic_name})"
        )
    print(
        f"\nTokens: {result.token_count}, chunks: {result.raw_chunk_count}, "
        f"summarized: {result.was_summarized}, time: {result.elapsed:.2f}s"
    )


def estimate_indexing_job(directory: str, config: Config) -> tuple[int, float]:
    """Estimate embedding tokens and cost of indexing ``directory`` before any work starts.

    Incremental runs re-embed only new chunks, so for them this is an upper bound.
    """
    root = Path(directory)
    tokens = sum(
        estimate_tokens(read_source_file(root / path))
        for path in iter_source_files(root, config.sources)
    )
    return tokens, estimate_cost(config.embedding.model, tokens)


async def run_index(services: Services, args) -> IndexingResult:
    """Index a directory with a progress bar."""
    mode = "Incremental indexing" if args.incremental else "Indexing"
    print_header(f"{mode} {args.directory} as project '{args.project}'")

    tokens, cost = await asyncio.to_thread(estimate_indexing_job, args.directory, services.config)
    decision = evaluate_job_approval(tokens, cost, services.config.approval)
    print(f"  Estimated embedding tokens: {tokens}")
    print(f"  Estimated cost: ${cost:.4f}")
    for reason in decision.reasons:
        print(f"  Warning: {reason}")
    if decision.requires_approval and not args.yes:
        print("✗ Approval required before indexing; re-run with --yes to proceed")
        return IndexingResult(project_id=args.project)

    token = CancellationToken()
    services.watchdog.start()

    with tqdm(desc="Files", unit="file") as bar:
        def progress(done: int, total: int):
            bar.total = total
            bar.n = done
            bar.refresh()

        result = await services.orchestrator.index_directory(
            args.project,
            args.directory,
            incremental=args.incremental,
            cancel_token=token,
            progress=progress,
        )

    print_indexing_result(result)

    summary = services.telemetry.get_project_summary(args.project)
    print(f"  Embedding tokens used: {summary.embedding_tokens}")
    print(f"  Cost: ${summary.estimated_cost:.4f}")

    if args.query:
        print_header(f"Query: {args.query}")
        retrieval = await services.orchestrator.retrieve_context(
            args.project, args.query, max_tokens=args.max_tokens
        )
        print_retrieval_result(retrieval)

    return result


async def run_query(services: Services, args) -> RetrievalResult:
    print_header(f"Query: {args.text}")
    if services.config.storage.backend == "memory":
        print("Note: the memory backend does not persist between runs; "
              "use 'index --query' or the postgres backend.")

    result = await services.orchestrator.retrieve_context(
        args.project, args.text, max_tokens=args.max_tokens
    )
    print_retrieval_result(result)
    return result


async def run_repair(services: Services, args) -> int:
    print_header(f"Repairing vectors for project '{args.project}'")
    written = await services.orchestrator.repair_project_vectors(args.project)
    print(f"✓ Vectors written: {written}")
    return written


COMMANDS = {
    "index": run_index,
    "query": run_query,
    "repair": run_repair,
}


async def run_command(config: Config, args):
    services = build_orchestrator(config)
    await services.initialize()
    try:
        return await COMMANDS[args.command](services, args)
    finally:
        await services.aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="archrag - Index source repositories and retrieve code context"
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to config YAML file (default: {get_default_config_path()})",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override logging level (DEBUG, INFO, WARNING, ...)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    index_parser = subparsers.add_parser("index", help="Index a source directory")
    index_parser.add_argument("directory", help="Repository root to index")
    index_parser.add_argument("--project", required=True, help="Project identifier")
    index_parser.add_argument(
        "--incremental",
        action="store_true",
        help="Only embed chunks that are not indexed yet",
    )
    index_parser.add_argument(
        "--query",
        default=None,
        help="Retrieve context for this query after indexing",
    )
    index_parser.add_argument(
        "--yes",
        action="store_true",
        help="Proceed even when the estimate exceeds the approval threshold",
    )
    index_parser.add_argument(
        "--max-tokens",
        type=int,
        default=None,
        help="Token budget for the retrieved context",
    )

    query_parser = subparsers.add_parser("query", help="Retrieve context for a query")
    query_parser.add_argument("text", help="Query text")
    query_parser.add_argument("--project", required=True, help="Project identifier")
    query_parser.add_argument(
        "--max-tokens",
        type=int,
        default=None,
        help="Token budget for the retrieved context",
    )

    repair_parser = subparsers.add_parser(
        "repair", help="Rebuild a project's vectors from stored chunk records"
    )
    repair_parser.add_argument("--project", required=True, help="Project identifier")

    return parser


def main(argv: list[str] | None = None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    print_header("archrag")

    try:
        config = load_config(args.config)
    except ArchRagError as e:
        print(f"✗ Error: {e}")
        sys.exit(1)

    configure_logging(args.log_level or config.logging.level, config.logging.log_file or None)

    try:
        asyncio.run(run_command(config, args))
        print_header("✓ Done")
    except KeyboardInterrupt:
        print("\n✗ Interrupted")
        sys.exit(130)
    except Exception as e:
        print(f"\n✗ Error: {e}")
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
