"""Chunking pipeline components."""

from archrag.pipeline.config import ChunkingConfig, Config
from archrag.pipeline.chunk import SemanticChunker, compute_chunk_hash, compute_hash
from archrag.pipeline.files import detect_language, iter_source_files, read_source_file
from archrag.pipeline.tokenizer import (
    HeuristicTokenizer,
    TiktokenTokenizer,
    Tokenizer,
    create_tokenizer,
)

__all__ = [
    # Configuration
    "ChunkingConfig",
    "Config",
    # Chunking
    "SemanticChunker",
    "compute_chunk_hash",
    "compute_hash",
    # File discovery
    "detect_language",
    "iter_source_files",
    "read_source_file",
    # Tokenizers
    "Tokenizer",
    "TiktokenTokenizer",
    "HeuristicTokenizer",
    "create_tokenizer",
]
