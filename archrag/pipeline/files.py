"""Source file discovery and language detection."""

import logging
import os
from pathlib import Path, PurePosixPath
from typing import Iterator

from archrag.pipeline.config import SourceConfig

logger = logging.getLogger(__name__)

EXTENSION_LANGUAGES = {
    ".cs": "csharp",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".py": "python",
    ".java": "java",
    ".go": "go",
    ".rs": "rust",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".c": "c",
    ".h": "c-header",
    ".hpp": "c-header",
    ".md": "markdown",
    ".json": "json",
    ".xml": "xml",
    ".yaml": "yaml",
    ".yml": "yaml",
}

# Languages chunked as prose rather than code
TEXT_LANGUAGES = frozenset({"markdown", "json", "xml", "yaml", "text"})


def detect_language(file_path: str) -> str:
    """Map a file extension to a language tag ("text" when unknown)."""
    return EXTENSION_LANGUAGES.get(PurePosixPath(file_path).suffix.lower(), "text")


def iter_source_files(root: str | Path, config: SourceConfig | None = None) -> Iterator[str]:
    """Walk ``root`` and yield source file paths relative to it.

    Paths use forward slashes and are yielded in a stable (sorted) order.
    Excluded directories are pruned, and files that are too large or have an
    extension outside the configured set are skipped.

    Args:
        root: Project root directory
        config: Discovery settings (defaults to SourceConfig())

    Yields:
        Relative POSIX paths
    """
    config = config or SourceConfig()
    root_path = Path(root)
    if not root_path.is_dir():
        raise NotADirectoryError(f"Not a directory: {root_path}")

    excluded = {d.lower() for d in config.excluded_dirs}
    extensions = {e.lower() for e in config.extensions}

    for dirpath, dirnames, filenames in os.walk(root_path):
        dirnames[:] = sorted(d for d in dirnames if d.lower() not in excluded)

        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            if path.suffix.lower() not in extensions:
                continue
            try:
                size = path.stat().st_size
            except OSError as e:
                logger.warning("Skipping unreadable file %s: %s", path, e)
                continue
            if config.max_file_bytes and size > config.max_file_bytes:
                logger.info("Skipping %s (%d bytes exceeds limit)", path, size)
                continue
            yield path.relative_to(root_path).as_posix()


def read_source_file(path: str | Path) -> str:
    """Read a source file as UTF-8, replacing undecodable bytes."""
    return Path(path).read_text(encoding="utf-8", errors="replace")
