"""Tests for semantic chunking."""

from archrag.pipeline.chunk import SemanticChunker, compute_chunk_hash, compute_hash
from archrag.pipeline.config import ChunkingConfig


PYTHON_SOURCE = '''"""Sample module."""

import os


def first(a):
    return a + 1


def second(b):
    return b * 2


async def third(c):
    return await c


@decorated
def fourth(d):
    return os.path.join(d, "x")
'''


JAVA_SOURCE = """public class Greeter {
    public String greet(String name) {
        return "Hi " + name;
    }

    private int add(int a, int b) {
        return a + b;
    }
}
"""


def test_python_functions_become_units(chunker):
    """Test that top-level Python functions each become one chunk."""
    chunks = chunker.chunk_file("proj", "pkg/sample.py", PYTHON_SOURCE)

    functions = [c for c in chunks if c.semantic_type == "function"]
    assert [c.semantic_name for c in functions] == ["first", "second", "third", "fourth"]
    assert all(c.language == "python" for c in chunks)

    # Module docstring and imports are covered by a file-level chunk
    assert chunks[0].semantic_type == "file"
    assert chunks[0].start_line == 1
    assert chunks[0].semantic_name == "sample.py"


def test_decorator_included_in_unit(chunker):
    """Test that decorators belong to the function they decorate."""
    chunks = chunker.chunk_file("proj", "sample.py", PYTHON_SOURCE)
    fourth = next(c for c in chunks if c.semantic_name == "fourth")

    assert fourth.content.startswith("@decorated")
    assert fourth.end_line - fourth.start_line == 2


def test_line_ranges_match_content(chunker):
    """Test that line ranges are 1-based and inclusive."""
    chunks = chunker.chunk_file("proj", "sample.py", PYTHON_SOURCE)
    lines = PYTHON_SOURCE.split("\n")

    for chunk in chunks:
        assert chunk.start_line >= 1
        assert chunk.end_line >= chunk.start_line
        assert chunk.content == "\n".join(lines[chunk.start_line - 1 : chunk.end_line])


def test_chunking_is_deterministic(tokenizer):
    """Test that identical input yields identical hashes."""
    config = ChunkingConfig(min_chunk_tokens=1)
    chunks1 = SemanticChunker(tokenizer, config).chunk_file("proj", "a.py", PYTHON_SOURCE)
    chunks2 = SemanticChunker(tokenizer, config).chunk_file("proj", "a.py", PYTHON_SOURCE)

    assert [c.chunk_hash for c in chunks1] == [c.chunk_hash for c in chunks2]
    assert len({c.chunk_hash for c in chunks1}) == len(chunks1)


def test_hash_depends_on_project_and_path(chunker):
    """Test that the same text in another project or path gets a new hash."""
    base = {c.chunk_hash for c in chunker.chunk_file("proj", "a.py", PYTHON_SOURCE)}
    other_project = {c.chunk_hash for c in chunker.chunk_file("other", "a.py", PYTHON_SOURCE)}
    other_path = {c.chunk_hash for c in chunker.chunk_file("proj", "b.py", PYTHON_SOURCE)}

    assert base.isdisjoint(other_project)
    assert base.isdisjoint(other_path)


def test_hash_formula(chunker):
    """Test the chunk hash covers project, path, lines and text hash."""
    chunk = chunker.chunk_file("proj", "a.py", PYTHON_SOURCE)[1]

    assert chunk.text_hash == compute_hash(chunk.content)
    assert chunk.chunk_hash == compute_chunk_hash(
        "proj", "a.py", chunk.start_line, chunk.end_line, chunk.text_hash
    )
    assert len(chunk.chunk_hash) == 64


def test_java_methods(chunker):
    """Test brace-language methods inside a class."""
    chunks = chunker.chunk_file("proj", "src/Greeter.java", JAVA_SOURCE)

    methods = [c for c in chunks if c.semantic_type == "method"]
    assert [c.semantic_name for c in methods] == ["greet", "add"]
    assert methods[0].start_line == 2
    assert methods[0].end_line == 4
    assert methods[1].start_line == 6
    assert methods[1].end_line == 8
    assert all(c.language == "java" for c in chunks)


def test_markdown_sections(chunker):
    """Test markdown headings become sections."""
    content = "# Title\nIntro text here.\n\n## Usage\nRun the tool.\n"
    chunks = chunker.chunk_file("proj", "README.md", content)

    assert [(c.semantic_type, c.semantic_name) for c in chunks] == [
        ("section", "Title"),
        ("section", "Usage"),
    ]
    assert chunks[0].start_line == 1
    assert chunks[1].start_line == 4


def test_markdown_heading_inside_fence_ignored(chunker):
    """Test that '#' lines inside code fences are not headings."""
    content = "# Guide\n```bash\n# not a heading\necho hi\n```\n"
    chunks = chunker.chunk_file("proj", "guide.md", content)

    assert [c.semantic_name for c in chunks] == ["Guide"]


def test_syntax_error_falls_back_to_regex(chunker):
    """Test that unparseable Python still splits at def boundaries."""
    content = "def broken(:\n    pass\n\ndef ok():\n    return 1\n"
    chunks = chunker.chunk_file("proj", "broken.py", content)

    assert [c.semantic_name for c in chunks] == ["broken", "ok"]
    assert (chunks[0].start_line, chunks[0].end_line) == (1, 2)
    assert (chunks[1].start_line, chunks[1].end_line) == (4, 5)


def test_large_unit_split_with_overlap(tokenizer):
    """Test that an oversized function is windowed with overlap."""
    body = "\n".join(f"    value_{i} = {i} + 1" for i in range(60))
    content = f"def big():\n{body}\n    return value_0\n"
    config = ChunkingConfig(max_chunk_tokens=50, overlap_tokens=10, min_chunk_tokens=1)
    chunks = SemanticChunker(tokenizer, config).chunk_file("proj", "big.py", content)

    assert len(chunks) > 1
    assert all(c.semantic_name == "big" for c in chunks)
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
    assert all(c.total_chunks == len(chunks) for c in chunks)
    assert chunks[0].start_line == 1
    assert chunks[-1].end_line == 62
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start_line <= previous.end_line
        assert current.start_line > previous.start_line


def test_whitespace_only_file(chunker):
    """Test that blank files produce no chunks."""
    assert chunker.chunk_file("proj", "empty.py", "   \n\n\t\n") == []
    assert chunker.chunk_file("proj", "empty.py", "") == []


def test_undersized_units_fall_back_to_whole_file(tokenizer):
    """Test that a file of tiny units is still indexed as one chunk."""
    config = ChunkingConfig(min_chunk_tokens=1000)
    chunks = SemanticChunker(tokenizer, config).chunk_file("proj", "small.py", PYTHON_SOURCE)

    assert len(chunks) == 1
    assert chunks[0].semantic_type == "file"
    assert chunks[0].start_line == 1
    assert chunks[0].end_line == len(PYTHON_SOURCE.split("\n"))


def test_unknown_language_chunks_as_text(chunker):
    """Test that files without a known language are split by size."""
    chunks = chunker.chunk_file("proj", "notes.txt", "some plain notes\nmore notes\n")

    assert len(chunks) == 1
    assert chunks[0].language == "text"
    assert chunks[0].semantic_type == "file"
    assert chunks[0].semantic_name == "notes.txt"


def test_max_chunks_per_file(tokenizer):
    """Test the per-file chunk cap."""
    config = ChunkingConfig(min_chunk_tokens=1, max_chunks_per_file=2)
    chunks = SemanticChunker(tokenizer, config).chunk_file("proj", "a.py", PYTHON_SOURCE)

    assert len(chunks) == 2


def test_semantic_splitting_disabled(tokenizer):
    """Test size-only splitting when semantic units are turned off."""
    config = ChunkingConfig(min_chunk_tokens=1, use_semantic_splitting=False)
    chunks = SemanticChunker(tokenizer, config).chunk_file("proj", "a.py", PYTHON_SOURCE)

    assert len(chunks) == 1
    assert chunks[0].semantic_type == "file"


def test_chunk_files_skips_empty(chunker):
    """Test chunking a mapping of files."""
    chunks = chunker.chunk_files("proj", {"a.py": PYTHON_SOURCE, "b.py": "  "})

    assert chunks
    assert {c.file_path for c in chunks} == {"a.py"}
