"""Semantic chunking of source files."""

import ast
import bisect
import hashlib
import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterator, List, Mapping

from langchain_text_splitters import RecursiveCharacterTextSplitter

from archrag.domain.chunk import Chunk
from archrag.pipeline.config import ChunkingConfig
from archrag.pipeline.files import TEXT_LANGUAGES, detect_language
from archrag.pipeline.tokenizer import Tokenizer

logger = logging.getLogger(__name__)


def compute_hash(text: str) -> str:
    """Full-width SHA-256 hex digest of ``text``."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def compute_chunk_hash(
    project_id: str, file_path: str, start_line: int, end_line: int, text_hash: str
) -> str:
    """Chunk identity: stable for unchanged content, distinct across projects and paths."""
    return compute_hash(f"{project_id}:{file_path}:{start_line}:{end_line}:{text_hash}")


@dataclass(frozen=True)
class SemanticUnit:
    """A labelled span of a file (1-based, inclusive lines)."""

    start_line: int
    end_line: int
    semantic_type: str
    semantic_name: str


# Identifiers that the function-head patterns pick up from control flow
_NOT_FUNCTIONS = frozenset({
    "if", "else", "for", "foreach", "while", "do", "switch", "case", "catch",
    "try", "finally", "using", "lock", "fixed", "return", "new", "throw",
    "synchronized", "sizeof", "typeof", "function", "when", "match", "unsafe",
    "checked", "unchecked", "defer", "go", "select", "loop",
})

_TYPE, _FUNCTION = "class", "function"

_C_FAMILY_FUNCTION = re.compile(
    r"\b([A-Za-z_]\w*)\s*(?:<[^<>(){};]*>)?\s*\([^;{}()]*\)\s*"
    r"(?:const\s*|noexcept\s*|override\s*|throws\s+[\w.,\s]+)*"
    r"(?::\s*(?:base|this)\s*\([^;{}()]*\)\s*)?\{"
)
_JS_TYPE = re.compile(r"\b(?:class|interface)\s+([A-Za-z_$][\w$]*)[^{;]*\{")
_JS_FUNCTIONS = [
    re.compile(r"\bfunction\s*\*?\s*([A-Za-z_$][\w$]*)\s*(?:<[^>]*>)?\s*\([^)]*\)\s*(?::\s*[^{};=]+)?\{"),
    re.compile(
        r"\b(?:const|let|var)\s+([A-Za-z_$][\w$]*)\s*(?::\s*[^=;]+)?=\s*(?:async\s*)?"
        r"\([^)]*\)\s*(?::\s*[^{};=]+)?=>\s*\{"
    ),
    re.compile(
        r"^[ \t]*(?:(?:public|private|protected|static|async|readonly|get|set)\s+)*"
        r"([A-Za-z_$][\w$]*)\s*\([^)]*\)\s*(?::\s*[^{};=]+)?\{",
        re.MULTILINE,
    ),
]

_BRACE_PATTERNS: dict[str, list[tuple[re.Pattern, str]]] = {
    "java": [
        (re.compile(r"\b(?:class|interface|enum|record)\s+([A-Za-z_]\w*)[^{;]*\{"), _TYPE),
        (_C_FAMILY_FUNCTION, _FUNCTION),
    ],
    "csharp": [
        (re.compile(r"\b(?:class|interface|enum|record|struct)\s+([A-Za-z_]\w*)[^{;]*\{"), _TYPE),
        (_C_FAMILY_FUNCTION, _FUNCTION),
    ],
    "javascript": [(_JS_TYPE, _TYPE)] + [(p, _FUNCTION) for p in _JS_FUNCTIONS],
    "typescript": [(_JS_TYPE, _TYPE)] + [(p, _FUNCTION) for p in _JS_FUNCTIONS],
    "go": [
        (re.compile(r"\btype\s+([A-Za-z_]\w*)\s+(?:struct|interface)\s*\{"), _TYPE),
        (re.compile(r"\bfunc\s+(?:\([^)]*\)\s*)?([A-Za-z_]\w*)\s*(?:\[[^\]]*\])?\s*\([^)]*\)[^{\n]*\{"), _FUNCTION),
    ],
    "rust": [
        (re.compile(r"\b(?:struct|enum|trait|impl(?:<[^>]*>)?)\s+([A-Za-z_]\w*)[^{;]*\{"), _TYPE),
        (re.compile(r"\bfn\s+([A-Za-z_]\w*)[^{;]*\{"), _FUNCTION),
    ],
    "cpp": [
        (re.compile(r"\b(?:class|struct)\s+([A-Za-z_]\w*)[^{;()]*\{"), _TYPE),
        (_C_FAMILY_FUNCTION, _FUNCTION),
    ],
    "c": [
        (re.compile(r"\bstruct\s+([A-Za-z_]\w*)\s*\{"), _TYPE),
        (_C_FAMILY_FUNCTION, _FUNCTION),
    ],
    "c-header": [
        (re.compile(r"\b(?:class|struct)\s+([A-Za-z_]\w*)[^{;()]*\{"), _TYPE),
        (_C_FAMILY_FUNCTION, _FUNCTION),
    ],
}

_PY_DEF_RE = re.compile(r"^(async\s+def|def|class)\s+([A-Za-z_]\w*)")
_MD_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_MD_FENCE_RE = re.compile(r"^\s*(```|~~~)")


def _find_matching_brace(content: str, open_index: int) -> int:
    """Index of the brace closing the one at ``open_index`` (end of text if unbalanced)."""
    depth = 0
    for i in range(open_index, len(content)):
        ch = content[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return len(content) - 1


class SemanticChunker:
    """Splits files into semantically bounded, content-addressed chunks.

    Files are first cut into semantic units (functions, classes, markdown
    sections). Units that fit the token budget become one chunk; larger units
    are split with an overlapping window. Files where no unit can be found
    fall back to size-based splitting, so chunking never fails on unfamiliar
    content.
    """

    def __init__(self, tokenizer: Tokenizer, config: ChunkingConfig | None = None):
        """Initialize chunker.

        Args:
            tokenizer: Token counter used for sizing
            config: Chunk size settings
        """
        self._tokenizer = tokenizer
        self._config = config or ChunkingConfig()

        self._text_splitter = RecursiveCharacterTextSplitter(
            chunk_size=self._config.max_chunk_tokens,
            chunk_overlap=self._config.overlap_tokens,
            length_function=self._tokenizer.count_tokens,
            separators=["\n\n", "\n", " ", ""],
            add_start_index=True,
        )

    @property
    def config(self) -> ChunkingConfig:
        return self._config

    def chunk_files(self, project_id: str, files: Mapping[str, str]) -> List[Chunk]:
        """Chunk every (path -> content) entry."""
        chunks = list(self.iter_chunks(project_id, files))
        logger.info("Created %d chunks from %d files", len(chunks), len(files))
        return chunks

    def iter_chunks(self, project_id: str, files: Mapping[str, str]) -> Iterator[Chunk]:
        for file_path, content in files.items():
            if not content or not content.strip():
                logger.debug("Skipping empty file %s", file_path)
                continue
            yield from self.chunk_file(project_id, file_path, content)

    def chunk_file(self, project_id: str, file_path: str, content: str) -> List[Chunk]:
        """Chunk a single file.

        Args:
            project_id: Owning project (part of the chunk identity)
            file_path: Path relative to the project root
            content: File text

        Returns:
            Chunks in file order
        """
        if not content or not content.strip():
            return []

        language = detect_language(file_path)
        lines = content.split("\n")
        file_name = PurePosixPath(file_path).name

        units: list[SemanticUnit] = []
        if self._config.use_semantic_splitting:
            units = self._extract_units(language, content, lines, file_name)

        chunks: list[Chunk] = []
        for unit in units:
            unit_text = "\n".join(lines[unit.start_line - 1 : unit.end_line])
            token_count = self._tokenizer.count_tokens(unit_text)

            if token_count > self._config.max_chunk_tokens:
                chunks.extend(self._split_unit(project_id, file_path, language, lines, unit))
            elif token_count >= self._config.min_chunk_tokens:
                chunks.append(self._create_chunk(
                    project_id, file_path, language, unit_text,
                    unit.start_line, unit.end_line, token_count, unit,
                ))

        if not chunks:
            whole_file = SemanticUnit(1, len(lines), "file", file_name)
            chunks = self._split_unit(project_id, file_path, language, lines, whole_file)

        limit = self._config.max_chunks_per_file
        if limit and len(chunks) > limit:
            logger.warning(
                "File %s produced %d chunks; keeping the first %d", file_path, len(chunks), limit
            )
            chunks = chunks[:limit]

        logger.debug("Created %d chunks for %s (%s)", len(chunks), file_path, language)
        return chunks

    # ----- semantic units -------------------------------------------------

    def _extract_units(
        self, language: str, content: str, lines: list[str], file_name: str
    ) -> list[SemanticUnit]:
        if language == "python":
            units = self._python_units(content, lines)
        elif language == "markdown":
            units = self._markdown_units(lines)
        elif language in _BRACE_PATTERNS:
            units = self._brace_units(language, content)
        else:
            return []

        if not units:
            return []
        return self._fill_gaps(units, lines, file_name)

    def _python_units(self, content: str, lines: list[str]) -> list[SemanticUnit]:
        try:
            tree = ast.parse(content)
        except (SyntaxError, ValueError):
            return self._python_regex_units(lines)

        units = []
        for node in tree.body:
            if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                continue
            start = min([node.lineno] + [d.lineno for d in node.decorator_list])
            end = node.end_lineno or node.lineno

            if isinstance(node, ast.ClassDef) and self._span_tokens(lines, start, end) > self._config.max_chunk_tokens:
                # Oversized class: methods become the units, the rest is filled in as gaps
                methods = [
                    SemanticUnit(
                        min([child.lineno] + [d.lineno for d in child.decorator_list]),
                        child.end_lineno or child.lineno,
                        "method",
                        f"{node.name}.{child.name}",
                    )
                    for child in node.body
                    if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef))
                ]
                if methods:
                    units.extend(methods)
                    continue

            kind = "class" if isinstance(node, ast.ClassDef) else "function"
            units.append(SemanticUnit(start, end, kind, node.name))
        return units

    def _python_regex_units(self, lines: list[str]) -> list[SemanticUnit]:
        """Top-level def/class blocks for files that do not parse."""
        heads = []
        for index, line in enumerate(lines, start=1):
            match = _PY_DEF_RE.match(line)
            if match:
                kind = "class" if match.group(1) == "class" else "function"
                heads.append((index, kind, match.group(2)))

        units = []
        for position, (start, kind, name) in enumerate(heads):
            end = heads[position + 1][0] - 1 if position + 1 < len(heads) else len(lines)
            while end > start and not lines[end - 1].strip():
                end -= 1
            units.append(SemanticUnit(start, end, kind, name))
        return units

    def _markdown_units(self, lines: list[str]) -> list[SemanticUnit]:
        heads = []
        in_fence = False
        for index, line in enumerate(lines, start=1):
            if _MD_FENCE_RE.match(line):
                in_fence = not in_fence
                continue
            if in_fence:
                continue
            match = _MD_HEADING_RE.match(line)
            if match:
                heads.append((index, match.group(2).strip()))

        units = []
        for position, (start, title) in enumerate(heads):
            end = heads[position + 1][0] - 1 if position + 1 < len(heads) else len(lines)
            units.append(SemanticUnit(start, end, "section", title))
        return units

    def _brace_units(self, language: str, content: str) -> list[SemanticUnit]:
        line_starts = [0]
        for match in re.finditer("\n", content):
            line_starts.append(match.end())

        def line_of(offset: int) -> int:
            return bisect.bisect_right(line_starts, offset)

        candidates: list[tuple[int, int, str, str]] = []
        seen_starts = set()
        for pattern, kind in _BRACE_PATTERNS[language]:
            for match in pattern.finditer(content):
                name = match.group(1)
                if kind == _FUNCTION and name in _NOT_FUNCTIONS:
                    continue
                open_index = match.end() - 1
                if (match.start(1), kind) in seen_starts:
                    continue
                seen_starts.add((match.start(1), kind))
                close_index = _find_matching_brace(content, open_index)
                candidates.append((match.start(1), close_index, kind, name))

        functions: list[tuple[int, int, str, str]] = []
        for candidate in sorted(c for c in candidates if c[2] == _FUNCTION):
            if functions and candidate[0] <= functions[-1][1]:
                continue
            functions.append(candidate)

        types: list[tuple[int, int, str, str]] = []
        containers: list[tuple[int, int, str, str]] = []
        for candidate in sorted(c for c in candidates if c[2] == _TYPE):
            start, end = candidate[0], candidate[1]
            if any(start <= f[0] <= end for f in functions):
                containers.append(candidate)
                continue
            if any(t[0] <= start <= t[1] for t in types):
                continue
            types.append(candidate)

        units = []
        for start, end, kind, name in functions:
            inside_type = any(c[0] <= start <= c[1] for c in containers)
            units.append(SemanticUnit(
                line_of(start), line_of(end), "method" if inside_type else "function", name
            ))
        for start, end, kind, name in types:
            units.append(SemanticUnit(line_of(start), line_of(end), "class", name))

        # Units are whole lines, so drop any that overlap an earlier one
        result: list[SemanticUnit] = []
        for unit in sorted(units, key=lambda u: (u.start_line, -u.end_line)):
            if result and unit.start_line <= result[-1].end_line:
                continue
            result.append(unit)
        return result

    def _fill_gaps(
        self, units: list[SemanticUnit], lines: list[str], file_name: str
    ) -> list[SemanticUnit]:
        """Cover non-blank lines between units with file-level units."""
        result = []
        cursor = 1
        for unit in sorted(units, key=lambda u: u.start_line):
            if unit.start_line < cursor:
                continue
            if unit.start_line > cursor and self._has_text(lines, cursor, unit.start_line - 1):
                result.append(SemanticUnit(cursor, unit.start_line - 1, "file", file_name))
            result.append(unit)
            cursor = unit.end_line + 1
        if cursor <= len(lines) and self._has_text(lines, cursor, len(lines)):
            result.append(SemanticUnit(cursor, len(lines), "file", file_name))
        return result

    @staticmethod
    def _has_text(lines: list[str], start: int, end: int) -> bool:
        return any(line.strip() for line in lines[start - 1 : end])

    def _span_tokens(self, lines: list[str], start: int, end: int) -> int:
        return self._tokenizer.count_tokens("\n".join(lines[start - 1 : end]))

    # ----- size-based splitting -------------------------------------------

    def _split_unit(
        self,
        project_id: str,
        file_path: str,
        language: str,
        lines: list[str],
        unit: SemanticUnit,
    ) -> List[Chunk]:
        """Split one unit into windows; always yields at least one chunk."""
        unit_lines = lines[unit.start_line - 1 : unit.end_line]

        if language in TEXT_LANGUAGES:
            spans = self._text_spans(unit_lines, unit.start_line)
        else:
            spans = self._window_spans(unit_lines, unit.start_line)

        pieces = []
        for start, end, text in spans:
            token_count = self._tokenizer.count_tokens(text)
            if token_count >= self._config.min_chunk_tokens:
                pieces.append((start, end, text, token_count))

        if not pieces:
            # Keep undersized units rather than lose them
            text = "\n".join(unit_lines)
            pieces = [(unit.start_line, unit.end_line, text, self._tokenizer.count_tokens(text))]

        total = len(pieces)
        return [
            self._create_chunk(
                project_id, file_path, language, text, start, end, token_count, unit,
                chunk_index=index, total_chunks=total,
            )
            for index, (start, end, text, token_count) in enumerate(pieces)
        ]

    def _window_spans(self, unit_lines: list[str], base_line: int) -> list[tuple[int, int, str]]:
        """Line-based windows of at most max_chunk_tokens, stepping back by overlap_tokens."""
        line_tokens = [self._tokenizer.count_tokens(line) for line in unit_lines]
        max_tokens = self._config.max_chunk_tokens
        spans = []
        count = len(unit_lines)
        index = 0

        while index < count:
            start = index
            total = 0
            while index < count:
                if index > start and total + line_tokens[index] > max_tokens:
                    break
                total += line_tokens[index]
                index += 1

            spans.append((base_line + start, base_line + index - 1, "\n".join(unit_lines[start:index])))
            if index >= count:
                break

            # Step back for overlap, always leaving forward progress
            back = 0
            overlap = 0
            while back < index - start - 1 and overlap < self._config.overlap_tokens:
                back += 1
                overlap += line_tokens[index - back]
            index -= back

        return spans

    def _text_spans(self, unit_lines: list[str], base_line: int) -> list[tuple[int, int, str]]:
        """Prose splitting with the recursive character splitter, mapped back to lines."""
        text = "\n".join(unit_lines)
        spans = []
        for document in self._text_splitter.create_documents([text]):
            offset = max(0, document.metadata.get("start_index", 0))
            start = base_line + text.count("\n", 0, offset)
            end = start + document.page_content.count("\n")
            spans.append((start, end, document.page_content))
        return spans

    def _create_chunk(
        self,
        project_id: str,
        file_path: str,
        language: str,
        content: str,
        start_line: int,
        end_line: int,
        token_count: int,
        unit: SemanticUnit,
        chunk_index: int = 0,
        total_chunks: int = 1,
    ) -> Chunk:
        """Create a chunk with a stable hash."""
        text_hash = compute_hash(content)
        return Chunk(
            chunk_hash=compute_chunk_hash(project_id, file_path, start_line, end_line, text_hash),
            project_id=project_id,
            file_path=file_path,
            start_line=start_line,
            end_line=end_line,
            token_count=token_count,
            language=language,
            text_hash=text_hash,
            semantic_type=unit.semantic_type or "file",
            semantic_name=unit.semantic_name or PurePosixPath(file_path).name,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
            content=content,
        )
