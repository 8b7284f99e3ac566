"""Chunker service for splitting file content into bounded, structure-aware chunks."""

import bisect
import hashlib
import re
from pathlib import PurePosixPath
from typing import Any

import structlog

from localindex.models.chunk import Chunk, make_chunk_id
from localindex.models.enums import Namespace

CODE_EXTENSIONS = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".swift": "swift",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
}
MARKDOWN_EXTENSIONS = {".md", ".markdown", ".mdx"}

# Each pattern marks a split point at the end of its match, so separator text
# stays attached to one of the neighbouring pieces.
_PARAGRAPH = re.compile(r"\n[ \t]*\n")
_LINE = re.compile(r"\n")
_WORD = re.compile(r"[ \t]+")

CODE_SEPARATORS = [
    re.compile(
        r"\n(?=(?:export |pub |public |private |async |static )*"
        r"(?:class|def|function|fn|func|impl|struct|enum|trait|interface|module)\b)"
    ),
    re.compile(r"\n(?=[ \t]+(?:pub |public |private |async |static )*(?:def|fn|func|function)\b)"),
    _PARAGRAPH,
    _LINE,
    _WORD,
]
MARKDOWN_SEPARATORS = [
    re.compile(r"\n(?=# )"),
    re.compile(r"\n(?=## )"),
    re.compile(r"\n(?=#{3,6} )"),
    _PARAGRAPH,
    _LINE,
    _WORD,
]
TEXT_SEPARATORS = [_PARAGRAPH, _LINE, _WORD]


def detect_format(path: str | None) -> tuple[str, str]:
    """Return (kind, language) for a path based on its extension."""
    if not path:
        return "text", "text"
    suffix = PurePosixPath(path).suffix.lower()
    if suffix in CODE_EXTENSIONS:
        return "code", CODE_EXTENSIONS[suffix]
    if suffix in MARKDOWN_EXTENSIONS:
        return "markdown", "markdown"
    return "text", suffix.lstrip(".") or "text"


class Chunker:
    """Splits text content into chunks with position tracking.

    Prefers structural boundaries (declarations for code, headings for
    markdown, then paragraphs, lines and words) and falls back to fixed-size
    sliding windows with overlap when no boundary fits. Pieces are contiguous
    slices of the input, so no trailing content is ever dropped. Output is
    deterministic for a given input, including chunk ids.
    """

    def __init__(
        self,
        chunk_size: int = 1200,
        chunk_overlap: int = 100,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        """Initialize the chunker.

        Args:
            chunk_size: Target size for each chunk in characters.
            chunk_overlap: Characters of overlap between sliding-window chunks.
            logger: Structured logger instance.
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be less than chunk_size")

        self._chunk_size = chunk_size
        self._chunk_overlap = max(0, chunk_overlap)
        self._logger = logger or structlog.get_logger(__name__)

    def chunk(
        self,
        text: str,
        source_id: str,
        document_id: str,
        path: str | None = None,
        namespace: Namespace = Namespace.PRIMARY,
        extra_metadata: dict[str, Any] | None = None,
    ) -> list[Chunk]:
        """Split text into chunks with position metadata.

        Args:
            text: The text content to chunk.
            source_id: The owning source.
            document_id: The document key within the source.
            path: File path used for the format hint; defaults to document_id.
            namespace: Store namespace the chunks belong to.
            extra_metadata: Additional metadata copied onto every chunk.

        Returns:
            Ordered list of Chunk instances with sequential ordinals.
        """
        if not text.strip():
            return []

        kind, language = detect_format(path or document_id)

        self._logger.debug(
            "chunking_started",
            document_id=document_id,
            text_length=len(text),
            kind=kind,
            chunk_size=self._chunk_size,
        )

        spans = self.split_spans(text, self._separators_for(kind))
        chunks = self._create_chunk_models(
            spans, text, source_id, document_id, namespace, kind, language, extra_metadata or {}
        )

        self._logger.debug(
            "chunking_completed",
            document_id=document_id,
            chunk_count=len(chunks),
        )

        return chunks

    def split_spans(self, text: str, separators: list[re.Pattern[str]]) -> list[tuple[int, int]]:
        """Split text into (start, end) spans, dropping whitespace-only spans."""
        spans = self._recursive_split(text, 0, len(text), separators)
        return [(start, end) for start, end in spans if text[start:end].strip()]

    def _separators_for(self, kind: str) -> list[re.Pattern[str]]:
        if kind == "code":
            return CODE_SEPARATORS
        if kind == "markdown":
            return MARKDOWN_SEPARATORS
        return TEXT_SEPARATORS

    def _recursive_split(
        self, text: str, start: int, end: int, separators: list[re.Pattern[str]]
    ) -> list[tuple[int, int]]:
        """Split a span recursively, trying separators in order."""
        if end - start <= self._chunk_size:
            return [(start, end)]

        if not separators:
            return self._window_split(start, end)

        pattern, remaining = separators[0], separators[1:]
        cuts = [m.end() for m in pattern.finditer(text, start, end) if start < m.end() < end]
        if not cuts:
            return self._recursive_split(text, start, end, remaining)

        bounds = [start, *cuts, end]
        spans: list[tuple[int, int]] = []
        current_start = start
        current_end = start

        for piece_start, piece_end in zip(bounds, bounds[1:]):
            if piece_end - current_start <= self._chunk_size:
                current_end = piece_end
                continue
            if current_end > current_start:
                spans.append((current_start, current_end))
            if piece_end - piece_start > self._chunk_size:
                spans.extend(self._recursive_split(text, piece_start, piece_end, remaining))
                current_start = current_end = piece_end
            else:
                current_start, current_end = piece_start, piece_end

        if current_end > current_start:
            spans.append((current_start, current_end))

        return spans

    def _window_split(self, start: int, end: int) -> list[tuple[int, int]]:
        """Split at exact character boundaries when no separator works."""
        spans: list[tuple[int, int]] = []
        step = self._chunk_size - self._chunk_overlap
        position = start

        while position < end:
            window_end = min(position + self._chunk_size, end)
            spans.append((position, window_end))
            if window_end == end:
                break
            position += step

        return spans

    def _create_chunk_models(
        self,
        spans: list[tuple[int, int]],
        text: str,
        source_id: str,
        document_id: str,
        namespace: Namespace,
        kind: str,
        language: str,
        extra_metadata: dict[str, Any],
    ) -> list[Chunk]:
        """Create Chunk models with position metadata."""
        offsets = _OffsetIndex(text, [point for span in spans for point in span])
        chunks: list[Chunk] = []

        for ordinal, (char_start, char_end) in enumerate(spans):
            content = text[char_start:char_end]
            metadata = {
                **extra_metadata,
                "kind": kind,
                "language": language,
                "char_start": char_start,
                "char_end": char_end,
                "byte_start": offsets.byte_offset(char_start),
                "byte_end": offsets.byte_offset(char_end),
                "line_start": offsets.line_number(char_start),
                "line_end": offsets.line_number(max(char_start, char_end - 1)),
                "content_hash": self._compute_hash(content),
                "embedded": False,
            }
            chunks.append(
                Chunk(
                    chunk_id=make_chunk_id(namespace, source_id, document_id, ordinal),
                    namespace=namespace,
                    source_id=source_id,
                    document_id=document_id,
                    ordinal=ordinal,
                    content=content,
                    metadata=metadata,
                )
            )

        return chunks

    def _compute_hash(self, text: str) -> str:
        """Compute SHA-256 hash of text content."""
        return hashlib.sha256(text.encode()).hexdigest()


class _OffsetIndex:
    """Byte offsets and 1-based line numbers for a set of character positions."""

    def __init__(self, text: str, positions: list[int]) -> None:
        self._bytes: dict[int, int] = {}
        self._newlines = [i for i, ch in enumerate(text) if ch == "\n"]
        previous = 0
        byte_total = 0
        for position in sorted(set(positions)):
            byte_total += len(text[previous:position].encode("utf-8"))
            self._bytes[position] = byte_total
            previous = position

    def byte_offset(self, position: int) -> int:
        return self._bytes[position]

    def line_number(self, position: int) -> int:
        return bisect.bisect_left(self._newlines, position) + 1
