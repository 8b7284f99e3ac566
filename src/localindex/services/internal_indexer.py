"""Indexes a source's own notes, memories and prompts into the internal namespace.

Files live under ``<root>/.localindex/{memory,prompts,notes}/**/*.md``. Each
file becomes one internal document with id ``{source_id}/{kind}/{path}``,
where ``path`` is relative to its kind folder.
"""

import asyncio
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel

from localindex.models.chunk import Chunk
from localindex.models.enums import Namespace
from localindex.models.source import Source
from localindex.services.chunker import Chunker
from localindex.services.embedder import BatchEmbedder
from localindex.services.vector_store import VectorStore

INTERNAL_DIR_NAME = ".localindex"
INTERNAL_FOLDERS = {
    "memory": "memory",
    "prompts": "prompt",
    "notes": "note",
}


class InternalFile(BaseModel):
    path: Path
    kind: str
    relative_path: str

    model_config = {"frozen": True}

    def document_id(self, source_id: str) -> str:
        return f"{source_id}/{self.kind}/{self.relative_path}"


class InternalRescanResult(BaseModel):
    upserted: int = 0
    unchanged: int = 0
    removed: int = 0
    failed: int = 0

    model_config = {"frozen": True}


def parse_front_matter(content: str) -> dict[str, Any]:
    """Return the YAML mapping between leading ``---`` fences, or an empty dict."""
    if not content.startswith("---"):
        return {}
    parts = content.split("---", 2)
    if len(parts) < 3:
        return {}
    try:
        data = yaml.safe_load(parts[1])
    except yaml.YAMLError:
        return {}
    return data if isinstance(data, dict) else {}


def extract_title(content: str, fallback: str) -> str:
    title = parse_front_matter(content).get("title")
    if title:
        return str(title).strip()
    for line in content.splitlines():
        if line.startswith("# "):
            return line[2:].strip()
    return fallback


def discover_internal_files(root: Path) -> list[InternalFile]:
    """Markdown files under the internal folders of a source root, sorted."""
    base = root / INTERNAL_DIR_NAME
    files: list[InternalFile] = []
    for folder, kind in INTERNAL_FOLDERS.items():
        directory = base / folder
        if not directory.is_dir():
            continue
        for path in directory.rglob("*.md"):
            if path.is_file():
                files.append(
                    InternalFile(path=path, kind=kind, relative_path=path.relative_to(directory).as_posix())
                )
    files.sort(key=lambda item: (item.kind, item.relative_path))
    return files


class InternalIndexer:
    """Keeps the internal namespace in sync with a source's ``.localindex`` folder.

    Documents whose content is unchanged keep their stored chunks. Documents
    that no longer exist on disk are removed. A file that fails to read is
    logged and skipped.
    """

    def __init__(
        self,
        chunker: Chunker,
        embedder: BatchEmbedder,
        vector_store: VectorStore,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._chunker = chunker
        self._embedder = embedder
        self._vector_store = vector_store
        self._logger = logger or structlog.get_logger(__name__)

    async def rescan(self, source: Source) -> InternalRescanResult:
        root = Path(source.root_path)
        files = await asyncio.to_thread(discover_internal_files, root)
        existing = await self._vector_store.list_document_ids(Namespace.INTERNAL, source.id)

        upserted = unchanged = failed = 0
        seen: set[str] = set()
        for internal_file in files:
            document_id = internal_file.document_id(source.id)
            seen.add(document_id)
            try:
                content = await asyncio.to_thread(internal_file.path.read_text, encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                self._logger.warning("internal_file_read_error", document_id=document_id, error=str(e))
                failed += 1
                continue

            if await self._index_document(source, internal_file, document_id, content):
                upserted += 1
            else:
                unchanged += 1

        removed = 0
        for document_id in sorted(existing - seen):
            await self._vector_store.remove_document(Namespace.INTERNAL, source.id, document_id)
            removed += 1

        result = InternalRescanResult(upserted=upserted, unchanged=unchanged, removed=removed, failed=failed)
        self._logger.info("internal_rescan_completed", source_id=source.id, **result.model_dump())
        return result

    async def _index_document(
        self, source: Source, internal_file: InternalFile, document_id: str, content: str
    ) -> bool:
        """Replace a document's chunks unless the stored ones already match.

        Returns:
            True if chunks were written.
        """
        title = extract_title(content, fallback=Path(internal_file.relative_path).stem)
        chunks = self._chunker.chunk(
            content,
            source.id,
            document_id,
            path=internal_file.relative_path,
            namespace=Namespace.INTERNAL,
            extra_metadata={
                "internal_kind": internal_file.kind,
                "title": title,
                "file_path": internal_file.relative_path,
            },
        )

        stored = await self._vector_store.get_document_chunks(Namespace.INTERNAL, source.id, document_id)
        if self._matches(stored, chunks):
            return False

        if chunks:
            vectors = await self._embedder.embed([chunk.content for chunk in chunks])
            chunks = [
                chunk if vector is None else chunk.with_embedding(vector) for chunk, vector in zip(chunks, vectors)
            ]
        await self._vector_store.upsert_document(Namespace.INTERNAL, source.id, document_id, chunks)
        self._logger.debug("internal_document_indexed", document_id=document_id, chunk_count=len(chunks))
        return True

    @staticmethod
    def _matches(stored: list[Chunk], chunks: list[Chunk]) -> bool:
        """Stored chunks are current when contents line up and all carry embeddings."""
        if not stored or len(stored) != len(chunks):
            return False
        return all(
            old.is_embedded and old.metadata.get("content_hash") == new.metadata.get("content_hash")
            for old, new in zip(stored, chunks)
        )
