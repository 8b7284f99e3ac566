"""Unit tests for the internal namespace indexer."""

from pathlib import Path
from uuid import uuid4

import chromadb
import pytest

from localindex.models.enums import Namespace, SourceKind
from localindex.models.source import Source
from localindex.services.chunker import Chunker
from localindex.services.embedder import BatchEmbedder
from localindex.services.internal_indexer import (
    InternalIndexer,
    discover_internal_files,
    extract_title,
    parse_front_matter,
)
from localindex.services.vector_store import VectorStore


@pytest.fixture
async def vector_store() -> VectorStore:
    store = VectorStore(client=chromadb.EphemeralClient(), dimension=8, collection_prefix=f"test_{uuid4().hex[:8]}_")
    await store.initialize()
    return store


@pytest.fixture
def indexer(vector_store: VectorStore, fake_embedder) -> InternalIndexer:
    return InternalIndexer(
        chunker=Chunker(chunk_size=200, chunk_overlap=20),
        embedder=BatchEmbedder(fake_embedder),
        vector_store=vector_store,
    )


@pytest.fixture
def internal_root(tmp_path: Path) -> Path:
    base = tmp_path / ".localindex"
    (base / "memory").mkdir(parents=True)
    (base / "prompts" / "review").mkdir(parents=True)
    (base / "notes").mkdir()
    (base / "memory" / "deploys.md").write_text("---\ntitle: Deploy facts\n---\nDeploys happen on Tuesday.")
    (base / "prompts" / "review" / "code.md").write_text("# Code review\n\nCheck error handling.")
    (base / "notes" / "todo.md").write_text("ship the release")
    (base / "notes" / "ignored.txt").write_text("not markdown")
    (base / "other").mkdir()
    (base / "other" / "stray.md").write_text("outside known folders")
    return tmp_path


@pytest.fixture
def source(internal_root: Path) -> Source:
    return Source(name="project", kind=SourceKind.LOCAL_FOLDER, root_path=str(internal_root))


class TestFrontMatter:
    """Tests for front matter and title helpers."""

    def test_parses_yaml_mapping(self) -> None:
        content = "---\ntitle: Hello\ntags: [a, b]\n---\nbody"

        assert parse_front_matter(content) == {"title": "Hello", "tags": ["a", "b"]}

    @pytest.mark.parametrize(
        "content",
        ["no front matter", "---\nunterminated", "---\n- a list\n---\nbody", "---\ntitle: [broken\n---\n"],
    )
    def test_returns_empty_dict_when_absent_or_invalid(self, content: str) -> None:
        assert parse_front_matter(content) == {}

    def test_title_prefers_front_matter_then_heading_then_fallback(self) -> None:
        assert extract_title("---\ntitle: From YAML\n---\n# Heading", "stem") == "From YAML"
        assert extract_title("intro\n# Heading\ntext", "stem") == "Heading"
        assert extract_title("## Not a title", "stem") == "stem"


class TestDiscoverInternalFiles:
    """Tests for locating internal documents."""

    def test_finds_markdown_in_known_folders(self, internal_root: Path) -> None:
        files = discover_internal_files(internal_root)

        assert [(item.kind, item.relative_path) for item in files] == [
            ("memory", "deploys.md"),
            ("note", "todo.md"),
            ("prompt", "review/code.md"),
        ]

    def test_missing_internal_folder(self, tmp_path: Path) -> None:
        assert discover_internal_files(tmp_path) == []


class TestInternalIndexerRescan:
    """Tests for syncing the internal namespace."""

    async def test_indexes_each_file_as_a_document(
        self, indexer: InternalIndexer, vector_store: VectorStore, source: Source
    ) -> None:
        result = await indexer.rescan(source)

        assert (result.upserted, result.unchanged, result.removed, result.failed) == (3, 0, 0, 0)
        assert await vector_store.list_document_ids(Namespace.INTERNAL, source.id) == {
            f"{source.id}/memory/deploys.md",
            f"{source.id}/note/todo.md",
            f"{source.id}/prompt/review/code.md",
        }
        assert await vector_store.count(Namespace.PRIMARY) == 0

    async def test_chunks_carry_kind_and_title(
        self, indexer: InternalIndexer, vector_store: VectorStore, source: Source
    ) -> None:
        await indexer.rescan(source)

        chunks = await vector_store.get_document_chunks(
            Namespace.INTERNAL, source.id, f"{source.id}/memory/deploys.md"
        )

        assert chunks[0].metadata["internal_kind"] == "memory"
        assert chunks[0].metadata["title"] == "Deploy facts"
        assert chunks[0].metadata["file_path"] == "deploys.md"
        assert chunks[0].is_embedded

    async def test_unchanged_files_are_not_reembedded(
        self, indexer: InternalIndexer, fake_embedder, source: Source
    ) -> None:
        await indexer.rescan(source)
        fake_embedder.calls.clear()

        result = await indexer.rescan(source)

        assert (result.upserted, result.unchanged) == (0, 3)
        assert fake_embedder.calls == []

    async def test_edited_and_deleted_files(
        self, indexer: InternalIndexer, vector_store: VectorStore, source: Source, internal_root: Path
    ) -> None:
        await indexer.rescan(source)
        (internal_root / ".localindex" / "notes" / "todo.md").write_text("release shipped")
        (internal_root / ".localindex" / "memory" / "deploys.md").unlink()

        result = await indexer.rescan(source)

        assert (result.upserted, result.unchanged, result.removed) == (1, 1, 1)
        chunks = await vector_store.get_document_chunks(Namespace.INTERNAL, source.id, f"{source.id}/note/todo.md")
        assert [chunk.content for chunk in chunks] == ["release shipped"]

    async def test_unreadable_file_is_counted_and_skipped(
        self, indexer: InternalIndexer, source: Source, internal_root: Path
    ) -> None:
        (internal_root / ".localindex" / "notes" / "binary.md").write_bytes(b"\xff\xfe\xfd")

        result = await indexer.rescan(source)

        assert (result.upserted, result.failed) == (3, 1)
