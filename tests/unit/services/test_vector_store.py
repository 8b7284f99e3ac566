"""Unit tests for the VectorStore service."""

from uuid import uuid4

import chromadb
import pytest

from localindex.models.chunk import Chunk, make_chunk_id
from localindex.models.enums import Namespace, SearchStrategy
from localindex.services.vector_store import VectorStore


def _chunks(
    source_id: str,
    document_id: str,
    contents: list[str],
    embedder=None,
    namespace: Namespace = Namespace.PRIMARY,
) -> list[Chunk]:
    """Build a document's chunks, embedded when an embedder is given."""
    return [
        Chunk(
            chunk_id=make_chunk_id(namespace, source_id, document_id, ordinal),
            namespace=namespace,
            source_id=source_id,
            document_id=document_id,
            ordinal=ordinal,
            content=content,
            embedding=embedder.vector(content) if embedder else None,
            metadata={"kind": "text", "line_start": ordinal + 1, "embedded": embedder is not None},
        )
        for ordinal, content in enumerate(contents)
    ]


async def _put(
    store: VectorStore, source_id: str, document_id: str, contents: list[str], embedder=None
) -> list[Chunk]:
    chunks = _chunks(source_id, document_id, contents, embedder)
    await store.upsert_document(Namespace.PRIMARY, source_id, document_id, chunks)
    return chunks


@pytest.fixture
def ephemeral_client() -> chromadb.ClientAPI:
    """Create an ephemeral ChromaDB client for testing."""
    return chromadb.EphemeralClient()


@pytest.fixture
async def store(ephemeral_client: chromadb.ClientAPI) -> VectorStore:
    """Create an initialized VectorStore.

    Uses a unique collection prefix per test to ensure isolation.
    """
    store = VectorStore(client=ephemeral_client, dimension=8, collection_prefix=f"test_{uuid4().hex[:8]}_")
    await store.initialize()
    return store


@pytest.fixture
def source_id() -> str:
    return str(uuid4())


class TestVectorStoreInitialization:
    """Tests for VectorStore initialization."""

    async def test_initialize_creates_one_collection_per_namespace(
        self, ephemeral_client: chromadb.ClientAPI
    ) -> None:
        prefix = f"test_{uuid4().hex[:8]}_"
        store = VectorStore(client=ephemeral_client, dimension=8, collection_prefix=prefix)
        await store.initialize()

        assert ephemeral_client.get_collection(f"{prefix}primary").name == f"{prefix}primary"
        assert ephemeral_client.get_collection(f"{prefix}internal").name == f"{prefix}internal"

    async def test_initialize_idempotent(self, store: VectorStore) -> None:
        await store.initialize()

        assert await store.count(Namespace.PRIMARY) == 0
        assert await store.count(Namespace.INTERNAL) == 0

    async def test_operations_require_initialize(self, ephemeral_client: chromadb.ClientAPI) -> None:
        store = VectorStore(client=ephemeral_client, dimension=8)

        with pytest.raises(RuntimeError, match="not initialized"):
            await store.count()


class TestVectorStoreUpsertDocument:
    """Tests for per-document replace semantics."""

    async def test_upsert_and_get_document_chunks(self, store: VectorStore, source_id: str, fake_embedder) -> None:
        chunks = _chunks(source_id, "a.md", ["alpha one", "alpha two"], fake_embedder)

        await store.upsert_document(Namespace.PRIMARY, source_id, "a.md", chunks)

        stored = await store.get_document_chunks(Namespace.PRIMARY, source_id, "a.md")
        assert [chunk.chunk_id for chunk in stored] == [chunk.chunk_id for chunk in chunks]
        assert [chunk.content for chunk in stored] == ["alpha one", "alpha two"]
        assert stored[0].embedding == pytest.approx(chunks[0].embedding)
        assert stored[0].metadata["embedded"] is True
        assert stored[1].metadata["line_start"] == 2

    async def test_upsert_replaces_whole_chunk_set(self, store: VectorStore, source_id: str, fake_embedder) -> None:
        await store.upsert_document(
            Namespace.PRIMARY, source_id, "a.md", _chunks(source_id, "a.md", ["one", "two", "three"], fake_embedder)
        )
        replacement = _chunks(source_id, "a.md", ["only"], fake_embedder)

        await store.upsert_document(Namespace.PRIMARY, source_id, "a.md", replacement)

        stored = await store.get_document_chunks(Namespace.PRIMARY, source_id, "a.md")
        assert [chunk.content for chunk in stored] == ["only"]
        assert await store.count() == 1

    async def test_upsert_leaves_other_documents_untouched(
        self, store: VectorStore, source_id: str, fake_embedder
    ) -> None:
        await _put(store, source_id, "a.md", ["a"], fake_embedder)
        await _put(store, source_id, "b.md", ["b"], fake_embedder)

        await store.upsert_document(Namespace.PRIMARY, source_id, "a.md", [])

        assert await store.get_document_chunks(Namespace.PRIMARY, source_id, "a.md") == []
        assert len(await store.get_document_chunks(Namespace.PRIMARY, source_id, "b.md")) == 1

    async def test_upsert_rejects_chunks_of_another_document(self, store: VectorStore, source_id: str) -> None:
        with pytest.raises(ValueError, match="does not belong"):
            await store.upsert_document(Namespace.PRIMARY, source_id, "a.md", _chunks(source_id, "b.md", ["b"]))

    async def test_unembedded_chunks_round_trip_without_embedding(self, store: VectorStore, source_id: str) -> None:
        await _put(store, source_id, "a.md", ["plain"])

        stored = await store.get_document_chunks(Namespace.PRIMARY, source_id, "a.md")

        assert stored[0].embedding is None
        assert stored[0].metadata["embedded"] is False


class TestVectorStoreRemoval:
    """Tests for document and source removal."""

    async def test_remove_document(self, store: VectorStore, source_id: str, fake_embedder) -> None:
        await _put(store, source_id, "a.md", ["a"], fake_embedder)
        await _put(store, source_id, "b.md", ["b"], fake_embedder)

        await store.remove_document(Namespace.PRIMARY, source_id, "a.md")

        assert await store.list_document_ids(Namespace.PRIMARY, source_id) == {"b.md"}

    async def test_remove_source_clears_both_namespaces(
        self, store: VectorStore, source_id: str, fake_embedder
    ) -> None:
        other_source = str(uuid4())
        internal_id = f"{source_id}/memory/fact.md"
        await _put(store, source_id, "a.md", ["a"], fake_embedder)
        await store.upsert_document(
            Namespace.INTERNAL,
            source_id,
            internal_id,
            _chunks(source_id, internal_id, ["fact"], fake_embedder, namespace=Namespace.INTERNAL),
        )
        await store.upsert_document(
            Namespace.PRIMARY, other_source, "a.md", _chunks(other_source, "a.md", ["keep"], fake_embedder)
        )

        assert await store.source_stats(source_id) == {Namespace.PRIMARY: 1, Namespace.INTERNAL: 1}

        await store.remove_source(source_id)

        assert await store.source_stats(source_id) == {Namespace.PRIMARY: 0, Namespace.INTERNAL: 0}
        assert await store.list_document_ids(Namespace.PRIMARY, other_source) == {"a.md"}


class TestVectorStoreQueries:
    """Tests for vector and keyword queries."""

    async def test_vector_query_ranks_closest_first(self, store: VectorStore, source_id: str, fake_embedder) -> None:
        await store.upsert_document(
            Namespace.PRIMARY,
            source_id,
            "a.md",
            _chunks(source_id, "a.md", ["apples and pears", "rockets and engines"], fake_embedder),
        )

        hits = await store.vector_query(Namespace.PRIMARY, fake_embedder.vector("apples and pears"), limit=2)

        assert hits[0].content == "apples and pears"
        assert hits[0].score == pytest.approx(1.0, abs=1e-4)
        assert hits[0].strategy is SearchStrategy.SEMANTIC
        assert all(0.0 <= hit.score <= 1.0 for hit in hits)

    async def test_vector_query_skips_unembedded_chunks(
        self, store: VectorStore, source_id: str, fake_embedder
    ) -> None:
        await _put(store, source_id, "a.md", ["embedded text"], fake_embedder)
        await _put(store, source_id, "b.md", ["keyword only text"])

        hits = await store.vector_query(Namespace.PRIMARY, fake_embedder.vector("text"), limit=10)

        assert [hit.document_id for hit in hits] == ["a.md"]

    async def test_vector_query_on_empty_collection(self, store: VectorStore, fake_embedder) -> None:
        assert await store.vector_query(Namespace.PRIMARY, fake_embedder.vector("anything"), limit=5) == []

    async def test_keyword_query_scores_fraction_of_terms(self, store: VectorStore, source_id: str) -> None:
        await store.upsert_document(
            Namespace.PRIMARY,
            source_id,
            "a.md",
            _chunks(source_id, "a.md", ["hello world", "hello there", "unrelated"]),
        )

        hits = await store.keyword_query(Namespace.PRIMARY, "hello world", limit=10)

        assert [(hit.content, hit.score) for hit in hits] == [("hello world", 1.0), ("hello there", 0.5)]
        assert all(hit.strategy is SearchStrategy.LEXICAL for hit in hits)

    async def test_keyword_query_ignores_case(self, store: VectorStore, source_id: str) -> None:
        await store.upsert_document(
            Namespace.PRIMARY,
            source_id,
            "a.md",
            _chunks(source_id, "a.md", ["Hello World", "HELLO again", "goodbye"]),
        )

        hits = await store.keyword_query(Namespace.PRIMARY, "hello WORLD", limit=10)

        assert [(hit.content, hit.score) for hit in hits] == [("Hello World", 1.0), ("HELLO again", 0.5)]

    async def test_keyword_query_respects_namespace_and_limit(
        self, store: VectorStore, source_id: str
    ) -> None:
        internal_id = f"{source_id}/note/todo.md"
        await store.upsert_document(
            Namespace.PRIMARY, source_id, "a.md", _chunks(source_id, "a.md", ["deploy one", "deploy two"])
        )
        await store.upsert_document(
            Namespace.INTERNAL,
            source_id,
            internal_id,
            _chunks(source_id, internal_id, ["deploy notes"], namespace=Namespace.INTERNAL),
        )

        primary_hits = await store.keyword_query(Namespace.PRIMARY, "deploy", limit=1)
        internal_hits = await store.keyword_query(Namespace.INTERNAL, "deploy", limit=10)

        assert len(primary_hits) == 1
        assert primary_hits[0].namespace is Namespace.PRIMARY
        assert [hit.document_id for hit in internal_hits] == [internal_id]

    async def test_keyword_query_with_blank_text(self, store: VectorStore) -> None:
        assert await store.keyword_query(Namespace.PRIMARY, "   ", limit=5) == []
