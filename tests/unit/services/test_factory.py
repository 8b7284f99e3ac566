"""Tests for the service factory module."""

from pathlib import Path

import pytest

from localindex.config import IndexSettings
from localindex.errors import UnsupportedEmbeddingModelError
from localindex.models.enums import JobStatus, Namespace
from localindex.models.source import SourceSpec
from localindex.services.chunker import Chunker
from localindex.services.embedder import BUNDLED_MODEL_DIMENSION, BUNDLED_MODEL_NAME, BatchEmbedder, ChromaEmbedder
from localindex.services.factory import create_orchestrator, create_test_orchestrator
from localindex.services.index import IndexingService
from localindex.services.metadata_store import MetadataStore
from localindex.services.orchestrator import JobOrchestrator
from localindex.services.source_registry import SourceRegistry
from localindex.services.vector_store import VectorStore


class TestCreateOrchestrator:
    """Tests for the persistent factory."""

    def test_creates_orchestrator_instance(self, tmp_path: Path, fake_embedder) -> None:
        orchestrator = create_orchestrator(IndexSettings(data_dir=tmp_path / "data"), embedder=fake_embedder)

        assert isinstance(orchestrator, JobOrchestrator)

    def test_creates_data_directory(self, tmp_path: Path, fake_embedder) -> None:
        data_dir = tmp_path / "nested" / "data"
        assert not data_dir.exists()

        create_orchestrator(IndexSettings(data_dir=data_dir), embedder=fake_embedder)

        assert data_dir.exists()
        # ChromaDB creates the directory on client creation
        assert (data_dir / "semantic").exists()

    def test_defaults_to_chroma_embedder_from_settings(self, tmp_path: Path) -> None:
        orchestrator = create_orchestrator(IndexSettings(data_dir=tmp_path))

        embedder = orchestrator._embedder.embedder
        assert isinstance(embedder, ChromaEmbedder)
        assert embedder.model_name == BUNDLED_MODEL_NAME
        assert orchestrator._vector_store._dimension == BUNDLED_MODEL_DIMENSION

    def test_unbundled_model_is_rejected(self, tmp_path: Path) -> None:
        settings = IndexSettings(data_dir=tmp_path, embedding_model="custom-model", embedding_dimension=128)

        with pytest.raises(UnsupportedEmbeddingModelError, match="custom-model"):
            create_orchestrator(settings)

    def test_respects_chunk_settings(self, tmp_path: Path, fake_embedder) -> None:
        settings = IndexSettings(data_dir=tmp_path, chunk_size=1024, chunk_overlap=64, embedding_batch_size=7)

        orchestrator = create_orchestrator(settings, embedder=fake_embedder)

        chunker = orchestrator._indexing_service._chunker
        assert chunker._chunk_size == 1024
        assert chunker._chunk_overlap == 64
        assert orchestrator._embedder._batch_size == 7

    def test_respects_collection_prefix(self, tmp_path: Path, fake_embedder) -> None:
        settings = IndexSettings(data_dir=tmp_path, collection_prefix="work_")

        orchestrator = create_orchestrator(settings, embedder=fake_embedder)

        assert orchestrator._vector_store.collection_name(Namespace.PRIMARY) == "work_primary"
        assert orchestrator._vector_store.collection_name(Namespace.INTERNAL) == "work_internal"


class TestCreateTestOrchestrator:
    """Tests for the in-memory factory."""

    def test_wires_all_dependencies(self, fake_embedder) -> None:
        orchestrator = create_test_orchestrator(fake_embedder)

        assert isinstance(orchestrator.sources, SourceRegistry)
        assert isinstance(orchestrator._indexing_service, IndexingService)
        assert isinstance(orchestrator._metadata_store, MetadataStore)
        assert isinstance(orchestrator._vector_store, VectorStore)
        assert isinstance(orchestrator._embedder, BatchEmbedder)
        assert isinstance(orchestrator._indexing_service._chunker, Chunker)
        assert orchestrator._indexing_service._internal_indexer is not None

    def test_generates_unique_collection_prefix_by_default(self, fake_embedder) -> None:
        first = create_test_orchestrator(fake_embedder)
        second = create_test_orchestrator(fake_embedder)

        assert first._vector_store._collection_prefix != second._vector_store._collection_prefix

    def test_respects_explicit_collection_prefix(self, fake_embedder) -> None:
        orchestrator = create_test_orchestrator(fake_embedder, collection_prefix="mine_")

        assert orchestrator._vector_store._collection_prefix == "mine_"

    async def test_can_index_files(self, tmp_path: Path, fake_embedder) -> None:
        (tmp_path / "test.txt").write_text("Hello, world! This is test content for indexing.")

        async with create_test_orchestrator(fake_embedder) as orchestrator:
            source = await orchestrator.sources.add(SourceSpec(name="test", root_path=str(tmp_path)))
            job_id = await orchestrator.submit_index(source.id)
            job = await orchestrator.wait_for_job(job_id, poll_interval=0.01, timeout=10)

        assert job.status is JobStatus.COMPLETED
        assert job.files_indexed == 1
        assert job.chunks_created >= 1
