"""Factory functions for creating and wiring the orchestrator and its services.

Provides a production factory that persists to the data directory and a test
factory that uses in-memory stores for fast, isolated testing.
"""

from uuid import uuid4

import chromadb
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from localindex.config import IndexSettings
from localindex.services.change_detector import ChangeDetector
from localindex.services.chunker import Chunker
from localindex.services.embedder import BatchEmbedder, ChromaEmbedder, Embedder
from localindex.services.file_walker import FileWalker
from localindex.services.index import IndexingService
from localindex.services.internal_indexer import InternalIndexer
from localindex.services.metadata_store import MetadataStore, create_async_engine_from_path
from localindex.services.orchestrator import JobOrchestrator
from localindex.services.source_registry import SourceRegistry
from localindex.services.vector_store import VectorStore

_TEST_COLLECTION_ID_LENGTH = 8


def create_orchestrator(
    settings: IndexSettings | None = None,
    embedder: Embedder | None = None,
    warm_embedder: bool = True,
) -> JobOrchestrator:
    """Create a production JobOrchestrator with persistent storage.

    Sets up SQLite for metadata and ChromaDB for vectors, both persisted
    under ``settings.data_dir`` (meta.db, semantic/).

    Args:
        settings: Runtime settings. Defaults to ``IndexSettings.from_env()``.
        embedder: Embedder to use instead of the bundled ONNX model.
        warm_embedder: Load the embedding model during ``start()``.

    Returns:
        Configured JobOrchestrator; call ``start()`` or use it as a context manager.
    """
    settings = settings or IndexSettings.from_env()
    settings.data_dir.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine_from_path(str(settings.metadata_db_path))
    chroma_client = chromadb.PersistentClient(path=str(settings.vector_store_path))
    embedder = embedder or ChromaEmbedder(
        model_name=settings.embedding_model,
        dimension=settings.embedding_dimension,
    )
    return _wire(settings, engine, chroma_client, embedder, warm_embedder)


def create_test_orchestrator(
    embedder: Embedder,
    settings: IndexSettings | None = None,
    collection_prefix: str | None = None,
) -> JobOrchestrator:
    """Create a JobOrchestrator with in-memory storage for testing.

    Uses in-memory SQLite and ephemeral ChromaDB for fast, isolated tests.
    Each call creates independent storage, so tests don't interfere.

    Args:
        embedder: Usually a deterministic fake.
        settings: Chunking and batching settings; data_dir is ignored.
        collection_prefix: ChromaDB collection prefix. If None, generates a unique one.
    """
    settings = settings or IndexSettings()
    prefix = collection_prefix or f"test_{uuid4().hex[:_TEST_COLLECTION_ID_LENGTH]}_"
    settings = settings.model_copy(update={"collection_prefix": prefix})

    engine = create_async_engine_from_path(":memory:")
    chroma_client = chromadb.EphemeralClient()
    return _wire(settings, engine, chroma_client, embedder, warm_embedder=True)


def _wire(
    settings: IndexSettings,
    engine: AsyncEngine,
    chroma_client: chromadb.ClientAPI,
    embedder: Embedder,
    warm_embedder: bool,
) -> JobOrchestrator:
    logger = structlog.get_logger(__name__)

    metadata_store = MetadataStore(engine=engine, logger=logger)
    vector_store = VectorStore(
        client=chroma_client,
        dimension=embedder.dimension,
        collection_prefix=settings.collection_prefix,
        logger=logger,
    )
    batch_embedder = BatchEmbedder(embedder, batch_size=settings.embedding_batch_size, logger=logger)
    chunker = Chunker(
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
        logger=logger,
    )

    indexing_service = IndexingService(
        file_walker=FileWalker(logger=logger),
        change_detector=ChangeDetector(signature_strategy=settings.signature_strategy, logger=logger),
        chunker=chunker,
        embedder=batch_embedder,
        metadata_store=metadata_store,
        vector_store=vector_store,
        internal_indexer=InternalIndexer(
            chunker=chunker,
            embedder=batch_embedder,
            vector_store=vector_store,
            logger=logger,
        ),
        logger=logger,
    )

    return JobOrchestrator(
        registry=SourceRegistry(metadata_store=metadata_store, vector_store=vector_store, logger=logger),
        indexing_service=indexing_service,
        metadata_store=metadata_store,
        vector_store=vector_store,
        embedder=batch_embedder,
        poll_interval=settings.poll_interval,
        warm_embedder=warm_embedder,
        logger=logger,
    )
