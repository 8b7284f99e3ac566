"""Indexing service that runs one job's ingestion pipeline.

Coordinates file discovery, change detection, chunking, embedding and the
per-document replace in the vector store, writing progress back to the job
after every file.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path

import structlog

from localindex.errors import (
    ExtractionError,
    LocalIndexError,
    SourceNotFoundError,
    SourceRootMissingError,
    StoreError,
    UnsupportedSourceKindError,
)
from localindex.models.chunk import Chunk
from localindex.models.document_state import DocumentState
from localindex.models.enums import Namespace, SourceKind
from localindex.models.job import Job
from localindex.models.source import Source
from localindex.services.change_detector import ChangeDetector, PlannedFile
from localindex.services.chunker import Chunker
from localindex.services.embedder import BatchEmbedder
from localindex.services.file_walker import FileWalker
from localindex.services.internal_indexer import InternalIndexer
from localindex.services.metadata_store import MetadataStore
from localindex.services.text_extractor import TextExtractor
from localindex.services.vector_store import VectorStore

INDEXABLE_KINDS = frozenset({SourceKind.LOCAL_FOLDER, SourceKind.UPLOADED})

ProgressCallback = Callable[[Job], Awaitable[None]]


class CancellationToken:
    """Cooperative cancellation flag checked by the pipeline between files."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled


class IndexingService:
    """Runs the indexing pipeline for one job.

    Per-file failures (unreadable file, decode or extraction error, chunker
    error, rejected store write) are recorded on the job and never abort the
    run. Fatal errors such as a missing root, a removed source or a dimension
    mismatch propagate to the caller, which owns the failed transition. All
    dependencies are injected via constructor for testability.
    """

    def __init__(
        self,
        file_walker: FileWalker,
        change_detector: ChangeDetector,
        chunker: Chunker,
        embedder: BatchEmbedder,
        metadata_store: MetadataStore,
        vector_store: VectorStore,
        internal_indexer: InternalIndexer | None = None,
        text_extractor: TextExtractor | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._file_walker = file_walker
        self._change_detector = change_detector
        self._chunker = chunker
        self._embedder = embedder
        self._metadata_store = metadata_store
        self._vector_store = vector_store
        self._internal_indexer = internal_indexer
        self._logger = logger or structlog.get_logger(__name__)
        self._text_extractor = text_extractor or TextExtractor(logger=self._logger)

    async def run_job(
        self,
        job: Job,
        source: Source,
        token: CancellationToken,
        on_progress: ProgressCallback | None = None,
    ) -> Job:
        """Index a source and return the job in a terminal state.

        Returns:
            The job marked completed, or failed with the cancellation marker if
            the token was set at a checkpoint.

        Raises:
            UnsupportedSourceKindError: If the source kind has no filesystem root.
            SourceRootMissingError: If the root is missing or not a directory.
            DimensionMismatchError: If the embedder returns wrongly sized vectors.
            StoreError: If the document state store cannot be read.
            SourceNotFoundError: If the source is removed while the job runs.
        """
        if source.kind not in INDEXABLE_KINDS:
            raise UnsupportedSourceKindError(source.kind.value)

        log = self._logger.bind(job_id=job.id, source_id=source.id)
        progress = on_progress or _ignore_progress
        root = Path(source.root_path)

        log.info("indexing_started", root_path=str(root), mode=job.mode.value)

        try:
            entries = await self._file_walker.list_files(root, source.include_patterns, source.exclude_patterns)
        except FileNotFoundError as e:
            raise SourceRootMissingError(str(root)) from e
        except NotADirectoryError as e:
            raise SourceRootMissingError(str(root), reason="is not a directory") from e

        previous = await self._metadata_store.get_document_states(source.id)
        plan = await self._change_detector.plan(entries, previous, job.mode)

        job = job.model_copy(
            update={
                "total_files": plan.total_files,
                "total_size_bytes": plan.total_size_bytes,
                "files_skipped": len(plan.unchanged),
            }
        )
        await progress(job)

        for relative_path in plan.deleted:
            if token.is_cancelled:
                return self._cancelled(job, log)
            await self._check_source_exists(source)
            job = await self._remove_file(job, source, relative_path, previous[relative_path])
            await progress(job)

        for planned in plan.changed:
            if token.is_cancelled:
                return self._cancelled(job, log)
            await self._check_source_exists(source)
            job = await self._index_file(job, source, planned)
            await progress(job)

        if token.is_cancelled:
            return self._cancelled(job, log)
        await self._check_source_exists(source)

        await self._rescan_internal(source, log)

        log.info(
            "indexing_completed",
            files_indexed=job.files_indexed,
            files_skipped=job.files_skipped,
            files_deleted=job.files_deleted,
            files_failed=job.files_failed,
            chunks_created=job.chunks_created,
        )
        return job.mark_completed()

    async def _index_file(self, job: Job, source: Source, planned: PlannedFile) -> Job:
        relative_path = planned.relative_path
        try:
            chunk_count = await self._process_file(source, planned)
        except (OSError, UnicodeDecodeError, ValueError, ExtractionError, StoreError) as e:
            self._logger.warning(
                "file_index_error",
                job_id=job.id,
                relative_path=relative_path,
                error=str(e),
            )
            return job.model_copy(
                update={
                    "files_failed": job.files_failed + 1,
                    "file_errors": [*job.file_errors, f"{relative_path}: {e}"],
                }
            )

        return job.model_copy(
            update={
                "files_indexed": job.files_indexed + 1,
                "chunks_created": job.chunks_created + chunk_count,
            }
        )

    async def _process_file(self, source: Source, planned: PlannedFile) -> int:
        """Chunk, embed and store one file, then record its new state.

        Returns:
            Number of chunks written.
        """
        relative_path = planned.relative_path
        self._logger.debug("file_processing_started", source_id=source.id, relative_path=relative_path)

        content = await self._read_file(planned.entry.path)
        chunks = self._chunker.chunk(content, source.id, relative_path, path=relative_path)
        chunks = await self._embed(chunks)

        await self._vector_store.upsert_document(Namespace.PRIMARY, source.id, relative_path, chunks)
        await self._metadata_store.save_document_state(
            DocumentState(
                source_id=source.id,
                relative_path=relative_path,
                content_signature=planned.content_signature,
                size_bytes=planned.entry.size_bytes,
                chunk_ids=[chunk.chunk_id for chunk in chunks],
                last_indexed_at=datetime.now(timezone.utc),
            )
        )

        self._logger.debug(
            "file_processing_completed",
            source_id=source.id,
            relative_path=relative_path,
            chunk_count=len(chunks),
            embedded_count=sum(1 for chunk in chunks if chunk.is_embedded),
        )
        return len(chunks)

    async def _embed(self, chunks: list[Chunk]) -> list[Chunk]:
        if not chunks:
            return chunks
        vectors = await self._embedder.embed([chunk.content for chunk in chunks])
        return [chunk if vector is None else chunk.with_embedding(vector) for chunk, vector in zip(chunks, vectors)]

    async def _remove_file(self, job: Job, source: Source, relative_path: str, state: DocumentState) -> Job:
        try:
            await self._vector_store.remove_document(Namespace.PRIMARY, source.id, relative_path)
            await self._metadata_store.delete_document_state(source.id, relative_path)
        except StoreError as e:
            self._logger.warning("file_remove_error", job_id=job.id, relative_path=relative_path, error=str(e))
            return job.model_copy(
                update={
                    "files_failed": job.files_failed + 1,
                    "file_errors": [*job.file_errors, f"{relative_path}: {e}"],
                }
            )

        self._logger.debug(
            "file_removed",
            source_id=source.id,
            relative_path=relative_path,
            chunk_count=state.chunk_count,
        )
        return job.model_copy(update={"files_deleted": job.files_deleted + 1})

    async def _rescan_internal(self, source: Source, log: structlog.stdlib.BoundLogger) -> None:
        if self._internal_indexer is None:
            return
        try:
            await self._internal_indexer.rescan(source)
        except (LocalIndexError, OSError, ValueError) as e:
            log.warning("internal_rescan_failed", error=str(e))

    def _cancelled(self, job: Job, log: structlog.stdlib.BoundLogger) -> Job:
        log.info("indexing_cancelled", files_processed=job.files_processed)
        return job.mark_cancelled()

    async def _read_file(self, file_path: Path) -> str:
        """Extract file text asynchronously."""
        return await asyncio.to_thread(self._text_extractor.extract, file_path)

    async def _check_source_exists(self, source: Source) -> None:
        # Another process may remove the source while this job runs.
        if await self._metadata_store.get_source(source.id) is None:
            raise SourceNotFoundError(source.id)


async def _ignore_progress(job: Job) -> None:
    return None
