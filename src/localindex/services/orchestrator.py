"""Job orchestrator: admission, the single worker slot, cancellation and queries.

Jobs move ``pending -> running -> completed | failed``. One background worker
task runs at most one job at a time across all sources; other jobs wait in a
FIFO queue. Cancellation is cooperative: the pipeline checks a token between
files.

Every job records the orchestrator that owns it as ``"<pid>:<instance>"``. On
start, only jobs whose owning process is gone are marked interrupted, so a
second process sharing the data directory leaves live jobs alone.
"""

import asyncio
import contextlib
import os
from types import TracebackType
from uuid import uuid4

import structlog

from localindex.errors import (
    AlreadyIndexingError,
    DimensionMismatchError,
    JobNotFoundError,
    LocalIndexError,
    SourceDisabledError,
    UnsupportedSourceKindError,
)
from localindex.models.enums import IndexMode, Namespace, NamespaceScope, SearchStrategy
from localindex.models.hit import ScoredChunk
from localindex.models.job import Job
from localindex.services.embedder import BatchEmbedder
from localindex.services.index import INDEXABLE_KINDS, CancellationToken, IndexingService
from localindex.services.metadata_store import MetadataStore
from localindex.services.source_registry import SourceRegistry, validate_patterns
from localindex.services.vector_store import VectorStore

__all__ = ["CancellationToken", "JobOrchestrator", "owner_is_alive"]

EMBEDDING_MODEL_KEY = "embedding_model"
EMBEDDING_DIMENSION_KEY = "embedding_dimension"
KEYWORD_BOOST = 0.1
_WARMUP_TEXT = "localindex warmup"


class JobOrchestrator:
    """Owns the job queue and the worker task; injected into the CLI/API layer.

    Use as an async context manager, or call ``start()`` and ``stop()``.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        indexing_service: IndexingService,
        metadata_store: MetadataStore,
        vector_store: VectorStore,
        embedder: BatchEmbedder,
        poll_interval: float = 0.5,
        warm_embedder: bool = True,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._registry = registry
        self._indexing_service = indexing_service
        self._metadata_store = metadata_store
        self._vector_store = vector_store
        self._embedder = embedder
        self._poll_interval = poll_interval
        self._warm_embedder = warm_embedder
        self._logger = logger or structlog.get_logger(__name__)

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._tokens: dict[str, CancellationToken] = {}
        self._progress: dict[str, Job] = {}
        self._admission_lock = asyncio.Lock()
        self._worker: asyncio.Task[None] | None = None
        self._opened = False
        self._embedding_available = True
        self._owner = f"{os.getpid()}:{uuid4().hex[:8]}"

    @property
    def sources(self) -> SourceRegistry:
        return self._registry

    @property
    def embedding_available(self) -> bool:
        return self._embedding_available

    @property
    def owner(self) -> str:
        return self._owner

    async def __aenter__(self) -> "JobOrchestrator":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def open(self) -> None:
        """Prepare the stores, check the embedding identity and warm the embedder.

        Does not start the worker or touch jobs, so read-only callers can use
        it while another process is indexing.

        Raises:
            DimensionMismatchError: If the index was built with another model or
                dimension, or the model returns vectors of the wrong size.
        """
        if self._opened:
            return
        await self._metadata_store.initialize_schema()
        await self._vector_store.initialize()
        await self._check_embedding_identity()
        if self._warm_embedder:
            await self._warm()
        self._opened = True

    async def start(self) -> None:
        """Open the stores, recover jobs orphaned by dead processes and start the worker.

        Raises:
            DimensionMismatchError: See ``open()``.
        """
        if self._worker is not None:
            return

        await self.open()
        await self._metadata_store.fail_interrupted_jobs(is_live=owner_is_alive)

        self._worker = asyncio.create_task(self._run_worker(), name="localindex-worker")
        self._logger.info("orchestrator_started", owner=self._owner, keyword_only=not self._embedding_available)

    async def stop(self) -> None:
        """Stop the worker. This orchestrator's pending or running jobs are marked interrupted."""
        if self._worker is None:
            return
        worker, self._worker = self._worker, None
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker
        await self._metadata_store.fail_interrupted_jobs(owner=self._owner)
        self._tokens.clear()
        self._progress.clear()
        self._logger.info("orchestrator_stopped", owner=self._owner)

    async def close(self) -> None:
        """Stop the worker and release the metadata database connections."""
        await self.stop()
        await self._metadata_store.close()

    async def submit_index(self, source_id: str, mode: IndexMode = IndexMode.INCREMENTAL) -> str:
        """Admit an indexing job for a source and return its id.

        Raises:
            SourceNotFoundError: If the source does not exist.
            SourceDisabledError: If the source is disabled.
            UnsupportedSourceKindError: If the source kind cannot be indexed.
            InvalidPatternError: If the stored patterns are malformed.
            AlreadyIndexingError: If the source already has a pending or running job.
        """
        if self._worker is None:
            raise RuntimeError("JobOrchestrator not started. Call start() first.")

        source = await self._registry.get(source_id)
        if not source.enabled:
            raise SourceDisabledError(source_id)
        if source.kind not in INDEXABLE_KINDS:
            raise UnsupportedSourceKindError(source.kind.value)
        validate_patterns(source.include_patterns, source.exclude_patterns)

        async with self._admission_lock:
            active = await self._metadata_store.active_jobs(source_id)
            if active:
                raise AlreadyIndexingError(source_id, active[0].id)
            job = Job(source_id=source.id, source_name=source.name, mode=mode, owner=self._owner)
            await self._metadata_store.create_job(job)
            self._tokens[job.id] = CancellationToken()
            self._progress[job.id] = job

        await self._queue.put(job.id)
        self._logger.info("job_submitted", job_id=job.id, source_id=source_id, mode=mode.value)
        return job.id

    async def get_job(self, job_id: str) -> Job:
        job = await self._metadata_store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs(self, limit: int = 200) -> list[Job]:
        return await self._metadata_store.list_jobs(limit=limit)

    async def wait_for_job(
        self,
        job_id: str,
        poll_interval: float | None = None,
        timeout: float | None = None,
    ) -> Job:
        """Poll the ledger until the job is terminal.

        Raises:
            JobNotFoundError: If the job does not exist.
            TimeoutError: If the job is not terminal within ``timeout`` seconds.
        """
        interval = poll_interval or self._poll_interval
        async with asyncio.timeout(timeout):
            while True:
                job = await self.get_job(job_id)
                if job.is_terminal:
                    return job
                await asyncio.sleep(interval)

    async def cancel_job(self, job_id: str) -> None:
        """Request cancellation. A no-op for terminal jobs.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        job = await self.get_job(job_id)
        if job.is_terminal:
            self._logger.debug("job_cancel_ignored", job_id=job_id, status=job.status.value)
            return
        token = self._tokens.get(job_id)
        if token is not None:
            token.cancel()
        await self._metadata_store.set_cancel_requested(job_id)
        self._logger.info("job_cancel_requested", job_id=job_id, status=job.status.value)

    async def remove_source(self, source_id: str) -> None:
        """Remove a source and everything indexed from it.

        The cascade runs under the admission lock, so no job of the source can
        start during it. Pending jobs of the source are failed as cancelled.

        Raises:
            SourceNotFoundError: If the source does not exist.
            SourceBusyError: If a job for the source is running.
        """
        async with self._admission_lock:
            cancelled = await self._registry.remove(source_id)
        for job_id in cancelled:
            token = self._tokens.get(job_id)
            if token is not None:
                token.cancel()

    async def query(
        self,
        text: str,
        limit: int = 10,
        namespace: NamespaceScope = NamespaceScope.PRIMARY,
        strategy: SearchStrategy = SearchStrategy.HYBRID,
    ) -> list[ScoredChunk]:
        """Search indexed chunks.

        Semantic uses vector similarity only and is empty when the query cannot
        be embedded. Lexical uses keyword matching only. Hybrid merges both per
        chunk id, boosting keyword matches, and degrades to lexical without a
        query embedding.
        """
        if limit <= 0 or not text.strip():
            return []

        embedding = None
        if strategy is not SearchStrategy.LEXICAL and self._embedding_available:
            embedding = await self._embedder.embed_query(text)

        hits: list[ScoredChunk] = []
        for target in namespace.namespaces():
            hits.extend(await self._query_namespace(target, text, embedding, limit, strategy))

        hits.sort(key=lambda hit: (-hit.score, hit.document_id, hit.ordinal))
        self._logger.debug(
            "query_completed",
            strategy=strategy.value,
            namespace=namespace.value,
            semantic=embedding is not None,
            hit_count=len(hits[:limit]),
        )
        return hits[:limit]

    async def _query_namespace(
        self,
        namespace: Namespace,
        text: str,
        embedding: list[float] | None,
        limit: int,
        strategy: SearchStrategy,
    ) -> list[ScoredChunk]:
        vector_hits: list[ScoredChunk] = []
        if strategy is not SearchStrategy.LEXICAL and embedding is not None:
            vector_hits = await self._vector_store.vector_query(namespace, embedding, limit)
        if strategy is SearchStrategy.SEMANTIC:
            return vector_hits

        keyword_hits = await self._vector_store.keyword_query(namespace, text, limit)
        if strategy is SearchStrategy.LEXICAL:
            return keyword_hits

        merged = {hit.chunk_id: hit for hit in vector_hits}
        for hit in keyword_hits:
            boosted = min(1.0, hit.score + KEYWORD_BOOST)
            existing = merged.get(hit.chunk_id)
            if existing is None:
                merged[hit.chunk_id] = hit.model_copy(update={"score": boosted})
            else:
                merged[hit.chunk_id] = existing.model_copy(
                    update={"score": max(existing.score, boosted), "strategy": SearchStrategy.HYBRID}
                )
        return list(merged.values())

    async def _check_embedding_identity(self) -> None:
        model_name = self._embedder.embedder.model_name
        dimension = str(self._embedder.dimension)

        stored_model = await self._metadata_store.get_setting(EMBEDDING_MODEL_KEY)
        stored_dimension = await self._metadata_store.get_setting(EMBEDDING_DIMENSION_KEY)

        if stored_dimension is not None and stored_dimension != dimension:
            raise DimensionMismatchError(stored_dimension, dimension)
        if stored_model is not None and stored_model != model_name:
            raise DimensionMismatchError(stored_model, model_name, what="embedding model")

        if stored_model is None:
            await self._metadata_store.set_setting(EMBEDDING_MODEL_KEY, model_name)
        if stored_dimension is None:
            await self._metadata_store.set_setting(EMBEDDING_DIMENSION_KEY, dimension)

    async def _warm(self) -> None:
        vector = await self._embedder.embed_query(_WARMUP_TEXT)
        self._embedding_available = vector is not None
        if not self._embedding_available:
            self._logger.warning("embedder_unavailable_keyword_only", model=self._embedder.embedder.model_name)

    async def _run_worker(self) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self._run_job(job_id)
            finally:
                self._queue.task_done()

    async def _run_job(self, job_id: str) -> None:
        token = self._tokens.get(job_id) or CancellationToken()
        log = self._logger.bind(job_id=job_id)
        try:
            job = await self._claim(job_id, token, log)
            if job is None:
                return
            final = job if job.is_terminal else await self._execute(job, token, log)
        except Exception as e:
            # Ledger read/write failures only; pipeline errors are handled in _execute.
            log.exception("job_ledger_error")
            latest = self._progress.get(job_id)
            if latest is None:
                return
            final = latest.mark_failed(f"Job ledger error: {e}")
        finally:
            self._tokens.pop(job_id, None)
            self._progress.pop(job_id, None)

        await self._write_final(final, log)

    async def _claim(self, job_id: str, token: CancellationToken, log: structlog.stdlib.BoundLogger) -> Job | None:
        """Move a dequeued job to running, or to its terminal state if it cannot run.

        Holds the admission lock, so a source removal never interleaves with
        the pending to running transition.

        Returns:
            The running job, a terminal job still to be written, or None if
            there is nothing left to do.
        """
        async with self._admission_lock:
            job = await self._metadata_store.get_job(job_id)
            if job is None or job.is_terminal:
                return None
            self._progress[job_id] = job
            if token.is_cancelled or job.cancel_requested:
                return job.mark_cancelled()
            if await self._metadata_store.get_source(job.source_id) is None:
                return job.mark_failed(f"Source removed: {job.source_id}")

            job = job.mark_running()
            if not await self._metadata_store.update_job(job):
                return None
            self._progress[job_id] = job

        log.info("job_started", source_id=job.source_id, mode=job.mode.value)
        return job

    async def _execute(self, job: Job, token: CancellationToken, log: structlog.stdlib.BoundLogger) -> Job:
        try:
            source = await self._registry.get(job.source_id)
            return await self._indexing_service.run_job(job, source, token, self._record_progress)
        except LocalIndexError as e:
            log.warning("job_failed", error=str(e), error_type=type(e).__name__)
            return self._progress.get(job.id, job).mark_failed(str(e))
        except Exception as e:
            log.exception("job_crashed")
            return self._progress.get(job.id, job).mark_failed(f"Unexpected error: {e}")

    async def _record_progress(self, job: Job) -> None:
        self._progress[job.id] = job
        if not await self._metadata_store.update_job(job):
            # The ledger row went terminal; stop at the next checkpoint.
            token = self._tokens.get(job.id)
            if token is not None:
                token.cancel()

    async def _write_final(self, job: Job, log: structlog.stdlib.BoundLogger) -> None:
        try:
            written = await self._metadata_store.update_job(job)
        except Exception:
            log.exception("job_finalize_failed")
            return
        if not written:
            log.warning("job_finalize_skipped", status=job.status.value)
            return
        log.info(
            "job_finished",
            status=job.status.value,
            cancelled=job.is_cancelled,
            files_indexed=job.files_indexed,
            files_skipped=job.files_skipped,
            files_deleted=job.files_deleted,
            files_failed=job.files_failed,
            chunks_created=job.chunks_created,
            error=job.error,
        )


def owner_is_alive(owner: str) -> bool:
    """True if the process recorded in a job owner (``"<pid>:<instance>"``) still exists."""
    pid_text, _, _ = owner.partition(":")
    try:
        pid = int(pid_text)
    except ValueError:
        return False
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
