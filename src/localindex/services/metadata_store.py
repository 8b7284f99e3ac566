"""Metadata store service for sources, document states and the job ledger.

Uses SQLAlchemy's native async support with aiosqlite for non-blocking
database operations. This avoids thread pool overhead from asyncio.to_thread().
Every call opens a short-lived session, so reads are snapshots.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from localindex.models.document_state import DocumentState
from localindex.models.enums import JobStatus
from localindex.models.job import JOB_INTERRUPTED_ERROR, Job
from localindex.models.source import Source, SourceStats
from localindex.models.tables import DocumentStateRecord, JobRecord, SourceRecord, StoreSettingRecord

_ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.RUNNING.value)


def _restore_utc(data: dict[str, Any], *fields: str) -> dict[str, Any]:
    """SQLite stores naive datetimes; everything written here was UTC."""
    for field in fields:
        value = data.get(field)
        if isinstance(value, datetime) and value.tzinfo is None:
            data[field] = value.replace(tzinfo=timezone.utc)
    return data


class MetadataStore:
    """Persists sources, document states, jobs and store settings to SQLite via SQLModel.

    Uses native async SQLAlchemy with aiosqlite for true async I/O.
    Accepts an AsyncEngine via dependency injection to support both
    persistent and in-memory databases for testing.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._engine = engine
        self._logger = logger or structlog.get_logger(__name__)

    async def initialize_schema(self) -> None:
        """Create database tables if they don't exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._logger.info("metadata_store_initialized")

    async def close(self) -> None:
        await self._engine.dispose()

    # Sources

    async def save_source(self, source: Source) -> None:
        """Insert or update a source."""
        record = self._source_to_record(source)
        async with AsyncSession(self._engine) as session:
            await session.merge(record)
            await session.commit()
        self._logger.debug("source_saved", source_id=source.id, name=source.name)

    async def get_source(self, source_id: str) -> Source | None:
        async with AsyncSession(self._engine) as session:
            record = await session.get(SourceRecord, source_id)
            if record is None:
                return None
            return self._record_to_source(record)

    async def find_source_by_root(self, root_path: str) -> Source | None:
        async with AsyncSession(self._engine) as session:
            statement = select(SourceRecord).where(SourceRecord.root_path == root_path)
            result = await session.execute(statement)
            record = result.scalars().first()
            if record is None:
                return None
            return self._record_to_source(record)

    async def list_sources(self) -> list[Source]:
        """All sources, oldest first."""
        async with AsyncSession(self._engine) as session:
            statement = select(SourceRecord).order_by(SourceRecord.created_at, SourceRecord.name)
            result = await session.execute(statement)
            return [self._record_to_source(record) for record in result.scalars().all()]

    async def delete_source(self, source_id: str) -> bool:
        """Delete a source and its document states. Jobs are kept as history.

        Returns:
            True if the source existed.
        """
        async with AsyncSession(self._engine) as session:
            record = await session.get(SourceRecord, source_id)
            if record is None:
                return False
            await session.execute(delete(DocumentStateRecord).where(DocumentStateRecord.source_id == source_id))
            await session.delete(record)
            await session.commit()
        self._logger.debug("source_deleted", source_id=source_id)
        return True

    # Document states

    async def get_document_states(self, source_id: str) -> dict[str, DocumentState]:
        """Stored states for a source keyed by relative path."""
        async with AsyncSession(self._engine) as session:
            statement = select(DocumentStateRecord).where(DocumentStateRecord.source_id == source_id)
            result = await session.execute(statement)
            states = [self._record_to_state(record) for record in result.scalars().all()]
        return {state.relative_path: state for state in states}

    async def save_document_state(self, state: DocumentState) -> None:
        record = DocumentStateRecord.model_validate(state.model_dump())
        async with AsyncSession(self._engine) as session:
            await session.merge(record)
            await session.commit()

    async def delete_document_state(self, source_id: str, relative_path: str) -> None:
        async with AsyncSession(self._engine) as session:
            await session.execute(
                delete(DocumentStateRecord).where(
                    DocumentStateRecord.source_id == source_id,
                    DocumentStateRecord.relative_path == relative_path,
                )
            )
            await session.commit()

    async def source_stats(self, source_id: str) -> SourceStats:
        """Aggregate file count and size for a source from its document states.

        Chunk count is the sum of the recorded chunk id lists.
        """
        async with AsyncSession(self._engine) as session:
            statement = select(
                func.count(),
                func.coalesce(func.sum(DocumentStateRecord.size_bytes), 0),
            ).where(DocumentStateRecord.source_id == source_id)
            file_count, total_size = (await session.execute(statement)).one()
            chunk_lists = await session.execute(
                select(DocumentStateRecord.chunk_ids).where(DocumentStateRecord.source_id == source_id)
            )
            chunk_count = sum(len(chunk_ids or []) for chunk_ids in chunk_lists.scalars().all())
        return SourceStats(file_count=file_count, chunk_count=chunk_count, total_size_bytes=total_size)

    # Jobs

    async def create_job(self, job: Job) -> None:
        async with AsyncSession(self._engine) as session:
            session.add(self._job_to_record(job))
            await session.commit()
        self._logger.debug("job_created", job_id=job.id, source_id=job.source_id, mode=job.mode.value)

    async def update_job(self, job: Job) -> bool:
        """Write a job's status and counters.

        Only pending or running rows are written, so a terminal job never
        changes again. ``cancel_requested`` is left as stored: only
        ``set_cancel_requested`` writes it, so a worker update never clears a
        pending cancel request.

        Returns:
            False if the stored job was already terminal or does not exist.
        """
        values = self._job_to_record(job).model_dump(exclude={"id", "cancel_requested"})
        statement = (
            update(JobRecord)
            .where(JobRecord.id == job.id, JobRecord.status.in_(_ACTIVE_STATUSES))
            .values(**values)
        )
        async with AsyncSession(self._engine) as session:
            result = await session.execute(statement)
            await session.commit()
        if result.rowcount == 0:
            self._logger.debug("job_update_skipped", job_id=job.id, status=job.status.value)
            return False
        return True

    async def set_cancel_requested(self, job_id: str) -> bool:
        """Flag an active job for cancellation; terminal jobs are left untouched."""
        statement = (
            update(JobRecord)
            .where(JobRecord.id == job_id, JobRecord.status.in_(_ACTIVE_STATUSES))
            .values(cancel_requested=True)
        )
        async with AsyncSession(self._engine) as session:
            result = await session.execute(statement)
            await session.commit()
        return result.rowcount > 0

    async def get_job(self, job_id: str) -> Job | None:
        async with AsyncSession(self._engine) as session:
            record = await session.get(JobRecord, job_id)
            if record is None:
                return None
            return self._record_to_job(record)

    async def list_jobs(self, limit: int = 200, source_id: str | None = None) -> list[Job]:
        """Jobs newest first."""
        statement = select(JobRecord)
        if source_id is not None:
            statement = statement.where(JobRecord.source_id == source_id)
        statement = statement.order_by(JobRecord.submitted_at.desc()).limit(limit)
        async with AsyncSession(self._engine) as session:
            result = await session.execute(statement)
            return [self._record_to_job(record) for record in result.scalars().all()]

    async def latest_job_for_source(self, source_id: str) -> Job | None:
        jobs = await self.list_jobs(limit=1, source_id=source_id)
        return jobs[0] if jobs else None

    async def active_jobs(self, source_id: str | None = None) -> list[Job]:
        """Pending or running jobs, oldest first."""
        statement = select(JobRecord).where(JobRecord.status.in_(_ACTIVE_STATUSES))
        if source_id is not None:
            statement = statement.where(JobRecord.source_id == source_id)
        statement = statement.order_by(JobRecord.submitted_at)
        async with AsyncSession(self._engine) as session:
            result = await session.execute(statement)
            return [self._record_to_job(record) for record in result.scalars().all()]

    async def fail_interrupted_jobs(
        self,
        owner: str | None = None,
        is_live: Callable[[str], bool] | None = None,
    ) -> list[str]:
        """Mark pending or running jobs whose worker is gone as failed.

        Args:
            owner: Only mark this owner's jobs, as an orchestrator does on shutdown.
            is_live: Called with each job's owner; jobs of live owners are left
                alone. Jobs without an owner are always marked.

        Returns:
            Ids of the jobs that were marked.
        """
        interrupted = []
        for job in await self.active_jobs():
            if owner is not None and job.owner != owner:
                continue
            if owner is None and job.owner and is_live is not None and is_live(job.owner):
                continue
            if await self.update_job(job.mark_failed(JOB_INTERRUPTED_ERROR)):
                interrupted.append(job.id)
        if interrupted:
            self._logger.warning("interrupted_jobs_failed", job_ids=interrupted)
        return interrupted

    # Store settings

    async def get_setting(self, key: str) -> str | None:
        async with AsyncSession(self._engine) as session:
            record = await session.get(StoreSettingRecord, key)
            return None if record is None else record.value

    async def set_setting(self, key: str, value: str) -> None:
        async with AsyncSession(self._engine) as session:
            await session.merge(StoreSettingRecord(key=key, value=value))
            await session.commit()

    def _source_to_record(self, source: Source) -> SourceRecord:
        data = source.model_dump()
        data["kind"] = source.kind.value
        return SourceRecord.model_validate(data)

    def _record_to_source(self, record: SourceRecord) -> Source:
        return Source.model_validate(_restore_utc(record.model_dump(), "created_at"))

    def _record_to_state(self, record: DocumentStateRecord) -> DocumentState:
        return DocumentState.model_validate(_restore_utc(record.model_dump(), "last_indexed_at"))

    def _job_to_record(self, job: Job) -> JobRecord:
        """Convert domain Job to SQLModel record with enums stored as strings."""
        data = job.model_dump()
        data["mode"] = job.mode.value
        data["status"] = job.status.value
        return JobRecord.model_validate(data)

    def _record_to_job(self, record: JobRecord) -> Job:
        data = _restore_utc(record.model_dump(), "submitted_at", "started_at", "finished_at")
        return Job.model_validate(data)


def create_async_engine_from_path(db_path: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine for the given database path.

    Args:
        db_path: Path to SQLite database file, or ":memory:" for in-memory.

    Returns:
        AsyncEngine instance configured for aiosqlite.
    """
    if db_path == ":memory:":
        # All sessions must share one connection or each sees an empty database.
        return create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    return create_async_engine(f"sqlite+aiosqlite:///{db_path}")
