"""Source registry: CRUD over user collections with cascade on removal."""

from pathlib import Path

import structlog

from localindex.errors import (
    DuplicatePathError,
    InvalidPatternError,
    SourceBusyError,
    SourceNotFoundError,
)
from localindex.models.enums import JobStatus, SourceKind
from localindex.models.source import Source, SourceOverview, SourceSpec
from localindex.services.metadata_store import MetadataStore
from localindex.services.vector_store import VectorStore

_FILESYSTEM_KINDS = (SourceKind.LOCAL_FOLDER, SourceKind.UPLOADED)
_BRACKETS = {"[": "]", "{": "}"}


def validate_pattern(pattern: str) -> None:
    """Reject glob patterns that cannot match a source-relative path.

    Raises:
        InvalidPatternError: If the pattern is empty, absolute, contains a NUL
            byte or has unbalanced brackets or braces.
    """
    if not pattern or not pattern.strip():
        raise InvalidPatternError(pattern, "pattern is empty")
    if "\x00" in pattern:
        raise InvalidPatternError(pattern, "pattern contains a NUL byte")
    if pattern.startswith("/"):
        raise InvalidPatternError(pattern, "pattern must be relative to the source root")

    stack: list[str] = []
    for ch in pattern:
        if ch in _BRACKETS:
            stack.append(_BRACKETS[ch])
        elif ch in _BRACKETS.values():
            if not stack or stack.pop() != ch:
                raise InvalidPatternError(pattern, f"unbalanced {ch!r}")
    if stack:
        raise InvalidPatternError(pattern, f"missing closing {stack[-1]!r}")


def validate_patterns(*pattern_lists: list[str]) -> None:
    for patterns in pattern_lists:
        for pattern in patterns:
            validate_pattern(pattern)


def normalize_root(kind: SourceKind, root_path: str) -> str:
    """Resolve filesystem roots so the same folder always maps to one string."""
    if kind in _FILESYSTEM_KINDS:
        return str(Path(root_path).expanduser().resolve())
    return root_path


class SourceRegistry:
    """Registers, updates and removes sources.

    Removal cascades to every chunk of the source in both namespaces and to
    its document states. Jobs stay in the ledger as history.
    """

    def __init__(
        self,
        metadata_store: MetadataStore,
        vector_store: VectorStore,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._metadata_store = metadata_store
        self._vector_store = vector_store
        self._logger = logger or structlog.get_logger(__name__)

    async def add(self, spec: SourceSpec) -> Source:
        """Register a new source.

        Raises:
            InvalidPatternError: If an include or exclude pattern is malformed.
            DuplicatePathError: If another source already uses the same root.
        """
        validate_patterns(spec.include_patterns, spec.exclude_patterns)
        root_path = normalize_root(spec.kind, spec.root_path)

        existing = await self._metadata_store.find_source_by_root(root_path)
        if existing is not None:
            raise DuplicatePathError(root_path, existing.id)

        source = Source(
            name=spec.name,
            kind=spec.kind,
            root_path=root_path,
            include_patterns=spec.include_patterns,
            exclude_patterns=spec.exclude_patterns,
            enabled=spec.enabled,
        )
        await self._metadata_store.save_source(source)
        self._logger.info("source_added", source_id=source.id, name=source.name, root_path=root_path)
        return source

    async def get(self, source_id: str) -> Source:
        source = await self._metadata_store.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        return source

    async def rename(self, source_id: str, name: str) -> Source:
        source = await self.get(source_id)
        updated = source.model_copy(update={"name": name.strip()})
        if not updated.name:
            raise ValueError("name cannot be empty")
        await self._metadata_store.save_source(updated)
        self._logger.info("source_renamed", source_id=source_id, name=updated.name)
        return updated

    async def update_patterns(
        self,
        source_id: str,
        include_patterns: list[str] | None = None,
        exclude_patterns: list[str] | None = None,
    ) -> Source:
        """Replace the pattern lists that are given; None keeps the current list.

        New patterns apply from the next indexing run.
        """
        source = await self.get(source_id)
        include = source.include_patterns if include_patterns is None else [p.strip() for p in include_patterns]
        exclude = source.exclude_patterns if exclude_patterns is None else [p.strip() for p in exclude_patterns]
        validate_patterns(include, exclude)

        updated = source.model_copy(update={"include_patterns": include, "exclude_patterns": exclude})
        await self._metadata_store.save_source(updated)
        self._logger.info(
            "source_patterns_updated",
            source_id=source_id,
            include_patterns=include,
            exclude_patterns=exclude,
        )
        return updated

    async def set_enabled(self, source_id: str, enabled: bool) -> Source:
        source = await self.get(source_id)
        updated = source.model_copy(update={"enabled": enabled})
        await self._metadata_store.save_source(updated)
        self._logger.info("source_enabled_changed", source_id=source_id, enabled=enabled)
        return updated

    async def remove(self, source_id: str) -> list[str]:
        """Remove a source with its chunks and document states.

        Pending jobs for the source are failed as cancelled before the
        cascade. A caller that runs a worker must hold its admission lock so
        no job of the source starts in between.

        Returns:
            Ids of the pending jobs that were cancelled.

        Raises:
            SourceNotFoundError: If the source does not exist.
            SourceBusyError: If a job for the source is running.
        """
        await self.get(source_id)
        active = await self._metadata_store.active_jobs(source_id)
        for job in active:
            if job.status is JobStatus.RUNNING:
                raise SourceBusyError(source_id, job.id)

        cancelled = []
        for job in active:
            await self._metadata_store.set_cancel_requested(job.id)
            if await self._metadata_store.update_job(job.mark_cancelled()):
                cancelled.append(job.id)

        await self._vector_store.remove_source(source_id)
        await self._metadata_store.delete_source(source_id)
        self._logger.info("source_removed", source_id=source_id, cancelled_job_ids=cancelled)
        return cancelled

    async def list(self) -> list[SourceOverview]:
        """Sources joined with their latest job and document-state stats."""
        overviews = []
        for source in await self._metadata_store.list_sources():
            overviews.append(
                SourceOverview(
                    source=source,
                    latest_job=await self._metadata_store.latest_job_for_source(source.id),
                    stats=await self._metadata_store.source_stats(source.id),
                )
            )
        return overviews
