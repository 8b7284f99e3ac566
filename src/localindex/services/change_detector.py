"""Change detection between a source's files and its last indexed state."""

import asyncio
import hashlib
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from localindex.models.document_state import DocumentState
from localindex.models.enums import IndexMode, SignatureStrategy
from localindex.services.file_walker import FileEntry

_HASH_READ_SIZE = 1024 * 1024


class PlannedFile(BaseModel):
    """A file scheduled for processing with the signature it had when planned."""

    entry: FileEntry
    content_signature: str

    model_config = {"frozen": True}

    @property
    def relative_path(self) -> str:
        return self.entry.relative_path


class ChangePlan(BaseModel):
    """Ordered work for one run: files to (re)index, files to skip, paths to drop."""

    changed: list[PlannedFile] = Field(default_factory=list)
    unchanged: list[PlannedFile] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    total_files: int = Field(default=0, ge=0)
    total_size_bytes: int = Field(default=0, ge=0)

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return not self.changed and not self.deleted


def compute_signature(entry: FileEntry, strategy: SignatureStrategy) -> str:
    """Fingerprint a file for change detection. Not a security property."""
    if strategy is SignatureStrategy.HASH:
        return f"sha256:{_hash_file(entry.path)}"
    return f"stat:{entry.size_bytes}:{entry.mtime_ns}"


def _hash_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        while block := handle.read(_HASH_READ_SIZE):
            digest.update(block)
    return digest.hexdigest()


class ChangeDetector:
    """Diffs enumerated files against stored DocumentStates.

    Incremental mode marks a file changed when its signature differs from the
    stored one or no state exists. Full mode marks every enumerated file
    changed. In both modes, stored paths that are no longer on disk are
    reported as deleted.
    """

    def __init__(
        self,
        signature_strategy: SignatureStrategy = SignatureStrategy.STAT,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._signature_strategy = signature_strategy
        self._logger = logger or structlog.get_logger(__name__)

    async def plan(
        self,
        entries: list[FileEntry],
        previous: dict[str, DocumentState],
        mode: IndexMode,
    ) -> ChangePlan:
        """Build the change plan for one run.

        Args:
            entries: Files currently on disk, in processing order.
            previous: Stored states keyed by relative path.
            mode: Incremental or full.

        Returns:
            ChangePlan with totals covering every enumerated file.
        """
        changed: list[PlannedFile] = []
        unchanged: list[PlannedFile] = []

        for entry in entries:
            try:
                signature = await self._signature(entry)
            except OSError as e:
                # Unreadable files still go through the pipeline so the
                # per-file error is recorded against the job.
                self._logger.warning("signature_error", relative_path=entry.relative_path, error=str(e))
                changed.append(PlannedFile(entry=entry, content_signature="unreadable"))
                continue

            planned = PlannedFile(entry=entry, content_signature=signature)
            prior = previous.get(entry.relative_path)
            if mode is IndexMode.FULL or prior is None or prior.content_signature != signature:
                changed.append(planned)
            else:
                unchanged.append(planned)

        present = {entry.relative_path for entry in entries}
        deleted = sorted(path for path in previous if path not in present)

        plan = ChangePlan(
            changed=changed,
            unchanged=unchanged,
            deleted=deleted,
            total_files=len(entries),
            total_size_bytes=sum(entry.size_bytes for entry in entries),
        )

        self._logger.info(
            "change_plan_built",
            mode=mode.value,
            changed=len(plan.changed),
            unchanged=len(plan.unchanged),
            deleted=len(plan.deleted),
            total_files=plan.total_files,
            total_size_bytes=plan.total_size_bytes,
        )
        return plan

    async def _signature(self, entry: FileEntry) -> str:
        if self._signature_strategy is SignatureStrategy.HASH:
            return await asyncio.to_thread(compute_signature, entry, self._signature_strategy)
        return compute_signature(entry, self._signature_strategy)
