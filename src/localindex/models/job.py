from datetime import datetime, timezone
from typing import Any, ClassVar
from uuid import uuid4

from pydantic import Field, field_validator, model_validator

from localindex.models.base import (
    RecordModel,
    coerce_aware_datetime,
    ensure_uuid_str,
)
from localindex.models.enums import IndexMode, JobStatus

JOB_CANCELLED_ERROR = "Job cancelled by user"
JOB_INTERRUPTED_ERROR = "Job interrupted before completion"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Job(RecordModel):
    """One indexing run as recorded in the job ledger."""

    SCHEMA_VERSION: ClassVar[str] = "job.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    id: str = Field(default_factory=lambda: str(uuid4()))
    source_id: str
    source_name: str = ""
    mode: IndexMode = IndexMode.INCREMENTAL
    status: JobStatus = JobStatus.PENDING
    submitted_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None
    files_indexed: int = Field(default=0, ge=0)
    files_skipped: int = Field(default=0, ge=0)
    files_deleted: int = Field(default=0, ge=0)
    files_failed: int = Field(default=0, ge=0)
    chunks_created: int = Field(default=0, ge=0)
    total_files: int | None = Field(default=None, ge=0)
    total_size_bytes: int | None = Field(default=None, ge=0)
    error: str | None = None
    file_errors: list[str] = Field(default_factory=list)
    cancel_requested: bool = False
    # "<pid>:<instance>" of the orchestrator whose worker runs the job.
    owner: str | None = None

    @field_validator("id", "source_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("submitted_at", "started_at", mode="before")
    @classmethod
    def _validate_timestamps(cls, value: Any) -> datetime:
        return coerce_aware_datetime(value, "timestamp")

    @field_validator("finished_at", mode="before")
    @classmethod
    def _validate_finished_at(cls, value: Any) -> datetime | None:
        if value is None:
            return None
        return coerce_aware_datetime(value, "finished_at")

    @model_validator(mode="after")
    def _validate_terminal_fields(self) -> "Job":
        if self.status.is_terminal and self.finished_at is None:
            raise ValueError("terminal jobs must have finished_at")
        if self.status is JobStatus.FAILED and not self.error:
            raise ValueError("failed jobs must carry an error")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_cancelled(self) -> bool:
        return self.status is JobStatus.FAILED and self.error == JOB_CANCELLED_ERROR

    @property
    def files_processed(self) -> int:
        return self.files_indexed + self.files_skipped + self.files_failed

    @property
    def progress(self) -> float | None:
        """Fraction of enumerated files handled so far, once totals are known."""
        if self.total_files is None:
            return None
        if self.total_files == 0:
            return 1.0 if self.is_terminal else 0.0
        return min(1.0, self.files_processed / self.total_files)

    def mark_running(self) -> "Job":
        return self.model_copy(update={"status": JobStatus.RUNNING, "started_at": _utcnow()})

    def mark_completed(self) -> "Job":
        return self.model_copy(update={"status": JobStatus.COMPLETED, "finished_at": _utcnow()})

    def mark_failed(self, error: str) -> "Job":
        return self.model_copy(update={"status": JobStatus.FAILED, "finished_at": _utcnow(), "error": error})

    def mark_cancelled(self) -> "Job":
        return self.model_copy(
            update={
                "status": JobStatus.FAILED,
                "finished_at": _utcnow(),
                "error": JOB_CANCELLED_ERROR,
                "cancel_requested": True,
            }
        )
