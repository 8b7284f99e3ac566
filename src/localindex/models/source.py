from datetime import datetime, timezone
from typing import Any, ClassVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from localindex.models.base import (
    RecordModel,
    coerce_aware_datetime,
    ensure_non_empty_text,
    ensure_uuid_str,
)
from localindex.models.enums import SourceKind
from localindex.models.job import Job


def _normalize_patterns(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    return [str(pattern).strip() for pattern in value]


class SourceSpec(BaseModel):
    """User request describing a collection to register."""

    name: str
    kind: SourceKind = SourceKind.LOCAL_FOLDER
    root_path: str
    include_patterns: list[str] = Field(default_factory=list)
    exclude_patterns: list[str] = Field(default_factory=list)
    enabled: bool = True

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    @field_validator("name", "root_path")
    @classmethod
    def _ensure_non_empty(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "value").strip()

    @field_validator("include_patterns", "exclude_patterns", mode="before")
    @classmethod
    def _normalize_patterns(cls, value: Any) -> list[str]:
        return _normalize_patterns(value)


class Source(RecordModel):
    SCHEMA_VERSION: ClassVar[str] = "source.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    kind: SourceKind
    root_path: str
    include_patterns: list[str] = Field(default_factory=list)
    exclude_patterns: list[str] = Field(default_factory=list)
    enabled: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("name", "root_path")
    @classmethod
    def _ensure_non_empty(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "value")

    @field_validator("include_patterns", "exclude_patterns", mode="before")
    @classmethod
    def _normalize_patterns(cls, value: Any) -> list[str]:
        return _normalize_patterns(value)

    @field_validator("created_at", mode="before")
    @classmethod
    def _validate_created_at(cls, value: Any) -> datetime:
        return coerce_aware_datetime(value, "created_at")


class SourceStats(BaseModel):
    file_count: int = Field(default=0, ge=0)
    chunk_count: int = Field(default=0, ge=0)
    total_size_bytes: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)


class SourceOverview(BaseModel):
    """Display-only join of a source with its latest job and index stats."""

    source: Source
    latest_job: Job | None = None
    stats: SourceStats = Field(default_factory=SourceStats)

    model_config = ConfigDict(frozen=True)
