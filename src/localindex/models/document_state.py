from datetime import datetime
from typing import Any, ClassVar

from pydantic import Field, field_validator

from localindex.models.base import (
    RecordModel,
    coerce_aware_datetime,
    ensure_non_empty_text,
    ensure_relative_posix_path,
    ensure_uuid_str,
)


class DocumentState(RecordModel):
    """What was last indexed for one file of a source."""

    SCHEMA_VERSION: ClassVar[str] = "document_state.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    source_id: str
    relative_path: str
    content_signature: str
    size_bytes: int = Field(ge=0)
    chunk_ids: list[str] = Field(default_factory=list)
    last_indexed_at: datetime

    @field_validator("source_id", mode="before")
    @classmethod
    def _normalize_source_id(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("relative_path", mode="before")
    @classmethod
    def _normalize_relative_path(cls, value: Any) -> str:
        return ensure_relative_posix_path(value)

    @field_validator("content_signature")
    @classmethod
    def _ensure_signature(cls, value: str) -> str:
        return ensure_non_empty_text(value, "content_signature")

    @field_validator("last_indexed_at", mode="before")
    @classmethod
    def _validate_last_indexed_at(cls, value: Any) -> datetime:
        return coerce_aware_datetime(value, "last_indexed_at")

    @property
    def chunk_count(self) -> int:
        return len(self.chunk_ids)
