"""Shared base model and field validators for persisted records.

Every record carries a ``schema_version`` pinned to its class so rows written
by an older layout fail loudly instead of loading with missing fields.
"""

from datetime import datetime
from pathlib import PurePosixPath
from typing import Any, ClassVar, Mapping, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, model_validator

RecordT = TypeVar("RecordT", bound="RecordModel")


class RecordModel(BaseModel):
    """Immutable, schema-versioned record with JSON round-trip helpers."""

    SCHEMA_VERSION: ClassVar[str]
    schema_version: str

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _default_schema_version(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and "schema_version" not in data:
            return {**data, "schema_version": cls.SCHEMA_VERSION}
        return data

    @model_validator(mode="after")
    def _check_schema_version(self) -> "RecordModel":
        if self.schema_version != self.SCHEMA_VERSION:
            raise ValueError(
                f"{type(self).__name__} expects schema_version {self.SCHEMA_VERSION!r}, got {self.schema_version!r}"
            )
        return self

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_record(cls: type[RecordT], data: Mapping[str, Any]) -> RecordT:
        return cls.model_validate(data)


def ensure_uuid_str(value: Any) -> str:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, str):
        return str(UUID(value.strip()))
    raise TypeError("expected UUID or string for identifier field")


def coerce_aware_datetime(value: Any, field_name: str) -> datetime:
    """Accept datetimes or ISO strings; naive values are rejected."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        raise TypeError(f"{field_name} must be a datetime")
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError(f"{field_name} must be timezone-aware")
    return value


def ensure_non_empty_text(value: str, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    if not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value


def ensure_metadata_dict(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    raise TypeError("metadata must be a mapping")


def ensure_relative_posix_path(value: Any) -> str:
    """Normalize a source-relative path; absolute paths and ``..`` are rejected."""
    if not isinstance(value, str):
        raise TypeError("relative_path must be a string")
    path = PurePosixPath(value.strip())
    if not str(path) or str(path) == ".":
        raise ValueError("relative_path cannot be empty")
    if path.is_absolute() or ".." in path.parts:
        raise ValueError("relative_path must stay inside the source root")
    return path.as_posix()
