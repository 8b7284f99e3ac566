"""SQLModel table definitions for database persistence.

These are kept separate from the frozen Pydantic domain models: SQLModel needs
mutable instances for ORM operations, while the domain models stay immutable
and strictly validated. Field names are aligned with the domain models so
conversion goes through ``model_dump()`` / ``model_validate()``. Enum fields are
stored as their string values and datetimes are stored naive (SQLite drops the
offset), so the store restores UTC on the way out.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON
from sqlmodel import Field, SQLModel


class SourceRecord(SQLModel, table=True):
    """Registered source collection."""

    __tablename__ = "sources"

    id: str = Field(primary_key=True)
    schema_version: str
    name: str
    kind: str
    root_path: str = Field(index=True)
    include_patterns: list[str] = Field(default_factory=list, sa_type=JSON)
    exclude_patterns: list[str] = Field(default_factory=list, sa_type=JSON)
    enabled: bool = True
    created_at: datetime


class DocumentStateRecord(SQLModel, table=True):
    """Last indexed state of one file, keyed by (source_id, relative_path)."""

    __tablename__ = "document_states"

    source_id: str = Field(primary_key=True)
    relative_path: str = Field(primary_key=True)
    schema_version: str
    content_signature: str
    size_bytes: int
    chunk_ids: list[str] = Field(default_factory=list, sa_type=JSON)
    last_indexed_at: datetime


class JobRecord(SQLModel, table=True):
    """Job ledger entry."""

    __tablename__ = "jobs"

    id: str = Field(primary_key=True)
    schema_version: str
    source_id: str = Field(index=True)
    source_name: str = ""
    mode: str
    status: str = Field(index=True)
    submitted_at: datetime = Field(index=True)
    started_at: datetime
    finished_at: datetime | None = None
    files_indexed: int = 0
    files_skipped: int = 0
    files_deleted: int = 0
    files_failed: int = 0
    chunks_created: int = 0
    total_files: int | None = None
    total_size_bytes: int | None = None
    error: str | None = None
    file_errors: list[Any] = Field(default_factory=list, sa_type=JSON)
    cancel_requested: bool = False
    owner: str | None = None


class StoreSettingRecord(SQLModel, table=True):
    """Key/value settings describing the index itself (e.g. embedding identity)."""

    __tablename__ = "store_settings"

    key: str = Field(primary_key=True)
    value: str
