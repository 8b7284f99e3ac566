from typing import Any, ClassVar
from uuid import NAMESPACE_URL, uuid5

from pydantic import Field, ValidationInfo, field_validator, model_validator

from localindex.models.base import (
    RecordModel,
    ensure_metadata_dict,
    ensure_non_empty_text,
    ensure_uuid_str,
)
from localindex.models.enums import Namespace


def make_chunk_id(namespace: Namespace, source_id: str, document_id: str, ordinal: int) -> str:
    """Derive the stable identifier for a chunk slot.

    The same (namespace, source, document, ordinal) always maps to the same id,
    so re-chunking unchanged content reproduces identical records.
    """
    key = f"localindex:{namespace.value}:{source_id}:{document_id}:{ordinal}"
    return str(uuid5(NAMESPACE_URL, key))


class Chunk(RecordModel):
    SCHEMA_VERSION: ClassVar[str] = "chunk.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    chunk_id: str
    namespace: Namespace = Namespace.PRIMARY
    source_id: str
    document_id: str
    ordinal: int = Field(ge=0)
    content: str
    embedding: list[float] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("chunk_id", "source_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("document_id", "content")
    @classmethod
    def _ensure_text(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "value")

    @field_validator("metadata", mode="before")
    @classmethod
    def _normalize_metadata(cls, value: Any) -> dict[str, Any]:
        return ensure_metadata_dict(value)

    @model_validator(mode="after")
    def _validate_ranges(self) -> "Chunk":
        for start_key, end_key in (("char_start", "char_end"), ("byte_start", "byte_end"), ("line_start", "line_end")):
            start = self.metadata.get(start_key)
            end = self.metadata.get(end_key)
            if start is not None and end is not None and end < start:
                raise ValueError(f"{end_key} must be greater than or equal to {start_key}")
        return self

    @property
    def is_embedded(self) -> bool:
        return self.embedding is not None

    def with_embedding(self, embedding: list[float] | None) -> "Chunk":
        metadata = {**self.metadata, "embedded": embedding is not None}
        return self.model_copy(update={"embedding": embedding, "metadata": metadata})
