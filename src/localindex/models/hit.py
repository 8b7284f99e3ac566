from typing import Any, ClassVar

from pydantic import Field, field_validator, model_validator

from localindex.models.base import (
    RecordModel,
    ensure_metadata_dict,
    ensure_uuid_str,
)
from localindex.models.enums import Namespace, SearchStrategy


class ScoredChunk(RecordModel):
    SCHEMA_VERSION: ClassVar[str] = "scored_chunk.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    chunk_id: str
    namespace: Namespace
    source_id: str
    document_id: str
    ordinal: int = Field(ge=0)
    content: str
    score: float
    strategy: SearchStrategy
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("chunk_id", "source_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return ensure_uuid_str(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _normalize_metadata(cls, value: Any) -> dict[str, Any]:
        return ensure_metadata_dict(value)

    @model_validator(mode="after")
    def _validate_score(self) -> "ScoredChunk":
        if not (0.0 <= self.score <= 1.0):
            raise ValueError("score must be between 0 and 1")
        return self


__all__ = ["ScoredChunk"]
