"""Runtime settings for the indexing engine.

Defaults can be overridden through ``LOCALINDEX_*`` environment variables
(``LOCALINDEX_CHUNK_SIZE=800``) and, at the call site, by CLI options.
"""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from localindex.models.enums import SignatureStrategy

ENV_PREFIX = "LOCALINDEX_"


def _default_data_dir() -> Path:
    return Path.home() / ".localindex"


class IndexSettings(BaseModel):
    data_dir: Path = Field(default_factory=_default_data_dir)
    chunk_size: int = Field(default=1200, gt=0)
    chunk_overlap: int = Field(default=100, ge=0)
    embedding_model: str = "all-MiniLM-L6-v2"
    embedding_dimension: int = Field(default=384, gt=0)
    embedding_batch_size: int = Field(default=32, gt=0)
    signature_strategy: SignatureStrategy = SignatureStrategy.STAT
    collection_prefix: str = ""
    poll_interval: float = Field(default=0.5, gt=0)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _validate_overlap(self) -> "IndexSettings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be less than chunk_size")
        return self

    @property
    def metadata_db_path(self) -> Path:
        return self.data_dir / "meta.db"

    @property
    def vector_store_path(self) -> Path:
        return self.data_dir / "semantic"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> "IndexSettings":
        """Build settings from ``LOCALINDEX_*`` variables plus explicit overrides.

        Explicit overrides whose value is None are ignored so CLI options can be
        passed through unconditionally.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls.model_validate(values)
