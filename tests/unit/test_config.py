"""Tests for IndexSettings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from localindex.config import IndexSettings
from localindex.models.enums import SignatureStrategy


class TestIndexSettings:
    """Tests for defaults, validation and environment overrides."""

    def test_defaults(self) -> None:
        settings = IndexSettings()

        assert settings.data_dir == Path.home() / ".localindex"
        assert settings.chunk_size == 1200
        assert settings.chunk_overlap == 100
        assert settings.embedding_dimension == 384
        assert settings.signature_strategy is SignatureStrategy.STAT

    def test_derived_paths(self, tmp_path: Path) -> None:
        settings = IndexSettings(data_dir=tmp_path)

        assert settings.metadata_db_path == tmp_path / "meta.db"
        assert settings.vector_store_path == tmp_path / "semantic"

    def test_overlap_must_be_smaller_than_size(self) -> None:
        with pytest.raises(ValidationError, match="chunk_overlap must be less than chunk_size"):
            IndexSettings(chunk_size=100, chunk_overlap=100)

    def test_rejects_unknown_fields(self) -> None:
        with pytest.raises(ValidationError):
            IndexSettings(chunk_sise=100)

    def test_from_env_reads_prefixed_variables(self, tmp_path: Path) -> None:
        environ = {
            "LOCALINDEX_DATA_DIR": str(tmp_path),
            "LOCALINDEX_CHUNK_SIZE": "800",
            "LOCALINDEX_SIGNATURE_STRATEGY": "hash",
            "LOCALINDEX_EMBEDDING_MODEL": "",
            "UNRELATED": "ignored",
        }

        settings = IndexSettings.from_env(environ)

        assert settings.data_dir == tmp_path
        assert settings.chunk_size == 800
        assert settings.signature_strategy is SignatureStrategy.HASH
        assert settings.embedding_model == "all-MiniLM-L6-v2"

    def test_explicit_overrides_win_and_none_is_ignored(self, tmp_path: Path) -> None:
        environ = {"LOCALINDEX_CHUNK_SIZE": "800"}

        settings = IndexSettings.from_env(environ, chunk_size=600, data_dir=None)

        assert settings.chunk_size == 600
        assert settings.data_dir == Path.home() / ".localindex"

    def test_invalid_environment_value(self) -> None:
        with pytest.raises(ValidationError):
            IndexSettings.from_env({"LOCALINDEX_CHUNK_SIZE": "zero"})
