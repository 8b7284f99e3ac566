from datetime import datetime, timezone
from uuid import UUID, uuid4

import pytest
from pydantic import ValidationError

from localindex.models.document_state import DocumentState
from localindex.models.enums import Namespace, NamespaceScope, SearchStrategy, SourceKind
from localindex.models.hit import ScoredChunk
from localindex.models.source import Source, SourceOverview, SourceSpec, SourceStats


def test_source_spec_normalizes_patterns() -> None:
    spec = SourceSpec(name=" notes ", root_path="/tmp/notes", include_patterns=" *.md ", exclude_patterns=None)

    assert spec.name == "notes"
    assert spec.kind is SourceKind.LOCAL_FOLDER
    assert spec.include_patterns == ["*.md"]
    assert spec.exclude_patterns == []


def test_source_spec_rejects_empty_root() -> None:
    with pytest.raises(ValidationError):
        SourceSpec(name="notes", root_path="  ")


def test_source_defaults() -> None:
    source = Source(name="notes", kind=SourceKind.UPLOADED, root_path="/tmp/notes")

    assert source.schema_version == Source.SCHEMA_VERSION
    assert source.enabled
    assert source.created_at.tzinfo is not None
    assert UUID(source.id).version == 4


def test_source_overview_defaults_to_empty_stats() -> None:
    source = Source(name="notes", kind=SourceKind.LOCAL_FOLDER, root_path="/tmp/notes")

    overview = SourceOverview(source=source)

    assert overview.latest_job is None
    assert overview.stats == SourceStats()


def test_document_state_validates_relative_path() -> None:
    now = datetime.now(timezone.utc)
    state = DocumentState(
        source_id=str(uuid4()),
        relative_path="docs/a.md",
        content_signature="stat:5:1",
        size_bytes=5,
        chunk_ids=[str(uuid4()), str(uuid4())],
        last_indexed_at=now,
    )

    assert state.chunk_count == 2

    for bad_path in ("/etc/passwd", "../outside.md", ""):
        with pytest.raises(ValidationError):
            DocumentState(
                source_id=str(uuid4()),
                relative_path=bad_path,
                content_signature="stat:5:1",
                size_bytes=5,
                last_indexed_at=now,
            )


def test_scored_chunk_rejects_out_of_range_score() -> None:
    with pytest.raises(ValidationError):
        ScoredChunk(
            chunk_id=str(uuid4()),
            namespace=Namespace.PRIMARY,
            source_id=str(uuid4()),
            document_id="a.md",
            ordinal=0,
            content="hello",
            score=1.5,
            strategy=SearchStrategy.LEXICAL,
        )


def test_namespace_scope_expands() -> None:
    assert NamespaceScope.PRIMARY.namespaces() == (Namespace.PRIMARY,)
    assert NamespaceScope.INTERNAL.namespaces() == (Namespace.INTERNAL,)
    assert NamespaceScope.BOTH.namespaces() == (Namespace.PRIMARY, Namespace.INTERNAL)
