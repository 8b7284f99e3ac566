from localindex.models.chunk import Chunk, make_chunk_id
from localindex.models.document_state import DocumentState
from localindex.models.enums import (
    IndexMode,
    JobStatus,
    Namespace,
    NamespaceScope,
    SearchStrategy,
    SignatureStrategy,
    SourceKind,
)
from localindex.models.hit import ScoredChunk
from localindex.models.job import JOB_CANCELLED_ERROR, JOB_INTERRUPTED_ERROR, Job
from localindex.models.source import Source, SourceOverview, SourceSpec, SourceStats

__all__ = [
    "Chunk",
    "DocumentState",
    "IndexMode",
    "Job",
    "JobStatus",
    "JOB_CANCELLED_ERROR",
    "JOB_INTERRUPTED_ERROR",
    "Namespace",
    "NamespaceScope",
    "ScoredChunk",
    "SearchStrategy",
    "SignatureStrategy",
    "Source",
    "SourceKind",
    "SourceOverview",
    "SourceSpec",
    "SourceStats",
    "make_chunk_id",
]
