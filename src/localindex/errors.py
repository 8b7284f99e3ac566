"""Exception taxonomy for the indexing engine.

Configuration errors are fatal at submission or startup and never retried.
Resource errors are fatal to the job that hits them. Embedding errors are
recovered per item by degrading chunks to keyword-only retrieval.
"""


class LocalIndexError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(LocalIndexError):
    """Invalid configuration detected before any work is done."""


class InvalidPatternError(ConfigurationError):
    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"Invalid glob pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class DimensionMismatchError(ConfigurationError):
    def __init__(self, expected: int | str, actual: int | str, what: str = "embedding dimension") -> None:
        super().__init__(f"Mismatched {what}: index uses {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class UnsupportedSourceKindError(ConfigurationError):
    def __init__(self, kind: str) -> None:
        super().__init__(f"Indexing is not supported for source kind: {kind}")
        self.kind = kind


class UnsupportedEmbeddingModelError(ConfigurationError):
    def __init__(self, model_name: str, supported: str) -> None:
        super().__init__(f"Unsupported embedding model {model_name!r}; the bundled model is {supported!r}")
        self.model_name = model_name


class SourceDisabledError(ConfigurationError):
    def __init__(self, source_id: str) -> None:
        super().__init__(f"Source is disabled: {source_id}")
        self.source_id = source_id


class ResourceError(LocalIndexError):
    """A resource the job depends on is missing or unusable."""


class SourceRootMissingError(ResourceError):
    def __init__(self, root_path: str, reason: str = "does not exist") -> None:
        super().__init__(f"Source root {reason}: {root_path}")
        self.root_path = root_path


class StoreError(ResourceError):
    """The vector or metadata store rejected a read or write."""


class ExtractionError(LocalIndexError):
    """Text could not be extracted from a document (corrupt PDF, invalid DOCX)."""


class SourceNotFoundError(LocalIndexError):
    def __init__(self, source_id: str) -> None:
        super().__init__(f"Source not found: {source_id}")
        self.source_id = source_id


class JobNotFoundError(LocalIndexError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class DuplicatePathError(LocalIndexError):
    def __init__(self, root_path: str, existing_source_id: str) -> None:
        super().__init__(f"Path already registered by source {existing_source_id}: {root_path}")
        self.root_path = root_path
        self.existing_source_id = existing_source_id


class AlreadyIndexingError(LocalIndexError):
    def __init__(self, source_id: str, job_id: str) -> None:
        super().__init__(f"Source {source_id} already has an active job: {job_id}")
        self.source_id = source_id
        self.job_id = job_id


class SourceBusyError(LocalIndexError):
    def __init__(self, source_id: str, job_id: str) -> None:
        super().__init__(f"Source {source_id} cannot be removed while job {job_id} is running")
        self.source_id = source_id
        self.job_id = job_id


class EmbedError(LocalIndexError):
    """The embedding model failed for one batch or item."""


class EmbedderUnavailableError(EmbedError):
    """The embedding model could not be loaded."""
