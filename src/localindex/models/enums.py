from enum import StrEnum


class SourceKind(StrEnum):
    LOCAL_FOLDER = "local_folder"
    UPLOADED = "uploaded"
    GIT = "git"
    WEB = "web"


class JobStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class IndexMode(StrEnum):
    INCREMENTAL = "incremental"
    FULL = "full"


class Namespace(StrEnum):
    PRIMARY = "primary"
    INTERNAL = "internal"


class NamespaceScope(StrEnum):
    PRIMARY = "primary"
    INTERNAL = "internal"
    BOTH = "both"

    def namespaces(self) -> tuple[Namespace, ...]:
        if self is NamespaceScope.BOTH:
            return (Namespace.PRIMARY, Namespace.INTERNAL)
        return (Namespace(self.value),)


class SearchStrategy(StrEnum):
    HYBRID = "hybrid"
    SEMANTIC = "semantic"
    LEXICAL = "lexical"


class SignatureStrategy(StrEnum):
    STAT = "stat"
    HASH = "hash"
