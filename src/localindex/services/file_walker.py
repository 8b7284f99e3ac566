"""File walker service for discovering files under a source root."""

import asyncio
import fnmatch
from collections.abc import AsyncIterator, Iterable
from pathlib import Path, PurePosixPath

import rignore
import structlog
from pydantic import BaseModel, Field

DEFAULT_IGNORED_DIRECTORIES = frozenset(
    {
        "node_modules",
        "__pycache__",
        "target",
        "dist",
        "build",
        "venv",
    }
)


class FileEntry(BaseModel):
    """A file discovered under a source root."""

    path: Path
    relative_path: str
    size_bytes: int = Field(ge=0)
    mtime_ns: int = Field(ge=0)

    model_config = {"frozen": True}


def parse_file_pattern(pattern: str) -> list[str]:
    """Parse brace-expansion patterns into individual glob patterns.

    Expands patterns like "*.{py,js,ts}" into ["*.py", "*.js", "*.ts"].
    Patterns without braces are returned as single-element lists.

    Args:
        pattern: Glob pattern, possibly with brace expansion.

    Returns:
        List of individual glob patterns.
    """
    if "{" not in pattern or "}" not in pattern:
        return [pattern]

    brace_start = pattern.index("{")
    brace_end = pattern.index("}", brace_start)

    prefix = pattern[:brace_start]
    suffix = pattern[brace_end + 1 :]
    alternatives = pattern[brace_start + 1 : brace_end].split(",")

    expanded: list[str] = []
    for alt in alternatives:
        expanded.extend(parse_file_pattern(f"{prefix}{alt.strip()}{suffix}"))
    return expanded


def expand_patterns(patterns: Iterable[str]) -> list[str]:
    expanded: list[str] = []
    for pattern in patterns:
        expanded.extend(parse_file_pattern(pattern))
    return expanded


def matches_any(relative_path: str, patterns: Iterable[str]) -> bool:
    """Return True if the relative POSIX path or its file name matches a pattern."""
    name = relative_path.rsplit("/", 1)[-1]
    pure = PurePosixPath(relative_path)
    for pattern in patterns:
        candidates = [pattern]
        if pattern.startswith("**/"):
            candidates.append(pattern[3:])
        for candidate in candidates:
            if fnmatch.fnmatchcase(relative_path, candidate) or fnmatch.fnmatchcase(name, candidate):
                return True
            if pure.match(candidate):
                return True
    return False


class FileWalker:
    """Walks a source root to discover files matching include/exclude patterns.

    An empty include list means every file is a candidate. Exclude patterns win
    over include patterns. Hidden entries, well-known build/vendor directories
    and paths ignored by .gitignore files under the root are skipped. Results
    are sorted by relative path so change plans are deterministic. Uses
    asyncio.to_thread to avoid blocking the event loop during I/O.
    """

    def __init__(
        self,
        ignored_directories: Iterable[str] | None = None,
        skip_hidden: bool = True,
        respect_gitignore: bool = True,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._ignored_directories = (
            frozenset(ignored_directories) if ignored_directories is not None else DEFAULT_IGNORED_DIRECTORIES
        )
        self._skip_hidden = skip_hidden
        self._respect_gitignore = respect_gitignore
        self._logger = logger or structlog.get_logger(__name__)

    async def walk(
        self,
        directory: Path,
        include_patterns: list[str] | None = None,
        exclude_patterns: list[str] | None = None,
    ) -> AsyncIterator[FileEntry]:
        """Walk directory and yield matching files in relative-path order.

        Raises:
            FileNotFoundError: If directory does not exist.
            NotADirectoryError: If path is not a directory.
        """
        for entry in await self.list_files(directory, include_patterns, exclude_patterns):
            yield entry

    async def list_files(
        self,
        directory: Path,
        include_patterns: list[str] | None = None,
        exclude_patterns: list[str] | None = None,
    ) -> list[FileEntry]:
        """Return every matching file under directory, sorted by relative path.

        Raises:
            FileNotFoundError: If directory does not exist.
            NotADirectoryError: If path is not a directory.
        """
        if not directory.exists():
            raise FileNotFoundError(f"Directory not found: {directory}")
        if not directory.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {directory}")

        include = expand_patterns(include_patterns or [])
        exclude = expand_patterns(exclude_patterns or [])

        self._logger.info(
            "directory_walk_started",
            directory=str(directory),
            include_patterns=include,
            exclude_patterns=exclude,
        )

        entries = await asyncio.to_thread(self._scan, directory, include, exclude)

        self._logger.info(
            "directory_walk_completed",
            directory=str(directory),
            file_count=len(entries),
        )
        return entries

    def _scan(self, root: Path, include: list[str], exclude: list[str]) -> list[FileEntry]:
        """Synchronously walk the tree and filter results.

        rignore applies hidden-entry and .gitignore rules (negations and
        anchored patterns included) and prunes excluded directories.
        """
        walker = rignore.walk(
            root,
            ignore_hidden=self._skip_hidden,
            read_ignore_files=False,
            read_parents_ignores=False,
            read_git_ignore=self._respect_gitignore,
            read_global_git_ignore=False,
            read_git_exclude=False,
            require_git=False,
            should_exclude_entry=lambda entry: self._is_ignored_directory(root, entry),
        )
        entries: list[FileEntry] = []
        skipped_by_pattern = 0

        for walked in walker:
            file_path = Path(walked)
            try:
                if not file_path.is_file():
                    continue
                relative_path = file_path.relative_to(root).as_posix()
                if not self._matches(relative_path, include, exclude):
                    skipped_by_pattern += 1
                    continue
                stat = file_path.stat()
            except OSError as e:
                self._logger.warning("file_stat_error", file_path=str(file_path), error=str(e))
                continue
            entries.append(
                FileEntry(
                    path=file_path,
                    relative_path=relative_path,
                    size_bytes=stat.st_size,
                    mtime_ns=stat.st_mtime_ns,
                )
            )

        if skipped_by_pattern:
            self._logger.debug("files_skipped_by_pattern", directory=str(root), count=skipped_by_pattern)

        entries.sort(key=lambda entry: entry.relative_path)
        return entries

    def _is_ignored_directory(self, root: Path, entry: Path) -> bool:
        path = Path(entry)
        return path != root and path.name in self._ignored_directories and path.is_dir()

    @staticmethod
    def _matches(relative_path: str, include: list[str], exclude: list[str]) -> bool:
        if include and not matches_any(relative_path, include):
            return False
        return not (exclude and matches_any(relative_path, exclude))
