"""Local indexing CLI.

Registers sources, runs incremental indexing jobs and searches the resulting
index. Every command runs against the index in ``--data-dir``.
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Optional, TypeVar

import structlog
import typer

from localindex.config import IndexSettings
from localindex.errors import LocalIndexError
from localindex.models.enums import IndexMode, NamespaceScope, SearchStrategy, SourceKind
from localindex.models.job import Job
from localindex.models.source import SourceSpec
from localindex.services.factory import create_orchestrator
from localindex.services.orchestrator import JobOrchestrator

T = TypeVar("T")

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    logger_factory=lambda name: structlog.PrintLogger(file=sys.stderr),
    wrapper_class=structlog.BoundLogger,
    context_class=dict,
    cache_logger_on_first_use=False,
)

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="localindex",
    help="""Index local folders incrementally and search them.

Examples:

  # Register a folder
  localindex add-source notes ~/notes --include "*.{md,txt}"

  # Index it (only changed files are processed)
  localindex index <source-id>

  # Search
  localindex search "how do I rotate keys" --strategy hybrid""",
    rich_markup_mode="markdown",
)

_state: dict[str, Optional[Path]] = {"data_dir": None}


@app.callback()
def main(
    data_dir: Optional[Path] = typer.Option(
        None,
        "--data-dir",
        "-D",
        help="Index storage directory (default: LOCALINDEX_DATA_DIR or ~/.localindex)",
    ),
) -> None:
    _state["data_dir"] = data_dir


def _settings() -> IndexSettings:
    return IndexSettings.from_env(data_dir=_state["data_dir"])


def _run(
    action: Callable[[JobOrchestrator], Awaitable[T]],
    warm_embedder: bool = False,
    start_worker: bool = False,
) -> T:
    """Run an action against an opened orchestrator, mapping engine errors to exit code 1.

    Only commands that submit jobs start the worker; the rest leave jobs owned
    by other processes untouched.
    """

    async def runner() -> T:
        orchestrator = create_orchestrator(_settings(), warm_embedder=warm_embedder)
        try:
            if start_worker:
                await orchestrator.start()
            else:
                await orchestrator.open()
            return await action(orchestrator)
        finally:
            await orchestrator.close()

    try:
        return asyncio.run(runner())
    except LocalIndexError as e:
        logger.error("command_failed", error=str(e), error_type=type(e).__name__)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e


def _format_job(job: Job) -> str:
    progress = f"{job.progress:.0%}" if job.progress is not None else "-"
    line = (
        f"{job.id}  {job.source_name or job.source_id}  {job.mode.value:<11} {job.status.value:<9} {progress:>4}  "
        f"indexed={job.files_indexed} skipped={job.files_skipped} deleted={job.files_deleted} "
        f"failed={job.files_failed} chunks={job.chunks_created}"
    )
    if job.error:
        line += f"  error={job.error}"
    return line


@app.command("add-source")
def add_source(
    name: str = typer.Argument(..., help="Display name"),
    root_path: str = typer.Argument(..., help="Folder to index"),
    kind: SourceKind = typer.Option(SourceKind.LOCAL_FOLDER, "--kind", "-k", help="Source kind"),
    include: Optional[list[str]] = typer.Option(
        None, "--include", "-i", help="Glob patterns to include (repeatable, e.g. '*.{py,md}')"
    ),
    exclude: Optional[list[str]] = typer.Option(None, "--exclude", "-e", help="Glob patterns to exclude (repeatable)"),
) -> None:
    """Register a folder as a source."""
    spec = SourceSpec(
        name=name,
        kind=kind,
        root_path=root_path,
        include_patterns=include or [],
        exclude_patterns=exclude or [],
    )
    source = _run(lambda orchestrator: orchestrator.sources.add(spec))
    typer.echo(f"Added source {source.id} ({source.name}) at {source.root_path}")


@app.command()
def sources() -> None:
    """List sources with their latest job and index stats."""
    overviews = _run(lambda orchestrator: orchestrator.sources.list())
    if not overviews:
        typer.echo("No sources registered.")
        return
    for overview in overviews:
        source, stats = overview.source, overview.stats
        status = overview.latest_job.status.value if overview.latest_job else "never indexed"
        enabled = "" if source.enabled else " [disabled]"
        typer.echo(
            f"{source.id}  {source.name}{enabled}  {source.root_path}  "
            f"files={stats.file_count} chunks={stats.chunk_count} bytes={stats.total_size_bytes}  {status}"
        )


@app.command("rename-source")
def rename_source(
    source_id: str = typer.Argument(..., help="Source id"),
    name: str = typer.Argument(..., help="New name"),
) -> None:
    """Rename a source."""
    source = _run(lambda orchestrator: orchestrator.sources.rename(source_id, name))
    typer.echo(f"Renamed source {source.id} to {source.name}")


@app.command("set-patterns")
def set_patterns(
    source_id: str = typer.Argument(..., help="Source id"),
    include: Optional[list[str]] = typer.Option(None, "--include", "-i", help="Replace include patterns"),
    exclude: Optional[list[str]] = typer.Option(None, "--exclude", "-e", help="Replace exclude patterns"),
) -> None:
    """Replace a source's include and/or exclude patterns."""
    source = _run(lambda orchestrator: orchestrator.sources.update_patterns(source_id, include, exclude))
    typer.echo(f"Include: {source.include_patterns or ['*']}  Exclude: {source.exclude_patterns}")


@app.command("remove-source")
def remove_source(source_id: str = typer.Argument(..., help="Source id")) -> None:
    """Remove a source and everything indexed from it."""
    _run(lambda orchestrator: orchestrator.remove_source(source_id))
    typer.echo(f"Removed source {source_id}")


@app.command()
def index(
    source_id: str = typer.Argument(..., help="Source id"),
    full: bool = typer.Option(False, "--full", help="Re-index every file, ignoring stored state"),
) -> None:
    """Index a source and follow its progress until the job finishes."""
    mode = IndexMode.FULL if full else IndexMode.INCREMENTAL
    poll_interval = _settings().poll_interval

    async def run_indexing(orchestrator: JobOrchestrator) -> Job:
        job_id = await orchestrator.submit_index(source_id, mode)
        last_line = ""
        while True:
            job = await orchestrator.get_job(job_id)
            line = _format_job(job)
            if line != last_line:
                typer.echo(line, err=True)
                last_line = line
            if job.is_terminal:
                return job
            await asyncio.sleep(poll_interval)

    job = _run(run_indexing, warm_embedder=True, start_worker=True)

    for file_error in job.file_errors:
        logger.warning("indexing_error", error=file_error)

    typer.echo(
        f"Indexed {job.files_indexed} files ({job.chunks_created} chunks, "
        f"{job.files_skipped} skipped, {job.files_deleted} deleted)"
    )
    if job.file_errors:
        typer.echo(f"Encountered {len(job.file_errors)} errors")
    if job.error:
        typer.echo(f"Job {job.status.value}: {job.error}", err=True)
        raise typer.Exit(1)


@app.command()
def jobs(
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of jobs to show"),
) -> None:
    """List recent jobs, newest first."""
    recent = _run(lambda orchestrator: orchestrator.list_jobs(limit=limit))
    if not recent:
        typer.echo("No jobs.")
    for job in recent:
        typer.echo(_format_job(job))


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    strategy: SearchStrategy = typer.Option(SearchStrategy.HYBRID, "--strategy", "-s", help="Search strategy"),
    namespace: NamespaceScope = typer.Option(NamespaceScope.PRIMARY, "--namespace", help="Which index to search"),
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum number of results to return"),
) -> None:
    """Search indexed content."""
    logger.info("starting_search", query=query, strategy=strategy.value, namespace=namespace.value, limit=limit)
    hits = _run(
        lambda orchestrator: orchestrator.query(query, limit=limit, namespace=namespace, strategy=strategy),
        warm_embedder=strategy is not SearchStrategy.LEXICAL,
    )
    if not hits:
        typer.echo("No results.")
        return
    for rank, hit in enumerate(hits, start=1):
        lines = f"{hit.metadata.get('line_start', '?')}-{hit.metadata.get('line_end', '?')}"
        typer.echo(f"{rank}. [{hit.score:.3f} {hit.strategy.value}] {hit.document_id}:{lines}")
        snippet = " ".join(hit.content.split())
        typer.echo(f"   {snippet[:200]}")


@app.command()
def version() -> None:
    """Show version information."""
    from localindex import __version__

    typer.echo(f"localindex {__version__}")
