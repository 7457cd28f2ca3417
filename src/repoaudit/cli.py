"""Command line interface for repoaudit."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from repoaudit.analysis.entrypoints import discover_entry_points
from repoaudit.config import AppConfig
from repoaudit.index.indexer import Indexer
from repoaudit.index.storage import SQLiteChunkStore
from repoaudit.ingestion.chunker import chunk_file
from repoaudit.scan.catalog import REPOSITORY_SCAN_RULES
from repoaudit.utils.files import iter_source_paths

console = Console()
app = typer.Typer(help="repoaudit - security scan orchestration for source repositories")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


@app.command()
def index(
    inputs: List[Path] = typer.Argument(
        ..., help="Repository root followed by optional sub-paths to index.", resolve_path=True
    ),
    db: Path = typer.Option(None, "--db", help="SQLite cache path"),
    chunk_chars: int = typer.Option(AppConfig().chunk_chars, help="Chunk size in characters"),
    overlap: int = typer.Option(AppConfig().overlap, help="Chunk overlap in characters"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Chunk a repository into the local cache."""
    _setup_logging(verbose)
    try:
        config = AppConfig(
            db_path=db if db is not None else AppConfig().db_path,
            chunk_chars=chunk_chars,
            overlap=overlap,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    root = inputs[0]
    if not root.is_dir():
        raise typer.BadParameter(f"Repository root is not a directory: {root}")

    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)
    store = SQLiteChunkStore(resolved_db)
    indexer = Indexer(
        store,
        chunk_chars=config.chunk_chars,
        overlap=config.overlap,
        include_extensions=config.include_extensions,
        exclude_dirs=config.exclude_dirs,
        max_file_bytes=config.max_file_bytes,
    )

    console.print(f"Indexing into [bold]{resolved_db}[/bold]...")
    stats = indexer.index(root, inputs[1:] or None)
    console.print(
        f"Inserted: {stats.inserted}, updated: {stats.updated}, "
        f"skipped: {stats.skipped}, failed: {stats.failed}, chunks: {stats.chunks}"
    )
    store.close()


@app.command()
def entrypoints(
    root: Path = typer.Argument(..., help="Repository root", resolve_path=True),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """List framework entry points discovered in a repository."""
    _setup_logging(verbose)
    if not root.is_dir():
        raise typer.BadParameter(f"Repository root is not a directory: {root}")

    config = AppConfig()
    files = list(
        iter_source_paths(
            [root],
            include_extensions=config.include_extensions,
            exclude_dirs=config.exclude_dirs,
            max_file_bytes=config.max_file_bytes,
        )
    )
    candidates = discover_entry_points(root, files)
    if not candidates:
        console.print("[yellow]No entry points found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Entry point")
    table.add_column("File")
    table.add_column("Line")
    for candidate in candidates:
        table.add_row(candidate.label, candidate.filepath, str(candidate.start_line))
    console.print(table)


@app.command()
def rules(
    cluster: Optional[str] = typer.Option(None, "--cluster", help="Only show rules of this cluster"),
) -> None:
    """Print the rule catalog."""
    selected = [rule for rule in REPOSITORY_SCAN_RULES if cluster is None or rule.cluster == cluster]
    if not selected:
        raise typer.BadParameter(f"Unknown cluster: {cluster}")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Rule")
    table.add_column("Cluster")
    table.add_column("Category")
    table.add_column("Title")
    for rule in selected:
        table.add_row(rule.id, rule.cluster, rule.category, rule.title)
    console.print(table)


@app.command()
def chunks(
    file: Path = typer.Argument(..., help="Source file to chunk", exists=True, dir_okay=False),
    chunk_chars: int = typer.Option(AppConfig().chunk_chars, help="Chunk size in characters"),
    overlap: int = typer.Option(AppConfig().overlap, help="Chunk overlap in characters"),
) -> None:
    """Show the line windows a file is split into."""
    if chunk_chars <= 0:
        raise typer.BadParameter("chunk-chars must be positive")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Chunk")
    table.add_column("Lines")
    table.add_column("Id")
    table.add_column("Snippet")
    for chunk in chunk_file(file, max_chars=chunk_chars, overlap_chars=overlap):
        snippet = chunk.content.replace("\n", " ")
        table.add_row(
            str(chunk.chunk_index),
            f"{chunk.start_line}-{chunk.end_line}",
            chunk.id[:12],
            snippet[:80],
        )
    console.print(table)


@app.command()
def prune(
    db: Path = typer.Option(None, "--db", help="SQLite cache path"),
) -> None:
    """Remove cached files that no longer exist on disk."""
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing to prune.[/yellow]")
        return

    store = SQLiteChunkStore(resolved_db)
    removed = store.remove_missing_files()
    console.print(f"Removed {removed} orphaned files.")
    store.close()
