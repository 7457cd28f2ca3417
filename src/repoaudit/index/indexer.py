"""Chunk indexing pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

from repoaudit.config import DEFAULT_EXCLUDE_DIRS, DEFAULT_INCLUDE_EXTENSIONS
from repoaudit.index.storage import SQLiteChunkStore
from repoaudit.ingestion.chunker import chunk_file
from repoaudit.utils.files import compute_sha256, iter_source_paths, to_relative

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IndexStats:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    chunks: int = 0
    processed_files: list[Path] = field(default_factory=list)

    def increment(self, status: str, path: Path) -> None:
        if status == "inserted":
            self.inserted += 1
        elif status == "updated":
            self.updated += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
        self.processed_files.append(path)


class Indexer:
    """Chunks source files into the cache store, skipping unchanged files."""

    def __init__(
        self,
        store: SQLiteChunkStore,
        *,
        chunk_chars: int = 6000,
        overlap: int = 400,
        include_extensions: Iterable[str] = DEFAULT_INCLUDE_EXTENSIONS,
        exclude_dirs: Iterable[str] = DEFAULT_EXCLUDE_DIRS,
        max_file_bytes: int = 200_000,
    ) -> None:
        self.store = store
        self.chunk_chars = chunk_chars
        self.overlap = overlap
        self.include_extensions = frozenset(include_extensions)
        self.exclude_dirs = frozenset(exclude_dirs)
        self.max_file_bytes = max_file_bytes

    def index(self, root: Path, paths: Sequence[Path] | None = None) -> IndexStats:
        """Index every source file under ``paths`` (default: ``root``)."""
        files = list(
            iter_source_paths(
                paths or [root],
                include_extensions=self.include_extensions,
                exclude_dirs=self.exclude_dirs,
                max_file_bytes=self.max_file_bytes,
            )
        )
        stats = IndexStats()
        if not files:
            LOGGER.warning("No source files found")
            return stats

        for path in files:
            try:
                LOGGER.info("Processing: %s", path)
                status, count = self._index_single(root, path)
            except (OSError, UnicodeError) as exc:
                LOGGER.error("Failed to process %s: %s", path, exc)
                stats.increment("failed", path)
                continue
            stats.chunks += count
            stats.increment(status, path)
        return stats

    def _index_single(self, root: Path, path: Path) -> tuple[str, int]:
        rel_path = to_relative(root, path)
        sha256 = compute_sha256(path)
        stat = path.stat()

        with self.store.transaction():
            file_id, status = self.store.init_file(
                path.resolve(), rel_path, sha256, mtime=stat.st_mtime, size=stat.st_size
            )
            if status == "skipped":
                return status, 0
            chunks = chunk_file(
                path, max_chars=self.chunk_chars, overlap_chars=self.overlap, id_path=rel_path
            )
            self.store.insert_chunks(file_id, chunks)
        return status, len(chunks)
