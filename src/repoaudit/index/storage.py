"""SQLite cache of chunked files and chunk understandings."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from repoaudit.models import Chunk


class SQLiteChunkStore:
    """Persistence layer for file hashes, chunks and understanding payloads.

    Chunk ids are content addressed, so cached understandings stay valid for
    as long as the chunk they describe is unchanged.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS files (
                    id INTEGER PRIMARY KEY,
                    path TEXT NOT NULL UNIQUE,
                    rel_path TEXT NOT NULL,
                    sha256 TEXT NOT NULL,
                    mtime REAL NOT NULL,
                    size INTEGER NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id TEXT PRIMARY KEY,
                    file_id INTEGER NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    start_line INTEGER NOT NULL,
                    end_line INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    overlap_group_id TEXT,
                    FOREIGN KEY(file_id) REFERENCES files(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_chunks_file_id
                    ON chunks(file_id)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS understandings (
                    chunk_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

    def init_file(
        self, path: Path, rel_path: str, sha256: str, *, mtime: float, size: int
    ) -> tuple[int, str]:
        """Register a file before its chunks are inserted.

        Returns:
            (file_id, status) where status is 'inserted', 'updated', or 'skipped'.
            If skipped, file_id is -1.

        Call inside :meth:`transaction`.
        """
        conn = self._conn
        existing = conn.execute(
            "SELECT id, sha256 FROM files WHERE path = ?",
            (str(path),),
        ).fetchone()

        if existing and existing["sha256"] == sha256:
            return -1, "skipped"

        if existing:
            conn.execute(
                """
                DELETE FROM understandings
                WHERE chunk_id IN (SELECT id FROM chunks WHERE file_id = ?)
                """,
                (existing["id"],),
            )
            conn.execute("DELETE FROM chunks WHERE file_id = ?", (existing["id"],))
            conn.execute("DELETE FROM files WHERE id = ?", (existing["id"],))

        file_id = conn.execute(
            """
            INSERT INTO files(path, rel_path, sha256, mtime, size)
            VALUES (?, ?, ?, ?, ?)
            """,
            (str(path), rel_path, sha256, mtime, size),
        ).lastrowid
        return file_id, "updated" if existing else "inserted"

    def insert_chunks(self, file_id: int, chunks: Sequence[Chunk]) -> None:
        conn = self._conn
        for chunk in chunks:
            conn.execute(
                """
                INSERT OR REPLACE INTO chunks(
                    id, file_id, chunk_index, start_line, end_line,
                    content, content_hash, overlap_group_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    chunk.id,
                    file_id,
                    chunk.chunk_index,
                    chunk.start_line,
                    chunk.end_line,
                    chunk.content,
                    chunk.content_hash,
                    chunk.overlap_group_id,
                ),
            )

    def get_chunks(self, rel_path: Optional[str] = None) -> List[Chunk]:
        """Return stored chunks, optionally restricted to one repo-relative path."""
        query = """
            SELECT c.*, f.rel_path AS rel_path
            FROM chunks c
            JOIN files f ON f.id = c.file_id
        """
        params: tuple[Any, ...] = ()
        if rel_path is not None:
            query += " WHERE f.rel_path = ?"
            params = (rel_path,)
        query += " ORDER BY f.rel_path, c.chunk_index"
        rows = self._conn.execute(query, params).fetchall()
        return [
            Chunk(
                id=row["id"],
                filepath=row["rel_path"],
                chunk_index=row["chunk_index"],
                start_line=row["start_line"],
                end_line=row["end_line"],
                content=row["content"],
                content_hash=row["content_hash"],
                overlap_group_id=row["overlap_group_id"],
            )
            for row in rows
        ]

    def save_understanding(self, chunk_id: str, payload: Dict[str, Any]) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO understandings(chunk_id, payload) VALUES (?, ?)",
                (chunk_id, json.dumps(payload, ensure_ascii=True)),
            )

    def load_understanding(self, chunk_id: str) -> Optional[Dict[str, Any]]:
        row = self._conn.execute(
            "SELECT payload FROM understandings WHERE chunk_id = ?",
            (chunk_id,),
        ).fetchone()
        if row is None:
            return None
        payload = json.loads(row["payload"])
        return payload if isinstance(payload, dict) else None

    def remove_missing_files(self) -> int:
        """Remove files that no longer exist, with their chunks and understandings."""
        with self.transaction() as conn:
            rows = conn.execute("SELECT id, path FROM files").fetchall()
            missing = [row for row in rows if not Path(row["path"]).exists()]
            for row in missing:
                conn.execute(
                    """
                    DELETE FROM understandings
                    WHERE chunk_id IN (SELECT id FROM chunks WHERE file_id = ?)
                    """,
                    (row["id"],),
                )
                conn.execute("DELETE FROM chunks WHERE file_id = ?", (row["id"],))
                conn.execute("DELETE FROM files WHERE id = ?", (row["id"],))
        return len(missing)

    def stats(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for table in ("files", "chunks", "understandings"):
            counts[table] = self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        return counts
