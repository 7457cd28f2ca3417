"""Line-window chunking of source files.

Chunks never split a line. Each window holds at most ``max_chars`` characters
(newlines included) unless a single line is longer than the budget, in which
case that line becomes a window on its own. Consecutive windows overlap by
whole trailing lines covering at least ``overlap_chars`` characters while still
advancing by at least one line.
"""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Iterable, List, Mapping, Sequence, Tuple

from repoaudit.models import Chunk

_LINE_SPLIT = re.compile(r"\r?\n")


def sha256_text(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _overlap_line_count(lines: Sequence[str], start: int, end: int, overlap_chars: int) -> int:
    total = 0
    count = 0
    for index in range(end, start - 1, -1):
        total += len(lines[index])
        count += 1
        if total >= overlap_chars:
            break
    return count


def chunk_id_for(id_path: str, start_line: int, end_line: int, content_hash: str) -> str:
    return sha256_text(f"{id_path}:{start_line}:{end_line}:{content_hash}")


def chunk_lines(
    lines: Sequence[str],
    *,
    id_path: str,
    max_chars: int,
    overlap_chars: int,
) -> List[Chunk]:
    """Split ``lines`` into overlapping windows and return one Chunk per window."""
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    chunks: List[Chunk] = []
    start = 0
    chunk_index = 0

    while start < len(lines):
        char_count = 0
        end = start
        while end < len(lines):
            next_len = len(lines[end]) + 1
            if char_count + next_len > max_chars and end > start:
                break
            char_count += next_len
            end += 1
            if char_count >= max_chars:
                break

        content = "\n".join(lines[start:end])
        start_line = start + 1
        end_line = end
        content_hash = sha256_text(content)
        chunks.append(
            Chunk(
                id=chunk_id_for(id_path, start_line, end_line, content_hash),
                filepath=id_path,
                chunk_index=chunk_index,
                start_line=start_line,
                end_line=end_line,
                content=content,
                content_hash=content_hash,
            )
        )

        if end >= len(lines):
            break

        overlap = _overlap_line_count(lines, start, end - 1, overlap_chars)
        start = max(start + 1, end - overlap)
        chunk_index += 1

    return chunks


def read_lines(path: Path) -> List[str]:
    raw = path.read_text(encoding="utf-8", errors="replace")
    return _LINE_SPLIT.split(raw)


def chunk_file(
    path: Path,
    *,
    max_chars: int = 6000,
    overlap_chars: int = 400,
    id_path: str | None = None,
) -> List[Chunk]:
    """Chunk a file on disk. ``id_path`` (usually repo-relative) keys the chunk ids."""
    lines = read_lines(path)
    return chunk_lines(
        lines,
        id_path=id_path if id_path is not None else str(path),
        max_chars=max_chars,
        overlap_chars=overlap_chars,
    )


def hash_file(path: Path) -> str:
    """Whole-file content hash used for change detection."""
    return sha256_text(path.read_text(encoding="utf-8", errors="replace"))


def assign_overlap_groups(
    chunks: Iterable[Chunk],
    spans_by_file: Mapping[str, Sequence[Tuple[int, int]]],
) -> None:
    """Tag chunks that share a logical unit (e.g. one function) with a common group id.

    A span only produces a group when at least two chunks intersect it. A chunk
    already tagged keeps its first group.
    """
    by_file: dict[str, List[Chunk]] = {}
    for chunk in chunks:
        by_file.setdefault(chunk.filepath, []).append(chunk)

    for filepath, file_chunks in by_file.items():
        for span_start, span_end in spans_by_file.get(filepath, ()):
            members = [
                chunk
                for chunk in file_chunks
                if chunk.start_line <= span_end and chunk.end_line >= span_start
            ]
            if len(members) < 2:
                continue
            group_id = sha256_text(f"{filepath}:{span_start}:{span_end}")[:16]
            for chunk in members:
                if chunk.overlap_group_id is None:
                    chunk.overlap_group_id = group_id
