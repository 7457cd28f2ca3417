"""Utility helpers for working with files."""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import AbstractSet, Iterable, Iterator

from repoaudit.config import DEFAULT_EXCLUDE_DIRS, DEFAULT_INCLUDE_EXTENSIONS

LOGGER = logging.getLogger(__name__)

_BINARY_SNIFF_BYTES = 1024


def is_binary_file(path: Path) -> bool:
    """Return True when the first KB of the file contains a NUL byte."""
    with path.open("rb") as handle:
        return b"\x00" in handle.read(_BINARY_SNIFF_BYTES)


def _is_candidate(
    path: Path,
    include_extensions: AbstractSet[str],
    max_file_bytes: int,
) -> bool:
    if path.suffix.lower() not in include_extensions:
        return False
    try:
        size = path.stat().st_size
        if size > max_file_bytes:
            LOGGER.debug("Skipping oversized file %s (%d bytes)", path, size)
            return False
        if is_binary_file(path):
            LOGGER.debug("Skipping binary file %s", path)
            return False
    except OSError as exc:
        LOGGER.warning("Skipping unreadable file %s: %s", path, exc)
        return False
    return True


def iter_source_paths(
    inputs: Iterable[Path],
    *,
    include_extensions: AbstractSet[str] = DEFAULT_INCLUDE_EXTENSIONS,
    exclude_dirs: AbstractSet[str] = DEFAULT_EXCLUDE_DIRS,
    max_file_bytes: int = 200_000,
) -> Iterator[Path]:
    """Yield text source files from input paths, descending into directories."""
    for item in inputs:
        if item.is_dir():
            for dirpath, dirnames, filenames in os.walk(item):
                dirnames[:] = sorted(name for name in dirnames if name not in exclude_dirs)
                for name in sorted(filenames):
                    candidate = Path(dirpath) / name
                    if _is_candidate(candidate, include_extensions, max_file_bytes):
                        yield candidate
        elif item.is_file() and _is_candidate(item, include_extensions, max_file_bytes):
            yield item


def compute_sha256(path: Path) -> str:
    """Compute SHA256 hash for a file."""
    sha = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 20), b""):
            sha.update(chunk)
    return sha.hexdigest()


def to_relative(root: Path, path: Path) -> str:
    """Return ``path`` relative to ``root`` with forward slashes."""
    try:
        rel = Path(path).resolve().relative_to(Path(root).resolve())
    except ValueError:
        rel = Path(os.path.relpath(path, root))
    return rel.as_posix()
