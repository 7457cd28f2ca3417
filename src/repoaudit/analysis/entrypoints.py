"""Discovery of framework entry points (route handlers, middleware, edge functions)."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Pattern, Sequence, Set

from repoaudit.models import EntryPointCandidate
from repoaudit.utils.files import to_relative
from repoaudit.utils.text import normalize_path

LOGGER = logging.getLogger(__name__)

SOURCE_EXT_PATTERN = re.compile(r"\.(ts|tsx|js|jsx)$", re.IGNORECASE)
NEXT_APP_ROUTE_PATTERN = re.compile(r"(?:^|/)app/(?:.+/)?route\.(ts|tsx|js|jsx)$", re.IGNORECASE)
NEXT_PAGES_API_PATTERN = re.compile(r"(?:^|/)pages/api/.+\.(ts|tsx|js|jsx)$", re.IGNORECASE)
NEXT_MIDDLEWARE_PATTERN = re.compile(r"(?:^|/)middleware\.(ts|tsx|js|jsx)$", re.IGNORECASE)
SUPABASE_EDGE_PATTERN = re.compile(
    r"(?:^|/)supabase/functions/([^/]+)(?:/index)?\.(ts|tsx|js|jsx)$", re.IGNORECASE
)

NEXT_HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD")
_METHOD_GROUP = "|".join(NEXT_HTTP_METHODS)
_METHOD_FUNCTION_PATTERN = re.compile(rf"\bexport\s+(?:async\s+)?function\s+({_METHOD_GROUP})\b")
_METHOD_CONST_PATTERN = re.compile(rf"\bexport\s+(?:const|let|var)\s+({_METHOD_GROUP})\b")

_PAGES_HANDLER_PATTERNS = (
    re.compile(r"\bexport\s+default\b"),
    re.compile(r"\bmodule\.exports\b"),
    re.compile(r"\bexports\."),
)
_EDGE_SERVE_PATTERNS = (
    re.compile(r"\bDeno\.serve\s*\("),
    re.compile(r"\bserve\s*\("),
)


def _strip_extension(value: str) -> str:
    return re.sub(r"\.[^/.]+$", "", value)


def _slice_after_segment(value: str, segment: str) -> Optional[str]:
    normalized = normalize_path(value)
    if normalized.startswith(f"{segment}/"):
        return normalized[len(segment) + 1 :]
    marker = f"/{segment}/"
    index = normalized.find(marker)
    if index == -1:
        return None
    return normalized[index + len(marker) :]


def _to_route_path(value: str) -> str:
    normalized = normalize_path(value).strip("/")
    return f"/{normalized}" if normalized else "/"


def _read_lines(path: Path) -> List[str]:
    try:
        return path.read_text(encoding="utf-8", errors="replace").split("\n")
    except OSError as exc:
        LOGGER.warning("Unable to read %s for entry point discovery: %s", path, exc)
        return []


def find_method_lines(lines: Sequence[str]) -> List[tuple[str, int]]:
    """Return ``(METHOD, line)`` pairs for exported HTTP method handlers."""
    results: List[tuple[str, int]] = []
    for number, line in enumerate(lines, start=1):
        match = _METHOD_FUNCTION_PATTERN.search(line) or _METHOD_CONST_PATTERN.search(line)
        if match:
            results.append((match.group(1).upper(), number))
    return results


def find_first_line(lines: Sequence[str], patterns: Iterable[Pattern[str]]) -> Optional[int]:
    patterns = tuple(patterns)
    for number, line in enumerate(lines, start=1):
        if any(pattern.search(line) for pattern in patterns):
            return number
    return None


class _Collector:
    def __init__(self) -> None:
        self.results: List[EntryPointCandidate] = []
        self._seen: Set[str] = set()

    def add(self, label: str, filepath: str, line: int, *, keyed_by_line: bool = True) -> None:
        key = f"{label}|{filepath}|{line}" if keyed_by_line else f"{label}|{filepath}"
        if key in self._seen:
            return
        self._seen.add(key)
        self.results.append(EntryPointCandidate(label=label, filepath=filepath, start_line=line))


def discover_entry_points(repo_root: Path, files: Iterable[Path]) -> List[EntryPointCandidate]:
    """Scan ``files`` for entry point shapes and return labelled candidates.

    Labels follow the ``<framework>:<kind>:<route>`` convention, for example
    ``nextjs:app:POST /api/scan`` or ``supabase:edge:webhook``.
    """
    collector = _Collector()

    for file in files:
        rel_path = normalize_path(to_relative(repo_root, file))
        if not rel_path or not SOURCE_EXT_PATTERN.search(rel_path):
            continue

        if NEXT_MIDDLEWARE_PATTERN.search(rel_path):
            collector.add("nextjs:middleware", rel_path, 1, keyed_by_line=False)
            continue

        if NEXT_APP_ROUTE_PATTERN.search(rel_path):
            app_path = _slice_after_segment(rel_path, "app")
            route_file = _strip_extension(app_path) if app_path else ""
            route_base = re.sub(r"(?:^|/)route$", "", route_file, flags=re.IGNORECASE)
            route_path = _to_route_path(route_base)
            methods = find_method_lines(_read_lines(file))
            if methods:
                for method, line in methods:
                    collector.add(f"nextjs:app:{method} {route_path}", rel_path, line)
            else:
                collector.add(f"nextjs:app:{route_path}", rel_path, 1, keyed_by_line=False)
            continue

        if NEXT_PAGES_API_PATTERN.search(rel_path):
            pages_path = _slice_after_segment(rel_path, "pages/api")
            route_base = (
                re.sub(r"(?:^|/)index$", "", _strip_extension(pages_path), flags=re.IGNORECASE)
                if pages_path
                else ""
            )
            route_path = _to_route_path(f"api/{route_base}" if route_base else "api")
            line = find_first_line(_read_lines(file), _PAGES_HANDLER_PATTERNS)
            collector.add(f"nextjs:pages:{route_path}", rel_path, line or 1)
            continue

        edge_match = SUPABASE_EDGE_PATTERN.search(rel_path)
        if edge_match:
            line = find_first_line(_read_lines(file), _EDGE_SERVE_PATTERNS)
            collector.add(f"supabase:edge:{edge_match.group(1)}", rel_path, line or 1)

    LOGGER.debug("Discovered %d entry points", len(collector.results))
    return collector.results
