"""Breadth-first reachability from entry points over an external call graph.

The call graph is optional. When it is missing, or when none of the entry
points resolve to a graph node, reachability is *unknown*. Callers must not
read that as *unreachable*.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from repoaudit.models import EntryPointCandidate, ReachabilityInfo
from repoaudit.utils.text import normalize_path

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 8
DEFAULT_MAX_ENTRY_POINTS = 3


def make_anchor_id(filepath: str, start_line: int, end_line: int) -> str:
    return f"{normalize_path(filepath)}:{start_line}:{end_line}"


def parse_anchor_id(anchor_id: str) -> Optional[Tuple[str, int, int]]:
    path, _, rest = anchor_id.rpartition(":")
    filepath, _, start = path.rpartition(":")
    try:
        return filepath, int(start), int(rest)
    except ValueError:
        return None


@dataclass(slots=True)
class CallGraph:
    """Function-level call graph keyed by opaque function ids.

    Anchors identify the source span of a function as ``path:start:end``.
    """

    function_id_by_anchor_id: Dict[str, str] = field(default_factory=dict)
    edges_by_caller: Dict[str, List[str]] = field(default_factory=dict)
    anchor_id_by_function_id: Dict[str, str] = field(default_factory=dict)
    _spans_by_file: Dict[str, List[Tuple[int, int, str]]] = field(
        default_factory=dict, init=False, repr=False
    )

    def __post_init__(self) -> None:
        for anchor_id in self.function_id_by_anchor_id:
            parsed = parse_anchor_id(anchor_id)
            if parsed is None:
                continue
            filepath, start, end = parsed
            self._spans_by_file.setdefault(normalize_path(filepath), []).append((start, end, anchor_id))

    def anchor_id_for(self, filepath: str, start_line: int, end_line: int) -> Optional[str]:
        anchor_id = make_anchor_id(filepath, start_line, end_line)
        return anchor_id if anchor_id in self.function_id_by_anchor_id else None

    def function_spans(self) -> Dict[str, List[Tuple[int, int]]]:
        """Line spans of every known function, grouped by file."""
        return {
            filepath: [(start, end) for start, end, _ in spans]
            for filepath, spans in self._spans_by_file.items()
        }

    def anchors_in_range(self, filepath: str, start_line: int, end_line: int) -> List[str]:
        spans = self._spans_by_file.get(normalize_path(filepath), [])
        return [anchor for start, end, anchor in spans if start <= end_line and end >= start_line]

    def resolve_anchor(self, filepath: str, line: int) -> Optional[str]:
        """Return the narrowest anchor in ``filepath`` that contains ``line``."""
        best: Optional[Tuple[int, str]] = None
        for start, end, anchor in self._spans_by_file.get(normalize_path(filepath), []):
            if start <= line <= end:
                width = end - start
                if best is None or width < best[0]:
                    best = (width, anchor)
        return best[1] if best else None


@dataclass(slots=True)
class ReachabilityIndex:
    entry_points: List[EntryPointCandidate]
    call_graph: CallGraph
    by_anchor_id: Dict[str, ReachabilityInfo]
    max_entry_points_per_node: int = DEFAULT_MAX_ENTRY_POINTS

    def lookup(self, filepath: str, start_line: int, end_line: int) -> Optional[ReachabilityInfo]:
        """Merge reachability of every function overlapping the line range.

        Returns None when nothing in range is known to be reachable.
        """
        merged: List[str] = []
        min_depth: Optional[int] = None
        for anchor_id in self.call_graph.anchors_in_range(filepath, start_line, end_line):
            info = self.by_anchor_id.get(anchor_id)
            if info is None:
                continue
            for label in info.entry_points:
                if len(merged) >= self.max_entry_points_per_node:
                    break
                if label not in merged:
                    merged.append(label)
            if info.min_depth is not None:
                min_depth = info.min_depth if min_depth is None else min(min_depth, info.min_depth)
        if not merged:
            return None
        return ReachabilityInfo(entry_points=merged, min_depth=min_depth)


def _merge_into(
    target: Dict[str, ReachabilityInfo],
    anchor_id: str,
    labels: Iterable[str],
    depth: int,
    cap: int,
) -> None:
    existing = target.get(anchor_id)
    if existing is None:
        target[anchor_id] = ReachabilityInfo(entry_points=list(labels)[:cap], min_depth=depth)
        return
    for label in labels:
        if len(existing.entry_points) >= cap:
            break
        if label not in existing.entry_points:
            existing.entry_points.append(label)
    existing.min_depth = depth if existing.min_depth is None else min(existing.min_depth, depth)


def build_reachability_index(
    call_graph: Optional[CallGraph],
    entry_points: Sequence[EntryPointCandidate],
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    max_entry_points_per_node: int = DEFAULT_MAX_ENTRY_POINTS,
) -> Optional[ReachabilityIndex]:
    """Traverse the call graph breadth-first from every resolvable entry point."""
    if call_graph is None:
        LOGGER.info("No call graph available; reachability unknown")
        return None

    roots: List[Tuple[str, str]] = []
    for entry_point in entry_points:
        anchor_id = call_graph.resolve_anchor(entry_point.filepath, entry_point.start_line)
        if anchor_id is None:
            continue
        function_id = call_graph.function_id_by_anchor_id.get(anchor_id)
        if function_id is None:
            continue
        roots.append((entry_point.label, function_id))

    if not roots:
        LOGGER.info("No entry point resolved to a call graph node; reachability unknown")
        return None

    labels_by_function: Dict[str, List[str]] = {}
    depth_by_function: Dict[str, int] = {}
    visited: Set[Tuple[str, str]] = set()
    queue: Deque[Tuple[str, str, int]] = deque(
        (function_id, label, 0) for label, function_id in roots
    )

    while queue:
        function_id, label, depth = queue.popleft()
        if depth > max_depth or (label, function_id) in visited:
            continue
        visited.add((label, function_id))

        labels = labels_by_function.setdefault(function_id, [])
        if label not in labels and len(labels) < max_entry_points_per_node:
            labels.append(label)
        if depth < depth_by_function.get(function_id, depth + 1):
            depth_by_function[function_id] = depth

        if depth >= max_depth:
            continue
        for callee in call_graph.edges_by_caller.get(function_id, ()):
            queue.append((callee, label, depth + 1))

    by_anchor_id: Dict[str, ReachabilityInfo] = {}
    for function_id, labels in labels_by_function.items():
        anchor_id = call_graph.anchor_id_by_function_id.get(function_id)
        if anchor_id is None:
            continue
        _merge_into(
            by_anchor_id, anchor_id, labels, depth_by_function[function_id], max_entry_points_per_node
        )

    LOGGER.debug("Reachability computed for %d functions", len(by_anchor_id))
    return ReachabilityIndex(
        entry_points=list(entry_points),
        call_graph=call_graph,
        by_anchor_id=by_anchor_id,
        max_entry_points_per_node=max_entry_points_per_node,
    )
