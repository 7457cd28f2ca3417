"""Core repoaudit data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

Severity = Literal["low", "medium", "high", "critical"]

SEVERITY_RANK: Dict[str, int] = {"low": 1, "medium": 2, "high": 3, "critical": 4}


@dataclass(slots=True)
class Chunk:
    """Content-addressed line window of a source file."""

    id: str
    filepath: str
    chunk_index: int
    start_line: int
    end_line: int
    content: str
    content_hash: str
    overlap_group_id: Optional[str] = None


@dataclass(slots=True)
class EntryPointCandidate:
    """Externally reachable handler discovered in a repository."""

    label: str
    filepath: str
    start_line: int
    end_line: Optional[int] = None


@dataclass(slots=True)
class ReachabilityInfo:
    entry_points: List[str] = field(default_factory=list)
    min_depth: Optional[int] = None


@dataclass(slots=True)
class EntryPoint:
    type: str = "library"
    identifier: str = "unknown"


@dataclass(slots=True)
class Authentication:
    enforced: str = "unclear"
    mechanism: str = "none"
    location: Optional[str] = None


@dataclass(slots=True)
class Authorization:
    enforced: str = "unclear"
    model: str = "none"


@dataclass(slots=True)
class FindingLocation:
    filepath: str
    start_line: Optional[int] = None
    end_line: Optional[int] = None


@dataclass(slots=True)
class Finding:
    """Security finding produced by a static scanner, a detector or an LLM call."""

    type: str
    severity: Severity
    summary: str
    location: FindingLocation
    evidence: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
    source: Literal["llm", "static", "signal"] = "llm"


@dataclass(slots=True)
class StaticFinding:
    """Finding reported by an external static scanner (semgrep, gitleaks, ...)."""

    tool: str
    rule_id: str
    message: str
    severity: Severity
    filepath: str
    start_line: int
    end_line: int
    snippet: Optional[str] = None
