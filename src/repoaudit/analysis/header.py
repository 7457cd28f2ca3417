"""Rendering and splitting of the security header prepended to chunk context."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, NamedTuple, Optional, Sequence

from repoaudit.models import Authentication, Authorization, EntryPoint, ReachabilityInfo

if TYPE_CHECKING:
    from repoaudit.scan.understanding import ChunkUnderstanding

HEADER_START_MARKER = "ENTRY_POINT:"
HEADER_END_MARKER = "SECURITY_ASSUMPTIONS:"


@dataclass(slots=True)
class SecurityHeader:
    entry_point: EntryPoint = field(default_factory=EntryPoint)
    execution_role: str = "unknown"
    trust_boundaries: List[str] = field(default_factory=list)
    authentication: Authentication = field(default_factory=Authentication)
    authorization: Authorization = field(default_factory=Authorization)
    input_sources: List[str] = field(default_factory=list)
    data_sensitivity: List[str] = field(default_factory=list)
    sinks: List[str] = field(default_factory=list)
    reachability: Optional[ReachabilityInfo] = None
    security_assumptions: List[str] = field(default_factory=list)

    @classmethod
    def from_understanding(
        cls,
        understanding: "ChunkUnderstanding",
        reachability: Optional[ReachabilityInfo] = None,
    ) -> "SecurityHeader":
        """Summarize a normalized chunk understanding as a header."""
        signal_ids = {signal.id for signal in understanding.signals}
        exposure = understanding.exposure or ""
        role = understanding.role or "unknown"

        if "authn_present" in signal_ids:
            authn = Authentication(enforced="yes", mechanism="detected")
        elif "authn_missing_or_unknown" in signal_ids:
            authn = Authentication(enforced="no")
        else:
            authn = Authentication()
        if "authz_present" in signal_ids:
            authz = Authorization(enforced="yes", model="detected")
        elif "authz_missing_or_unknown" in signal_ids:
            authz = Authorization(enforced="no")
        else:
            authz = Authorization()

        boundaries = []
        if exposure in ("public", "internal"):
            boundaries.append(f"{exposure} caller -> {role}")

        sinks = [
            str(sink.get("type"))
            for sink in understanding.data_sinks or []
            if isinstance(sink, dict) and sink.get("type")
        ]
        inputs = [identifier.source for identifier in understanding.identifiers]
        entry_label = reachability.entry_points[0] if reachability and reachability.entry_points else None

        return cls(
            entry_point=EntryPoint(
                type="http_handler" if exposure == "public" else ("internal" if exposure else "library"),
                identifier=entry_label or understanding.file_path,
            ),
            execution_role=role,
            trust_boundaries=boundaries,
            authentication=authn,
            authorization=authz,
            input_sources=inputs,
            sinks=sinks,
            reachability=reachability,
        )


def _one_line(value: str) -> str:
    return value.replace("\r", " ").replace("\n", " ")


def _render_list(lines: List[str], label: str, items: Sequence[str]) -> None:
    lines.append(f"{label}:")
    if not items:
        lines.append("  - none")
        return
    lines.extend(f"  - {item}" for item in items)


def render_security_header(header: SecurityHeader) -> str:
    lines: List[str] = []
    lines.append(HEADER_START_MARKER)
    lines.append(f"  type: {header.entry_point.type or 'library'}")
    lines.append(f"  identifier: {header.entry_point.identifier or 'unknown'}")
    lines.append("")
    lines.append("EXECUTION_ROLE:")
    lines.append(f"  {header.execution_role or 'unknown'}")
    lines.append("")
    _render_list(lines, "TRUST_BOUNDARIES", header.trust_boundaries)
    lines.append("")
    lines.append("AUTHENTICATION:")
    lines.append(f"  enforced: {header.authentication.enforced or 'unclear'}")
    lines.append(f"  mechanism: {header.authentication.mechanism or 'none'}")
    if header.authentication.location:
        lines.append(f"  location: {header.authentication.location}")
    lines.append("")
    lines.append("AUTHORIZATION:")
    lines.append(f"  enforced: {header.authorization.enforced or 'unclear'}")
    lines.append(f"  model: {header.authorization.model or 'none'}")
    lines.append("")
    _render_list(lines, "INPUT_SOURCES", header.input_sources)
    lines.append("")
    _render_list(lines, "DATA_SENSITIVITY", header.data_sensitivity)
    lines.append("")
    _render_list(lines, "SINKS", header.sinks)
    lines.append("")
    lines.append("REACHABILITY:")
    entry_points = header.reachability.entry_points if header.reachability else []
    if not entry_points:
        lines.append("  entry_points: none")
    else:
        lines.append("  entry_points:")
        lines.extend(f"    - {entry_point}" for entry_point in entry_points)
    if header.reachability is not None and header.reachability.min_depth is not None:
        lines.append(f"  min_depth: {header.reachability.min_depth}")
    lines.append("")
    _render_list(lines, "SECURITY_ASSUMPTIONS", header.security_assumptions)
    # Trailing blank line terminates the header block.
    lines.append("")
    return "\n".join(_one_line(line) for line in lines)


class HeaderSplit(NamedTuple):
    header: Optional[str]
    body: str
    header_line_count: int


def split_security_header(content: str) -> HeaderSplit:
    """Separate a rendered header from the chunk body that follows it.

    The header ends at the first blank line after an unindented
    ``SECURITY_ASSUMPTIONS:`` line. Rendered values are always indented, so a
    value equal to a section label never ends the header early. Content that
    does not start with ``ENTRY_POINT:`` has no header.
    """
    if not content:
        return HeaderSplit(None, content, 0)
    lines = content.split("\n")
    if lines[0].strip() != HEADER_START_MARKER:
        return HeaderSplit(None, content, 0)

    saw_assumptions = False
    end_index = -1
    for index, line in enumerate(lines):
        if line.rstrip() == HEADER_END_MARKER:
            saw_assumptions = True
            continue
        if saw_assumptions and line.strip() == "":
            end_index = index
            break
    if end_index == -1:
        return HeaderSplit(None, content, 0)

    return HeaderSplit(
        header="\n".join(lines[:end_index]),
        body="\n".join(lines[end_index + 1 :]),
        header_line_count=end_index + 1,
    )


def prepend_security_header(header: SecurityHeader, body: str) -> str:
    return f"{render_security_header(header)}\n{body}"
