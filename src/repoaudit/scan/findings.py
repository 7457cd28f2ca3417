"""Parsing, conversion and merging of security findings."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from repoaudit.models import SEVERITY_RANK, Chunk, Finding, FindingLocation, Severity, StaticFinding
from repoaudit.scan.understanding import ChunkUnderstandingError, extract_json
from repoaudit.utils.text import normalize_path

LOGGER = logging.getLogger(__name__)

DEFAULT_SEVERITY: Severity = "medium"


def normalize_severity(value: Any) -> Severity:
    if isinstance(value, str):
        token = value.strip().lower()
        if token in SEVERITY_RANK:
            return token  # type: ignore[return-value]
        if token in ("info", "informational", "note"):
            return "low"
        if token in ("error", "severe"):
            return "high"
    return DEFAULT_SEVERITY


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and value >= 1:
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
        return number if number >= 1 else None
    return None


class FindingRecord(BaseModel):
    """Loosely typed finding as returned by an LLM."""

    type: Optional[str] = None
    severity: str = DEFAULT_SEVERITY
    summary: str = ""
    filepath: Optional[str] = None
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    evidence: List[str] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "FindingRecord":
        location = raw.get("location") if isinstance(raw.get("location"), dict) else {}
        return cls.model_validate(
            {
                "type": raw.get("type") or raw.get("ruleId") or raw.get("rule_id"),
                "severity": raw.get("severity"),
                "summary": raw.get("summary") or raw.get("title") or raw.get("description"),
                "filepath": location.get("filepath") or raw.get("filepath"),
                "start_line": location.get("startLine", location.get("start_line")),
                "end_line": location.get("endLine", location.get("end_line")),
                "evidence": raw.get("evidence"),
                "details": raw.get("details"),
            }
        )

    @field_validator("type", "filepath", mode="before")
    @classmethod
    def clean_optional_str(cls, value: Any) -> Optional[str]:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    @field_validator("severity", mode="before")
    @classmethod
    def coerce_severity(cls, value: Any) -> str:
        return normalize_severity(value)

    @field_validator("summary", mode="before")
    @classmethod
    def coerce_summary(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    @field_validator("start_line", "end_line", mode="before")
    @classmethod
    def coerce_line(cls, value: Any) -> Optional[int]:
        return _positive_int(value)

    @field_validator("evidence", mode="before")
    @classmethod
    def coerce_evidence(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            return [value.strip()] if value.strip() else []
        if not isinstance(value, list):
            return []
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]

    @field_validator("details", mode="before")
    @classmethod
    def coerce_details(cls, value: Any) -> Dict[str, Any]:
        return dict(value) if isinstance(value, dict) else {}


def parse_findings(raw_text: str, *, chunk: Chunk, default_type: str) -> List[Finding]:
    """Parse an LLM finding list for ``chunk``.

    Accepts a bare list or an object with a ``findings`` list. Entries that
    are not objects are skipped. Missing locations fall back to the chunk's.
    Raises :class:`ChunkUnderstandingError` when no JSON can be found at all.
    """
    payload = extract_json(raw_text)
    if isinstance(payload, dict):
        entries = payload.get("findings", [])
    else:
        entries = payload
    if not isinstance(entries, list):
        raise ChunkUnderstandingError("Finding response is not a list")

    findings: List[Finding] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        try:
            record = FindingRecord.from_raw(entry)
        except ValidationError as exc:
            LOGGER.debug("Skipping malformed finding for %s: %s", chunk.id, exc)
            continue
        start_line = record.start_line or chunk.start_line
        end_line = record.end_line or (chunk.end_line if record.start_line is None else start_line)
        findings.append(
            Finding(
                type=record.type or default_type,
                severity=record.severity,  # type: ignore[arg-type]
                summary=record.summary or (record.type or default_type),
                location=FindingLocation(
                    filepath=normalize_path(record.filepath or chunk.filepath),
                    start_line=start_line,
                    end_line=max(start_line, end_line),
                ),
                evidence=record.evidence,
                details={**record.details, "chunkId": chunk.id},
                source="llm",
            )
        )
    return findings


def static_to_finding(static: StaticFinding) -> Finding:
    evidence = [static.snippet] if static.snippet else []
    return Finding(
        type=f"static:{static.tool}:{static.rule_id}",
        severity=normalize_severity(static.severity),
        summary=static.message,
        location=FindingLocation(
            filepath=normalize_path(static.filepath),
            start_line=static.start_line,
            end_line=static.end_line,
        ),
        evidence=evidence,
        details={"tool": static.tool, "ruleId": static.rule_id},
        source="static",
    )


def _dedupe_key(finding: Finding) -> Tuple[str, str, int]:
    return (
        finding.type,
        normalize_path(finding.location.filepath),
        finding.location.start_line or 0,
    )


def merge_findings(
    static: Iterable[StaticFinding] = (),
    signal: Iterable[Finding] = (),
    llm: Iterable[Finding] = (),
) -> List[Finding]:
    """Combine every finding source into one de-duplicated, ranked list.

    Duplicates share type, file and start line. The survivor carries the
    higher severity and the union of both evidence lists.
    """
    merged: Dict[Tuple[str, str, int], Finding] = {}
    candidates: List[Finding] = [static_to_finding(item) for item in static]
    candidates.extend(signal)
    candidates.extend(llm)

    for finding in candidates:
        key = _dedupe_key(finding)
        existing = merged.get(key)
        if existing is None:
            merged[key] = finding
            continue
        if SEVERITY_RANK[finding.severity] > SEVERITY_RANK[existing.severity]:
            existing.severity = finding.severity
            existing.summary = finding.summary or existing.summary
        for item in finding.evidence:
            if item not in existing.evidence:
                existing.evidence.append(item)
        for name, value in finding.details.items():
            existing.details.setdefault(name, value)

    return sorted(
        merged.values(),
        key=lambda item: (
            -SEVERITY_RANK[item.severity],
            normalize_path(item.location.filepath),
            item.location.start_line or 0,
            item.type,
        ),
    )


def findings_for_location(findings: Iterable[Finding], filepath: str) -> List[Finding]:
    target = normalize_path(filepath)
    return [finding for finding in findings if normalize_path(finding.location.filepath) == target]
