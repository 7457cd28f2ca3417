"""Tests for finding parsing and merging."""

from __future__ import annotations

import json

import pytest

from repoaudit.models import Chunk, Finding, FindingLocation, StaticFinding
from repoaudit.scan.findings import (
    findings_for_location,
    merge_findings,
    normalize_severity,
    parse_findings,
    static_to_finding,
)
from repoaudit.scan.understanding import ChunkUnderstandingError

CHUNK = Chunk(
    id="chunk-1",
    filepath="src/api/run.ts",
    chunk_index=0,
    start_line=10,
    end_line=40,
    content="exec(req.query.cmd)",
    content_hash="h",
)


def _finding(rule_type: str, severity: str = "medium", filepath: str = "a.ts", line: int = 1) -> Finding:
    return Finding(
        type=rule_type,
        severity=severity,  # type: ignore[arg-type]
        summary=rule_type,
        location=FindingLocation(filepath=filepath, start_line=line, end_line=line),
    )


class TestNormalizeSeverity:
    """Test normalize_severity function."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("HIGH", "high"),
            (" critical ", "critical"),
            ("info", "low"),
            ("error", "high"),
            ("whatever", "medium"),
            (None, "medium"),
        ],
    )
    def test_mapping(self, raw: object, expected: str) -> None:
        assert normalize_severity(raw) == expected


class TestParseFindings:
    """Test parse_findings function."""

    def test_object_with_findings(self) -> None:
        raw = json.dumps(
            {
                "findings": [
                    {
                        "type": "command_injection",
                        "severity": "critical",
                        "summary": "Shell command built from query string",
                        "location": {"filepath": "./src/api/run.ts", "startLine": 12, "endLine": 14},
                        "evidence": ["exec(req.query.cmd)"],
                    }
                ]
            }
        )

        findings = parse_findings(raw, chunk=CHUNK, default_type="open_scan")

        assert len(findings) == 1
        finding = findings[0]
        assert finding.type == "command_injection"
        assert finding.severity == "critical"
        assert finding.location == FindingLocation("src/api/run.ts", 12, 14)
        assert finding.evidence == ["exec(req.query.cmd)"]
        assert finding.details["chunkId"] == "chunk-1"
        assert finding.source == "llm"

    def test_missing_fields_fall_back_to_chunk(self) -> None:
        findings = parse_findings("```json\n[{\"severity\": \"info\"}]\n```", chunk=CHUNK, default_type="open_scan")

        assert findings[0].type == "open_scan"
        assert findings[0].severity == "low"
        assert findings[0].summary == "open_scan"
        assert findings[0].location == FindingLocation("src/api/run.ts", 10, 40)

    def test_start_line_without_end_line(self) -> None:
        raw = json.dumps([{"type": "x", "location": {"start_line": "15"}}])

        location = parse_findings(raw, chunk=CHUNK, default_type="x")[0].location

        assert (location.start_line, location.end_line) == (15, 15)

    def test_rule_id_alias_and_non_dict_entries(self) -> None:
        raw = json.dumps([{"ruleId": "sql_injection"}, "noise", 3])

        findings = parse_findings(raw, chunk=CHUNK, default_type="open_scan")

        assert [finding.type for finding in findings] == ["sql_injection"]

    def test_empty_findings(self) -> None:
        assert parse_findings('{"findings": []}', chunk=CHUNK, default_type="x") == []

    @pytest.mark.parametrize("raw", ["nothing useful", '{"findings": "none"}'])
    def test_unusable_response_raises(self, raw: str) -> None:
        with pytest.raises(ChunkUnderstandingError):
            parse_findings(raw, chunk=CHUNK, default_type="x")


class TestStaticToFinding:
    """Test static_to_finding function."""

    def test_conversion(self) -> None:
        static = StaticFinding(
            tool="semgrep",
            rule_id="javascript.exec",
            message="exec with user input",
            severity="high",
            filepath="./src/api/run.ts",
            start_line=12,
            end_line=12,
            snippet="exec(cmd)",
        )

        finding = static_to_finding(static)

        assert finding.type == "static:semgrep:javascript.exec"
        assert finding.source == "static"
        assert finding.location.filepath == "src/api/run.ts"
        assert finding.evidence == ["exec(cmd)"]
        assert finding.details == {"tool": "semgrep", "ruleId": "javascript.exec"}


class TestMergeFindings:
    """Test merge_findings function."""

    def test_duplicates_keep_higher_severity(self) -> None:
        low = _finding("idor", "low", "./a.ts", 5)
        low.evidence.append("first")
        high = _finding("idor", "high", "a.ts", 5)
        high.evidence.append("second")
        high.details["ruleId"] = "idor"

        merged = merge_findings(llm=[low, high])

        assert len(merged) == 1
        assert merged[0].severity == "high"
        assert merged[0].evidence == ["first", "second"]
        assert merged[0].details["ruleId"] == "idor"

    def test_different_lines_are_kept(self) -> None:
        merged = merge_findings(llm=[_finding("idor", line=1), _finding("idor", line=2)])

        assert len(merged) == 2

    def test_sorted_by_severity_then_location(self) -> None:
        merged = merge_findings(
            signal=[_finding("b", "low", "z.ts")],
            llm=[_finding("a", "critical", "b.ts"), _finding("c", "critical", "a.ts")],
        )

        assert [(f.type, f.location.filepath) for f in merged] == [
            ("c", "a.ts"),
            ("a", "b.ts"),
            ("b", "z.ts"),
        ]

    def test_static_findings_are_converted(self) -> None:
        static = StaticFinding(
            tool="gitleaks",
            rule_id="aws-key",
            message="AWS key",
            severity="critical",
            filepath="config.ts",
            start_line=1,
            end_line=1,
        )

        merged = merge_findings(static=[static])

        assert merged[0].type == "static:gitleaks:aws-key"
        assert merged[0].evidence == []


class TestFindingsForLocation:
    """Test findings_for_location function."""

    def test_filters_by_normalized_path(self) -> None:
        findings = [_finding("a", filepath="./src/a.ts"), _finding("b", filepath="src/b.ts")]

        assert [f.type for f in findings_for_location(findings, "src/a.ts")] == ["a"]
