"""Tests for data models."""

from __future__ import annotations

from repoaudit.models import (
    SEVERITY_RANK,
    Authentication,
    Chunk,
    EntryPoint,
    Finding,
    FindingLocation,
    ReachabilityInfo,
)


class TestChunk:
    """Test Chunk dataclass."""

    def test_create_chunk(self) -> None:
        chunk = Chunk(
            id="abc",
            filepath="src/app.ts",
            chunk_index=0,
            start_line=1,
            end_line=10,
            content="const a = 1;",
            content_hash="hash",
        )

        assert chunk.overlap_group_id is None
        assert chunk.end_line == 10


class TestFinding:
    """Test Finding dataclass."""

    def test_defaults(self) -> None:
        finding = Finding(
            type="sql_injection",
            severity="high",
            summary="Raw SQL with request input",
            location=FindingLocation(filepath="src/db.ts", start_line=4),
        )

        assert finding.source == "llm"
        assert finding.evidence == []
        assert finding.details == {}

    def test_default_collections_are_independent(self) -> None:
        first = Finding(type="a", severity="low", summary="", location=FindingLocation("x"))
        second = Finding(type="b", severity="low", summary="", location=FindingLocation("y"))

        first.evidence.append("line")

        assert second.evidence == []


class TestHeaderModels:
    """Test defaults used by the security header."""

    def test_unknown_defaults(self) -> None:
        assert EntryPoint().type == "library"
        assert EntryPoint().identifier == "unknown"
        assert Authentication().enforced == "unclear"
        assert ReachabilityInfo().entry_points == []

    def test_severity_rank_order(self) -> None:
        ranks = [SEVERITY_RANK[name] for name in ("low", "medium", "high", "critical")]

        assert ranks == sorted(ranks)
