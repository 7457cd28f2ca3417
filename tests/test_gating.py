"""Tests for the open-scan gate."""

from __future__ import annotations

from typing import Any, Dict, List

import pytest

from repoaudit.models import Finding, FindingLocation
from repoaudit.scan.gating import get_open_scan_decision, should_run_open_scan, signal_coverage
from repoaudit.scan.understanding import (
    ChunkUnderstanding,
    UnderstandingFallback,
    parse_chunk_understanding_record,
)

PUBLIC_FILE = "src/service/public.ts"
EXEC_RULES = [
    "command_injection",
    "missing_authentication",
    "missing_timeout",
    "command_output_logging",
    "excessive_data_exposure",
]


def _understanding(signals: List[str], **fields: Any) -> ChunkUnderstanding:
    record: Dict[str, Any] = {
        "signals": [{"id": signal, "evidence": signal, "confidence": 0.9} for signal in signals],
        **fields,
    }
    return parse_chunk_understanding_record(record, UnderstandingFallback("chunk", PUBLIC_FILE))


def _finding(rule_type: str, filepath: str = PUBLIC_FILE, **details: Any) -> Finding:
    return Finding(
        type=rule_type,
        severity="high",
        summary=rule_type,
        location=FindingLocation(filepath=filepath, start_line=3),
        details=dict(details),
    )


class TestSignalCoverage:
    """Test signal_coverage function."""

    def test_ratio(self) -> None:
        assert signal_coverage(1, ["a", "b", "c", "d"]) == 0.25

    def test_capped(self) -> None:
        assert signal_coverage(9, ["a"]) == 1.0

    def test_no_rules(self) -> None:
        assert signal_coverage(3, []) == 0.0


class TestShouldRunOpenScan:
    """Test should_run_open_scan function."""

    def test_controls_present_with_good_coverage_skips(self) -> None:
        understanding = _understanding(["authn_present", "authz_present", "http_request_sink"])
        rules = ["missing_timeout", "missing_bearer_token", "anon_key_bearer", "jwt_validation_bypass", "idor"]

        assert should_run_open_scan(understanding, rules, [], "signals_primary") is False

    def test_fallback_strategy_runs(self) -> None:
        understanding = _understanding([], role="db_access")

        assert should_run_open_scan(understanding, ["sql_injection"], [], "role_fallback") is True
        assert should_run_open_scan(understanding, ["sql_injection"], [], "baseline") is True

    def test_low_coverage_runs(self) -> None:
        understanding = _understanding(["authn_present"])
        rules = ["jwt_validation_bypass", "weak_token_generation", "session_fixation"]

        decision = get_open_scan_decision(understanding, rules)

        assert decision.should_run
        assert decision.reasons == ["low_signal_coverage"]

    def test_unverified_high_risk_runs(self) -> None:
        understanding = _understanding(["exec_sink"], exposure="public")

        decision = get_open_scan_decision(understanding, EXEC_RULES, [])

        assert decision.should_run
        assert decision.high_risk
        assert decision.reasons == ["high_risk_unverified:exec_sink"]

    def test_rule_finding_covers_high_risk(self) -> None:
        understanding = _understanding(["exec_sink"], exposure="public")

        assert should_run_open_scan(understanding, EXEC_RULES, [_finding("command_injection")]) is False

    def test_rule_id_in_details_covers_high_risk(self) -> None:
        understanding = _understanding(["exec_sink"], exposure="public")
        finding = _finding("open_scan", filepath="./src/service/public.ts", ruleId="missing_timeout")

        decision = get_open_scan_decision(understanding, EXEC_RULES, [finding])

        assert not decision.should_run
        assert decision.reasons == ["high_risk_covered"]

    def test_finding_in_other_file_does_not_cover(self) -> None:
        understanding = _understanding(["exec_sink"], exposure="public")

        assert should_run_open_scan(
            understanding, EXEC_RULES, [_finding("command_injection", filepath="src/other.ts")]
        ) is True

    def test_unrelated_finding_does_not_cover(self) -> None:
        understanding = _understanding(["exec_sink"], exposure="public")

        assert should_run_open_scan(understanding, EXEC_RULES, [_finding("idor")]) is True

    def test_unbacked_high_risk_signal_falls_through_to_coverage(self) -> None:
        understanding = _understanding(["template_render", "api_handler"])

        decision = get_open_scan_decision(understanding, ["missing_authentication", "idor"])

        assert not decision.should_run
        assert decision.reasons == ["sufficient_coverage"]

    def test_controls_with_missing_counterpart_do_not_skip(self) -> None:
        understanding = _understanding(["authn_present", "authn_missing_or_unknown"])

        decision = get_open_scan_decision(understanding, ["missing_authentication"] * 5)

        assert "controls_present" not in decision.reasons

    @pytest.mark.parametrize("threshold, expected", [(0.2, False), (0.9, True)])
    def test_threshold_is_configurable(self, threshold: float, expected: bool) -> None:
        understanding = _understanding(["authn_present"])
        rules = ["jwt_validation_bypass", "weak_token_generation", "session_fixation"]

        assert should_run_open_scan(understanding, rules, min_coverage=threshold) is expected

    def test_no_understanding_runs(self) -> None:
        assert should_run_open_scan(None, ["missing_authentication"]) is True
