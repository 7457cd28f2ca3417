"""Decide whether a chunk also gets an unconstrained open scan.

The open scan is a recall backstop. It runs when rule selection fell back to
role or baseline rules, when a high-risk sink has not been confirmed by a
rule-scoped finding, or when too few signals back the selected rules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence, Set

from repoaudit.models import Finding
from repoaudit.scan.catalog import RULES_BY_ID, AllSignals, Rule
from repoaudit.scan.selection import Strategy
from repoaudit.scan.understanding import ChunkUnderstanding
from repoaudit.security.signals import CONTROL_PRESENT_SIGNALS, HIGH_RISK_SIGNAL_IDS, SignalId
from repoaudit.utils.text import normalize_path

LOGGER = logging.getLogger(__name__)

DEFAULT_MIN_COVERAGE = 0.5


@dataclass(slots=True)
class OpenScanDecision:
    should_run: bool
    reasons: List[str] = field(default_factory=list)
    high_risk: bool = False
    signal_count: int = 0
    coverage: float = 0.0


def signal_coverage(signal_count: int, selected_rule_ids: Sequence[str]) -> float:
    """Ratio of explicit signals to selected rules, capped at 1."""
    if not selected_rule_ids:
        return 0.0
    return min(1.0, signal_count / len(selected_rule_ids))


def _predicate_signals(rule: Rule) -> Set[SignalId]:
    if rule.match is None:
        return set()
    signals = set(rule.match.signals)
    if isinstance(rule.match, AllSignals):
        signals.update(rule.match.any_of)
    return signals


def _finding_rule_id(finding: Finding) -> str:
    for key in ("ruleId", "rule_id"):
        value = finding.details.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return finding.type


def _is_covered(rule_ids: Set[str], filepath: str, findings: Sequence[Finding]) -> bool:
    for finding in findings:
        if normalize_path(finding.location.filepath) != filepath:
            continue
        if finding.type in rule_ids or _finding_rule_id(finding) in rule_ids:
            return True
    return False


def get_open_scan_decision(
    understanding: Optional[ChunkUnderstanding],
    selected_rule_ids: Sequence[str],
    rule_findings_so_far: Sequence[Finding] = (),
    strategy: Strategy = "signals_primary",
    *,
    min_coverage: float = DEFAULT_MIN_COVERAGE,
    rules_by_id: Mapping[str, Rule] = RULES_BY_ID,
) -> OpenScanDecision:
    signals = understanding.signal_ids if understanding is not None else set()
    signal_count = len(signals)
    coverage = signal_coverage(signal_count, selected_rule_ids)
    high_risk_signals = signals & HIGH_RISK_SIGNAL_IDS
    decision = OpenScanDecision(
        should_run=True,
        high_risk=bool(high_risk_signals),
        signal_count=signal_count,
        coverage=coverage,
    )

    if strategy != "signals_primary" or understanding is None:
        decision.reasons.append("fallback_selection")
        return decision

    controls_asserted = any(
        present in signals and missing not in signals
        for present, missing in CONTROL_PRESENT_SIGNALS.items()
    )
    if controls_asserted and not high_risk_signals and coverage >= min_coverage:
        decision.should_run = False
        decision.reasons.append("controls_present")
        return decision

    filepath = normalize_path(understanding.file_path)
    backed = False
    for signal in sorted(high_risk_signals, key=lambda item: item.value):
        backing_rules = {
            rule_id
            for rule_id in selected_rule_ids
            if rule_id in rules_by_id and signal in _predicate_signals(rules_by_id[rule_id])
        }
        if not backing_rules:
            continue
        backed = True
        if not _is_covered(backing_rules, filepath, rule_findings_so_far):
            decision.reasons.append(f"high_risk_unverified:{signal.value}")
            return decision
    if backed:
        decision.should_run = False
        decision.reasons.append("high_risk_covered")
        return decision

    if coverage < min_coverage:
        decision.reasons.append("low_signal_coverage")
        return decision

    decision.should_run = False
    decision.reasons.append("sufficient_coverage")
    return decision


def should_run_open_scan(
    understanding: Optional[ChunkUnderstanding],
    selected_rule_ids: Sequence[str],
    rule_findings_so_far: Sequence[Finding] = (),
    strategy: Strategy = "signals_primary",
    *,
    min_coverage: float = DEFAULT_MIN_COVERAGE,
) -> bool:
    decision = get_open_scan_decision(
        understanding,
        selected_rule_ids,
        rule_findings_so_far,
        strategy,
        min_coverage=min_coverage,
    )
    LOGGER.debug(
        "Open scan %s for %s: %s",
        "enabled" if decision.should_run else "skipped",
        understanding.chunk_id if understanding is not None else "<no understanding>",
        ", ".join(decision.reasons),
    )
    return decision.should_run
