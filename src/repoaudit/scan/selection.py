"""Routing of chunk signals to candidate rules and rule batches."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Mapping, Optional, Sequence, Set

from repoaudit.scan.catalog import (
    BASELINE_RULE_IDS,
    FAMILY_RULES,
    REPOSITORY_SCAN_RULES,
    ROLE_FAMILY_FALLBACKS,
    RULES_BY_ID,
    Rule,
    format_rule_card,
    resolve_rule_cluster,
)
from repoaudit.scan.understanding import ChunkUnderstanding, FamilyMapping
from repoaudit.security.signals import HIGH_RISK_SIGNAL_IDS, SignalId
from repoaudit.utils.text import estimate_tokens

LOGGER = logging.getLogger(__name__)

Strategy = Literal["signals_primary", "role_fallback", "baseline"]

DEFAULT_MIN_RULES_PER_CHUNK = 3
FALLBACK_RULE_CAP = 5

_CLIENT_ID_SIGNALS = (
    SignalId.CLIENT_SUPPLIED_IDENTIFIER,
    SignalId.CLIENT_SUPPLIED_ORG_ID,
    SignalId.CLIENT_SUPPLIED_USER_ID,
)


@dataclass(slots=True)
class RuleSelection:
    rule_ids: List[str]
    strategy: Strategy
    families: List[str] = field(default_factory=list)
    high_risk: bool = False


@dataclass(slots=True)
class RulePacking:
    packed_rule_ids: List[str]
    estimated_prompt_tokens: int
    truncated: bool
    truncation_reason: Optional[Literal["token_budget", "hard_cap"]] = None


def _normalize_cap(value: Optional[int], default: int) -> int:
    if value is None or value <= 0:
        return default
    return max(1, int(value))


def _lower(value: Optional[str]) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def is_high_risk_chunk(understanding: ChunkUnderstanding) -> bool:
    """Public exposure with a dangerous sink, client ids without authz, or any webhook."""
    signals = understanding.signal_ids
    public_with_sink = _lower(understanding.exposure) == "public" and bool(
        signals & HIGH_RISK_SIGNAL_IDS
    )
    client_id_without_authz = (
        any(signal in signals for signal in _CLIENT_ID_SIGNALS)
        and SignalId.AUTHZ_MISSING_OR_UNKNOWN in signals
    )
    return public_with_sink or client_id_without_authz or SignalId.WEBHOOK_HANDLER in signals


def _score(rule: Rule, understanding: ChunkUnderstanding, signals: Set[SignalId]) -> float:
    score = rule.score(signals)
    if _lower(understanding.exposure) == "public":
        score += 0.25
    role = _lower(understanding.role)
    if role == "api_handler":
        score += 0.15
    elif role == "job_worker":
        score += 0.1
    return score


def _families_of(rule_ids: Sequence[str], rules_by_id: Mapping[str, Rule]) -> List[str]:
    families: List[str] = []
    for rule_id in rule_ids:
        rule = rules_by_id.get(rule_id)
        if rule is None:
            continue
        family = rule.category.strip().lower()
        if family and family not in families:
            families.append(family)
    return families


def _fallback_families(understanding: ChunkUnderstanding) -> List[str]:
    role = _lower(understanding.role)
    if role in ROLE_FAMILY_FALLBACKS and role != "unknown":
        return ROLE_FAMILY_FALLBACKS[role]
    if _lower(understanding.exposure) in ("public", "internal"):
        return ROLE_FAMILY_FALLBACKS["api_handler"]
    return ROLE_FAMILY_FALLBACKS["unknown"]


def _baseline(
    fallback_rule_ids: Sequence[str], rules_by_id: Mapping[str, Rule], min_rules: int
) -> List[str]:
    selected: List[str] = []
    for rule_id in list(fallback_rule_ids) + list(BASELINE_RULE_IDS):
        if len(selected) >= min_rules:
            break
        if rule_id in rules_by_id and rule_id not in selected:
            selected.append(rule_id)
    return selected


def resolve_candidate_rule_ids(
    understanding: Optional[ChunkUnderstanding],
    family_mapping: Optional[FamilyMapping] = None,
    rules_by_id: Mapping[str, Rule] = RULES_BY_ID,
    fallback_rule_ids: Sequence[str] = (),
    min_rules_per_chunk: Optional[int] = DEFAULT_MIN_RULES_PER_CHUNK,
) -> RuleSelection:
    """Select the rules to verify for one chunk.

    Every rule whose signal predicate matches is returned, ordered by signal
    score, with no cap. Without any signal match the selection falls back to
    the families implied by the chunk's role or exposure, and without those to
    a fixed baseline of ``min_rules_per_chunk`` generic rules.
    """
    min_rules = _normalize_cap(min_rules_per_chunk, DEFAULT_MIN_RULES_PER_CHUNK)
    if understanding is None:
        return RuleSelection(
            rule_ids=_baseline(fallback_rule_ids, rules_by_id, min_rules), strategy="baseline"
        )

    signals = understanding.signal_ids
    high_risk = is_high_risk_chunk(understanding)
    scored = sorted(
        (
            (-_score(rule, understanding, signals), rule.id)
            for rule in rules_by_id.values()
            if rule.matches(signals)
        ),
    )
    selected: List[str] = [rule_id for _, rule_id in scored]
    matched_by_signal = bool(selected)

    suggested = family_mapping.suggested_rule_ids if family_mapping is not None else []
    for rule_id in suggested:
        if rule_id in rules_by_id and rule_id not in selected:
            selected.append(rule_id)

    if matched_by_signal:
        return RuleSelection(
            rule_ids=selected,
            strategy="signals_primary",
            families=_families_of(selected, rules_by_id),
            high_risk=high_risk,
        )

    if understanding.role or understanding.exposure:
        target = max(min_rules, min(FALLBACK_RULE_CAP, len(selected)))
        for family in _fallback_families(understanding):
            for rule_id in FAMILY_RULES.get(family, []):
                if len(selected) >= target:
                    break
                if rule_id in rules_by_id and rule_id not in selected:
                    selected.append(rule_id)
            if len(selected) >= target:
                break
        if selected:
            return RuleSelection(
                rule_ids=selected,
                strategy="role_fallback",
                families=_families_of(selected, rules_by_id),
                high_risk=high_risk,
            )

    baseline = _baseline(fallback_rule_ids, rules_by_id, min_rules)
    return RuleSelection(
        rule_ids=baseline,
        strategy="baseline",
        families=_families_of(baseline, rules_by_id),
        high_risk=high_risk,
    )


def chunk_rule_ids(rule_ids: Sequence[str], batch_size: int) -> List[List[str]]:
    """Partition rule ids into batches that never mix clusters.

    Clusters keep the order of their first occurrence; ids inside a cluster
    keep their input order.
    """
    if not rule_ids:
        return []
    size = max(1, int(batch_size))
    clusters: Dict[str, List[str]] = {}
    for rule_id in rule_ids:
        clusters.setdefault(resolve_rule_cluster(rule_id), []).append(rule_id)
    batches: List[List[str]] = []
    for cluster_ids in clusters.values():
        for start in range(0, len(cluster_ids), size):
            batches.append(cluster_ids[start : start + size])
    return batches


def rule_tokens_by_id(rules: Sequence[Rule] = REPOSITORY_SCAN_RULES) -> Dict[str, int]:
    return {rule.id: estimate_tokens(format_rule_card(rule)) for rule in rules}


def pack_rule_ids_by_token_budget(
    candidate_rule_ids: Sequence[str],
    base_prompt_tokens: int,
    max_prompt_tokens: int,
    soft_rule_cap: int,
    hard_rule_cap: int,
    rule_tokens: Mapping[str, int],
) -> RulePacking:
    """Pack rule cards into a single prompt without exceeding the token budget.

    Ids without a token estimate are skipped. Packing stops at the first rule
    that would overflow the budget or once ``hard_rule_cap`` rules are packed.
    """
    packed: List[str] = []
    tokens = base_prompt_tokens
    reason: Optional[Literal["token_budget", "hard_cap"]] = None
    eligible = [rule_id for rule_id in candidate_rule_ids if rule_id in rule_tokens]
    soft_limit = max(1, int(soft_rule_cap))
    hard_limit = max(soft_limit, int(hard_rule_cap))

    for rule_id in eligible:
        if len(packed) >= hard_limit:
            reason = "hard_cap"
            break
        cost = rule_tokens[rule_id]
        if tokens + cost > max_prompt_tokens:
            reason = "token_budget"
            break
        packed.append(rule_id)
        tokens += cost

    truncated = len(packed) < len(eligible)
    if truncated and reason is None:
        reason = "token_budget"
    if truncated:
        LOGGER.debug("Rule packing truncated at %d of %d rules (%s)", len(packed), len(eligible), reason)
    return RulePacking(
        packed_rule_ids=packed,
        estimated_prompt_tokens=tokens,
        truncated=truncated,
        truncation_reason=reason,
    )
