"""Tests for the rule catalog and candidate rule selection."""

from __future__ import annotations

from typing import Any, Dict, List

import pytest

from repoaudit.scan.catalog import (
    BASELINE_RULE_IDS,
    FAMILY_RULES,
    MISC_CLUSTER,
    REPOSITORY_SCAN_RULES,
    ROLE_FAMILY_FALLBACKS,
    RULES_BY_ID,
    AllSignals,
    AnySignals,
    format_rule_card,
    resolve_rule_cluster,
)
from repoaudit.scan.selection import (
    chunk_rule_ids,
    is_high_risk_chunk,
    pack_rule_ids_by_token_budget,
    resolve_candidate_rule_ids,
    rule_tokens_by_id,
)
from repoaudit.scan.understanding import (
    ChunkUnderstanding,
    UnderstandingFallback,
    parse_chunk_understanding_record,
    parse_family_mapping_record,
)
from repoaudit.security.signals import SignalId


def _understanding(signals: List[str] = (), **fields: Any) -> ChunkUnderstanding:
    record: Dict[str, Any] = {
        "signals": [{"id": signal, "evidence": signal, "confidence": 0.9} for signal in signals],
        **fields,
    }
    return parse_chunk_understanding_record(record, UnderstandingFallback("chunk", "src/a.ts"))


class TestCatalog:
    """Test the static rule catalog."""

    def test_rule_ids_unique(self) -> None:
        ids = [rule.id for rule in REPOSITORY_SCAN_RULES]

        assert len(ids) == len(set(ids)) == len(RULES_BY_ID)

    def test_family_and_baseline_ids_exist(self) -> None:
        for family, rule_ids in FAMILY_RULES.items():
            for rule_id in rule_ids:
                assert rule_id in RULES_BY_ID, f"{family}: {rule_id}"
        assert all(rule_id in RULES_BY_ID for rule_id in BASELINE_RULE_IDS)

    def test_role_fallback_families_exist(self) -> None:
        for families in ROLE_FAMILY_FALLBACKS.values():
            assert all(family in FAMILY_RULES for family in families)

    def test_resolve_rule_cluster(self) -> None:
        assert resolve_rule_cluster("sql_injection") == "injection_exec"
        assert resolve_rule_cluster("no_such_rule") == MISC_CLUSTER

    def test_rule_without_predicate_never_matches(self) -> None:
        rule = RULES_BY_ID["public_storage_bucket"]

        assert rule.match is None
        assert not rule.matches(set(SignalId))
        assert rule.score(set(SignalId)) == 0.0

    def test_format_rule_card(self) -> None:
        card = format_rule_card(RULES_BY_ID["sql_injection"])

        assert card.startswith("- id: sql_injection\n  title: SQL injection")
        assert "  guidance:\n    - " in card


class TestPredicates:
    """Test AnySignals and AllSignals."""

    def test_any_signals(self) -> None:
        predicate = AnySignals((SignalId.EXEC_SINK, SignalId.EVAL_SINK))

        assert predicate.matches({SignalId.EVAL_SINK})
        assert not predicate.matches({SignalId.RAW_SQL_SINK})
        assert predicate.score({SignalId.EXEC_SINK}) == 2.0

    def test_all_signals(self) -> None:
        predicate = AllSignals((SignalId.RAW_SQL_SINK, SignalId.UNTRUSTED_INPUT_PRESENT))

        assert predicate.matches({SignalId.RAW_SQL_SINK, SignalId.UNTRUSTED_INPUT_PRESENT})
        assert not predicate.matches({SignalId.RAW_SQL_SINK})
        assert predicate.score({SignalId.RAW_SQL_SINK, SignalId.UNTRUSTED_INPUT_PRESENT}) == 6.0

    def test_all_signals_with_any_of(self) -> None:
        rule = RULES_BY_ID["webhook_code_execution"]

        assert not rule.matches({SignalId.WEBHOOK_HANDLER})
        assert rule.matches({SignalId.WEBHOOK_HANDLER, SignalId.EVAL_SINK})
        assert not rule.matches({SignalId.EXEC_SINK})
        assert rule.score({SignalId.WEBHOOK_HANDLER, SignalId.EXEC_SINK}) == 5.0

    def test_optional_signals_add_to_score(self) -> None:
        rule = RULES_BY_ID["sql_injection"]
        required = {SignalId.RAW_SQL_SINK, SignalId.UNTRUSTED_INPUT_PRESENT}

        assert rule.score(required | {SignalId.UNVALIDATED_INPUT}) == rule.score(required) + 1


class TestResolveCandidateRuleIds:
    """Test resolve_candidate_rule_ids function."""

    def test_sql_injection_requires_untrusted_input(self) -> None:
        selection = resolve_candidate_rule_ids(
            _understanding(["raw_sql_sink", "untrusted_input_present"])
        )

        assert selection.strategy == "signals_primary"
        assert "sql_injection" in selection.rule_ids
        assert selection.rule_ids[0] == "sql_injection"

    def test_raw_sql_alone_excludes_sql_injection(self) -> None:
        selection = resolve_candidate_rule_ids(_understanding(["raw_sql_sink"]))

        assert selection.strategy == "signals_primary"
        assert "sql_injection" not in selection.rule_ids
        assert "missing_webhook_signature" not in selection.rule_ids
        assert "unbounded_query" in selection.rule_ids

    def test_zero_signals_yields_baseline(self) -> None:
        selection = resolve_candidate_rule_ids(_understanding())

        assert selection.strategy != "signals_primary"
        assert selection.strategy == "baseline"
        assert selection.rule_ids == list(BASELINE_RULE_IDS[:3])

    @pytest.mark.parametrize("min_rules", [1, 3, 5])
    def test_zero_signals_honours_min_rules(self, min_rules: int) -> None:
        selection = resolve_candidate_rule_ids(_understanding(), min_rules_per_chunk=min_rules)

        assert len(selection.rule_ids) == min_rules

    def test_no_understanding_yields_baseline(self) -> None:
        selection = resolve_candidate_rule_ids(None)

        assert selection.strategy == "baseline"
        assert len(selection.rule_ids) == 3

    def test_fallback_rule_ids_lead_baseline(self) -> None:
        selection = resolve_candidate_rule_ids(
            _understanding(), fallback_rule_ids=["permissive_cors", "not_a_rule"]
        )

        assert selection.rule_ids == ["permissive_cors", "missing_authentication", "missing_admin_mfa"]

    def test_role_fallback(self) -> None:
        """A role without matching signals selects rules from the role's families."""
        selection = resolve_candidate_rule_ids(_understanding(role="db_access"))

        assert selection.strategy == "role_fallback"
        assert selection.rule_ids == ["sql_injection", "unsafe_query_builder", "command_injection"]
        assert selection.families == ["injection"]

    def test_unknown_exposure_uses_unknown_families(self) -> None:
        selection = resolve_candidate_rule_ids(_understanding(exposure="unknown"))

        assert selection.strategy == "role_fallback"
        assert selection.rule_ids == FAMILY_RULES["access_control"][:3]

    def test_all_signals_rules_need_every_required_signal(self) -> None:
        for rule in REPOSITORY_SCAN_RULES:
            if not isinstance(rule.match, AllSignals):
                continue
            for missing in rule.match.signals:
                present = [signal.value for signal in SignalId if signal != missing]
                selection = resolve_candidate_rule_ids(_understanding(present))
                assert rule.id not in selection.rule_ids

    def test_ordering_is_deterministic(self) -> None:
        signals = ["exec_sink", "http_request_sink", "untrusted_input_present"]

        first = resolve_candidate_rule_ids(_understanding(signals))
        second = resolve_candidate_rule_ids(_understanding(list(reversed(signals))))

        assert first.rule_ids == second.rule_ids

    def test_family_mapping_suggestions_are_appended(self) -> None:
        mapping = parse_family_mapping_record(
            {"suggested_rule_ids": ["public_storage_bucket", "bogus"]}, "chunk"
        )

        selection = resolve_candidate_rule_ids(_understanding(["exec_sink"]), mapping)

        assert selection.rule_ids[-1] == "public_storage_bucket"
        assert "bogus" not in selection.rule_ids

    def test_webhook_is_high_risk(self) -> None:
        selection = resolve_candidate_rule_ids(_understanding(["webhook_handler"]))

        assert selection.high_risk
        assert {
            "missing_webhook_signature",
            "missing_replay_protection",
            "missing_webhook_config_integrity",
        } <= set(selection.rule_ids)


class TestIsHighRiskChunk:
    """Test is_high_risk_chunk function."""

    def test_public_with_sink(self) -> None:
        assert is_high_risk_chunk(_understanding(["exec_sink"], exposure="public"))

    def test_internal_with_sink(self) -> None:
        assert not is_high_risk_chunk(_understanding(["exec_sink"], exposure="internal"))

    def test_client_identifier_without_authz(self) -> None:
        assert is_high_risk_chunk(
            _understanding(["client_supplied_org_id", "authz_missing_or_unknown"])
        )


class TestChunkRuleIds:
    """Test chunk_rule_ids function."""

    def test_distinct_clusters(self) -> None:
        batches = chunk_rule_ids(
            [
                "missing_authentication",
                "sql_injection",
                "missing_webhook_signature",
                "frontend_secret_exposure",
                "missing_timeout",
            ],
            3,
        )

        assert len(batches) == 5

    def test_groups_by_cluster_in_first_seen_order(self) -> None:
        batches = chunk_rule_ids(
            ["sql_injection", "missing_authentication", "command_injection", "unknown_rule"], 2
        )

        assert batches == [
            ["sql_injection", "command_injection"],
            ["missing_authentication"],
            ["unknown_rule"],
        ]

    def test_batches_never_mix_clusters(self) -> None:
        batches = chunk_rule_ids([rule.id for rule in REPOSITORY_SCAN_RULES], 4)

        for batch in batches:
            assert len(batch) <= 4
            assert len({resolve_rule_cluster(rule_id) for rule_id in batch}) == 1

    def test_empty(self) -> None:
        assert chunk_rule_ids([], 3) == []


class TestPackRuleIds:
    """Test pack_rule_ids_by_token_budget function."""

    TOKENS = {"a": 10, "b": 10, "c": 10}

    def test_token_budget(self) -> None:
        packing = pack_rule_ids_by_token_budget(["a", "b", "c"], 0, 25, 5, 5, self.TOKENS)

        assert packing.packed_rule_ids == ["a", "b"]
        assert packing.estimated_prompt_tokens == 20
        assert packing.truncated
        assert packing.truncation_reason == "token_budget"

    def test_hard_cap(self) -> None:
        packing = pack_rule_ids_by_token_budget(["a", "b", "c"], 0, 1000, 1, 2, self.TOKENS)

        assert packing.packed_rule_ids == ["a", "b"]
        assert packing.truncation_reason == "hard_cap"

    def test_unknown_ids_skipped(self) -> None:
        packing = pack_rule_ids_by_token_budget(["x", "a"], 5, 1000, 5, 5, self.TOKENS)

        assert packing.packed_rule_ids == ["a"]
        assert packing.estimated_prompt_tokens == 15
        assert not packing.truncated
        assert packing.truncation_reason is None

    def test_catalog_token_estimates(self) -> None:
        tokens = rule_tokens_by_id()

        assert set(tokens) == set(RULES_BY_ID)
        assert all(value > 0 for value in tokens.values())
