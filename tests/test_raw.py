"""
Raw Layer Tests

Loading, field normalization and the stored-derivation guard.
"""

import pytest

from portfolio_engine.contracts.base import EntityType, ErrorCode
from portfolio_engine.contracts.records import GoalStatus
from portfolio_engine.raw.forbidden import find_forbidden_fields, is_forbidden_field
from portfolio_engine.raw.goal_schema import normalize_goal_fields, validate_goal_record
from portfolio_engine.raw.loader import RawDataError, attempt_build, build_goal, load_dataset
from portfolio_engine.raw.metric_facts import latest_facts, validate_metric_fact
from portfolio_engine.raw.stage_params import Stage, is_stage_before, parse_stage, stage_params

from tests.fixtures import NOW, raw_company, raw_dataset, raw_goal


class TestGoalNormalization:

    def test_aliases_rewritten(self):
        goal = normalize_goal_fields(raw_goal("g1"))
        assert "cur" not in goal and "tgt" not in goal
        assert goal["current"] == 400_000
        assert goal["target"] == 1_000_000

    def test_canonical_field_wins(self):
        goal = normalize_goal_fields(raw_goal("g1", current=5))
        assert goal["current"] == 5

    def test_legacy_company_id_becomes_entity_ref(self):
        goal = build_goal(raw_goal("g1", "acme"))
        assert [(r.type, r.id) for r in goal.entity_refs] == [(EntityType.COMPANY, "acme")]
        assert goal.company_id == "acme"
        assert not goal.is_multi_entity

    def test_deal_goal_spans_entities(self):
        goal = build_goal(raw_goal("g-close", type="deal_close", entityRefs=[
            {"type": "company", "id": "acme"},
            {"type": "deal", "id": "deal-1", "role": "participant"},
        ]))
        assert goal.is_multi_entity
        assert goal.company_id == "acme"

    def test_at_risk_reads_as_active(self):
        assert build_goal(raw_goal("g1", status="at_risk")).status is GoalStatus.ACTIVE

    def test_unsupported_entity_for_type(self):
        goal = raw_goal("g1", entityRefs=[{"type": "firm", "id": "f1"}])
        errors = validate_goal_record(normalize_goal_fields(goal))
        assert "Goal type revenue does not support entity type firm" in errors

    def test_bad_history_point(self):
        with pytest.raises(RawDataError, match="history point"):
            build_goal(raw_goal("g1", history=[{"value": 3}]))


class TestForbiddenFields:

    @pytest.mark.parametrize("name", ["runway", "rank_score", "RankScore", "probabilityOfHit"])
    def test_folded_names(self, name):
        assert is_forbidden_field(name)

    def test_paths(self):
        raw = {"companies": [raw_company("a"), raw_company("b", health="green")]}
        assert find_forbidden_fields(raw) == ["companies[1].health"]

    def test_action_id_allowed_in_events_only(self):
        raw = {"actionEvents": [{"actionId": "x"}], "goals": [{"actionId": "x"}]}
        assert find_forbidden_fields(raw) == ["goals[0].actionId"]


class TestLoader:

    def test_fixture_loads_clean(self):
        result = load_dataset(raw_dataset(), NOW)
        assert result.is_clean, result.errors
        companies = result.dataset.company_index()
        assert sorted(companies) == ["acme", "burnco", "quiet"]
        assert [g.id for g in companies["burnco"].goals] == ["g-burn-raise"]
        assert [d.id for d in companies["burnco"].deals] == ["deal-1"]
        assert len(result.dataset.events) == 3

    def test_bad_record_is_reported_and_skipped(self):
        raw = raw_dataset()
        raw["companies"].append(raw_company("broken", cash="lots"))
        result = load_dataset(raw, NOW)
        assert "broken" not in result.dataset.company_index()
        (error,) = result.errors
        assert error.code is ErrorCode.MALFORMED_RECORD
        assert dict(error.context) == {"id": "broken", "record": "company"}

    def test_nested_goals(self):
        nested = raw_goal("nested")
        del nested["companyId"]
        raw = {"companies": [raw_company("acme", goals=[nested])]}
        company = load_dataset(raw, NOW).dataset.companies[0]
        assert [g.id for g in company.goals] == ["nested"]

    def test_metric_facts_fill_missing_fields(self):
        raw = {
            "companies": [raw_company("acme", cash=None)],
            "metricFacts": [
                {"id": "f1", "companyId": "acme", "metricKey": "cash", "value": 1_000,
                 "unit": "usd", "source": "manual", "asOf": "2026-01-01T00:00:00Z"},
                {"id": "f2", "companyId": "acme", "metricKey": "cash", "value": 2_000,
                 "unit": "usd", "source": "manual", "asOf": "2026-01-10T00:00:00Z"},
            ],
        }
        company = load_dataset(raw, NOW).dataset.companies[0]
        assert company.cash == 2_000


class TestMetricFacts:

    def test_latest_fact_wins(self):
        facts = [
            {"id": "b", "companyId": "acme", "metricKey": "arr", "asOf": "2026-01-01"},
            {"id": "a", "companyId": "acme", "metricKey": "arr", "asOf": "2026-01-01"},
            {"id": "c", "companyId": "other", "metricKey": "arr", "asOf": "2026-02-01"},
        ]
        assert latest_facts(facts, "acme")["arr"]["id"] == "b"

    def test_unexpected_field(self):
        fact = {"id": "f1", "companyId": "acme", "metricKey": "arr", "value": 1,
                "unit": "usd", "source": "manual", "asOf": "2026-01-01", "score": 3}
        assert validate_metric_fact(fact) == ["Unexpected field: score"]


class TestStages:

    def test_parse_variants(self):
        assert parse_stage("Series A") is Stage.SERIES_A
        assert parse_stage("Pre-seed") is Stage.PRE_SEED
        assert parse_stage("unknown stage") is None

    def test_unknown_stage_uses_default(self):
        assert stage_params("unknown stage") == stage_params("Seed")

    def test_stage_order(self):
        assert is_stage_before("Seed", "Series A")
        assert not is_stage_before("Series B", "Series A")
        assert not is_stage_before("Seed", "Seed")
        assert is_stage_before("unknown stage", "Pre-seed")


class TestAttemptBuild:

    def test_success_carries_record(self):
        result = attempt_build(build_goal, raw_goal("g1"), "goals", NOW)
        assert result.is_success
        assert result.value.id == "g1"
        assert result.error is None

    def test_malformed_record_becomes_error(self):
        result = attempt_build(build_goal, raw_goal("g-bad", history=[{"value": 3}]), "goals", NOW)
        assert result.is_failure
        assert result.value is None
        assert result.error.code is ErrorCode.MALFORMED_RECORD
        assert result.error.timestamp == NOW
        assert dict(result.error.context) == {"id": "g-bad", "record": "goals"}
