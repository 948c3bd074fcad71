"""
Engine Orchestration Tests
==========================

End to end over the raw fixture dataset.

PROPERTIES UNDER TEST:
======================
1. Same (raw, now, config) gives byte-identical canonical output
2. Nodes run in dependency order
3. A failing company is isolated and reported
4. Stored derivations in raw input are reported, not trusted
"""

import pytest

from portfolio_engine import EngineConfig, compute
from portfolio_engine.contracts.base import ErrorCode, Severity
from portfolio_engine.derive.goal_damage import aggregate_goal_damage
from portfolio_engine.derive.issues import IssueType
from portfolio_engine.derive.trajectory import TrajectoryConfig
from portfolio_engine.contracts.serialization import to_canonical_json
from portfolio_engine.decide.ranking import validate_ranking
from portfolio_engine.runtime import engine
from portfolio_engine.runtime.graph import GRAPH, topo_sort

from tests.fixtures import NOW, days, raw_dataset, raw_event


@pytest.fixture
def output():
    return compute(raw_dataset(), NOW)


class TestDeterminism:

    def test_run_twice_identical(self):
        first = compute(raw_dataset(), NOW)
        second = compute(raw_dataset(), NOW)
        assert to_canonical_json(first) == to_canonical_json(second)

    def test_input_not_mutated(self):
        raw = raw_dataset()
        compute(raw, NOW)
        assert raw == raw_dataset()

    def test_computed_at_is_now(self, output):
        assert output.meta.computed_at == NOW


class TestPipeline:

    def test_every_company_derived(self, output):
        assert [d.company_id for d in output.companies] == ["acme", "burnco", "quiet"]
        assert not [e for e in output.meta.errors if e.code is ErrorCode.NODE_FAILED]

    def test_execution_order_follows_graph(self, output):
        assert list(output.meta.execution_order) == topo_sort(GRAPH)

    def test_critical_runway_detected(self, output):
        burnco = output.company("burnco")
        runway = [a for a in burnco.anomalies if a.metric == "runway"]
        assert len(runway) == 1
        assert runway[0].severity is Severity.CRITICAL

    def test_missing_metrics_do_not_fail(self, output):
        quiet = output.company("quiet")
        assert quiet is not None
        assert not [a for a in quiet.anomalies if a.metric == "runway"]

    def test_goal_trajectories(self, output):
        trajectories = output.company("burnco").trajectories
        assert [t.goal_id for t in trajectories] == ["g-burn-raise"]
        assert 0.0 <= trajectories[0].probability_of_hit <= 1.0

    def test_ranking_is_valid(self, output):
        assert output.ranked_actions
        ok, errors = validate_ranking(output.ranked_actions)
        assert ok, errors
        assert [r.rank for r in output.ranked_actions] == list(range(1, len(output.ranked_actions) + 1))

    def test_action_ids_unique(self, output):
        ids = [r.action_id for r in output.ranked_actions]
        assert len(ids) == len(set(ids))

    def test_source_counts_cover_actions(self, output):
        assert sum(output.meta.action_source_counts.values()) == len(output.ranked_actions)

    def test_ranked_actions_come_from_companies(self, output):
        derived = {a.action_id for d in output.companies for a in d.actions}
        assert {r.action_id for r in output.ranked_actions} == derived

    def test_config_defaults_filled(self):
        config = EngineConfig(min_goals=3)
        assert config.ranking is not None
        assert config.trajectory is not None
        assert config.pressure is not None
        assert config.pattern_lift is not None
        assert config.memory is not None

    def test_trajectory_config_reaches_issues(self):
        config = EngineConfig(trajectory=TrajectoryConfig(base_confidence=0.0, consistency_weight=0.0))
        acme = compute(raw_dataset(), NOW, config).company("acme")
        (behind,) = [i for i in acme.issues if i.issue_type is IssueType.GOAL_BEHIND]
        (trajectory,) = acme.trajectories
        assert behind.evidence["confidence"] == trajectory.confidence
        assert behind.evidence["probability_of_hit"] == trajectory.probability_of_hit

        default = compute(raw_dataset(), NOW).company("acme")
        assert trajectory.confidence < default.trajectories[0].confidence

    def test_damage_by_goal(self, output):
        burnco = output.company("burnco")
        assert burnco.damage_by_goal == aggregate_goal_damage(burnco.goal_damage)
        assert burnco.damage_by_goal["g-burn-raise"] > 0


class TestPortfolioSummary:

    def test_significant_anomalies(self, output):
        significant = output.portfolio.significant_anomalies
        assert any(a.metric == "runway" and a.severity is Severity.CRITICAL for a in significant)
        assert all(a.severity >= Severity.MEDIUM for a in significant)
        assert output.portfolio.anomalies.critical >= 1

    def test_issue_rollup(self, output):
        issues = output.portfolio.issues
        assert issues.total == sum(len(d.issues) for d in output.companies)
        assert "RUNWAY_CRITICAL" in issues.types
        assert issues.critical >= 1

    def test_at_risk_goals_least_likely_first(self, output):
        at_risk = output.portfolio.at_risk_goals
        hits = [t.probability_of_hit for t in at_risk]
        assert hits == sorted(hits)
        assert all(p < 0.5 for p in hits)
        everything = {t.goal_id for d in output.companies for t in d.trajectories}
        assert {t.goal_id for t in at_risk} <= everything

    def test_imminent_preissues(self, output):
        imminent = output.portfolio.imminent_preissues
        assert "preissue-runway-burnco" in [p.preissue_id for p in imminent]
        assert all(p.escalation.is_imminent for p in imminent)

    def test_constraints_per_company(self, output):
        constraints = output.portfolio.constraints
        assert sorted(constraints) == ["acme", "burnco", "quiet"]
        assert [u.constraint.id for u in constraints["burnco"].upcoming] == ["c-board"]
        assert constraints["burnco"].upcoming[0].days_until == 5.0
        assert constraints["acme"].upcoming == ()

    def test_constraint_drivers_cover_pressured_actions(self, output):
        burnco_ids = {a.action_id for a in output.company("burnco").actions}
        assert set(output.constraint_drivers) == burnco_ids
        for drivers in output.constraint_drivers.values():
            assert [d.constraint_id for d in drivers] == ["c-board"]
            assert drivers[0].relevance == 1.0


class TestLedgerMemory:

    def test_failed_ledger_raises_friction(self, output):
        target = next(
            r.action for r in output.ranked_actions
            if r.action.company_id == "burnco" and r.action.resolution_id != "PLAN_FUNDRAISE"
        )
        rtype = target.resolution_id
        raw = raw_dataset()
        for i in range(4):
            raw["actionEvents"].append(raw_event(
                f"ev-start-{i}", f"act-hist-{i}", eventType="started",
                timestamp=(NOW - days(20)).isoformat(), payload={"actionType": rtype},
            ))
            raw["actionEvents"].append(raw_event(
                f"ev-out-{i}", f"act-hist-{i}",
                payload={"outcome": "failed", "actionType": rtype},
            ))

        learned = compute(raw, NOW)
        before = {r.action_id: r for r in output.ranked_actions}
        after = {r.action_id: r for r in learned.ranked_actions}

        action = after[target.action_id].action
        assert action.complexity == pytest.approx(0.8)
        assert action.impact.execution_probability == 0.05
        assert target.complexity == 0.0
        assert after[target.action_id].rank_components.execution_friction_penalty == pytest.approx(
            before[target.action_id].rank_components.execution_friction_penalty + 4.0, abs=0.01
        )


class TestFailureHandling:

    def test_failing_company_is_isolated(self, monkeypatch):
        original = engine.NODE_FUNCTIONS["issues"]

        def boom(ctx):
            if ctx.company.id == "burnco":
                raise RuntimeError("issue detector exploded")
            return original(ctx)

        monkeypatch.setitem(engine.NODE_FUNCTIONS, "issues", boom)
        output = compute(raw_dataset(), NOW)

        assert [d.company_id for d in output.companies] == ["acme", "quiet"]
        failures = [e for e in output.meta.errors if e.code is ErrorCode.NODE_FAILED]
        assert len(failures) == 1
        assert dict(failures[0].context) == {"company_id": "burnco"}
        assert "issue detector exploded" in failures[0].message
        assert all(r.action.company_id != "burnco" for r in output.ranked_actions)

    def test_stored_derivation_reported(self):
        raw = raw_dataset()
        raw["companies"][0]["runwayMonths"] = 12
        output = compute(raw, NOW)

        forbidden = [e for e in output.meta.errors if e.code is ErrorCode.FORBIDDEN_FIELD]
        assert [dict(e.context)["path"] for e in forbidden] == ["companies[0].runwayMonths"]

    def test_mutual_exclusion_warned(self):
        raw = raw_dataset()
        raw["companies"][0]["revenue"] = 50_000
        output = compute(raw, NOW)
        assert any("companies[0]" in w for w in output.meta.warnings)

    def test_duplicate_event_warned(self):
        raw = raw_dataset()
        raw["actionEvents"].append(dict(raw["actionEvents"][0]))
        output = compute(raw, NOW)
        assert any("Duplicate event ID: ev-1" in w for w in output.meta.warnings)

    def test_empty_dataset(self):
        output = compute({}, NOW)
        assert output.companies == ()
        assert output.ranked_actions == ()
        assert output.meta.errors == ()
