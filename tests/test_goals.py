"""
Goal Pipeline Tests
===================

Issue damage on goals, anomaly goal candidates, top-goal selection and
goal suggestions.

PROPERTIES UNDER TEST:
======================
1. damage = severity multiplier x goal weight x proximity
2. One anomaly goal per (type, name); severity sets weight and due date
3. Top goals keep layer order and at most two goals per type
4. Suggestions skip covered goals and emit one template per goal type
"""

from dataclasses import replace

import pytest

from portfolio_engine.contracts.base import EntityRef, Severity
from portfolio_engine.contracts.records import GoalStatus, GoalType, Provenance
from portfolio_engine.derive.anomalies import Anomaly, AnomalyType, Evidence
from portfolio_engine.derive.goal_damage import (
    aggregate_goal_damage, compute_goal_damage, proximity_factor,
)
from portfolio_engine.derive.issues import Issue, IssueType
from portfolio_engine.predict.goal_from_anomaly import (
    AnomalyGoal, map_anomalies_to_goals, select_top_goals,
)
from portfolio_engine.predict.suggested_goals import SuggestionType, suggest_goals
from portfolio_engine.raw.stage_params import stage_goal_templates

from tests.fixtures import NOW, days, make_company, make_goal


def issue(issue_type, severity, goal_id=None):
    return Issue(
        issue_id=f"{issue_type.value}-test",
        issue_type=issue_type,
        company_id="acme",
        severity=severity,
        explain="test issue",
        detected_at=NOW,
        goal_id=goal_id,
    )


def anomaly(anomaly_type, severity, anomaly_id=None, **evidence):
    return Anomaly(
        anomaly_id=anomaly_id or f"anom-{anomaly_type.value}",
        type=anomaly_type,
        entity_ref=EntityRef.company("acme"),
        severity=severity,
        metric="test",
        evidence=Evidence(explain="test anomaly", **evidence),
        detected_at=NOW,
    )


class TestGoalDamage:

    @pytest.mark.parametrize("days_out, factor", [
        (-5, 1.0), (10, 1.0), (29, 1.0),
        (30, 0.8), (89, 0.8),
        (90, 0.5), (179, 0.5),
        (180, 0.3), (400, 0.3),
    ])
    def test_proximity_steps(self, days_out, factor):
        assert proximity_factor(make_goal(due=NOW + days(days_out)), NOW) == factor

    def test_proximity_without_due_date(self):
        assert proximity_factor(replace(make_goal(), due=None), NOW) == 0.5

    def test_damage_formula_by_goal_type(self):
        raise_goal = replace(
            make_goal("g-raise", goal_type=GoalType.FUNDRAISE, due=NOW + days(10)), weight=80
        )
        ops_goal = make_goal("g-ops", goal_type=GoalType.OPERATIONAL, due=NOW + days(60))
        revenue_goal = make_goal("g-rev", goal_type=GoalType.REVENUE)

        damages = compute_goal_damage(
            [issue(IssueType.RUNWAY_CRITICAL, Severity.CRITICAL)],
            [revenue_goal, ops_goal, raise_goal],
            NOW,
        )

        assert [(d.goal_id, d.damage) for d in damages] == [("g-raise", 0.8), ("g-ops", 0.4)]
        components = damages[0].components
        assert components.severity_multiplier == 1.0
        assert components.goal_weight == 0.8
        assert components.proximity_factor == 1.0

    def test_goal_issue_damages_only_its_goal(self):
        goals = [make_goal("g1"), make_goal("g2"), make_goal("g3")]
        damages = compute_goal_damage(
            [issue(IssueType.GOAL_BEHIND, Severity.HIGH, goal_id="g2")], goals, NOW
        )
        assert [d.goal_id for d in damages] == ["g2"]
        assert damages[0].damage == pytest.approx(0.7 * 0.5 * 0.8)

    def test_unmapped_goal_types_are_untouched(self):
        goals = [make_goal("g-hire", goal_type=GoalType.HIRING)]
        assert compute_goal_damage([issue(IssueType.NO_PIPELINE, Severity.CRITICAL)], goals, NOW) == []

    def test_aggregate_sums_per_goal(self):
        goals = [make_goal("g1"), make_goal("g2", goal_type=GoalType.OPERATIONAL)]
        damages = compute_goal_damage(
            [
                issue(IssueType.GOAL_BEHIND, Severity.HIGH, goal_id="g1"),
                issue(IssueType.DATA_MISSING, Severity.MEDIUM),
            ],
            goals,
            NOW,
        )
        totals = aggregate_goal_damage(damages)
        assert totals["g1"] == pytest.approx(0.28 + 0.16)
        assert totals["g2"] == pytest.approx(0.16)

    def test_aggregate_empty(self):
        assert aggregate_goal_damage([]) == {}


class TestAnomalyGoals:

    def test_severity_sets_weight_and_due(self):
        anomalies = [
            anomaly(AnomalyType.RUNWAY_BELOW_MIN, Severity.CRITICAL, actual=4.0, target=18.0),
            anomaly(AnomalyType.EMPLOYEES_BELOW_MIN, Severity.HIGH, actual=3.0, min=8.0),
            anomaly(AnomalyType.NRR_BELOW_THRESHOLD, Severity.MEDIUM, min=100.0, max=120.0),
            anomaly(AnomalyType.CAC_ABOVE_THRESHOLD, Severity.LOW, actual=900.0, max=500.0),
        ]
        goals = map_anomalies_to_goals(anomalies, make_company(), NOW)

        assert [(g.goal.type, g.goal.name) for g in goals] == [
            (GoalType.OPERATIONAL, "Extend Runway"),
            (GoalType.HIRING, "Build Team"),
            (GoalType.RETENTION, "Improve NRR"),
            (GoalType.EFFICIENCY, "Reduce CAC"),
        ]
        assert [g.goal.due for g in goals] == [
            NOW + days(30), NOW + days(60), NOW + days(90), NOW + days(120),
        ]
        assert [g.goal.weight for g in goals] == [90, 70, 55, 40]
        assert [g.goal.target for g in goals] == [18.0, 8.0, 100.0, 500.0]
        assert [g.goal.current for g in goals] == [4.0, 3.0, 0.0, 900.0]
        assert all(g.goal.provenance is Provenance.ANOMALY for g in goals)
        assert goals[0].goal.id == "goal-anom-acme-operational-0"

    def test_dedup_on_type_and_name(self):
        anomalies = [
            anomaly(AnomalyType.STAGE_MISMATCH_METRICS, Severity.MEDIUM),
            anomaly(AnomalyType.COMPANY_AGE_STAGE_MISMATCH, Severity.HIGH),
            anomaly(AnomalyType.RUNWAY_BELOW_MIN, Severity.HIGH, anomaly_id="a1"),
            anomaly(AnomalyType.RUNWAY_BELOW_MIN, Severity.CRITICAL, anomaly_id="a2"),
        ]
        goals = map_anomalies_to_goals(anomalies, make_company(), NOW)
        assert [(g.goal.name, g.source_anomaly) for g in goals] == [
            ("Review Stage Fit", AnomalyType.STAGE_MISMATCH_METRICS),
            ("Extend Runway", AnomalyType.RUNWAY_BELOW_MIN),
        ]
        assert goals[1].severity is Severity.HIGH


class TestTopGoals:

    def test_fallbacks_fill_minimum(self):
        goals = select_top_goals([], [], (), min_count=5, company_id="acme")
        assert [g.type for g in goals] == [
            GoalType.REVENUE, GoalType.OPERATIONAL, GoalType.HIRING,
            GoalType.PRODUCT, GoalType.FUNDRAISE,
        ]
        assert goals[0].id == "goal-fallback-acme-revenue-0"
        assert all(g.weight == 30 for g in goals)

    def test_at_most_two_per_type(self):
        existing = [make_goal(f"g{i}") for i in range(3)]
        goals = select_top_goals(existing, [], (), min_count=5, company_id="acme")
        assert [g.id for g in goals[:2]] == ["g0", "g1"]
        assert [g.type for g in goals].count(GoalType.REVENUE) == 2
        assert len(goals) == 5

    def test_layer_order(self):
        existing = [
            make_goal("g-existing"),
            make_goal("g-done", status=GoalStatus.COMPLETED),
        ]
        candidates = [
            AnomalyGoal(make_goal("a-low", goal_type=GoalType.HIRING), Severity.LOW,
                        AnomalyType.EMPLOYEES_BELOW_MIN),
            AnomalyGoal(make_goal("a-crit", goal_type=GoalType.OPERATIONAL), Severity.CRITICAL,
                        AnomalyType.RUNWAY_BELOW_MIN),
        ]
        goals = select_top_goals(
            existing, candidates, stage_goal_templates("Seed"), min_count=5, company_id="acme"
        )
        assert [g.id for g in goals] == [
            "g-existing",
            "a-crit",
            "a-low",
            "goal-tmpl-acme-revenue-3",
            "goal-tmpl-acme-product-4",
        ]
        assert [g.name for g in goals[3:]] == ["First Revenue", "Product-Market Fit"]


class TestSuggestions:

    def test_low_runway_suggestions(self):
        anomalies = [anomaly(AnomalyType.RUNWAY_BELOW_MIN, Severity.CRITICAL, target=18.0)]
        suggestions = suggest_goals(make_company(), anomalies, NOW, include_stage_templates=False)

        assert [s.suggestion_type for s in suggestions] == [
            SuggestionType.EXTEND_RUNWAY,
            SuggestionType.INITIATE_FUNDRAISE,
            SuggestionType.REDUCE_BURN,
        ]
        assert [s.proposed_goal.name for s in suggestions] == [
            "Extend runway to 18 months",
            "Initiate Series A fundraise",
            "Reduce burn to $?K/mo",
        ]
        assert all(s.proposed_goal.due == NOW + days(30) for s in suggestions)
        assert all(s.proposed_goal.status is GoalStatus.SUGGESTED for s in suggestions)

    def test_raising_company_skips_fundraise(self):
        anomalies = [anomaly(AnomalyType.RUNWAY_BELOW_MIN, Severity.HIGH, target=18.0)]
        suggestions = suggest_goals(
            make_company(raising=True), anomalies, NOW, include_stage_templates=False
        )
        assert SuggestionType.INITIATE_FUNDRAISE not in [s.suggestion_type for s in suggestions]

    def test_existing_goal_covers_suggestion(self):
        covered = replace(
            make_goal("g-runway", goal_type=GoalType.OPERATIONAL), name="Extend runway past 2027"
        )
        anomalies = [anomaly(AnomalyType.RUNWAY_BELOW_MIN, Severity.CRITICAL, target=18.0)]
        suggestions = suggest_goals(
            make_company(goals=(covered,)), anomalies, NOW, include_stage_templates=False
        )
        assert [s.suggestion_type for s in suggestions] == [
            SuggestionType.INITIATE_FUNDRAISE, SuggestionType.REDUCE_BURN,
        ]

    def test_min_severity(self):
        anomalies = [anomaly(AnomalyType.EMPLOYEES_ABOVE_MAX, Severity.LOW)]
        assert suggest_goals(
            make_company(), anomalies, NOW,
            include_stage_templates=False, min_severity=Severity.MEDIUM,
        ) == []

    def test_stage_templates_one_per_type(self):
        anomalies = [anomaly(AnomalyType.RUNWAY_BELOW_MIN, Severity.CRITICAL, target=18.0)]
        suggestions = suggest_goals(make_company(), anomalies, NOW)

        templates = [s for s in suggestions if s.suggestion_type is SuggestionType.FROM_STAGE_TEMPLATE]
        assert [(s.proposed_goal.name, s.priority) for s in templates] == [
            ("First Revenue", 11), ("Product-Market Fit", 12), ("Engineering Team", 13),
        ]
        assert all(s.severity is Severity.LOW for s in templates)
        assert [s.priority for s in suggestions] == [1, 2, 3, 11, 12, 13]
        assert len({s.suggestion_id for s in suggestions}) == len(suggestions)
