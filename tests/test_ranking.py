"""
Unified Ranking Tests
=====================

PROPERTIES UNDER TEST:
======================
1. Output is ordered by rank_score, non-increasing, ranks 1..n
2. Near-equal scores keep their input order
3. rank_components always sum to rank_score
4. Pattern lift stays within its bound
"""

from dataclasses import replace
import math

import pytest
from hypothesis import given, strategies as st

from portfolio_engine.contracts.records import ActionEvent, EventType
from portfolio_engine.decide.ranking import (
    compute_expected_net_impact, compute_rank_score, rank_actions, top_actions,
    validate_ranking, verify_determinism,
)
from portfolio_engine.decide.weights import (
    DEFAULT_WEIGHTS, execution_friction_penalty, source_type_boost,
    time_criticality_boost, time_penalty, trust_penalty,
)
from portfolio_engine.derive.pattern_lift import (
    PatternLiftConfig, lift_within_bounds, pattern_lifts,
)
from portfolio_engine.predict.actions import ActionSource, SourceType

from tests.fixtures import NOW, actions_with_upsides, days, make_action, make_impact


def outcome_events(count, action_type="ACCELERATE_GOAL", notes="moved the number", age_days=0):
    payload = {"outcome": "success", "actionType": action_type}
    if notes:
        payload["notes"] = notes
    return [
        ActionEvent(
            id=f"ev-{i}", action_id=f"old-{i}", event_type=EventType.OUTCOME_RECORDED,
            timestamp=NOW - days(age_days), actor="partner", payload=payload,
        )
        for i in range(count)
    ]


class TestOrdering:

    def test_descending_by_score(self):
        ranked = rank_actions(actions_with_upsides([10, 80, 40]), NOW)
        assert [r.action_id for r in ranked] == ["a1", "a2", "a0"]
        assert [r.rank for r in ranked] == [1, 2, 3]

    def test_empty(self):
        assert rank_actions([], NOW) == []

    def test_near_ties_keep_input_order(self):
        actions = actions_with_upsides([50.0, 50.00004, 49.99997])
        ranked = rank_actions(actions, NOW)
        assert [r.action_id for r in ranked] == ["a0", "a1", "a2"]

    def test_components_trace_to_score(self):
        action = make_action("x", make_impact(upside=100, p_success=0.5, p_exec=0.8,
                                              downside=20, tti=14, effort=3, leverage=2),
                             steps=("call", "draft", "send"))
        (ranked,) = rank_actions([action], NOW, trust_risk={"x": 0.5}, deadlines={"x": 3})
        components = ranked.rank_components
        assert components.total == pytest.approx(ranked.rank_score)
        assert components.expected_net_impact == pytest.approx(100 * 0.4 + 2 - 20 * 0.6 - 3 - 2)
        assert components.trust_penalty == pytest.approx(4.0)
        assert components.execution_friction_penalty == pytest.approx(1.5)
        assert components.source_type_boost == 3.0
        assert set(ranked.to_dict()["rankComponents"]) == {
            "expectedNetImpact", "trustPenalty", "executionFrictionPenalty",
            "timeCriticalityBoost", "sourceTypeBoost", "patternLift",
        }

    def test_pressure_reorders(self):
        actions = actions_with_upsides([60, 50])
        ranked = rank_actions(actions, NOW, pressure={"a1": 25.0})
        assert ranked[0].action_id == "a1"
        assert ranked[0].rank_components.time_criticality_boost == 25.0

    def test_missing_impact_raises(self):
        action = replace(make_action("bare"), impact=None)
        with pytest.raises(ValueError, match="no impact model"):
            compute_rank_score(action)

    def test_top_actions(self):
        ranked = rank_actions(actions_with_upsides(range(10)), NOW)
        assert [r.action_id for r in top_actions(ranked, 3)] == ["a9", "a8", "a7"]

    @given(st.lists(st.integers(min_value=-500, max_value=500), min_size=1, max_size=15))
    def test_integer_scores_non_increasing(self, upsides):
        ranked = rank_actions(actions_with_upsides(upsides), NOW)
        scores = [r.rank_score for r in ranked]
        assert scores == sorted(scores, reverse=True)
        ok, errors = validate_ranking(ranked)
        assert ok, errors

        # Equal scores keep input order
        for previous, current in zip(ranked, ranked[1:]):
            if previous.rank_score == current.rank_score:
                assert int(previous.action_id[1:]) < int(current.action_id[1:])


class TestValidation:

    def test_detects_sort_violation(self):
        ranked = rank_actions(actions_with_upsides([10, 80]), NOW)
        swapped = [replace(ranked[1], rank=1), replace(ranked[0], rank=2)]
        ok, errors = validate_ranking(swapped)
        assert not ok
        assert any(e.startswith("Sort violation") for e in errors)

    def test_detects_broken_trace(self):
        (ranked,) = rank_actions(actions_with_upsides([10]), NOW)
        ok, errors = validate_ranking([replace(ranked, rank_score=ranked.rank_score + 1)])
        assert not ok
        assert errors == ["Action a0: components do not sum to rank_score"]

    def test_detects_nan_score(self):
        (ranked,) = rank_actions(actions_with_upsides([10]), NOW)
        ok, errors = validate_ranking([replace(ranked, rank_score=math.nan)])
        assert not ok
        assert "missing or invalid rank_score" in errors[0]

    def test_determinism(self):
        actions = actions_with_upsides([5, 5, 30, 12, 12])
        ok, errors = verify_determinism(actions, NOW, events=outcome_events(4))
        assert ok, errors


class TestWeights:

    def test_trust_penalty_threshold(self):
        assert trust_penalty(0.3) == 0.0
        assert trust_penalty(0.5) == pytest.approx(4.0)

    def test_friction_caps_steps(self):
        assert execution_friction_penalty(make_action("a", steps=("s",) * 4)) == 2.0
        assert execution_friction_penalty(make_action("a", steps=("s",) * 25)) == 5.0

    def test_learned_complexity_adds_friction(self):
        action = make_action("a", steps=("s",) * 2)
        assert execution_friction_penalty(replace(action, complexity=0.4)) == pytest.approx(1.0 + 2.0)
        assert execution_friction_penalty(replace(action, complexity=0.8)) > execution_friction_penalty(
            replace(action, complexity=0.4)
        )

    def test_pressure_overrides_deadline(self):
        assert time_criticality_boost(3, pressure=2.5) == 2.5
        assert time_criticality_boost(3, pressure=0.0) == 0.0

    def test_deadline_fallback(self):
        assert time_criticality_boost(3) == pytest.approx(15 * math.exp(-3 / 7))
        assert time_criticality_boost(29) == 0.0
        assert time_criticality_boost(0) == 0.0
        assert time_criticality_boost(None) == 0.0

    def test_time_penalty_caps(self):
        assert time_penalty(14) == 2.0
        assert time_penalty(10_000) == DEFAULT_WEIGHTS.time_penalty_max

    def test_source_boost_takes_strongest_source(self):
        action = replace(make_action("a"), sources=(
            ActionSource(SourceType.GOAL, "g1"),
            ActionSource(SourceType.ISSUE, "i1"),
        ))
        assert source_type_boost(action) == 8.0
        assert source_type_boost(make_action("m", source_type=SourceType.MEETING)) == 0.0

    def test_expected_net_impact(self):
        impact = make_impact(upside=10, p_success=0.5, p_exec=0.5, downside=4)
        assert compute_expected_net_impact(impact) == pytest.approx(2.5 - 3.0)


class TestPatternLift:

    def test_cold_start_is_zero(self):
        lifts = pattern_lifts([make_action("a")], outcome_events(2), NOW)
        assert lifts == {"a": 0.0}

    def test_positive_signal_lifts(self):
        lifts = pattern_lifts([make_action("a"), make_action("b", resolution_id="OTHER")],
                              outcome_events(5), NOW)
        assert 0.0 < lifts["a"] <= 0.5
        assert lifts["b"] == 0.0

    def test_neutral_signal_is_zero(self):
        lifts = pattern_lifts([make_action("a")], outcome_events(5, notes=None), NOW)
        assert lifts["a"] == pytest.approx(0.0)

    def test_ignores_other_event_types(self):
        events = [replace(e, event_type=EventType.NOTE_ADDED) for e in outcome_events(5)]
        assert pattern_lifts([make_action("a")], events, NOW) == {"a": 0.0}

    @given(
        count=st.integers(min_value=0, max_value=60),
        with_notes=st.booleans(),
        age=st.integers(min_value=0, max_value=365),
        lift_max=st.floats(min_value=0.01, max_value=2.0),
    )
    def test_lift_bounded(self, count, with_notes, age, lift_max):
        config = PatternLiftConfig(lift_max=lift_max)
        events = outcome_events(count, notes="yes" if with_notes else None, age_days=age)
        lift = pattern_lifts([make_action("a")], events, NOW, config)["a"]
        assert lift_within_bounds(lift, config)
