"""
Goal Trajectory Tests

Boundary behaviour of projection and probability of hit.
"""

import pytest
from hypothesis import given, strategies as st

from portfolio_engine.derive.goal_trajectory import (
    derive_company_goal_trajectories, derive_goal_trajectory, probability_of_hit,
)
from portfolio_engine.derive.trajectory import calculate_velocity, derive_trajectory
from portfolio_engine.contracts.records import GoalStatus

from tests.fixtures import NOW, days, make_company, make_goal


class TestBoundaries:

    @given(
        target=st.floats(min_value=0, max_value=1e7),
        excess=st.floats(min_value=0, max_value=1e7),
        due_offset=st.integers(min_value=-400, max_value=400),
    )
    def test_achieved_goal_is_certain(self, target, excess, due_offset):
        goal = make_goal(current=target + excess, target=target, due=NOW + days(due_offset))
        trajectory = derive_goal_trajectory(goal, NOW)
        assert trajectory.on_track is True
        assert trajectory.probability_of_hit == 1.0
        assert trajectory.confidence == 1.0

    @given(
        target=st.floats(min_value=1, max_value=1e7),
        shortfall=st.floats(min_value=0.01, max_value=1),
        overdue_days=st.integers(min_value=1, max_value=400),
    )
    def test_past_due_unachieved_goal_is_missed(self, target, shortfall, overdue_days):
        goal = make_goal(current=target * (1 - shortfall), target=target, due=NOW - days(overdue_days))
        trajectory = derive_goal_trajectory(goal, NOW)
        assert trajectory.on_track is False
        assert trajectory.probability_of_hit == 0.0

    @given(
        progress=st.floats(min_value=0, max_value=1),
        days_left=st.one_of(st.none(), st.integers(min_value=-100, max_value=400)),
        on_track=st.sampled_from([True, False, None]),
        confidence=st.floats(min_value=0, max_value=1),
        velocity=st.floats(min_value=-10, max_value=10),
    )
    def test_probability_in_unit_interval(self, progress, days_left, on_track, confidence, velocity):
        p = probability_of_hit(progress, days_left, on_track, confidence, velocity, 1.0)
        assert 0.0 <= p <= 1.0


class TestInsufficientHistory:

    @pytest.mark.parametrize("history", [(), ((40.0, NOW - days(3)),)])
    def test_zero_or_one_point(self, history):
        goal = make_goal(current=40.0, target=100.0, due=NOW + days(30), history=history)
        trajectory = derive_goal_trajectory(goal, NOW)

        assert trajectory.on_track is None
        assert trajectory.confidence == pytest.approx(0.2)
        assert "Need 2.00/day" in trajectory.explain[0]
        assert "100" in trajectory.explain[0]


class TestProjection:

    def test_on_track_projection(self):
        goal = make_goal(
            current=50.0, target=100.0, due=NOW + days(60),
            history=((0.0, NOW - days(50)), (50.0, NOW)),
        )
        trajectory = derive_trajectory(goal, NOW)
        assert trajectory.on_track is True
        assert trajectory.projected_date == NOW + days(50)
        assert "days early" in trajectory.explain

    def test_behind_projection(self):
        goal = make_goal(
            current=20.0, target=100.0, due=NOW + days(30),
            history=((0.0, NOW - days(20)), (20.0, NOW)),
        )
        trajectory = derive_trajectory(goal, NOW)
        assert trajectory.on_track is False
        assert trajectory.projected_date == NOW + days(80)
        assert "days late" in trajectory.explain

    def test_stalled_goal_has_no_projection(self):
        goal = make_goal(
            current=20.0, target=100.0, due=NOW + days(30),
            history=((30.0, NOW - days(20)), (20.0, NOW)),
        )
        trajectory = derive_trajectory(goal, NOW)
        assert trajectory.on_track is False
        assert trajectory.projected_date is None
        assert trajectory.explain.startswith("Stalled")

    def test_velocity_ignores_history_order(self):
        points = ((10.0, NOW - days(10)), (0.0, NOW - days(20)), (20.0, NOW))
        goal = make_goal(history=points)
        assert calculate_velocity(goal.history).velocity == pytest.approx(1.0)

    @pytest.mark.parametrize("field", ["current", "target"])
    def test_missing_values_lower_confidence(self, field):
        goal = make_goal(**{field: None})
        trajectory = derive_trajectory(goal, NOW)
        assert trajectory.on_track is False
        assert trajectory.confidence == 0.0


class TestCompanyTrajectories:

    def test_only_active_goals(self):
        company = make_company(goals=(
            make_goal("active"),
            make_goal("done", status=GoalStatus.COMPLETED),
        ))
        trajectories = derive_company_goal_trajectories(company, NOW)
        assert [t.goal_id for t in trajectories] == ["active"]
        assert trajectories[0].company_id == "acme"
        assert trajectories[0].is_multi_entity is False
