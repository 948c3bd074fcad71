"""
Goal Forecast & Probability of Hit
==================================

Extends the raw trajectory with a blended probability that the goal is
hit by its due date. Feeds pre-issues and action generation.

Derived output: recomputed each run from Goal.history and `now`.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
import math
from typing import List, Mapping, Optional, Sequence, Tuple

from ..contracts.base import EntityRef, clamp, days_between, ensure_utc
from ..contracts.records import Company, Goal, GoalStatus
from .trajectory import (
    DEFAULT_TRAJECTORY_CONFIG, Trajectory, TrajectoryConfig, calculate_velocity, derive_trajectory,
)


@dataclass(frozen=True)
class GoalTrajectory:
    goal_id: str
    goal_name: str
    goal_type: str
    company_id: Optional[str]
    current: Optional[float]
    target: Optional[float]
    progress: float
    due: Optional[datetime]
    days_left: Optional[int]
    on_track: Optional[bool]
    projected_date: Optional[datetime]
    velocity: float
    required_velocity: Optional[float]
    probability_of_hit: float
    confidence: float
    explain: Tuple[str, ...]
    entity_refs: Tuple[EntityRef, ...]
    is_multi_entity: bool


def goal_progress(goal: Goal) -> float:
    if goal.current is None or goal.target is None:
        return 0.0
    if goal.current >= goal.target:
        return 1.0
    if goal.target > 0:
        return clamp(goal.current / goal.target)
    return 0.0


def probability_of_hit(
    progress: float,
    days_left: Optional[float],
    on_track: Optional[bool],
    confidence: float,
    velocity: float,
    required_velocity: Optional[float],
    config: TrajectoryConfig = DEFAULT_TRAJECTORY_CONFIG,
) -> float:
    """
    Blend progress, trajectory fit and time remaining into [0, 1].

    Achieved goals are 1; past-due unachieved goals are 0.
    """
    if progress >= 1:
        return 1.0
    if days_left is not None and days_left < 0:
        return 0.0

    prob = progress * config.progress_weight

    if on_track is True:
        prob += config.on_track_weight * confidence
    elif on_track is False:
        if velocity > 0 and required_velocity is not None and required_velocity > 0:
            prob += config.behind_weight * min(1.0, velocity / required_velocity) * confidence
    elif days_left is not None and days_left > 0:
        prob += config.unknown_weight * min(1.0, days_left / config.unknown_horizon_days)

    if days_left is not None:
        for threshold, bonus in config.time_bonus:
            if days_left > threshold:
                prob += bonus
                break

    return clamp(prob)


def _confidence_band(probability: float) -> str:
    pct = f"{probability * 100:.0f}%"
    if probability >= 0.8:
        return f"High confidence ({pct}) of hitting target"
    if probability >= 0.5:
        return f"Moderate confidence ({pct}) - may need acceleration"
    if probability >= 0.2:
        return f"At risk ({pct}) - intervention needed"
    return f"Unlikely to hit ({pct}) without major change"


def derive_goal_trajectory(
    goal: Goal,
    now: datetime,
    config: TrajectoryConfig = DEFAULT_TRAJECTORY_CONFIG,
    trajectory: Optional[Trajectory] = None,
) -> GoalTrajectory:
    now = ensure_utc(now)
    if trajectory is None:
        trajectory = derive_trajectory(goal, now, config)
    progress = goal_progress(goal)

    days_left = math.floor(days_between(now, goal.due)) if goal.due is not None else None

    required: Optional[float] = None
    if days_left is not None and days_left > 0 and goal.current is not None and goal.target is not None:
        required = (goal.target - goal.current) / days_left

    velocity = calculate_velocity(goal.history).velocity
    probability = probability_of_hit(
        progress, days_left, trajectory.on_track, trajectory.confidence,
        velocity, required, config,
    )

    return GoalTrajectory(
        goal_id=goal.id,
        goal_name=goal.name,
        goal_type=goal.type.value,
        company_id=goal.company_id,
        current=goal.current,
        target=goal.target,
        progress=progress,
        due=goal.due,
        days_left=days_left,
        on_track=trajectory.on_track,
        projected_date=trajectory.projected_date,
        velocity=velocity,
        required_velocity=required,
        probability_of_hit=probability,
        confidence=trajectory.confidence,
        explain=(trajectory.explain, _confidence_band(probability)),
        entity_refs=goal.entity_refs,
        is_multi_entity=goal.is_multi_entity,
    )


def derive_company_goal_trajectories(
    company: Company,
    now: datetime,
    config: TrajectoryConfig = DEFAULT_TRAJECTORY_CONFIG,
    trajectories: Optional[Mapping[str, Trajectory]] = None,
) -> List[GoalTrajectory]:
    """
    Trajectories for the company's active goals, in goal order.

    Projections already derived for a goal (keyed by goal id) are reused.
    """
    trajectories = trajectories or {}
    return [
        derive_goal_trajectory(goal, now, config, trajectories.get(goal.id))
        for goal in company.goals
        if goal.status is GoalStatus.ACTIVE
    ]


def at_risk_goals(
    trajectories: Sequence[GoalTrajectory], threshold: float = 0.5
) -> List[GoalTrajectory]:
    """Trajectories below the threshold, least likely first."""
    return sorted(
        (t for t in trajectories if t.probability_of_hit < threshold),
        key=lambda t: t.probability_of_hit,
    )
