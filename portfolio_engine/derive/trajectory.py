"""
Goal Trajectory
===============

Progress velocity and completion projection from a goal's history.

Pure derivation: the trajectory is never stored on the goal.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
import math
from typing import Optional, Sequence

from ..contracts.base import clamp, days_between, ensure_utc
from ..contracts.records import Goal, HistoryPoint


@dataclass
class TrajectoryConfig:
    """Blend weights for confidence and probability of hit."""
    base_confidence: float = 0.5
    points_weight: float = 0.2
    points_saturation: int = 10
    coverage_weight: float = 0.2
    consistency_weight: float = 0.1
    insufficient_confidence: float = 0.2
    progress_weight: float = 0.3
    on_track_weight: float = 0.4
    behind_weight: float = 0.2
    unknown_weight: float = 0.2
    unknown_horizon_days: float = 30.0
    # (days_left strictly greater than, bonus), checked in order
    time_bonus: tuple = ((60, 0.2), (30, 0.15), (14, 0.1), (7, 0.05))


DEFAULT_TRAJECTORY_CONFIG = TrajectoryConfig()

# Projections further out than this are clipped; datetime cannot hold them
MAX_PROJECTION_DAYS = 36500


@dataclass(frozen=True)
class Velocity:
    velocity: float
    span_days: float
    points: int


@dataclass(frozen=True)
class Trajectory:
    on_track: Optional[bool]
    projected_date: Optional[datetime]
    confidence: float
    explain: str
    velocity: Optional[float] = None
    points: int = 0


def calculate_velocity(history: Sequence[HistoryPoint]) -> Velocity:
    """Units per day between the earliest and latest history points."""
    ordered = sorted(history, key=lambda p: p.as_of)
    if len(ordered) < 2:
        return Velocity(velocity=0.0, span_days=0.0, points=len(ordered))

    first, last = ordered[0], ordered[-1]
    span = days_between(first.as_of, last.as_of)
    if span == 0:
        return Velocity(velocity=0.0, span_days=0.0, points=len(ordered))
    return Velocity(velocity=(last.value - first.value) / span, span_days=span, points=len(ordered))


def project_completion_date(
    current: float, target: float, velocity: float, now: datetime
) -> Optional[datetime]:
    """Date the target is reached at constant velocity; None if never."""
    gap = target - current
    if gap <= 0:
        return now
    if velocity <= 0:
        return None
    return now + timedelta(days=min(gap / velocity, MAX_PROJECTION_DAYS))


def calculate_confidence(
    points: int,
    span_days: float,
    days_to_deadline: float,
    velocity_variance: float = 0.0,
    config: TrajectoryConfig = DEFAULT_TRAJECTORY_CONFIG,
) -> float:
    confidence = config.base_confidence
    confidence += min(points / config.points_saturation, 1) * config.points_weight
    if days_to_deadline > 0 and span_days > 0:
        confidence += min(span_days / days_to_deadline, 1) * config.coverage_weight
    confidence += (1 - velocity_variance) * config.consistency_weight
    return clamp(confidence)


def _fmt(value: float) -> str:
    return f"{value:g}"


def derive_trajectory(
    goal: Goal,
    now: datetime,
    config: TrajectoryConfig = DEFAULT_TRAJECTORY_CONFIG,
) -> Trajectory:
    """
    Project whether a goal will hit its target by its due date.

    Missing fields and short history lower confidence instead of raising.
    """
    if goal.target is None:
        return Trajectory(on_track=False, projected_date=None, confidence=0.0,
                          explain="Missing target value")
    if goal.due is None:
        return Trajectory(on_track=False, projected_date=None, confidence=0.0,
                          explain="Missing due date")
    if goal.current is None:
        return Trajectory(on_track=False, projected_date=None, confidence=0.0,
                          explain="Missing current value")

    now = ensure_utc(now)
    current, target, due = goal.current, goal.target, goal.due
    due_label = due.date().isoformat()
    days_to_deadline = days_between(now, due)

    if current >= target:
        return Trajectory(on_track=True, projected_date=now, confidence=1.0,
                          explain=f"Goal achieved: {_fmt(current)} >= {_fmt(target)}")

    if days_to_deadline < 0:
        return Trajectory(on_track=False, projected_date=None, confidence=1.0,
                          explain=f"Missed: {_fmt(current)}/{_fmt(target)} by {due_label}")

    velocity = calculate_velocity(goal.history)

    if velocity.points < 2:
        gap = target - current
        required = gap / days_to_deadline if days_to_deadline > 0 else math.inf
        return Trajectory(
            on_track=None, projected_date=None,
            confidence=config.insufficient_confidence,
            explain=(f"Insufficient history. Need {required:.2f}/day to hit "
                     f"{_fmt(target)} by {due_label}"),
            points=velocity.points,
        )

    projected = project_completion_date(current, target, velocity.velocity, now)
    confidence = calculate_confidence(
        velocity.points, velocity.span_days, days_to_deadline, 0.0, config
    )

    if projected is None:
        return Trajectory(
            on_track=False, projected_date=None, confidence=confidence,
            explain=(f"Stalled or regressing at {velocity.velocity:.2f}/day. "
                     f"Current: {_fmt(current)}, Target: {_fmt(target)}"),
            velocity=velocity.velocity, points=velocity.points,
        )

    if projected <= due:
        days_early = math.floor(days_between(projected, due))
        explain = (f"On track: projected {projected.date().isoformat()} "
                   f"({days_early} days early)")
        on_track = True
    else:
        days_late = math.ceil(days_between(due, projected))
        explain = (f"Behind: projected {projected.date().isoformat()} "
                   f"({days_late} days late)")
        on_track = False

    return Trajectory(
        on_track=on_track, projected_date=projected, confidence=confidence,
        explain=explain, velocity=velocity.velocity, points=velocity.points,
    )
