"""
Goal Damage
===========

For each (issue, goal) pair, how much the issue damages the goal:

    damage = severity_multiplier x goal_weight x proximity_factor

Derived only. Damages are listed per pair; `aggregate_goal_damage` sums
them per goal for reporting.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence

from ..contracts.base import days_between, round_half_up
from ..contracts.records import Goal, GoalType
from .issues import Issue, IssueType


# None means the issue names its goal directly
ISSUE_GOAL_MAPPING: Mapping[IssueType, Optional[FrozenSet[GoalType]]] = {
    IssueType.RUNWAY_CRITICAL: frozenset({GoalType.FUNDRAISE, GoalType.OPERATIONAL}),
    IssueType.RUNWAY_WARNING: frozenset({GoalType.FUNDRAISE, GoalType.OPERATIONAL}),
    IssueType.GOAL_BEHIND: None,
    IssueType.GOAL_STALLED: None,
    IssueType.GOAL_MISSED: None,
    IssueType.NO_GOALS: frozenset({GoalType.OPERATIONAL}),
    IssueType.DATA_MISSING: frozenset({GoalType.OPERATIONAL, GoalType.REVENUE}),
    IssueType.DATA_STALE: frozenset({GoalType.OPERATIONAL}),
    IssueType.NO_PIPELINE: frozenset({GoalType.FUNDRAISE}),
    IssueType.PIPELINE_GAP: frozenset({GoalType.FUNDRAISE}),
    IssueType.DEAL_STALE: frozenset({GoalType.FUNDRAISE}),
    IssueType.DEAL_AT_RISK: frozenset({GoalType.FUNDRAISE}),
}

SEVERITY_DAMAGE: Mapping[int, float] = {3: 1.0, 2: 0.7, 1: 0.4, 0: 0.15}
DEFAULT_SEVERITY_DAMAGE = 0.2
DEFAULT_GOAL_WEIGHT = 50


@dataclass(frozen=True)
class DamageComponents:
    severity_multiplier: float
    goal_weight: float
    proximity_factor: float


@dataclass(frozen=True)
class GoalDamage:
    issue_id: str
    goal_id: str
    damage: float
    components: DamageComponents


def proximity_factor(goal: Goal, now: datetime) -> float:
    if goal.due is None:
        return 0.5
    days_left = max(0.0, days_between(now, goal.due))
    if days_left < 30:
        return 1.0
    if days_left < 90:
        return 0.8
    if days_left < 180:
        return 0.5
    return 0.3


def affected_goals(issue: Issue, goals: Sequence[Goal]) -> List[Goal]:
    if issue.goal_id is not None:
        return [g for g in goals if g.id == issue.goal_id]
    goal_types = ISSUE_GOAL_MAPPING.get(issue.issue_type)
    if not goal_types:
        return []
    return [g for g in goals if g.type in goal_types]


def compute_goal_damage(
    issues: Sequence[Issue], goals: Sequence[Goal], now: datetime
) -> List[GoalDamage]:
    """Damage for every affected (issue, goal) pair, largest first."""
    damages = []
    for issue in issues:
        multiplier = SEVERITY_DAMAGE.get(int(issue.severity), DEFAULT_SEVERITY_DAMAGE)
        for goal in affected_goals(issue, goals):
            weight = (goal.weight or DEFAULT_GOAL_WEIGHT) / 100
            proximity = proximity_factor(goal, now)
            damages.append(GoalDamage(
                issue_id=issue.issue_id,
                goal_id=goal.id,
                damage=round_half_up(multiplier * weight * proximity, 3),
                components=DamageComponents(
                    severity_multiplier=multiplier,
                    goal_weight=round_half_up(weight, 2),
                    proximity_factor=proximity,
                ),
            ))
    return sorted(damages, key=lambda d: -d.damage)


def aggregate_goal_damage(damages: Sequence[GoalDamage]) -> Dict[str, float]:
    totals: Dict[str, float] = {}
    for d in damages:
        totals[d.goal_id] = round_half_up(totals.get(d.goal_id, 0.0) + d.damage, 3)
    return totals
