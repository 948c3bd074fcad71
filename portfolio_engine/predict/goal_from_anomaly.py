"""
Anomaly -> Goal Candidates
==========================

Part of the goal-driven pipeline:

    anomalies -> goal candidates -> select_top_goals -> actions

Each anomaly type maps to one named goal. Severity sets the goal's weight
and how soon it is due.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Sequence, Tuple

from ..contracts.base import EntityRef, Severity
from ..contracts.records import Company, Goal, GoalStatus, GoalType, Provenance
from ..derive.anomalies import Anomaly, AnomalyType
from ..raw.stage_params import GoalTemplate


@dataclass(frozen=True)
class GoalMapping:
    goal_type: GoalType
    name: str


ANOMALY_TO_GOAL: Dict[AnomalyType, GoalMapping] = {
    AnomalyType.RUNWAY_BELOW_MIN: GoalMapping(GoalType.OPERATIONAL, "Extend Runway"),
    AnomalyType.RUNWAY_ABOVE_MAX: GoalMapping(GoalType.OPERATIONAL, "Deploy Capital"),
    AnomalyType.BURN_BELOW_MIN: GoalMapping(GoalType.OPERATIONAL, "Increase Investment"),
    AnomalyType.BURN_ABOVE_MAX: GoalMapping(GoalType.OPERATIONAL, "Reduce Burn Rate"),
    AnomalyType.EMPLOYEES_BELOW_MIN: GoalMapping(GoalType.HIRING, "Build Team"),
    AnomalyType.EMPLOYEES_ABOVE_MAX: GoalMapping(GoalType.OPERATIONAL, "Optimize Team Size"),
    AnomalyType.REVENUE_BELOW_MIN: GoalMapping(GoalType.REVENUE, "Grow Revenue"),
    AnomalyType.REVENUE_ABOVE_MAX: GoalMapping(GoalType.FUNDRAISE, "Prepare Next Round"),
    AnomalyType.REVENUE_MISSING_REQUIRED: GoalMapping(GoalType.REVENUE, "Establish Revenue"),
    AnomalyType.RAISE_BELOW_MIN: GoalMapping(GoalType.FUNDRAISE, "Right-Size Round"),
    AnomalyType.RAISE_ABOVE_MAX: GoalMapping(GoalType.OPERATIONAL, "Validate Stage"),
    AnomalyType.STAGE_MISMATCH_METRICS: GoalMapping(GoalType.OPERATIONAL, "Review Stage Fit"),
    AnomalyType.NRR_BELOW_THRESHOLD: GoalMapping(GoalType.RETENTION, "Improve NRR"),
    AnomalyType.GRR_BELOW_THRESHOLD: GoalMapping(GoalType.RETENTION, "Improve GRR"),
    AnomalyType.GROSS_MARGIN_BELOW_THRESHOLD: GoalMapping(GoalType.EFFICIENCY, "Improve Gross Margin"),
    AnomalyType.CAC_ABOVE_THRESHOLD: GoalMapping(GoalType.EFFICIENCY, "Reduce CAC"),
    AnomalyType.LOGO_RETENTION_LOW: GoalMapping(GoalType.RETENTION, "Improve Retention"),
    AnomalyType.HIRING_PLAN_BEHIND: GoalMapping(GoalType.HIRING, "Accelerate Hiring"),
    AnomalyType.NPS_BELOW_THRESHOLD: GoalMapping(GoalType.CUSTOMER_GROWTH, "Improve NPS"),
    AnomalyType.OPEN_POSITIONS_ABOVE_MAX: GoalMapping(GoalType.HIRING, "Right-Size Hiring"),
    AnomalyType.PAYING_CUSTOMERS_BELOW_MIN: GoalMapping(GoalType.CUSTOMER_GROWTH, "Grow Customer Base"),
    AnomalyType.ACV_BELOW_MIN: GoalMapping(GoalType.EFFICIENCY, "Optimize ACV"),
    AnomalyType.ACV_ABOVE_MAX: GoalMapping(GoalType.CUSTOMER_GROWTH, "Diversify Customers"),
    AnomalyType.RAISED_TO_DATE_LOW: GoalMapping(GoalType.FUNDRAISE, "Raise Capital"),
    AnomalyType.LAST_RAISE_UNDERSIZE: GoalMapping(GoalType.FUNDRAISE, "Right-Size Next Round"),
    AnomalyType.COMPANY_AGE_STAGE_MISMATCH: GoalMapping(GoalType.OPERATIONAL, "Review Stage Fit"),
}

# Indexed by Severity
SEVERITY_WEIGHT: Tuple[int, ...] = (40, 55, 70, 90)
SEVERITY_DUE_DAYS: Dict[Severity, int] = {
    Severity.CRITICAL: 30,
    Severity.HIGH: 60,
    Severity.MEDIUM: 90,
    Severity.LOW: 120,
}

MAX_GOALS_PER_TYPE = 2
TEMPLATE_GOAL_WEIGHT = 40
FALLBACK_GOAL_WEIGHT = 30
FALLBACK_GOAL_TYPES: Tuple[GoalType, ...] = (
    GoalType.REVENUE, GoalType.OPERATIONAL, GoalType.HIRING, GoalType.PRODUCT, GoalType.FUNDRAISE,
)


@dataclass(frozen=True)
class AnomalyGoal:
    """A goal candidate plus the anomaly it came from."""
    goal: Goal
    severity: Severity
    source_anomaly: AnomalyType


def _goal_target(anomaly: Anomaly) -> float:
    evidence = anomaly.evidence
    for candidate in (evidence.min, evidence.target, evidence.max):
        if candidate is not None:
            return candidate
    return 0.0


def map_anomalies_to_goals(
    anomalies: Sequence[Anomaly], company: Company, now: datetime
) -> List[AnomalyGoal]:
    """One goal candidate per distinct (goal type, name), in anomaly order."""
    goals: List[AnomalyGoal] = []
    seen = set()
    for anomaly in anomalies:
        mapping = ANOMALY_TO_GOAL.get(anomaly.type)
        if mapping is None:
            continue
        key = (mapping.goal_type, mapping.name)
        if key in seen:
            continue
        seen.add(key)

        actual = anomaly.evidence.actual
        goal = Goal(
            id=f"goal-anom-{company.id}-{mapping.goal_type.value}-{len(goals)}",
            name=mapping.name,
            type=mapping.goal_type,
            entity_refs=(company.entity_ref,),
            current=actual if actual is not None else 0.0,
            target=_goal_target(anomaly),
            due=now + timedelta(days=SEVERITY_DUE_DAYS[anomaly.severity]),
            status=GoalStatus.ACTIVE,
            provenance=Provenance.ANOMALY,
            weight=SEVERITY_WEIGHT[int(anomaly.severity)],
        )
        goals.append(AnomalyGoal(goal=goal, severity=anomaly.severity, source_anomaly=anomaly.type))
    return goals


class _GoalSelection:
    def __init__(self) -> None:
        self.goals: List[Goal] = []
        self._per_type: Dict[GoalType, int] = {}

    def can_add(self, goal_type: GoalType) -> bool:
        return self._per_type.get(goal_type, 0) < MAX_GOALS_PER_TYPE

    def add(self, goal: Goal) -> bool:
        if not self.can_add(goal.type):
            return False
        self.goals.append(goal)
        self._per_type[goal.type] = self._per_type.get(goal.type, 0) + 1
        return True

    def __len__(self) -> int:
        return len(self.goals)


def select_top_goals(
    existing: Sequence[Goal],
    anomaly_goals: Sequence[AnomalyGoal],
    templates: Sequence[GoalTemplate],
    min_count: int = 5,
    *,
    company_id: str,
) -> List[Goal]:
    """
    A bounded, diverse goal set of at least `min_count` goals.

    Layers: existing active goals, then anomaly goals by severity, then
    stage templates, then generic fallbacks. At most two goals of any
    one type are kept.
    """
    selection = _GoalSelection()
    company_ref = EntityRef.company(company_id)

    for goal in existing:
        if goal.status is GoalStatus.ACTIVE:
            selection.add(goal)

    for candidate in sorted(anomaly_goals, key=lambda g: -int(g.severity)):
        if len(selection) >= min_count * 2:
            break
        selection.add(candidate.goal)

    for template in templates:
        if len(selection) >= min_count:
            break
        selection.add(Goal(
            id=f"goal-tmpl-{company_id}-{template.type.value}-{len(selection)}",
            name=template.name,
            type=template.type,
            entity_refs=(company_ref,),
            current=0.0,
            target=100.0,
            provenance=Provenance.TEMPLATE,
            weight=TEMPLATE_GOAL_WEIGHT,
        ))

    for goal_type in FALLBACK_GOAL_TYPES:
        if len(selection) >= min_count:
            break
        if not selection.can_add(goal_type):
            continue
        selection.add(Goal(
            id=f"goal-fallback-{company_id}-{goal_type.value}-{len(selection)}",
            name=f"{goal_type.value.capitalize()} Growth",
            type=goal_type,
            entity_refs=(company_ref,),
            current=0.0,
            target=100.0,
            provenance=Provenance.TEMPLATE,
            weight=FALLBACK_GOAL_WEIGHT,
        ))

    return selection.goals
