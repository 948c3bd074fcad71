"""
Pre-Issue Detection
===================

Pre-issues are forward-looking risks: problems that have not happened yet
but will, absent intervention.

    RUNWAY_BREACH   runway projected to cross the 6-month line
    GOAL_MISS       goal unlikely to be hit before its due date

Each pre-issue names the preventative resolutions that address it, plus an
escalation window (when it turns into a real issue) and a cost-of-delay
multiplier (how much waiting costs).

Derived output; never persisted.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from ..contracts.base import Severity, clamp, ensure_utc, round_half_up
from ..contracts.records import Company, GoalType
from ..derive.goal_trajectory import GoalTrajectory
from ..derive.runway import RunwayDerivation, company_runway


class PreIssueType(Enum):
    RUNWAY_BREACH = "RUNWAY_BREACH"
    GOAL_MISS = "GOAL_MISS"


RUNWAY_CRITICAL_MONTHS = 6
RUNWAY_HORIZON_MONTHS = 9
DAYS_PER_MONTH = 30
GOAL_MISS_PROBABILITY = 0.5
REVISE_TARGET_PROBABILITY = 0.2

IMMINENT_DAYS = 7


# =============================================================================
# PREVENTATIVE RESOLUTIONS
# =============================================================================

@dataclass(frozen=True)
class Resolution:
    """A named intervention: effort in days, effectiveness in [0, 1]."""
    resolution_id: str
    title: str
    effort: float
    effectiveness: float
    steps: Tuple[str, ...] = field(default_factory=tuple)


PREVENTATIVE_RESOLUTIONS: Dict[str, Resolution] = {r.resolution_id: r for r in (
    Resolution("REDUCE_BURN", "Reduce burn rate", 7, 0.7, (
        "Review all expense categories",
        "Identify non-essential costs",
        "Negotiate with vendors",
        "Implement cost reductions",
    )),
    Resolution("ACCELERATE_FUNDRAISE", "Accelerate fundraising", 14, 0.8, (
        "Expand investor pipeline",
        "Increase outreach velocity",
        "Fast-track promising leads",
        "Consider bridge financing",
    )),
    Resolution("BRIDGE_ROUND", "Secure bridge round", 21, 0.9, (
        "Reach out to existing investors",
        "Prepare bridge terms",
        "Negotiate and close quickly",
        "Update cap table",
    )),
    Resolution("ACCELERATE_GOAL", "Accelerate goal progress", 7, 0.6, (
        "Identify acceleration levers",
        "Reallocate resources",
        "Remove blockers",
        "Track daily progress",
    )),
    Resolution("REVISE_TARGET", "Revise goal target", 1, 0.4, (
        "Assess realistic attainment",
        "Propose revised target",
        "Document rationale",
        "Update goal in system",
    )),
    Resolution("ADD_RESOURCES", "Add resources to goal", 14, 0.7, (
        "Identify resource gaps",
        "Hire or reassign team members",
        "Provide necessary tools/budget",
        "Monitor progress lift",
    )),
    Resolution("FOLLOW_UP_INVESTOR", "Follow up with investor", 0.5, 0.5, (
        "Send check-in email",
        "Provide recent updates",
        "Ask about timeline",
        "Confirm next steps",
    )),
    Resolution("SCHEDULE_CHECK_IN", "Schedule investor check-in", 0.25, 0.4, (
        "Propose call time",
        "Prepare talking points",
        "Conduct call",
        "Document outcomes",
    )),
    Resolution("PREPARE_ALTERNATIVES", "Prepare alternative investors", 3, 0.6, (
        "Identify backup investors",
        "Warm them up",
        "Prepare to pivot if needed",
    )),
)}

# Single best intervention per goal type
GOAL_TYPE_PREVENTATIVE: Dict[GoalType, str] = {
    GoalType.FUNDRAISE: "ACCELERATE_FUNDRAISE",
    GoalType.ROUND_COMPLETION: "ACCELERATE_FUNDRAISE",
    GoalType.DEAL_CLOSE: "FOLLOW_UP_INVESTOR",
    GoalType.INVESTOR_ACTIVATION: "SCHEDULE_CHECK_IN",
    GoalType.HIRING: "ADD_RESOURCES",
}


# =============================================================================
# PRE-ISSUE RECORD
# =============================================================================

@dataclass(frozen=True)
class EscalationWindow:
    escalation_date: datetime
    breach_date: datetime
    days_until_escalation: float
    is_imminent: bool


@dataclass(frozen=True)
class CostOfDelay:
    multiplier: float
    explain: str


@dataclass(frozen=True)
class PreIssue:
    preissue_id: str
    preissue_type: PreIssueType
    company_id: str
    title: str
    likelihood: float
    days_to_breach: float
    severity: Severity
    preventative_actions: Tuple[str, ...]
    irreversibility: float
    escalation: EscalationWindow
    cost_of_delay: CostOfDelay
    explain: Tuple[str, ...] = field(default_factory=tuple)
    goal_id: Optional[str] = None

    def __post_init__(self):
        if not 0.0 <= self.likelihood <= 1.0:
            raise ValueError(f"likelihood must be in [0, 1], got {self.likelihood}")
        for resolution_id in self.preventative_actions:
            if resolution_id not in PREVENTATIVE_RESOLUTIONS:
                raise ValueError(f"Unknown preventative resolution: {resolution_id}")

    @property
    def expected_future_cost(self) -> float:
        return round_half_up(self.likelihood * self.irreversibility * IMPACT_MAGNITUDE[self.preissue_type], 2)

    def to_dict(self) -> dict:
        return {
            "preissueId": self.preissue_id,
            "preissueType": self.preissue_type.value,
            "companyId": self.company_id,
            "goalId": self.goal_id,
            "title": self.title,
            "likelihood": self.likelihood,
            "daysToBreach": self.days_to_breach,
            "severity": int(self.severity),
            "preventativeActions": list(self.preventative_actions),
            "irreversibility": self.irreversibility,
            "expectedFutureCost": self.expected_future_cost,
            "escalation": {
                "escalationDate": self.escalation.escalation_date.isoformat(),
                "breachDate": self.escalation.breach_date.isoformat(),
                "daysUntilEscalation": self.escalation.days_until_escalation,
                "isImminent": self.escalation.is_imminent,
            },
            "costOfDelay": {
                "multiplier": self.cost_of_delay.multiplier,
                "explain": self.cost_of_delay.explain,
            },
            "explain": list(self.explain),
        }


IMPACT_MAGNITUDE: Dict[PreIssueType, float] = {
    PreIssueType.RUNWAY_BREACH: 80,
    PreIssueType.GOAL_MISS: 60,
}

# Lead time needed before breach for an intervention to still work
ESCALATION_LEAD_DAYS: Dict[PreIssueType, float] = {
    PreIssueType.RUNWAY_BREACH: 90,
    PreIssueType.GOAL_MISS: 14,
}

COST_TYPE_MULTIPLIER: Dict[PreIssueType, float] = {
    PreIssueType.RUNWAY_BREACH: 1.5,
    PreIssueType.GOAL_MISS: 1.0,
}


# =============================================================================
# ESCALATION & COST OF DELAY
# =============================================================================

def escalation_window(
    preissue_type: PreIssueType, days_to_breach: float, now: datetime
) -> EscalationWindow:
    lead = ESCALATION_LEAD_DAYS[preissue_type]
    days_until = max(0.0, days_to_breach - lead)
    return EscalationWindow(
        escalation_date=now + timedelta(days=days_until),
        breach_date=now + timedelta(days=days_to_breach),
        days_until_escalation=days_until,
        is_imminent=days_until <= IMMINENT_DAYS,
    )


def delay_cost_multiplier(days_until_escalation: float) -> float:
    """
    1.0 with a month or more of slack, rising to 5.0 at escalation and
    growing past it as damage accumulates.
    """
    d = days_until_escalation
    if d > 30:
        return 1.0
    if d > 14:
        return 1.0 + (30 - d) / 32
    if d > 7:
        return 1.5 + (14 - d) / 7
    if d > 0:
        return 2.5 + (7 - d) / 2.8
    return 5.0 + abs(d) / 2


def cost_of_delay(preissue_type: PreIssueType, days_until_escalation: float) -> CostOfDelay:
    d = days_until_escalation
    if d > 30:
        explain = "Baseline cost - ample time to act"
    elif d > 14:
        explain = "Cost rising - action window narrowing"
    elif d > 7:
        explain = "Elevated cost - limited options remaining"
    elif d > 0:
        explain = "High cost - urgent action required"
    else:
        explain = "Critical cost - damage accumulating"
    multiplier = delay_cost_multiplier(d) * COST_TYPE_MULTIPLIER[preissue_type]
    return CostOfDelay(multiplier=round_half_up(multiplier, 2), explain=explain)


# =============================================================================
# DETECTION
# =============================================================================

def detect_runway_breach(
    company: Company, runway: RunwayDerivation, now: datetime
) -> Optional[PreIssue]:
    """Runway under the 9-month horizon will cross the 6-month line."""
    months = runway.value
    if months is None or months >= RUNWAY_HORIZON_MONTHS:
        return None

    critical = months < RUNWAY_CRITICAL_MONTHS
    days_to_breach = max(0.0, (months - RUNWAY_CRITICAL_MONTHS) * DAYS_PER_MONTH)
    likelihood = 0.8 if critical else 0.5
    preventative = ("REDUCE_BURN", "BRIDGE_ROUND") if critical else ("REDUCE_BURN",)
    if company.raising:
        preventative += ("ACCELERATE_FUNDRAISE",)

    preissue_type = PreIssueType.RUNWAY_BREACH
    escalation = escalation_window(preissue_type, days_to_breach, now)
    burn = f"${(company.burn or 0) / 1000:.0f}K/mo"
    return PreIssue(
        preissue_id=f"preissue-runway-{company.id}",
        preissue_type=preissue_type,
        company_id=company.id,
        title=f"Runway will breach {RUNWAY_CRITICAL_MONTHS}mo threshold",
        likelihood=likelihood,
        days_to_breach=round_half_up(days_to_breach, 1),
        severity=Severity.HIGH if critical else Severity.MEDIUM,
        preventative_actions=preventative,
        irreversibility=0.5,
        escalation=escalation,
        cost_of_delay=cost_of_delay(preissue_type, escalation.days_until_escalation),
        explain=(
            f"Runway: {months:.1f} months",
            f"Burn: {burn}",
            "High likelihood without intervention" if likelihood > 0.7 else "Moderate likelihood",
        ),
    )


def preventative_for_goal(goal_type: str, probability: float) -> Tuple[str, ...]:
    try:
        primary = GOAL_TYPE_PREVENTATIVE.get(GoalType(goal_type), "ACCELERATE_GOAL")
    except ValueError:
        primary = "ACCELERATE_GOAL"
    if probability < REVISE_TARGET_PROBABILITY:
        return (primary, "REVISE_TARGET")
    return (primary,)


def detect_goal_miss(
    trajectory: GoalTrajectory, company: Company, now: datetime
) -> Optional[PreIssue]:
    """A goal with probability-of-hit under 0.5 that is not yet due."""
    p = trajectory.probability_of_hit
    if p >= GOAL_MISS_PROBABILITY or p == 0:
        return None
    if trajectory.on_track is True:
        return None
    if trajectory.days_left is None or trajectory.days_left < 0:
        return None

    days_left = float(trajectory.days_left)
    preissue_type = PreIssueType.GOAL_MISS
    escalation = escalation_window(preissue_type, days_left, now)
    return PreIssue(
        preissue_id=f"preissue-goal-{company.id}-{trajectory.goal_id}",
        preissue_type=preissue_type,
        company_id=company.id,
        title=f'Goal "{trajectory.goal_name}" likely to miss target',
        likelihood=round_half_up(1 - p, 2),
        days_to_breach=days_left,
        severity=Severity.HIGH if p < 0.3 else Severity.MEDIUM,
        preventative_actions=preventative_for_goal(trajectory.goal_type, p),
        irreversibility=round_half_up(clamp(1 - days_left / 365, 0.2, 0.8), 2),
        escalation=escalation,
        cost_of_delay=cost_of_delay(preissue_type, escalation.days_until_escalation),
        explain=trajectory.explain,
        goal_id=trajectory.goal_id,
    )


def detect_preissues(
    company: Company,
    trajectories: Sequence[GoalTrajectory],
    now: datetime,
    runway: Optional[RunwayDerivation] = None,
) -> List[PreIssue]:
    """All pre-issues for one company, most likely first."""
    now = ensure_utc(now)
    if runway is None:
        runway = company_runway(company, now)

    preissues: List[PreIssue] = []
    breach = detect_runway_breach(company, runway, now)
    if breach is not None:
        preissues.append(breach)
    for trajectory in trajectories:
        miss = detect_goal_miss(trajectory, company, now)
        if miss is not None:
            preissues.append(miss)

    preissues.sort(key=lambda p: -p.likelihood)
    return preissues


def imminent_preissues(preissues: Sequence[PreIssue]) -> List[PreIssue]:
    return [p for p in preissues if p.escalation.is_imminent]
