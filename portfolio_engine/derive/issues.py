"""
Issue Detection
===============

Issues are gaps: absence, staleness and deviation that need attention now.

Each issue carries a deterministic id built from stable inputs only
(type, entity id, optional key), so recomputation yields the same ids.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import hashlib
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..contracts.base import Severity, days_between, ensure_utc
from ..contracts.records import Company, GoalStatus
from .goal_trajectory import GoalTrajectory
from .runway import RunwayDerivation, company_runway
from .trajectory import DEFAULT_TRAJECTORY_CONFIG, Trajectory, TrajectoryConfig, derive_trajectory


class IssueType(Enum):
    RUNWAY_CRITICAL = "RUNWAY_CRITICAL"
    RUNWAY_WARNING = "RUNWAY_WARNING"
    DATA_MISSING = "DATA_MISSING"
    DATA_STALE = "DATA_STALE"
    NO_GOALS = "NO_GOALS"
    GOAL_BEHIND = "GOAL_BEHIND"
    GOAL_STALLED = "GOAL_STALLED"
    GOAL_MISSED = "GOAL_MISSED"
    NO_PIPELINE = "NO_PIPELINE"
    PIPELINE_GAP = "PIPELINE_GAP"
    DEAL_STALE = "DEAL_STALE"
    DEAL_AT_RISK = "DEAL_AT_RISK"


RUNWAY_CRITICAL_MONTHS = 6
RUNWAY_WARNING_MONTHS = 12
DATA_STALE_DAYS = 14
DEAL_STALE_DAYS = 30
GOAL_DEADLINE_BUFFER_DAYS = 7


@dataclass(frozen=True)
class Issue:
    issue_id: str
    issue_type: IssueType
    company_id: str
    severity: Severity
    explain: str
    detected_at: datetime
    goal_id: Optional[str] = None
    deal_id: Optional[str] = None
    evidence: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {
            "issueId": self.issue_id,
            "issueType": self.issue_type.value,
            "companyId": self.company_id,
            "severity": int(self.severity),
            "explain": self.explain,
            "detectedAt": self.detected_at.isoformat(),
            "evidence": dict(self.evidence),
        }
        if self.goal_id is not None:
            data["goalId"] = self.goal_id
        if self.deal_id is not None:
            data["dealId"] = self.deal_id
        return data


def issue_id(issue_type: IssueType, entity_id: str, stable_key: str = "") -> str:
    digest = hashlib.sha256(
        f"{issue_type.value}|{entity_id}|{stable_key}".encode("utf-8")
    ).hexdigest()[:6]
    return f"{issue_type.value}-{entity_id}-{digest}"


def _issue(
    issue_type: IssueType,
    company: Company,
    severity: Severity,
    explain: str,
    now: datetime,
    goal_id: Optional[str] = None,
    deal_id: Optional[str] = None,
    **evidence: Any,
) -> Issue:
    entity_id = goal_id or deal_id or company.id
    return Issue(
        issue_id=issue_id(issue_type, entity_id, deal_id or ""),
        issue_type=issue_type,
        company_id=company.id,
        severity=severity,
        explain=explain,
        detected_at=now,
        goal_id=goal_id,
        deal_id=deal_id,
        evidence=evidence,
    )


# =============================================================================
# DETECTORS
# =============================================================================

def detect_runway_issues(
    company: Company, now: datetime, runway: Optional[RunwayDerivation] = None,
) -> List[Issue]:
    if runway is None:
        runway = company_runway(company, now)

    if runway.value is None:
        return [_issue(
            IssueType.DATA_MISSING, company, Severity.HIGH,
            "Cannot calculate runway: missing cash or burn data", now,
            field="runway", inputs_missing=list(runway.inputs_missing),
        )]

    if math.isinf(runway.value):
        return []
    if runway.value < RUNWAY_CRITICAL_MONTHS:
        return [_issue(
            IssueType.RUNWAY_CRITICAL, company, Severity.CRITICAL,
            f"Runway {runway.value:.1f} months < {RUNWAY_CRITICAL_MONTHS} month critical threshold",
            now, value=runway.value, threshold=RUNWAY_CRITICAL_MONTHS,
        )]
    if runway.value < RUNWAY_WARNING_MONTHS:
        return [_issue(
            IssueType.RUNWAY_WARNING, company, Severity.HIGH,
            f"Runway {runway.value:.1f} months < {RUNWAY_WARNING_MONTHS} month warning threshold",
            now, value=runway.value, threshold=RUNWAY_WARNING_MONTHS,
        )]
    return []


def detect_goal_issues(
    company: Company,
    now: datetime,
    trajectories: Optional[Mapping[str, Trajectory]] = None,
    goal_trajectories: Sequence[GoalTrajectory] = (),
    config: TrajectoryConfig = DEFAULT_TRAJECTORY_CONFIG,
) -> List[Issue]:
    """
    Goal gaps for active goals.

    `trajectories` maps goal id to an already derived trajectory; goals
    missing from it are derived here with `config`. Forecasts in
    `goal_trajectories` add the probability of hit to the evidence.
    """
    trajectories = trajectories or {}
    forecasts = {g.goal_id: g for g in goal_trajectories}
    if not company.goals:
        return [_issue(
            IssueType.NO_GOALS, company, Severity.MEDIUM,
            "No goals defined - cannot track progress", now,
        )]

    issues = []
    for goal in company.goals:
        if goal.status is not GoalStatus.ACTIVE:
            continue
        if goal.due is None or goal.current is None or goal.target is None:
            continue

        trajectory = trajectories.get(goal.id) or derive_trajectory(goal, now, config)
        days_to_deadline = math.floor(days_between(now, goal.due))

        if days_to_deadline < 0 and goal.current < goal.target:
            issues.append(_issue(
                IssueType.GOAL_MISSED, company, Severity.HIGH, trajectory.explain, now,
                goal_id=goal.id, goal_name=goal.name, days_overdue=abs(days_to_deadline),
            ))
            continue

        if trajectory.on_track is False:
            forecast = forecasts.get(goal.id)
            extra = {"probability_of_hit": forecast.probability_of_hit} if forecast else {}
            if trajectory.projected_date is None:
                issues.append(_issue(
                    IssueType.GOAL_STALLED, company, Severity.HIGH, trajectory.explain, now,
                    goal_id=goal.id, goal_name=goal.name, **extra,
                ))
            else:
                severity = (
                    Severity.CRITICAL if days_to_deadline < GOAL_DEADLINE_BUFFER_DAYS
                    else Severity.HIGH
                )
                issues.append(_issue(
                    IssueType.GOAL_BEHIND, company, severity, trajectory.explain, now,
                    goal_id=goal.id, goal_name=goal.name,
                    confidence=trajectory.confidence, **extra,
                ))
    return issues


def detect_deal_issues(company: Company, now: datetime) -> List[Issue]:
    issues = []
    open_deals = [d for d in company.deals if d.is_open]

    if company.raising and (company.round_target or 0) > 0 and not open_deals:
        issues.append(_issue(
            IssueType.NO_PIPELINE, company, Severity.CRITICAL,
            f"Raising ${company.round_target / 1_000_000:.1f}M but no deals in pipeline", now,
            round_target=company.round_target,
        ))

    for deal in open_deals:
        if deal.last_activity is None:
            continue
        idle = math.floor(days_between(deal.last_activity, now))
        if idle > DEAL_STALE_DAYS:
            issues.append(_issue(
                IssueType.DEAL_STALE, company, Severity.MEDIUM,
                f"Deal {deal.id} not updated in {idle} days", now,
                deal_id=deal.id, days_since_update=idle, threshold=DEAL_STALE_DAYS,
            ))
    return issues


def detect_data_issues(company: Company, now: datetime) -> List[Issue]:
    if company.as_of is None:
        return []
    age = math.floor(days_between(company.as_of, now))
    if age > DATA_STALE_DAYS:
        return [_issue(
            IssueType.DATA_STALE, company, Severity.MEDIUM,
            f"Company data {age} days old (threshold: {DATA_STALE_DAYS})", now,
            days_since_update=age, threshold=DATA_STALE_DAYS,
        )]
    return []


# =============================================================================
# PUBLIC API
# =============================================================================

@dataclass(frozen=True)
class IssueSummary:
    total: int
    critical: int
    high: int
    medium: int
    low: int
    types: Tuple[str, ...]


def summarize_issues(issues: Sequence[Issue]) -> IssueSummary:
    counts: Dict[Severity, int] = {s: 0 for s in Severity}
    types: List[str] = []
    for issue in issues:
        counts[issue.severity] += 1
        if issue.issue_type.value not in types:
            types.append(issue.issue_type.value)
    return IssueSummary(
        total=len(issues),
        critical=counts[Severity.CRITICAL],
        high=counts[Severity.HIGH],
        medium=counts[Severity.MEDIUM],
        low=counts[Severity.LOW],
        types=tuple(types),
    )


def detect_issues(
    company: Company,
    now: datetime,
    runway: Optional[RunwayDerivation] = None,
    trajectories: Optional[Mapping[str, Trajectory]] = None,
    goal_trajectories: Sequence[GoalTrajectory] = (),
    config: TrajectoryConfig = DEFAULT_TRAJECTORY_CONFIG,
) -> List[Issue]:
    """All issues for one company, highest severity first (stable)."""
    now = ensure_utc(now)
    issues = (
        detect_runway_issues(company, now, runway)
        + detect_goal_issues(company, now, trajectories, goal_trajectories, config)
        + detect_deal_issues(company, now)
        + detect_data_issues(company, now)
    )
    return sorted(issues, key=lambda i: -int(i.severity))
