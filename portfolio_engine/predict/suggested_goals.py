"""
Goal Suggestion Engine
======================

Maps anomalies to recommended goals, considering:
- anomaly type and severity
- stage-appropriate goal templates
- existing goals (no duplicate suggestions)

Suggestions are proposals with status `suggested`; `suggestion_to_goal`
turns an accepted one into an active goal.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..contracts.base import EntityRef, Severity
from ..contracts.records import Company, Goal, GoalStatus, GoalType, Provenance
from ..derive.anomalies import Anomaly, AnomalyType, Evidence
from ..raw.stage_params import next_stage, stage_goal_templates
from .goal_from_anomaly import SEVERITY_DUE_DAYS


class SuggestionType(Enum):
    EXTEND_RUNWAY = "EXTEND_RUNWAY"
    INITIATE_FUNDRAISE = "INITIATE_FUNDRAISE"
    REDUCE_BURN = "REDUCE_BURN"
    HIRE_TO_MIN = "HIRE_TO_MIN"
    OPTIMIZE_TEAM_SIZE = "OPTIMIZE_TEAM_SIZE"
    ESTABLISH_REVENUE = "ESTABLISH_REVENUE"
    GROW_REVENUE = "GROW_REVENUE"
    PREPARE_NEXT_ROUND = "PREPARE_NEXT_ROUND"
    VALIDATE_STAGE = "VALIDATE_STAGE"
    REDUCE_CAC = "REDUCE_CAC"
    IMPROVE_NRR = "IMPROVE_NRR"
    IMPROVE_GRR = "IMPROVE_GRR"
    IMPROVE_GROSS_MARGIN = "IMPROVE_GROSS_MARGIN"
    IMPROVE_RETENTION = "IMPROVE_RETENTION"
    ACCELERATE_HIRING = "ACCELERATE_HIRING"
    IMPROVE_NPS = "IMPROVE_NPS"
    RIGHT_SIZE_HIRING_PLAN = "RIGHT_SIZE_HIRING_PLAN"
    GROW_CUSTOMER_BASE = "GROW_CUSTOMER_BASE"
    OPTIMIZE_ACV = "OPTIMIZE_ACV"
    DIVERSIFY_CUSTOMERS = "DIVERSIFY_CUSTOMERS"
    RAISE_MORE_CAPITAL = "RAISE_MORE_CAPITAL"
    RIGHT_SIZE_ROUND = "RIGHT_SIZE_ROUND"
    REVIEW_STAGE_FIT = "REVIEW_STAGE_FIT"
    FROM_STAGE_TEMPLATE = "FROM_STAGE_TEMPLATE"


def _plain(value: float) -> str:
    return f"{value:g}"


def _dollars(value: float) -> str:
    return f"${value:,.0f}"


def _millions(value: float) -> str:
    return f"${value / 1_000_000:.1f}M"


@dataclass(frozen=True)
class SuggestionTemplate:
    suggestion_type: SuggestionType
    goal_type: GoalType
    name_template: str
    priority: int
    rationale: str
    target_from: Optional[Callable[[Evidence], Optional[float]]] = None
    target_label: Callable[[float], str] = _plain
    condition: Optional[Callable[[Company], bool]] = None


def _min(ev: Evidence) -> Optional[float]:
    return ev.min


def _max(ev: Evidence) -> Optional[float]:
    return ev.max


def _target(ev: Evidence) -> Optional[float]:
    return ev.target


def _burn_cap_thousands(ev: Evidence) -> Optional[float]:
    return round(ev.max / 1000) if ev.max is not None else None


ANOMALY_GOAL_MAP: Dict[AnomalyType, Tuple[SuggestionTemplate, ...]] = {
    AnomalyType.RUNWAY_BELOW_MIN: (
        SuggestionTemplate(
            SuggestionType.EXTEND_RUNWAY, GoalType.OPERATIONAL,
            "Extend runway to {target} months", 1,
            "Runway below stage minimum creates existential risk",
            target_from=_target,
        ),
        SuggestionTemplate(
            SuggestionType.INITIATE_FUNDRAISE, GoalType.FUNDRAISE,
            "Initiate {next_stage} fundraise", 2,
            "Low runway indicates need for capital infusion",
            condition=lambda company: not company.raising,
        ),
        SuggestionTemplate(
            SuggestionType.REDUCE_BURN, GoalType.OPERATIONAL,
            "Reduce burn to ${target}K/mo", 3,
            "Burn reduction can extend runway without fundraise",
        ),
    ),
    AnomalyType.BURN_ABOVE_MAX: (
        SuggestionTemplate(
            SuggestionType.REDUCE_BURN, GoalType.OPERATIONAL,
            "Reduce burn to ${target}K/mo", 1,
            "Burn exceeds stage norms, increasing capital inefficiency",
            target_from=_burn_cap_thousands,
        ),
    ),
    AnomalyType.EMPLOYEES_BELOW_MIN: (
        SuggestionTemplate(
            SuggestionType.HIRE_TO_MIN, GoalType.HIRING,
            "Build team to {target} FTE", 1,
            "Team size below stage minimum may limit execution capacity",
            target_from=_min,
        ),
    ),
    AnomalyType.EMPLOYEES_ABOVE_MAX: (
        SuggestionTemplate(
            SuggestionType.OPTIMIZE_TEAM_SIZE, GoalType.OPERATIONAL,
            "Optimize team efficiency", 2,
            "Team size exceeds stage norms, may indicate inefficiency",
        ),
    ),
    AnomalyType.REVENUE_MISSING_REQUIRED: (
        SuggestionTemplate(
            SuggestionType.ESTABLISH_REVENUE, GoalType.REVENUE,
            "Establish revenue stream", 1,
            "Revenue expected at this stage but not reported",
            target_from=_min,
        ),
    ),
    AnomalyType.REVENUE_BELOW_MIN: (
        SuggestionTemplate(
            SuggestionType.GROW_REVENUE, GoalType.REVENUE,
            "Grow revenue to {target} ARR", 1,
            "Revenue below stage minimum may affect fundraising",
            target_from=_min, target_label=_millions,
        ),
    ),
    AnomalyType.REVENUE_ABOVE_MAX: (
        SuggestionTemplate(
            SuggestionType.PREPARE_NEXT_ROUND, GoalType.FUNDRAISE,
            "Prepare {next_stage} fundraise", 2,
            "Revenue metrics suggest readiness for next stage",
        ),
    ),
    AnomalyType.RAISE_ABOVE_MAX: (
        SuggestionTemplate(
            SuggestionType.VALIDATE_STAGE, GoalType.OPERATIONAL,
            "Validate stage classification", 3,
            "Raise target exceeds stage norms - verify positioning",
        ),
    ),
    AnomalyType.STAGE_MISMATCH_METRICS: (
        SuggestionTemplate(
            SuggestionType.VALIDATE_STAGE, GoalType.OPERATIONAL,
            "Review stage classification", 2,
            "Multiple metrics suggest different stage than reported",
        ),
    ),
    AnomalyType.CAC_ABOVE_THRESHOLD: (
        SuggestionTemplate(
            SuggestionType.REDUCE_CAC, GoalType.EFFICIENCY,
            "Reduce CAC to {target}", 1,
            "CAC exceeds stage norms, threatening unit economics",
            target_from=_max, target_label=_dollars,
        ),
    ),
    AnomalyType.NRR_BELOW_THRESHOLD: (
        SuggestionTemplate(
            SuggestionType.IMPROVE_NRR, GoalType.RETENTION,
            "Improve NRR to {target}%", 1,
            "Net revenue retention below stage minimum indicates churn risk",
            target_from=_min,
        ),
    ),
    AnomalyType.GRR_BELOW_THRESHOLD: (
        SuggestionTemplate(
            SuggestionType.IMPROVE_GRR, GoalType.RETENTION,
            "Improve GRR to {target}%", 1,
            "Gross revenue retention below stage minimum indicates logo churn",
            target_from=_min,
        ),
    ),
    AnomalyType.GROSS_MARGIN_BELOW_THRESHOLD: (
        SuggestionTemplate(
            SuggestionType.IMPROVE_GROSS_MARGIN, GoalType.EFFICIENCY,
            "Improve gross margin to {target}%", 1,
            "Gross margin below stage norms threatens scalability",
            target_from=_min,
        ),
    ),
    AnomalyType.LOGO_RETENTION_LOW: (
        SuggestionTemplate(
            SuggestionType.IMPROVE_RETENTION, GoalType.RETENTION,
            "Improve logo retention to {target}%", 1,
            "Logo retention below stage minimum signals customer satisfaction issues",
            target_from=_min,
        ),
    ),
    AnomalyType.HIRING_PLAN_BEHIND: (
        SuggestionTemplate(
            SuggestionType.ACCELERATE_HIRING, GoalType.HIRING,
            "Hire to target headcount of {target}", 1,
            "Headcount significantly behind hiring plan",
            target_from=_target,
        ),
    ),
    AnomalyType.NPS_BELOW_THRESHOLD: (
        SuggestionTemplate(
            SuggestionType.IMPROVE_NPS, GoalType.CUSTOMER_GROWTH,
            "Improve NPS to {target}", 2,
            "NPS below stage minimum threatens customer advocacy and growth",
            target_from=_min,
        ),
    ),
    AnomalyType.OPEN_POSITIONS_ABOVE_MAX: (
        SuggestionTemplate(
            SuggestionType.RIGHT_SIZE_HIRING_PLAN, GoalType.HIRING,
            "Right-size hiring plan to {target} open positions", 2,
            "Open positions exceed stage norms, may indicate hiring bottleneck",
            target_from=_max,
        ),
    ),
    AnomalyType.PAYING_CUSTOMERS_BELOW_MIN: (
        SuggestionTemplate(
            SuggestionType.GROW_CUSTOMER_BASE, GoalType.CUSTOMER_GROWTH,
            "Grow customer base to {target}", 1,
            "Paying customer count below stage minimum limits revenue growth",
            target_from=_min,
        ),
    ),
    AnomalyType.ACV_BELOW_MIN: (
        SuggestionTemplate(
            SuggestionType.OPTIMIZE_ACV, GoalType.EFFICIENCY,
            "Optimize ACV to {target}", 2,
            "ACV below stage minimum suggests pricing or market positioning issues",
            target_from=_min, target_label=_dollars,
        ),
    ),
    AnomalyType.ACV_ABOVE_MAX: (
        SuggestionTemplate(
            SuggestionType.DIVERSIFY_CUSTOMERS, GoalType.CUSTOMER_GROWTH,
            "Diversify customer base", 2,
            "ACV above stage maximum may indicate concentration risk",
        ),
    ),
    AnomalyType.RAISED_TO_DATE_LOW: (
        SuggestionTemplate(
            SuggestionType.RAISE_MORE_CAPITAL, GoalType.FUNDRAISE,
            "Raise additional capital", 2,
            "Total raised below stage minimum may constrain growth",
        ),
    ),
    AnomalyType.LAST_RAISE_UNDERSIZE: (
        SuggestionTemplate(
            SuggestionType.RIGHT_SIZE_ROUND, GoalType.FUNDRAISE,
            "Right-size next funding round", 2,
            "Last raise was undersized for current stage",
        ),
    ),
    AnomalyType.COMPANY_AGE_STAGE_MISMATCH: (
        SuggestionTemplate(
            SuggestionType.REVIEW_STAGE_FIT, GoalType.OPERATIONAL,
            "Review stage fit for company age", 3,
            "Company age is unusual for current stage classification",
        ),
    ),
}

# Terms that mark a suggestion as already covered by an existing goal
KEY_TERMS: Tuple[str, ...] = ("runway", "fundraise", "burn", "hire", "revenue", "team")

TEMPLATE_PRIORITY_OFFSET = 10
TEMPLATE_DUE_DAYS = 90


@dataclass(frozen=True)
class ProposedGoal:
    type: GoalType
    name: str
    target: Optional[float]
    due: datetime
    status: GoalStatus = GoalStatus.SUGGESTED


@dataclass(frozen=True)
class GoalSuggestion:
    suggestion_id: str
    suggestion_type: SuggestionType
    company_id: str
    proposed_goal: ProposedGoal
    priority: int
    rationale: str
    severity: Severity
    source_anomaly_id: Optional[str] = None
    source_anomaly_type: Optional[AnomalyType] = None
    entity_refs: Tuple[EntityRef, ...] = field(default_factory=tuple)


# =============================================================================
# SUGGESTION CREATION
# =============================================================================

def _suggestion_name(
    template: SuggestionTemplate, target: Optional[float], company: Company
) -> str:
    following = next_stage(company.stage)
    return template.name_template.format(
        target=template.target_label(target) if target is not None else "?",
        next_stage=following.value if following else "next round",
    )


def create_suggestion(
    anomaly: Anomaly, company: Company, template: SuggestionTemplate, now: datetime
) -> GoalSuggestion:
    target = template.target_from(anomaly.evidence) if template.target_from else None
    return GoalSuggestion(
        suggestion_id=f"sug-{anomaly.anomaly_id}-{template.suggestion_type.value}",
        suggestion_type=template.suggestion_type,
        company_id=company.id,
        proposed_goal=ProposedGoal(
            type=template.goal_type,
            name=_suggestion_name(template, target, company),
            target=target,
            due=now + timedelta(days=SEVERITY_DUE_DAYS[anomaly.severity]),
        ),
        priority=template.priority,
        rationale=template.rationale,
        severity=anomaly.severity,
        source_anomaly_id=anomaly.anomaly_id,
        source_anomaly_type=anomaly.type,
        entity_refs=(company.entity_ref,),
    )


def goal_already_exists(suggestion: GoalSuggestion, existing: Sequence[Goal]) -> bool:
    """Same goal type and a shared key term in the name."""
    suggested_name = suggestion.proposed_goal.name.lower()
    for goal in existing:
        if goal.type is not suggestion.proposed_goal.type:
            continue
        existing_name = goal.name.lower()
        if any(term in suggested_name and term in existing_name for term in KEY_TERMS):
            return True
    return False


def suggest_from_stage_templates(
    company: Company,
    anomaly_suggestions: Sequence[GoalSuggestion],
    existing: Sequence[Goal],
    now: datetime,
) -> List[GoalSuggestion]:
    suggested_types = {s.proposed_goal.type for s in anomaly_suggestions}
    existing_types = {g.type for g in existing if g.status is GoalStatus.ACTIVE}

    suggestions = []
    for template in stage_goal_templates(company.stage):
        if template.type in suggested_types or template.type in existing_types:
            continue
        if template.type is GoalType.FUNDRAISE and company.raising:
            continue
        suggestions.append(GoalSuggestion(
            suggestion_id=f"sug-template-{company.id}-{template.type.value}",
            suggestion_type=SuggestionType.FROM_STAGE_TEMPLATE,
            company_id=company.id,
            proposed_goal=ProposedGoal(
                type=template.type,
                name=template.name,
                target=None,
                due=now + timedelta(days=TEMPLATE_DUE_DAYS),
            ),
            priority=template.priority + TEMPLATE_PRIORITY_OFFSET,
            rationale=f"Stage-appropriate milestone: {template.unlocks}",
            severity=Severity.LOW,
            entity_refs=(company.entity_ref,),
        ))
        # One template suggestion per goal type; ids are keyed on the type
        suggested_types.add(template.type)
    return suggestions


# =============================================================================
# PUBLIC API
# =============================================================================

def suggest_goals(
    company: Company,
    anomalies: Sequence[Anomaly],
    now: datetime,
    include_stage_templates: bool = True,
    min_severity: Severity = Severity.LOW,
) -> List[GoalSuggestion]:
    """Goal suggestions for one company, by priority (lower first, stable)."""
    existing = company.goals
    suggestions: List[GoalSuggestion] = []
    seen = set()

    for anomaly in anomalies:
        if anomaly.severity < min_severity:
            continue
        for template in ANOMALY_GOAL_MAP.get(anomaly.type, ()):
            if template.condition is not None and not template.condition(company):
                continue
            suggestion = create_suggestion(anomaly, company, template, now)
            if suggestion.suggestion_id in seen or goal_already_exists(suggestion, existing):
                continue
            seen.add(suggestion.suggestion_id)
            suggestions.append(suggestion)

    if include_stage_templates:
        suggestions.extend(suggest_from_stage_templates(company, suggestions, existing, now))

    return sorted(suggestions, key=lambda s: s.priority)


def suggestion_to_goal(
    suggestion: GoalSuggestion,
    current: float = 0.0,
    target: Optional[float] = None,
    due: Optional[datetime] = None,
) -> Goal:
    """Accept a suggestion: an active goal with provenance `suggested`."""
    proposed = suggestion.proposed_goal
    return Goal(
        id=f"goal-{suggestion.suggestion_id}",
        name=proposed.name,
        type=proposed.type,
        entity_refs=suggestion.entity_refs or (EntityRef.company(suggestion.company_id),),
        current=current,
        target=target if target is not None else proposed.target,
        due=due or proposed.due,
        status=GoalStatus.ACTIVE,
        provenance=Provenance.SUGGESTED,
    )
