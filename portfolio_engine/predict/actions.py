"""
Action Candidates & Impact Model
================================

Actions are the primary decisioning object. Candidates come from:

    issues     (reactive)       one action per issue via ISSUE_RESOLUTIONS
    pre-issues (preventative)   one action per preventative resolution
    goals      (offensive)      exactly three actions per goal, one per
                                category in GOAL_CATEGORY_MAP

`attach_impact` then derives every ImpactModel term from upstream signals:
resolution effort/effectiveness, company stage, source severity and stake,
and goal damage. No term is hand-tuned per action.

RULES:
======
- Action ids are deterministic (built from source ids only)
- Actions carry no score; ranking happens in decide.ranking alone
- Derived output, never persisted
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
import logging
import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..contracts.base import EntityRef, clamp, days_between, round_half_up
from ..contracts.records import Company, Goal, GoalType
from ..derive.action_memory import ExecutionSignal, signal_for
from ..derive.goal_damage import ISSUE_GOAL_MAPPING, GoalDamage
from ..derive.issues import Issue, IssueType
from ..raw.stage_params import Stage, parse_stage
from .preissues import PREVENTATIVE_RESOLUTIONS, PreIssue, PreIssueType, Resolution


logger = logging.getLogger(__name__)


class SourceType(Enum):
    ISSUE = "ISSUE"
    PREISSUE = "PREISSUE"
    GOAL = "GOAL"
    ANOMALY = "ANOMALY"
    SUGGESTION = "SUGGESTION"
    MEETING = "MEETING"


REACTIVE_SOURCES = frozenset({SourceType.ISSUE, SourceType.PREISSUE})


# =============================================================================
# ACTION RECORDS
# =============================================================================

@dataclass(frozen=True)
class ActionSource:
    """Where an action came from. `kind` is the issue or pre-issue type."""
    source_type: SourceType
    source_id: str
    kind: Optional[str] = None
    goal_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"sourceType": self.source_type.value, "sourceId": self.source_id}
        if self.kind is not None:
            data["kind"] = self.kind
        if self.goal_id is not None:
            data["goalId"] = self.goal_id
        return data


@dataclass(frozen=True)
class ImpactModel:
    upside_magnitude: float
    probability_of_success: float
    execution_probability: float
    downside_magnitude: float
    time_to_impact_days: float
    effort_cost: float
    second_order_leverage: float
    explain: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        for name in ("probability_of_success", "execution_probability"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")

    def to_dict(self) -> dict:
        return {
            "upsideMagnitude": self.upside_magnitude,
            "probabilityOfSuccess": self.probability_of_success,
            "executionProbability": self.execution_probability,
            "downsideMagnitude": self.downside_magnitude,
            "timeToImpactDays": self.time_to_impact_days,
            "effortCost": self.effort_cost,
            "secondOrderLeverage": self.second_order_leverage,
            "explain": list(self.explain),
        }


@dataclass(frozen=True)
class Action:
    action_id: str
    entity_ref: EntityRef
    title: str
    sources: Tuple[ActionSource, ...]
    resolution_id: str
    steps: Tuple[str, ...] = field(default_factory=tuple)
    goal_id: Optional[str] = None
    goal_type: Optional[str] = None
    category: Optional[str] = None
    is_primary: bool = False
    complexity: float = 0.0
    impact: Optional[ImpactModel] = None

    def __post_init__(self):
        if not self.action_id:
            raise ValueError("Action id must be non-empty")
        if not self.sources:
            raise ValueError(f"Action {self.action_id} must have at least one source")

    @property
    def primary_source(self) -> ActionSource:
        return self.sources[0]

    @property
    def company_id(self) -> str:
        return self.entity_ref.id

    def to_dict(self) -> dict:
        return {
            "actionId": self.action_id,
            "entityRef": self.entity_ref.to_dict(),
            "title": self.title,
            "sources": [s.to_dict() for s in self.sources],
            "resolutionId": self.resolution_id,
            "steps": list(self.steps),
            "goalId": self.goal_id,
            "goalType": self.goal_type,
            "category": self.category,
            "complexity": self.complexity,
            "impact": self.impact.to_dict() if self.impact else None,
        }


# =============================================================================
# RESOLUTION TABLES
# =============================================================================

ISSUE_RESOLUTIONS: Dict[IssueType, Resolution] = {
    IssueType.RUNWAY_CRITICAL: Resolution("SECURE_BRIDGE_FINANCING", "Secure bridge financing", 14, 0.8, (
        "Model cash-out date", "Brief existing investors", "Agree bridge terms", "Close bridge",
    )),
    IssueType.RUNWAY_WARNING: Resolution("PLAN_FUNDRAISE", "Start fundraise planning", 7, 0.7, (
        "Set raise timeline", "Update investor materials", "Build target investor list",
    )),
    IssueType.DATA_MISSING: Resolution("REQUEST_FINANCIALS", "Request missing financials", 1, 0.8, (
        "Identify missing metrics", "Send data request", "Record responses",
    )),
    IssueType.DATA_STALE: Resolution("REFRESH_METRICS", "Request updated metrics", 1, 0.8, (
        "Send metrics refresh request", "Confirm as-of dates",
    )),
    IssueType.NO_GOALS: Resolution("SET_GOALS", "Set company goals", 2, 0.7, (
        "Review stage expectations", "Agree top goals with founders", "Record targets and due dates",
    )),
    IssueType.GOAL_BEHIND: Resolution("GOAL_RECOVERY_PLAN", "Build goal recovery plan", 3, 0.6, (
        "Diagnose shortfall", "Identify acceleration levers", "Agree weekly checkpoints",
    )),
    IssueType.GOAL_STALLED: Resolution("UNBLOCK_GOAL", "Unblock stalled goal", 3, 0.55, (
        "Identify blocker", "Assign owner", "Remove blocker", "Confirm progress resumes",
    )),
    IssueType.GOAL_MISSED: Resolution("RESET_MISSED_GOAL", "Review missed goal and reset", 1, 0.5, (
        "Run retrospective", "Decide to extend or close", "Record new target",
    )),
    IssueType.NO_PIPELINE: Resolution("BUILD_INVESTOR_PIPELINE", "Build investor pipeline", 7, 0.65, (
        "Map target investors", "Request warm intros", "Schedule first meetings",
    )),
    IssueType.PIPELINE_GAP: Resolution("EXPAND_INVESTOR_PIPELINE", "Expand investor pipeline", 7, 0.6, (
        "Size the gap", "Add new prospects", "Increase outreach velocity",
    )),
    IssueType.DEAL_STALE: PREVENTATIVE_RESOLUTIONS["FOLLOW_UP_INVESTOR"],
    IssueType.DEAL_AT_RISK: PREVENTATIVE_RESOLUTIONS["PREPARE_ALTERNATIVES"],
}

# Goal type -> the three action categories, primary first
GOAL_CATEGORY_MAP: Dict[GoalType, Tuple[str, str, str]] = {
    GoalType.REVENUE: ("growth", "pipeline", "data"),
    GoalType.FUNDRAISE: ("fundraise", "pipeline", "intros"),
    GoalType.HIRING: ("goals", "growth", "data"),
    GoalType.PRODUCT: ("goals", "growth", "data"),
    GoalType.OPERATIONAL: ("financial", "goals", "data"),
    GoalType.PARTNERSHIP: ("intros", "pipeline", "goals"),
    GoalType.RETENTION: ("goals", "growth", "financial"),
    GoalType.EFFICIENCY: ("financial", "goals", "growth"),
    GoalType.CUSTOMER_GROWTH: ("growth", "goals", "pipeline"),
    GoalType.INTRO_TARGET: ("intros", "pipeline", "goals"),
    GoalType.DEAL_CLOSE: ("pipeline", "fundraise", "intros"),
    GoalType.ROUND_COMPLETION: ("fundraise", "pipeline", "financial"),
    GoalType.INVESTOR_ACTIVATION: ("intros", "pipeline", "fundraise"),
    GoalType.CHAMPION_CULTIVATION: ("intros", "goals", "pipeline"),
    GoalType.RELATIONSHIP_BUILD: ("intros", "goals", "pipeline"),
}


def _template(key: str, title: str, effort: float, effectiveness: float, *steps: str) -> Tuple[str, Resolution]:
    return key, Resolution(key, title, effort, effectiveness, steps)


# {GOALTYPE}_{CATEGORY} -> template
ACTION_TEMPLATES: Dict[str, Resolution] = dict((
    _template("REVENUE_GROWTH", "Accelerate revenue growth", 14, 0.7,
              "Review sales pipeline", "Identify quick wins", "Accelerate deal closing", "Increase outreach"),
    _template("REVENUE_PIPELINE", "Expand revenue pipeline", 10, 0.6,
              "Map target accounts", "Build outbound sequences", "Qualify inbound leads", "Track conversion"),
    _template("REVENUE_DATA", "Instrument revenue metrics", 5, 0.5,
              "Define key revenue KPIs", "Set up dashboards", "Automate reporting", "Review weekly"),
    _template("FUNDRAISE_FUNDRAISE", "Drive fundraise to close", 30, 0.9,
              "Finalize lead investor", "Complete due diligence", "Negotiate terms", "Execute closing"),
    _template("FUNDRAISE_PIPELINE", "Expand investor pipeline", 7, 0.65,
              "Identify 10 new prospects", "Send warm intros", "Schedule meetings", "Follow up aggressively"),
    _template("FUNDRAISE_INTROS", "Request investor introductions", 3, 0.6,
              "Identify warm connections", "Draft intro requests", "Brief introducers", "Follow up within 48h"),
    _template("HIRING_GOALS", "Set hiring milestones", 3, 0.5,
              "Define headcount targets by role", "Set timeline for each hire", "Assign recruiting owners",
              "Track weekly progress"),
    _template("HIRING_GROWTH", "Accelerate hiring pipeline", 14, 0.6,
              "Expand sourcing channels", "Speed up interview process", "Make competitive offers",
              "Onboard quickly"),
    _template("HIRING_DATA", "Track hiring funnel metrics", 3, 0.4,
              "Instrument recruiting pipeline", "Track time-to-fill", "Measure offer acceptance rate",
              "Review weekly"),
    _template("PRODUCT_GOALS", "Define product milestones", 5, 0.55,
              "Map feature requirements", "Set sprint targets", "Define acceptance criteria", "Schedule reviews"),
    _template("PRODUCT_GROWTH", "Sprint to product milestone", 14, 0.6,
              "Define sprint scope", "Allocate engineering", "Clear blockers daily", "Track to milestone"),
    _template("PRODUCT_DATA", "Instrument product analytics", 5, 0.45,
              "Define key product metrics", "Set up event tracking", "Build usage dashboards", "Review weekly"),
    _template("OPERATIONAL_FINANCIAL", "Optimize financial operations", 7, 0.65,
              "Review expense categories", "Identify cost savings", "Implement controls", "Monitor monthly"),
    _template("OPERATIONAL_GOALS", "Set operational targets", 3, 0.5,
              "Define operational KPIs", "Set quarterly targets", "Assign owners", "Track progress"),
    _template("OPERATIONAL_DATA", "Improve operational reporting", 5, 0.45,
              "Audit current reporting", "Fill data gaps", "Automate collection", "Build dashboards"),
    _template("PARTNERSHIP_INTROS", "Request partner introductions", 3, 0.5,
              "Identify target partners", "Find warm connections", "Request intros", "Follow up promptly"),
    _template("PARTNERSHIP_PIPELINE", "Build partnership pipeline", 7, 0.55,
              "Map partner ecosystem", "Prioritize targets", "Initiate conversations", "Track progress"),
    _template("PARTNERSHIP_GOALS", "Define partnership milestones", 3, 0.45,
              "Set partnership KPIs", "Define integration timeline", "Assign champions", "Review monthly"),
    _template("RETENTION_GOALS", "Set retention targets", 3, 0.5,
              "Define retention KPIs", "Set cohort targets", "Identify at-risk segments",
              "Build intervention playbook"),
    _template("RETENTION_GROWTH", "Launch retention program", 10, 0.65,
              "Analyze churn drivers", "Design retention offers", "Implement health scoring", "Execute outreach"),
    _template("RETENTION_FINANCIAL", "Quantify retention economics", 5, 0.5,
              "Calculate LTV by cohort", "Model retention impact on ARR", "Build business case",
              "Present to team"),
    _template("EFFICIENCY_FINANCIAL", "Optimize unit economics", 7, 0.6,
              "Audit cost structure", "Identify margin levers", "Implement pricing changes", "Monitor impact"),
    _template("EFFICIENCY_GOALS", "Set unit economics targets", 3, 0.5,
              "Define efficiency metrics", "Set stage-appropriate targets", "Assign owners", "Track monthly"),
    _template("EFFICIENCY_GROWTH", "Scale efficient growth", 10, 0.55,
              "Identify scalable channels", "Reduce CAC", "Improve conversion rates", "Increase payback speed"),
    _template("CUSTOMER_GROWTH_GROWTH", "Accelerate customer acquisition", 10, 0.6,
              "Expand lead generation", "Optimize conversion funnel", "Launch referral program",
              "Track CAC by channel"),
    _template("CUSTOMER_GROWTH_GOALS", "Set customer growth targets", 3, 0.5,
              "Define customer count goals", "Set segment targets", "Map growth channels", "Track weekly"),
    _template("CUSTOMER_GROWTH_PIPELINE", "Build customer pipeline", 7, 0.55,
              "Map target segments", "Build outreach sequences", "Qualify pipeline", "Forecast conversion"),
    _template("INTRO_TARGET_INTROS", "Execute introduction", 1, 0.6,
              "Brief introducer on context", "Make formal introduction", "Follow up within 24h",
              "Schedule meeting"),
    _template("INTRO_TARGET_PIPELINE", "Prepare intro pipeline", 3, 0.5,
              "Research target background", "Identify mutual connections", "Prepare materials",
              "Sequence touchpoints"),
    _template("INTRO_TARGET_GOALS", "Define intro success criteria", 1, 0.4,
              "Define desired outcome", "Set timeline", "Plan follow-up cadence", "Track progress"),
    _template("DEAL_CLOSE_PIPELINE", "Advance deal through pipeline", 7, 0.7,
              "Review deal stage", "Address objections", "Send updated materials", "Push for commitment"),
    _template("DEAL_CLOSE_FUNDRAISE", "Drive deal to term sheet", 14, 0.8,
              "Align on valuation range", "Draft term sheet", "Address legal concerns", "Close negotiation"),
    _template("DEAL_CLOSE_INTROS", "Engage deal champions", 3, 0.55,
              "Identify internal champions", "Brief on deal status", "Request their advocacy", "Follow up"),
    _template("ROUND_COMPLETION_FUNDRAISE", "Close funding round", 21, 0.85,
              "Confirm lead allocation", "Complete legal review", "Coordinate wire instructions",
              "Announce close"),
    _template("ROUND_COMPLETION_PIPELINE", "Fill remaining round capacity", 10, 0.65,
              "Identify allocation gaps", "Reach out to interested parties", "Negotiate participation",
              "Secure commitments"),
    _template("ROUND_COMPLETION_FINANCIAL", "Finalize round economics", 5, 0.6,
              "Model dilution impact", "Validate post-money valuation", "Update cap table",
              "Prepare closing docs"),
    _template("INVESTOR_ACTIVATION_INTROS", "Re-engage dormant investors", 3, 0.5,
              "Review relationship history", "Identify relevant deal flow", "Send personalized update",
              "Propose meeting"),
    _template("INVESTOR_ACTIVATION_PIPELINE", "Build investor engagement plan", 5, 0.5,
              "Map firm investment thesis", "Identify portfolio synergies", "Create touchpoint calendar",
              "Execute outreach"),
    _template("INVESTOR_ACTIVATION_FUNDRAISE", "Convert investor interest", 7, 0.6,
              "Share deal materials", "Arrange management meeting", "Address diligence questions",
              "Push for allocation"),
    _template("CHAMPION_CULTIVATION_INTROS", "Build champion relationship", 3, 0.5,
              "Schedule personal meeting", "Share exclusive insights", "Identify mutual value",
              "Plan next touchpoint"),
    _template("CHAMPION_CULTIVATION_GOALS", "Define champion milestones", 2, 0.4,
              "Set advocacy targets", "Define success metrics", "Plan engagement cadence",
              "Track advocacy actions"),
    _template("CHAMPION_CULTIVATION_PIPELINE", "Leverage champion network", 5, 0.55,
              "Map champion connections", "Identify intro opportunities", "Request warm intros",
              "Track conversions"),
    _template("RELATIONSHIP_BUILD_INTROS", "Initiate relationship", 1, 0.5,
              "Find connection point", "Send personalized outreach", "Schedule first meeting", "Follow up"),
    _template("RELATIONSHIP_BUILD_GOALS", "Set relationship milestones", 2, 0.4,
              "Define relationship goals", "Plan touchpoint cadence", "Set warmth targets", "Track engagement"),
    _template("RELATIONSHIP_BUILD_PIPELINE", "Build relationship pipeline", 5, 0.5,
              "Map key stakeholders", "Prioritize by value", "Create outreach sequences", "Track progress"),
))


def action_template(goal_type: GoalType, category: str) -> Resolution:
    """Template for a goal type x category; a generic one for unmapped pairs."""
    key = f"{goal_type.value.upper()}_{category.upper()}"
    template = ACTION_TEMPLATES.get(key)
    if template is not None:
        return template
    return Resolution(key, f"{category} action for {goal_type.value}", 7, 0.5, (
        f"Assess current {goal_type.value} status",
        f"Identify {category} opportunities",
        f"Execute {category} plan",
    ))


_ISSUE_RESOLUTIONS_BY_ID = {r.resolution_id: r for r in ISSUE_RESOLUTIONS.values()}


def resolution_for(resolution_id: str) -> Optional[Resolution]:
    return (
        _ISSUE_RESOLUTIONS_BY_ID.get(resolution_id)
        or PREVENTATIVE_RESOLUTIONS.get(resolution_id)
        or ACTION_TEMPLATES.get(resolution_id)
    )


# =============================================================================
# CANDIDATE GENERATION
# =============================================================================

def action_from_issue(
    issue: Issue, company: Company, goals_by_id: Dict[str, Goal]
) -> Optional[Action]:
    resolution = ISSUE_RESOLUTIONS.get(issue.issue_type)
    if resolution is None:
        return None
    goal = goals_by_id.get(issue.goal_id) if issue.goal_id else None
    return Action(
        action_id=f"act-{issue.issue_id}",
        entity_ref=company.entity_ref,
        title=f"{company.name}: {resolution.title}",
        sources=(ActionSource(
            source_type=SourceType.ISSUE,
            source_id=issue.issue_id,
            kind=issue.issue_type.value,
            goal_id=issue.goal_id,
        ),),
        resolution_id=resolution.resolution_id,
        steps=resolution.steps,
        goal_id=issue.goal_id,
        goal_type=goal.type.value if goal else None,
    )


def actions_from_preissue(
    preissue: PreIssue, company: Company, goals_by_id: Dict[str, Goal]
) -> List[Action]:
    goal = goals_by_id.get(preissue.goal_id) if preissue.goal_id else None
    prefix = f'{company.name} "{goal.name}"' if goal else company.name
    actions = []
    for resolution_id in preissue.preventative_actions:
        resolution = PREVENTATIVE_RESOLUTIONS[resolution_id]
        actions.append(Action(
            action_id=f"act-{preissue.preissue_id}-{resolution_id.lower()}",
            entity_ref=company.entity_ref,
            title=f"{prefix}: {resolution.title}",
            sources=(ActionSource(
                source_type=SourceType.PREISSUE,
                source_id=preissue.preissue_id,
                kind=preissue.preissue_type.value,
                goal_id=preissue.goal_id,
            ),),
            resolution_id=resolution_id,
            steps=resolution.steps,
            goal_id=preissue.goal_id,
            goal_type=goal.type.value if goal else None,
        ))
    return actions


def actions_for_goal(goal: Goal, company: Company) -> List[Action]:
    """Exactly three actions, one per category of the goal's type."""
    categories = GOAL_CATEGORY_MAP[goal.type]
    actions = []
    for index, category in enumerate(categories):
        template = action_template(goal.type, category)
        actions.append(Action(
            action_id=f"{goal.id}-act-{category}",
            entity_ref=company.entity_ref,
            title=f"{company.name}: {template.title}",
            sources=(ActionSource(source_type=SourceType.GOAL, source_id=goal.id, goal_id=goal.id),),
            resolution_id=template.resolution_id,
            steps=template.steps,
            goal_id=goal.id,
            goal_type=goal.type.value,
            category=category,
            is_primary=index == 0,
        ))
    return actions


def generate_action_candidates(
    company: Company,
    issues: Sequence[Issue],
    preissues: Sequence[PreIssue],
    goals: Sequence[Goal],
) -> List[Action]:
    """Issue, then pre-issue, then goal actions for one company."""
    goals_by_id = {g.id: g for g in company.goals}
    goals_by_id.update((g.id, g) for g in goals)

    candidates: List[Action] = []
    for issue in issues:
        action = action_from_issue(issue, company, goals_by_id)
        if action is not None:
            candidates.append(action)
    for preissue in preissues:
        candidates.extend(actions_from_preissue(preissue, company, goals_by_id))
    for goal in goals:
        candidates.extend(actions_for_goal(goal, company))

    logger.debug(
        "Company %s: %d candidates from %d issues, %d pre-issues, %d goals",
        company.id, len(candidates), len(issues), len(preissues), len(goals),
    )
    return candidates


# =============================================================================
# IMPACT MODEL
# =============================================================================

GOAL_TYPE_WEIGHTS: Dict[GoalType, float] = {
    GoalType.FUNDRAISE: 90,
    GoalType.REVENUE: 85,
    GoalType.ROUND_COMPLETION: 85,
    GoalType.DEAL_CLOSE: 80,
    GoalType.OPERATIONAL: 70,
    GoalType.RETENTION: 65,
    GoalType.EFFICIENCY: 65,
    GoalType.HIRING: 60,
    GoalType.CUSTOMER_GROWTH: 60,
    GoalType.PRODUCT: 55,
    GoalType.PARTNERSHIP: 50,
    GoalType.INTRO_TARGET: 45,
    GoalType.RELATIONSHIP_BUILD: 40,
    GoalType.INVESTOR_ACTIVATION: 35,
    GoalType.CHAMPION_CULTIVATION: 30,
}
DEFAULT_GOAL_TYPE_WEIGHT = 50

STAGE_MODIFIERS: Dict[Stage, Dict[GoalType, float]] = {
    Stage.PRE_SEED: {GoalType.FUNDRAISE: 1.2, GoalType.REVENUE: 0.7, GoalType.OPERATIONAL: 1.1},
    Stage.SEED: {GoalType.FUNDRAISE: 1.15, GoalType.REVENUE: 0.8, GoalType.OPERATIONAL: 1.0},
    Stage.SERIES_A: {GoalType.FUNDRAISE: 1.0, GoalType.REVENUE: 1.0, GoalType.OPERATIONAL: 0.9},
    Stage.SERIES_B: {GoalType.FUNDRAISE: 0.8, GoalType.REVENUE: 1.1, GoalType.OPERATIONAL: 0.85},
    Stage.SERIES_C: {GoalType.FUNDRAISE: 0.7, GoalType.REVENUE: 1.2, GoalType.OPERATIONAL: 0.8},
}


@dataclass(frozen=True)
class StageAdjustment:
    success: float
    execution: float
    time_scale: float
    effort_overhead: float


# Earlier stages: less predictable, faster moving, lighter process
STAGE_ADJUSTMENTS: Dict[Stage, StageAdjustment] = {
    Stage.PRE_SEED: StageAdjustment(-0.08, -0.05, 0.7, -5),
    Stage.SEED: StageAdjustment(-0.04, -0.02, 0.8, -2),
    Stage.SERIES_A: StageAdjustment(0.0, 0.0, 1.0, 0),
    Stage.SERIES_B: StageAdjustment(0.03, 0.04, 1.1, 3),
    Stage.SERIES_C: StageAdjustment(0.05, 0.06, 1.2, 5),
}
NEUTRAL_STAGE = StageAdjustment(0.0, 0.0, 1.0, 0)

# Pre-issue types -> goal types they threaten
PREISSUE_GOAL_MAPPING: Dict[PreIssueType, Optional[frozenset]] = {
    PreIssueType.RUNWAY_BREACH: frozenset({GoalType.FUNDRAISE, GoalType.OPERATIONAL}),
    PreIssueType.GOAL_MISS: None,
}

SEVERITY_PROBABILITY = (0.5, 0.6, 0.75, 0.9)
SEVERITY_TTI_DAYS = (14, 14, 7, 3)
SEVERITY_IRREVERSIBILITY = (0.4, 0.4, 0.6, 0.8)

REACTIVE_UPSIDE_FLOOR = (30, 35, 45, 55)
REACTIVE_UPSIDE_CEILING = (65, 75, 85, 95)
GOAL_UPSIDE_FLOOR = (25, 30, 40, 55)
GOAL_UPSIDE_CEILING = (55, 65, 75, 85)

DEFAULT_EFFORT = 7
DEFAULT_EFFECTIVENESS = 0.6


@dataclass(frozen=True)
class ImpactContext:
    """Everything `attach_impact` may read for one company."""
    company: Company
    now: datetime
    goals: Tuple[Goal, ...] = field(default_factory=tuple)
    issues: Tuple[Issue, ...] = field(default_factory=tuple)
    preissues: Tuple[PreIssue, ...] = field(default_factory=tuple)
    goal_damage: Tuple[GoalDamage, ...] = field(default_factory=tuple)
    # action type -> what the outcome ledger learned about it
    memory: Mapping[str, ExecutionSignal] = field(default_factory=dict)

    def goal(self, goal_id: Optional[str]) -> Optional[Goal]:
        if goal_id is None:
            return None
        for g in self.goals:
            if g.id == goal_id:
                return g
        for g in self.company.goals:
            if g.id == goal_id:
                return g
        return None

    def issue(self, issue_id: str) -> Optional[Issue]:
        return next((i for i in self.issues if i.issue_id == issue_id), None)

    def preissue(self, preissue_id: str) -> Optional[PreIssue]:
        return next((p for p in self.preissues if p.preissue_id == preissue_id), None)

    @property
    def stage_adjustment(self) -> StageAdjustment:
        stage = parse_stage(self.company.stage)
        return STAGE_ADJUSTMENTS.get(stage, NEUTRAL_STAGE) if stage else NEUTRAL_STAGE


@dataclass(frozen=True)
class SourceSignals:
    stake: float
    probability: float
    tti_days: float
    severity: int
    irreversibility: float


DEFAULT_SIGNALS = SourceSignals(stake=500_000, probability=0.5, tti_days=14, severity=1, irreversibility=0.5)


def _goal_gap(goal: Goal) -> Tuple[float, float]:
    """(absolute gap, gap ratio); ratio 0.5 when the target is unusable."""
    current = goal.current or 0.0
    target = goal.target if goal.target is not None else 100.0
    gap = max(0.0, target - current)
    return gap, (gap / target if target > 0 else 0.5)


def _goal_stake(goal: Goal, company: Company) -> float:
    gap, _ = _goal_gap(goal)
    if goal.type in (GoalType.REVENUE, GoalType.FUNDRAISE):
        return gap
    if goal.type is GoalType.HIRING:
        return gap * 50_000
    return (company.burn or 100_000) * 3


def _issue_stake(issue: Issue, context: ImpactContext) -> float:
    company = context.company
    kind = issue.issue_type
    if kind in (IssueType.RUNWAY_CRITICAL, IssueType.RUNWAY_WARNING):
        return (company.cash or 0) + (company.burn or 100_000) * 6
    if kind in (IssueType.GOAL_BEHIND, IssueType.GOAL_STALLED, IssueType.GOAL_MISSED):
        goal = context.goal(issue.goal_id)
        if goal is not None:
            return _goal_stake(goal, company)
        return (company.arr or 1_000_000) * 0.2
    if kind in (IssueType.DEAL_STALE, IssueType.DEAL_AT_RISK):
        return 1_000_000
    if kind in (IssueType.NO_PIPELINE, IssueType.PIPELINE_GAP):
        return company.round_target or 2_000_000
    if kind in (IssueType.DATA_MISSING, IssueType.DATA_STALE, IssueType.NO_GOALS):
        return (company.arr or 500_000) * 0.1
    return (company.arr or 1_000_000) * 0.15


def _preissue_stake(preissue: PreIssue, context: ImpactContext) -> float:
    company = context.company
    if preissue.preissue_type is PreIssueType.RUNWAY_BREACH:
        return (company.burn or 100_000) * 3
    goal = context.goal(preissue.goal_id)
    if goal is None:
        return (company.arr or 500_000) * 0.15
    if goal.type is GoalType.FUNDRAISE:
        return company.round_target or goal.target or 2_000_000
    return _goal_stake(goal, company)


def source_signals(action: Action, context: ImpactContext) -> SourceSignals:
    """Stake, probability, time window, severity and irreversibility of the source."""
    source = action.primary_source

    if source.source_type is SourceType.ISSUE:
        issue = context.issue(source.source_id)
        if issue is None:
            return DEFAULT_SIGNALS
        sev = int(issue.severity)
        return SourceSignals(
            stake=_issue_stake(issue, context),
            probability=SEVERITY_PROBABILITY[sev],
            tti_days=SEVERITY_TTI_DAYS[sev],
            severity=sev,
            irreversibility=SEVERITY_IRREVERSIBILITY[sev],
        )

    if source.source_type is SourceType.PREISSUE:
        preissue = context.preissue(source.source_id)
        if preissue is None:
            return DEFAULT_SIGNALS
        return SourceSignals(
            stake=_preissue_stake(preissue, context),
            probability=preissue.likelihood or 0.5,
            tti_days=max(1.0, preissue.days_to_breach),
            severity=int(preissue.severity),
            irreversibility=preissue.irreversibility,
        )

    if source.source_type is SourceType.GOAL:
        goal = context.goal(source.goal_id)
        if goal is None:
            return DEFAULT_SIGNALS
        _, gap = _goal_gap(goal)
        weight = GOAL_TYPE_WEIGHTS.get(goal.type, DEFAULT_GOAL_TYPE_WEIGHT)
        tti = 30.0
        if goal.due is not None:
            tti = max(7.0, round_half_up(days_between(context.now, goal.due)))
        return SourceSignals(
            stake=weight * gap * 10_000,
            probability=min(0.9, 0.4 + gap * 0.5),
            tti_days=tti,
            severity=2 if gap > 0.5 else 1 if gap > 0.2 else 0,
            irreversibility=0.3,
        )

    return DEFAULT_SIGNALS


def goal_weight(goal: Goal, company: Company) -> float:
    if goal.weight is not None:
        return goal.weight
    base = GOAL_TYPE_WEIGHTS.get(goal.type, DEFAULT_GOAL_TYPE_WEIGHT)
    stage = parse_stage(company.stage)
    modifier = STAGE_MODIFIERS.get(stage, {}).get(goal.type, 1.0) if stage else 1.0
    return round_half_up(base * modifier)


def affected_goals(action: Action, context: ImpactContext) -> List[Goal]:
    source = action.primary_source
    direct = context.goal(source.goal_id or action.goal_id)
    if direct is not None:
        return [direct]

    goal_types = None
    if source.source_type is SourceType.ISSUE and source.kind:
        goal_types = ISSUE_GOAL_MAPPING.get(IssueType(source.kind))
    elif source.source_type is SourceType.PREISSUE and source.kind:
        goal_types = PREISSUE_GOAL_MAPPING.get(PreIssueType(source.kind))
    if not goal_types:
        return []
    return [g for g in context.goals if g.type in goal_types and g.is_open]


def _effort_and_effectiveness(action: Action) -> Tuple[float, float]:
    resolution = resolution_for(action.resolution_id)
    if resolution is None:
        return DEFAULT_EFFORT, DEFAULT_EFFECTIVENESS
    return resolution.effort, resolution.effectiveness


def _stake_label(stake: float) -> str:
    if stake >= 1_000_000:
        return f"${stake / 1_000_000:.1f}M"
    return f"${round_half_up(stake / 1000):.0f}K"


def goal_damage_upside(action: Action, context: ImpactContext) -> float:
    """Upside from repairing the goal damage caused by this action's issue."""
    source = action.primary_source
    if source.source_type is not SourceType.ISSUE:
        return 0.0
    _, effectiveness = _effort_and_effectiveness(action)
    total = 0.0
    for damage in context.goal_damage:
        if damage.issue_id != source.source_id:
            continue
        goal = context.goal(damage.goal_id)
        weight = goal.weight / 100 if goal and goal.weight else damage.components.goal_weight
        total += weight * effectiveness * damage.damage
    return min(100.0, round_half_up(total * 100))


def upside_magnitude(action: Action, context: ImpactContext) -> Tuple[float, Tuple[str, ...]]:
    source = action.primary_source
    _, effectiveness = _effort_and_effectiveness(action)

    if source.source_type is SourceType.GOAL:
        goal = context.goal(source.goal_id)
        if goal is None:
            return round_half_up(30 + effectiveness * 20), ("Goal-driven action",)
        weight = goal_weight(goal, context.company)
        _, gap = _goal_gap(goal)
        severity = 2 if gap > 0.5 else 1 if gap > 0.2 else 0
        floor, ceiling = GOAL_UPSIDE_FLOOR[severity], GOAL_UPSIDE_CEILING[severity]
        value = clamp(round_half_up(weight * gap * effectiveness), floor, ceiling)
        if action.is_primary:
            value = min(ceiling, value + 5)
        return value, (
            f'Goal "{goal.name}" (gap: {round_half_up(gap * 100):.0f}%, weight: {weight:g}, '
            f"effectiveness: {round_half_up(effectiveness * 100):.0f}%)",
        )

    if source.source_type in REACTIVE_SOURCES:
        signals = source_signals(action, context)
        normalized = min(85.0, 20 + 18 * math.log10(1 + signals.stake / 50_000))
        floor = REACTIVE_UPSIDE_FLOOR[signals.severity]
        ceiling = REACTIVE_UPSIDE_CEILING[signals.severity]
        value = clamp(round_half_up(normalized * (0.5 + signals.probability * 0.5)), floor, ceiling)
        damage_upside = goal_damage_upside(action, context)
        if damage_upside > 0:
            value = max(floor, min(ceiling, round_half_up(value * 0.6 + damage_upside * 0.4)))
        explain = [
            f"{source.kind or source.source_type.value} ({_stake_label(signals.stake)} at stake, "
            f"P={round_half_up(signals.probability * 100):.0f}%)"
        ]
        goals = affected_goals(action, context)
        if goals:
            plural = "s" if len(goals) > 1 else ""
            explain.append(f"Affects {len(goals)} goal{plural}: {', '.join(g.name for g in goals)}")
        return value, tuple(explain)

    return round_half_up(25 + effectiveness * 25), ("General improvement (no linked goals)",)


def probability_of_success(action: Action, context: ImpactContext) -> Tuple[float, Optional[str]]:
    _, value = _effort_and_effectiveness(action)
    explain = None
    if action.primary_source.source_type in REACTIVE_SOURCES:
        signals = source_signals(action, context)
        value = value * (0.7 + 0.3 * signals.probability)
        if signals.tti_days <= 7:
            value += 0.1
        elif signals.tti_days <= 14:
            value += 0.05
        explain = f"Confidence {value * 100:.0f}% (clarity P={round_half_up(signals.probability * 100):.0f}%)"
    value += context.stage_adjustment.success
    return clamp(round_half_up(value, 2), 0.25, 0.9), explain


def execution_probability(action: Action, context: ImpactContext) -> float:
    signal = signal_for(action, context.memory)
    if signal.execution_learned:
        return round_half_up(signal.execution_probability, 2)
    # Reactive and goal actions fold execution risk into probability of success
    if action.primary_source.source_type in (SourceType.ISSUE, SourceType.PREISSUE, SourceType.GOAL):
        return 1.0
    effort, _ = _effort_and_effectiveness(action)
    if effort <= 1:
        value = 0.75
    elif effort <= 3:
        value = 0.65
    elif effort <= 7:
        value = 0.55
    elif effort <= 14:
        value = 0.45
    else:
        value = 0.35
    steps = len(action.steps) or 4
    if steps <= 2:
        value += 0.05
    elif steps >= 5:
        value -= 0.03
    value += context.stage_adjustment.execution
    return clamp(round_half_up(value, 2), 0.1, 0.9)


def downside_magnitude(action: Action, context: ImpactContext) -> float:
    if action.primary_source.source_type in REACTIVE_SOURCES:
        signals = source_signals(action, context)
        return clamp(round_half_up(5 + signals.irreversibility * 15), 2, 40)
    effort, _ = _effort_and_effectiveness(action)
    value = 5.0
    if effort >= 21:
        value += 5
    elif effort >= 14:
        value += 3
    value += 2  # company-level action
    return clamp(value, 2, 40)


def time_to_impact(action: Action, context: ImpactContext) -> float:
    effort, _ = _effort_and_effectiveness(action)
    value = clamp(round_half_up(effort * 1.5), 1, 60)
    if action.primary_source.source_type in REACTIVE_SOURCES:
        signals = source_signals(action, context)
        value = clamp(round_half_up(signals.tti_days * 0.5), 1, 60)
    value = round_half_up(value * context.stage_adjustment.time_scale)
    return clamp(value, 1, 60)


def effort_cost(action: Action, context: ImpactContext) -> float:
    effort, _ = _effort_and_effectiveness(action)
    value = round_half_up(10 + min(effort, 30) * 2)
    steps = len(action.steps) or 4
    if steps <= 2:
        value -= 5
    elif steps == 3:
        value -= 2
    elif steps >= 7:
        value += 8
    elif steps >= 5:
        value += 3
    value += context.stage_adjustment.effort_overhead
    if action.primary_source.source_type in REACTIVE_SOURCES:
        signals = source_signals(action, context)
        if signals.irreversibility >= 0.8:
            value += 5
        if signals.severity >= 3:
            value += 8
        elif signals.severity >= 2:
            value += 3
    return clamp(value, 5, 85)


def second_order_leverage(action: Action, context: ImpactContext) -> Tuple[float, str]:
    source = action.primary_source
    value, explain = 10.0, "Limited second-order effects"

    if source.source_type in REACTIVE_SOURCES:
        signals = source_signals(action, context)
        value = round_half_up(min(65.0, 15 + 15 * math.log10(1 + signals.stake / 50_000)))
        explain = f"{_stake_label(signals.stake)} at risk"
        if source.kind in (IssueType.RUNWAY_CRITICAL.value, IssueType.RUNWAY_WARNING.value,
                           PreIssueType.RUNWAY_BREACH.value):
            value, explain = max(value, 60.0), "Runway underpins all operations"
        elif source.kind in (IssueType.NO_PIPELINE.value, IssueType.PIPELINE_GAP.value):
            value, explain = max(value, 45.0), "Pipeline feeds fundraise goal"

    goals = affected_goals(action, context)
    if len(goals) > 1 and 25 + len(goals) * 8 > value:
        value, explain = 25.0 + len(goals) * 8, f"Affects {len(goals)} goals simultaneously"

    damaged = sum(1 for d in context.goal_damage if d.issue_id == source.source_id)
    if damaged > 1 and 20 + damaged * 10 > value:
        value, explain = 20.0 + damaged * 10, f"Addresses damage across {damaged} goals"

    return clamp(value, 5, 80), explain


def attach_impact(action: Action, context: ImpactContext) -> Action:
    """Return the action with its ImpactModel filled in."""
    upside, upside_explain = upside_magnitude(action, context)
    success, success_explain = probability_of_success(action, context)
    leverage, leverage_explain = second_order_leverage(action, context)

    explain = list(upside_explain)
    if success_explain:
        explain.append(success_explain)
    if leverage > 25:
        explain.append(leverage_explain)

    signal = signal_for(action, context.memory)
    if signal.execution_learned:
        explain.append(f"Ledger completion rate {signal.execution_probability * 100:.0f}%")

    return replace(
        action,
        complexity=signal.friction if signal.friction_learned else 0.0,
        impact=ImpactModel(
            upside_magnitude=upside,
            probability_of_success=success,
            execution_probability=execution_probability(action, context),
            downside_magnitude=downside_magnitude(action, context),
            time_to_impact_days=time_to_impact(action, context),
            effort_cost=effort_cost(action, context),
            second_order_leverage=leverage,
            explain=tuple(explain[:4]),
        ),
    )


def attach_impacts(candidates: Sequence[Action], context: ImpactContext) -> List[Action]:
    return [attach_impact(a, context) for a in candidates]
