"""
Engine Orchestration Module

This module provides the single entry point that runs every layer over a
raw dataset and returns the ranked actions.

DESIGN PRINCIPLES:
==================
1. Per-company work follows the declared dependency graph, never call order
2. Each company is an atomic unit: it either completes or is reported
3. Ranking happens once, globally, through decide.ranking
4. Output is a pure function of (raw dataset, now, config)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..contracts.base import Error, ErrorCode, days_between, ensure_utc
from ..contracts.records import ActionEvent, Company, Constraint, Dataset, Goal, GoalStatus
from ..raw.forbidden import find_forbidden_fields
from ..raw.loader import load_dataset
from ..raw.event_schema import validate_action_events
from ..raw.metric_facts import mutual_exclusion_violations
from ..raw.stage_params import stage_goal_templates
from ..derive.action_memory import DEFAULT_MEMORY_CONFIG, ExecutionSignal, MemoryConfig, action_memory
from ..derive.anomalies import (
    Anomaly,
    PortfolioAnomalyReport,
    detect_anomalies,
    detect_portfolio_anomalies,
    significant_anomalies,
)
from ..derive.constraint_pressure import (
    DEFAULT_PRESSURE_CONFIG,
    ConstraintDriver,
    ConstraintSummary,
    PressureConfig,
    build_constraint_pressure_map,
    constraint_drivers,
    summarize_constraints,
)
from ..derive.goal_damage import GoalDamage, aggregate_goal_damage, compute_goal_damage
from ..derive.goal_trajectory import GoalTrajectory, at_risk_goals, derive_company_goal_trajectories
from ..derive.issues import Issue, IssueSummary, detect_issues, summarize_issues
from ..derive.pattern_lift import DEFAULT_PATTERN_LIFT_CONFIG, PatternLiftConfig
from ..derive.runway import RunwayDerivation, company_runway
from ..derive.trajectory import DEFAULT_TRAJECTORY_CONFIG, TrajectoryConfig, derive_trajectory
from ..predict.actions import Action, ImpactContext, attach_impacts, generate_action_candidates
from ..predict.goal_from_anomaly import AnomalyGoal, map_anomalies_to_goals, select_top_goals
from ..predict.preissues import PreIssue, detect_preissues, imminent_preissues
from ..predict.suggested_goals import GoalSuggestion, suggest_goals
from ..decide.ranking import RankedAction, rank_actions
from ..decide.weights import RankingWeights
from .graph import GRAPH, GraphError, topo_sort, validate_graph


logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Unified configuration for one engine run."""
    trajectory: TrajectoryConfig = None
    pressure: PressureConfig = None
    ranking: RankingWeights = None
    pattern_lift: PatternLiftConfig = None
    memory: MemoryConfig = None
    min_goals: int = 5
    include_stage_suggestions: bool = True

    def __post_init__(self):
        self.trajectory = self.trajectory or DEFAULT_TRAJECTORY_CONFIG
        self.pressure = self.pressure or DEFAULT_PRESSURE_CONFIG
        self.ranking = self.ranking or RankingWeights()
        self.pattern_lift = self.pattern_lift or DEFAULT_PATTERN_LIFT_CONFIG
        self.memory = self.memory or DEFAULT_MEMORY_CONFIG


# =============================================================================
# OUTPUT
# =============================================================================

@dataclass(frozen=True)
class CompanyDerivation:
    """Every derived value for one company, as produced by its DAG run."""
    company_id: str
    runway: RunwayDerivation
    anomalies: Tuple[Anomaly, ...]
    trajectories: Tuple[GoalTrajectory, ...]
    issues: Tuple[Issue, ...]
    preissues: Tuple[PreIssue, ...]
    goal_damage: Tuple[GoalDamage, ...]
    damage_by_goal: Mapping[str, float]
    anomaly_goals: Tuple[AnomalyGoal, ...]
    suggested_goals: Tuple[GoalSuggestion, ...]
    top_goals: Tuple[Goal, ...]
    actions: Tuple[Action, ...]


@dataclass(frozen=True)
class EngineMeta:
    computed_at: datetime
    execution_order: Tuple[str, ...]
    errors: Tuple[Error, ...] = field(default_factory=tuple)
    warnings: Tuple[str, ...] = field(default_factory=tuple)
    action_source_counts: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class PortfolioSummary:
    """Cross-company roll-ups of the per-company derivations."""
    anomalies: PortfolioAnomalyReport
    significant_anomalies: Tuple[Anomaly, ...]
    issues: IssueSummary
    at_risk_goals: Tuple[GoalTrajectory, ...]
    imminent_preissues: Tuple[PreIssue, ...]
    constraints: Mapping[str, ConstraintSummary]


@dataclass(frozen=True)
class EngineOutput:
    companies: Tuple[CompanyDerivation, ...]
    ranked_actions: Tuple[RankedAction, ...]
    meta: EngineMeta
    portfolio: PortfolioSummary
    # action_id -> constraints behind its time-criticality boost
    constraint_drivers: Mapping[str, Tuple[ConstraintDriver, ...]] = field(default_factory=dict)

    def company(self, company_id: str) -> Optional[CompanyDerivation]:
        for derivation in self.companies:
            if derivation.company_id == company_id:
                return derivation
        return None


# =============================================================================
# NODES
# =============================================================================

@dataclass
class _NodeContext:
    company: Company
    now: datetime
    config: EngineConfig
    events: Tuple[ActionEvent, ...] = ()
    results: Dict[str, Any] = field(default_factory=dict)


def _runway(ctx: _NodeContext) -> RunwayDerivation:
    return company_runway(ctx.company, ctx.now)


def _metrics(ctx: _NodeContext) -> Company:
    return ctx.company


def _action_memory(ctx: _NodeContext) -> Dict[str, ExecutionSignal]:
    return action_memory(ctx.events, ctx.config.memory)


def _anomalies(ctx: _NodeContext) -> List[Anomaly]:
    return list(detect_anomalies(ctx.results["metrics"], ctx.now).anomalies)


def _trajectory(ctx: _NodeContext) -> Dict[str, Any]:
    return {
        goal.id: derive_trajectory(goal, ctx.now, ctx.config.trajectory)
        for goal in ctx.results["metrics"].goals
        if goal.status is GoalStatus.ACTIVE
    }


def _goal_trajectory(ctx: _NodeContext) -> List[GoalTrajectory]:
    return derive_company_goal_trajectories(
        ctx.results["metrics"], ctx.now, ctx.config.trajectory, ctx.results["trajectory"]
    )


def _issues(ctx: _NodeContext) -> List[Issue]:
    return detect_issues(
        ctx.company,
        ctx.now,
        runway=ctx.results["runway"],
        trajectories=ctx.results["trajectory"],
        goal_trajectories=ctx.results["goal_trajectory"],
        config=ctx.config.trajectory,
    )


def _preissues(ctx: _NodeContext) -> List[PreIssue]:
    return detect_preissues(
        ctx.company, ctx.results["goal_trajectory"], ctx.now, runway=ctx.results["runway"]
    )


def _goal_damage(ctx: _NodeContext) -> List[GoalDamage]:
    return compute_goal_damage(ctx.results["issues"], ctx.company.goals, ctx.now)


def _anomaly_goals(ctx: _NodeContext) -> List[AnomalyGoal]:
    return map_anomalies_to_goals(ctx.results["anomalies"], ctx.company, ctx.now)


def _suggested_goals(ctx: _NodeContext) -> List[GoalSuggestion]:
    return suggest_goals(
        ctx.company,
        ctx.results["anomalies"],
        ctx.now,
        include_stage_templates=ctx.config.include_stage_suggestions,
    )


def _top_goals(ctx: _NodeContext) -> List[Goal]:
    return select_top_goals(
        ctx.company.goals,
        ctx.results["anomaly_goals"],
        stage_goal_templates(ctx.company.stage),
        ctx.config.min_goals,
        company_id=ctx.company.id,
    )


def _action_candidates(ctx: _NodeContext) -> List[Action]:
    return generate_action_candidates(
        ctx.company, ctx.results["issues"], ctx.results["preissues"], ctx.results["top_goals"]
    )


def _action_impact(ctx: _NodeContext) -> List[Action]:
    context = ImpactContext(
        company=ctx.company,
        now=ctx.now,
        goals=_merge_goals(ctx.company.goals, ctx.results["top_goals"]),
        issues=tuple(ctx.results["issues"]),
        preissues=tuple(ctx.results["preissues"]),
        goal_damage=tuple(ctx.results["goal_damage"]),
        memory=ctx.results["action_memory"],
    )
    return attach_impacts(ctx.results["action_candidates"], context)


NODE_FUNCTIONS: Dict[str, Callable[[_NodeContext], Any]] = {
    "runway": _runway,
    "metrics": _metrics,
    "action_memory": _action_memory,
    "anomalies": _anomalies,
    "trajectory": _trajectory,
    "goal_trajectory": _goal_trajectory,
    "issues": _issues,
    "preissues": _preissues,
    "goal_damage": _goal_damage,
    "anomaly_goals": _anomaly_goals,
    "suggested_goals": _suggested_goals,
    "top_goals": _top_goals,
    "action_candidates": _action_candidates,
    "action_impact": _action_impact,
}


def _merge_goals(existing: Sequence[Goal], extra: Sequence[Goal]) -> Tuple[Goal, ...]:
    merged: Dict[str, Goal] = {}
    for goal in list(existing) + list(extra):
        merged.setdefault(goal.id, goal)
    return tuple(merged.values())


# =============================================================================
# EXECUTION
# =============================================================================

def run_company(
    company: Company,
    now: datetime,
    order: Sequence[str],
    config: EngineConfig,
    events: Sequence[ActionEvent] = (),
) -> CompanyDerivation:
    """
    Run one company's DAG in the given order.

    Raises whatever a node raises; the caller decides what a failed
    company means for the run.
    """
    ctx = _NodeContext(company=company, now=now, config=config, events=tuple(events))
    for node in order:
        logger.debug("Company %s: running node %s", company.id, node)
        ctx.results[node] = NODE_FUNCTIONS[node](ctx)

    r = ctx.results
    return CompanyDerivation(
        company_id=company.id,
        runway=r["runway"],
        anomalies=tuple(r["anomalies"]),
        trajectories=tuple(r["goal_trajectory"]),
        issues=tuple(r["issues"]),
        preissues=tuple(r["preissues"]),
        goal_damage=tuple(r["goal_damage"]),
        damage_by_goal=aggregate_goal_damage(r["goal_damage"]),
        anomaly_goals=tuple(r["anomaly_goals"]),
        suggested_goals=tuple(r["suggested_goals"]),
        top_goals=tuple(r["top_goals"]),
        actions=tuple(r["action_impact"]),
    )


def _check_raw(raw: Mapping[str, Any], now: datetime) -> Tuple[List[Error], List[str]]:
    errors: List[Error] = []
    warnings: List[str] = []

    for path in find_forbidden_fields(raw):
        errors.append(Error(
            code=ErrorCode.FORBIDDEN_FIELD,
            message=f"Derived field stored in raw data: {path}",
            timestamp=now,
        ).with_context("path", path))

    for key in ("companies", "metricFacts"):
        for index, record in enumerate(raw.get(key) or []):
            if isinstance(record, Mapping):
                warnings.extend(mutual_exclusion_violations(record, f"{key}[{index}]"))

    if raw.get("actionEvents") is not None:
        ledger = validate_action_events(raw["actionEvents"])
        warnings.extend(ledger.errors)

    return errors, warnings


def _deduplicate(actions: Sequence[Action]) -> List[Action]:
    seen = set()
    unique = []
    for action in actions:
        if action.action_id in seen:
            continue
        seen.add(action.action_id)
        unique.append(action)
    return unique


def _goal_deadlines(
    actions: Sequence[Action], derivations: Sequence[CompanyDerivation],
    companies: Mapping[str, Company], now: datetime,
) -> Dict[str, float]:
    """Days until the linked goal is due, for goal-linked actions."""
    due_by_goal: Dict[str, datetime] = {}
    for derivation in derivations:
        company = companies[derivation.company_id]
        for goal in _merge_goals(company.goals, derivation.top_goals):
            if goal.due is not None:
                due_by_goal.setdefault(goal.id, goal.due)

    deadlines: Dict[str, float] = {}
    for action in actions:
        due = due_by_goal.get(action.goal_id) if action.goal_id else None
        if due is not None:
            deadlines[action.action_id] = days_between(now, due)
    return deadlines


def summarize_portfolio(
    derivations: Sequence[CompanyDerivation],
    companies: Mapping[str, Company],
    now: datetime,
    config: EngineConfig,
) -> PortfolioSummary:
    """Roll-ups over the companies that completed; failed companies are absent."""
    derived = [companies[d.company_id] for d in derivations]
    return PortfolioSummary(
        anomalies=detect_portfolio_anomalies(derived, now),
        significant_anomalies=significant_anomalies([a for d in derivations for a in d.anomalies]),
        issues=summarize_issues([i for d in derivations for i in d.issues]),
        at_risk_goals=tuple(at_risk_goals([t for d in derivations for t in d.trajectories])),
        imminent_preissues=tuple(imminent_preissues([p for d in derivations for p in d.preissues])),
        constraints={
            company.id: summarize_constraints(company.constraints, now, config.pressure)
            for company in derived
        },
    )


def _constraint_drivers(
    actions: Sequence[Action],
    pressure: Mapping[str, float],
    companies: Mapping[str, Company],
    now: datetime,
    config: EngineConfig,
) -> Dict[str, Tuple[ConstraintDriver, ...]]:
    drivers: Dict[str, Tuple[ConstraintDriver, ...]] = {}
    for action in actions:
        if action.action_id not in pressure:
            continue
        company = companies.get(action.company_id)
        found = constraint_drivers(action, company.constraints, now, config.pressure) if company else []
        if found:
            drivers[action.action_id] = tuple(found)
    return drivers


def _source_counts(actions: Sequence[Action]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for action in actions:
        key = action.primary_source.source_type.value
        counts[key] = counts.get(key, 0) + 1
    return counts


def compute(
    raw_dataset: Mapping[str, Any],
    now: datetime,
    config: Optional[EngineConfig] = None,
) -> EngineOutput:
    """
    Run the full pipeline over one raw dataset.

    A malformed graph is a hard failure (GraphError). Problems with the
    data are reported in `meta.errors` / `meta.warnings`; a company whose
    DAG raises is left out of the output and reported, and the remaining
    companies still run.
    """
    config = config or EngineConfig()
    now = ensure_utc(now)

    validation = validate_graph(GRAPH)
    if not validation.valid:
        raise GraphError("; ".join(validation.errors))
    order = topo_sort(GRAPH)
    missing = [node for node in order if node not in NODE_FUNCTIONS]
    if missing:
        raise GraphError(f"No implementation for nodes: {', '.join(missing)}")

    errors, warnings = _check_raw(raw_dataset, now)
    loaded = load_dataset(raw_dataset, now)
    errors.extend(loaded.errors)
    dataset: Dataset = loaded.dataset
    companies = dataset.company_index()

    derivations: List[CompanyDerivation] = []
    for company_id in sorted(companies):
        company = companies[company_id]
        try:
            derivations.append(run_company(company, now, order, config, dataset.events))
        except Exception as exc:
            logger.warning("Company %s failed: %s", company_id, exc, exc_info=True)
            errors.append(Error(
                code=ErrorCode.NODE_FAILED,
                message=f"{type(exc).__name__}: {exc}",
                timestamp=now,
            ).with_context("company_id", company_id))

    actions: List[Action] = []
    for derivation in derivations:
        actions.extend(derivation.actions)
    actions = _deduplicate(actions)

    constraints_by_company: Dict[str, Tuple[Constraint, ...]] = {
        cid: c.constraints for cid, c in companies.items()
    }
    pressure = build_constraint_pressure_map(actions, constraints_by_company, now, config.pressure)
    deadlines = _goal_deadlines(actions, derivations, companies, now)

    ranked = rank_actions(
        actions,
        now,
        events=dataset.events,
        pressure=pressure,
        deadlines=deadlines,
        weights=config.ranking,
        lift_config=config.pattern_lift,
    )

    logger.info(
        "Computed %d companies (%d failed), %d ranked actions, %d errors, %d warnings",
        len(derivations), len(companies) - len(derivations), len(ranked), len(errors), len(warnings),
    )

    return EngineOutput(
        companies=tuple(derivations),
        ranked_actions=tuple(ranked),
        meta=EngineMeta(
            computed_at=now,
            execution_order=tuple(order),
            errors=tuple(errors),
            warnings=tuple(warnings),
            action_source_counts=_source_counts(actions),
        ),
        portfolio=summarize_portfolio(derivations, companies, now, config),
        constraint_drivers=_constraint_drivers(actions, pressure, companies, now, config),
    )
