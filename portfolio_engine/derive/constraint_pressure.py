"""
Constraint Pressure
===================

Urgency boost for actions near a company's hard deadlines (board meetings,
fundraise closes, reporting deadlines).

    pressure = base_weight(type) x urgency(days_until) x relevance

Several constraints stack additively, capped at `max_pressure`.

Actions are read by attribute only (`action_id`, `goal_type`,
`resolution_id`, `title`), so this module stays below the predict layer.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..contracts.base import days_between, round_half_up
from ..contracts.records import Constraint
from ..raw.constraint_schema import constraint_type


logger = logging.getLogger(__name__)


@dataclass
class PressureConfig:
    max_pressure: float = 25.0
    decay_rate: float = 14.0
    peak_pressure: float = 20.0
    horizon_days: float = 60.0
    ambient_relevance: float = 0.3
    residual_days: float = 3.0
    driver_threshold: float = 0.5


DEFAULT_PRESSURE_CONFIG = PressureConfig()


# Resolution id keywords -> action category
RESOLUTION_KEYWORDS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("FUNDRAISE", "BRIDGE", "INVESTOR"), "fundraise"),
    (("REVENUE", "PRICING", "SALES"), "revenue"),
    (("HIRE", "RECRUIT", "TEAM"), "hiring"),
    (("RETAIN", "CHURN", "NRR"), "retention"),
    (("CUSTOMER", "GROWTH", "PIPELINE"), "customer_growth"),
    (("COST", "BURN", "EFFICIENCY", "MARGIN"), "efficiency"),
    (("PRODUCT", "LAUNCH", "MVP"), "product"),
    (("PARTNER", "INTRO"), "partnerships"),
)

TITLE_KEYWORDS: Tuple[str, ...] = ("fundrais", "raise", "investor")


@dataclass(frozen=True)
class ConstraintDriver:
    constraint_id: str
    type: str
    title: str
    days_until: int
    pressure: float
    relevance: float


@dataclass(frozen=True)
class UpcomingConstraint:
    constraint: Constraint
    days_until: float
    urgency: float


@dataclass(frozen=True)
class ConstraintSummary:
    upcoming: Tuple[UpcomingConstraint, ...]
    max_urgency: float
    total_active: int


# =============================================================================
# URGENCY & RELEVANCE
# =============================================================================

def urgency(days_until: float, config: PressureConfig = DEFAULT_PRESSURE_CONFIG) -> float:
    """Exponential ramp toward the date; short linear residual after it."""
    if days_until > config.horizon_days:
        return 0.0
    if days_until < 0:
        if abs(days_until) > config.residual_days:
            return 0.0
        return config.peak_pressure * (1 - abs(days_until) / config.residual_days) * 0.5
    return config.peak_pressure * math.exp(-days_until / config.decay_rate)


def action_categories(
    goal_type: Optional[str], resolution_id: Optional[str], title: Optional[str]
) -> List[str]:
    categories: List[str] = []

    def add(category: str) -> None:
        if category not in categories:
            categories.append(category)

    if goal_type:
        add(goal_type)
    resolution = (resolution_id or "").upper()
    for keywords, category in RESOLUTION_KEYWORDS:
        if any(k in resolution for k in keywords):
            add(category)
    lowered = (title or "").lower()
    if any(k in lowered for k in TITLE_KEYWORDS):
        add("fundraise")
    return categories


def _categories_of(action: Any) -> List[str]:
    return action_categories(
        getattr(action, "goal_type", None),
        getattr(action, "resolution_id", None),
        getattr(action, "title", None),
    )


def relevance(
    constraint: Constraint, action: Any, config: PressureConfig = DEFAULT_PRESSURE_CONFIG
) -> float:
    kind = constraint_type(constraint.type)
    if kind.applies_to_all:
        return 1.0
    if any(c in kind.relevance for c in _categories_of(action)):
        return 1.0
    return config.ambient_relevance


def _base_weight(constraint: Constraint) -> float:
    if constraint.base_weight is not None:
        return constraint.base_weight
    return constraint_type(constraint.type).base_weight


# =============================================================================
# PRESSURE
# =============================================================================

def constraint_pressure(
    action: Any,
    constraints: Sequence[Constraint],
    now: datetime,
    config: PressureConfig = DEFAULT_PRESSURE_CONFIG,
) -> float:
    total = 0.0
    for constraint in constraints:
        u = urgency(days_between(now, constraint.date), config)
        if u == 0:
            continue
        total += _base_weight(constraint) * u * relevance(constraint, action, config)
    return min(total, config.max_pressure)


def build_constraint_pressure_map(
    actions: Sequence[Any],
    constraints_by_company: Mapping[str, Sequence[Constraint]],
    now: datetime,
    config: PressureConfig = DEFAULT_PRESSURE_CONFIG,
) -> Dict[str, float]:
    """action_id -> pressure, for actions with any pressure at all."""
    pressures: Dict[str, float] = {}
    for action in actions:
        company_id = action.entity_ref.id
        constraints = constraints_by_company.get(company_id) or ()
        if not constraints:
            continue
        pressure = constraint_pressure(action, constraints, now, config)
        if pressure > 0:
            pressures[action.action_id] = pressure
    logger.debug("Constraint pressure applies to %d of %d actions", len(pressures), len(actions))
    return pressures


def summarize_constraints(
    constraints: Sequence[Constraint],
    now: datetime,
    config: PressureConfig = DEFAULT_PRESSURE_CONFIG,
) -> ConstraintSummary:
    upcoming = []
    for constraint in constraints:
        days_until = days_between(now, constraint.date)
        if -config.residual_days < days_until <= config.horizon_days:
            upcoming.append(UpcomingConstraint(
                constraint=constraint,
                days_until=round_half_up(days_until, 1),
                urgency=urgency(days_until, config),
            ))
    upcoming.sort(key=lambda c: c.days_until)
    return ConstraintSummary(
        upcoming=tuple(upcoming),
        max_urgency=max((c.urgency for c in upcoming), default=0.0),
        total_active=len(upcoming),
    )


def constraint_drivers(
    action: Any,
    constraints: Sequence[Constraint],
    now: datetime,
    config: PressureConfig = DEFAULT_PRESSURE_CONFIG,
) -> List[ConstraintDriver]:
    """Constraints contributing meaningful pressure to one action, soonest first."""
    drivers = []
    for constraint in constraints:
        days_until = days_between(now, constraint.date)
        if days_until > config.horizon_days or days_until < -config.residual_days:
            continue
        u = urgency(days_until, config)
        if u == 0:
            continue
        match = relevance(constraint, action, config)
        pressure = _base_weight(constraint) * u * match
        if pressure > config.driver_threshold:
            drivers.append(ConstraintDriver(
                constraint_id=constraint.id,
                type=constraint.type,
                title=constraint.title,
                days_until=int(round_half_up(days_until)),
                pressure=round_half_up(pressure, 1),
                relevance=match,
            ))
    drivers.sort(key=lambda d: d.days_until)
    return drivers
