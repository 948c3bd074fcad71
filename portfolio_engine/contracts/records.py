"""
Raw Record Contracts
====================

Immutable representations of the facts the engine consumes.

These records carry ONLY raw, observed values. Anything computed from them
(runway, anomalies, trajectories, scores) lives in derived output objects
and is never attached back onto a record.

CANONICAL GOAL SHAPE:
=====================
- `current` / `target` are the only progress fields
- Short aliases (`cur` / `tgt`) and legacy single-entity ids are resolved
  once by the raw loader; nothing downstream looks at them
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from .base import EntityRef, EntityType


# =============================================================================
# GOAL ENUMS
# =============================================================================

class GoalType(Enum):
    REVENUE = "revenue"
    FUNDRAISE = "fundraise"
    HIRING = "hiring"
    PRODUCT = "product"
    OPERATIONAL = "operational"
    PARTNERSHIP = "partnership"
    RETENTION = "retention"
    EFFICIENCY = "efficiency"
    CUSTOMER_GROWTH = "customer_growth"
    INTRO_TARGET = "intro_target"
    RELATIONSHIP_BUILD = "relationship_build"
    DEAL_CLOSE = "deal_close"
    ROUND_COMPLETION = "round_completion"
    INVESTOR_ACTIVATION = "investor_activation"
    CHAMPION_CULTIVATION = "champion_cultivation"


class GoalStatus(Enum):
    SUGGESTED = "suggested"
    ACTIVE = "active"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class Provenance(Enum):
    TEMPLATE = "template"
    ANOMALY = "anomaly"
    SUGGESTED = "suggested"
    MANUAL = "manual"


# =============================================================================
# GOALS
# =============================================================================

@dataclass(frozen=True)
class HistoryPoint:
    """A single observed goal value."""
    value: float
    as_of: datetime


@dataclass(frozen=True)
class Goal:
    """
    Immutable goal record.

    `is_multi_entity` is computed from entity_refs on access, never stored.
    """
    id: str
    name: str
    type: GoalType
    entity_refs: Tuple[EntityRef, ...]
    current: Optional[float] = None
    target: Optional[float] = None
    due: Optional[datetime] = None
    status: GoalStatus = GoalStatus.ACTIVE
    history: Tuple[HistoryPoint, ...] = field(default_factory=tuple)
    provenance: Provenance = Provenance.MANUAL
    weight: Optional[float] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Goal id must be non-empty")
        if not self.entity_refs:
            raise ValueError(f"Goal {self.id} must reference at least one entity")

    @property
    def entity_types(self) -> FrozenSet[EntityType]:
        return frozenset(ref.type for ref in self.entity_refs)

    @property
    def is_multi_entity(self) -> bool:
        return len(self.entity_types) > 1

    @property
    def company_id(self) -> Optional[str]:
        for ref in self.entity_refs:
            if ref.type is EntityType.COMPANY:
                return ref.id
        return None

    @property
    def is_open(self) -> bool:
        return self.status in (GoalStatus.ACTIVE, GoalStatus.BLOCKED)


# =============================================================================
# COMPANY FACTS
# =============================================================================

@dataclass(frozen=True)
class Constraint:
    """A hard deadline on a company (board meeting, fundraise close, ...)."""
    id: str
    company_id: str
    type: str
    date: datetime
    title: str = ""
    base_weight: Optional[float] = None


@dataclass(frozen=True)
class Deal:
    """An investor deal in a company's raise pipeline."""
    id: str
    company_id: str
    status: str
    firm_id: Optional[str] = None
    last_activity: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status not in ("closed", "passed", "lost", "won")


@dataclass(frozen=True)
class Company:
    """
    Snapshot of observed company facts.

    Every metric is optional; detectors treat absence as "no finding"
    rather than an error.
    """
    id: str
    name: str
    stage: str
    is_portfolio: bool = True

    # Financials
    cash: Optional[float] = None
    burn: Optional[float] = None
    revenue: Optional[float] = None
    arr: Optional[float] = None
    round_target: Optional[float] = None
    raising: bool = False
    raised_to_date: Optional[float] = None
    last_raise_amount: Optional[float] = None

    # Team
    employees: Optional[float] = None
    target_headcount: Optional[float] = None
    open_positions: Optional[float] = None

    # Operating metrics
    nrr: Optional[float] = None
    gross_margin: Optional[float] = None
    cac: Optional[float] = None
    logo_retention: Optional[float] = None
    grr: Optional[float] = None
    nps: Optional[float] = None
    paying_customers: Optional[float] = None
    acv: Optional[float] = None

    # Dates
    founded: Optional[datetime] = None
    as_of: Optional[datetime] = None
    cash_as_of: Optional[datetime] = None
    burn_as_of: Optional[datetime] = None

    goals: Tuple[Goal, ...] = field(default_factory=tuple)
    deals: Tuple[Deal, ...] = field(default_factory=tuple)
    constraints: Tuple[Constraint, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.id:
            raise ValueError("Company id must be non-empty")

    @property
    def entity_ref(self) -> EntityRef:
        return EntityRef.company(self.id)

    @property
    def effective_revenue(self) -> float:
        return self.revenue or self.arr or 0


# =============================================================================
# ACTION EVENTS (append-only ledger)
# =============================================================================

class EventType(Enum):
    CREATED = "created"
    ASSIGNED = "assigned"
    STARTED = "started"
    COMPLETED = "completed"
    OUTCOME_RECORDED = "outcome_recorded"
    FOLLOWUP_CREATED = "followup_created"
    NOTE_ADDED = "note_added"


class Outcome(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class ActionEvent:
    """Immutable ledger entry keyed by action id."""
    id: str
    action_id: str
    event_type: EventType
    timestamp: datetime
    actor: str
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def action_type(self) -> Optional[str]:
        value = (
            self.payload.get("actionType")
            or self.payload.get("resolutionId")
            or self.payload.get("type")
        )
        return str(value) if value else None


@dataclass(frozen=True)
class Dataset:
    """Normalized, immutable view of one raw dataset."""
    companies: Tuple[Company, ...]
    events: Tuple[ActionEvent, ...] = field(default_factory=tuple)

    def company_index(self) -> Dict[str, Company]:
        return {c.id: c for c in self.companies}
