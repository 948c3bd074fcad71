"""
Test Fixtures

Explicit raw records, typed records and actions for the engine tests.

RULES:
======
1. Every fixture takes an explicit `now`; nothing reads the clock
2. Raw fixtures are plain dicts in the JSON wire shape
3. Typed fixtures build frozen records directly, bypassing the loader
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from portfolio_engine.contracts.base import EntityRef
from portfolio_engine.contracts.records import (
    Company, Goal, GoalStatus, GoalType, HistoryPoint, Provenance,
)
from portfolio_engine.predict.actions import Action, ActionSource, ImpactModel, SourceType


NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)


def days(n: float) -> timedelta:
    return timedelta(days=n)


# =============================================================================
# RAW (wire-shape) FIXTURES
# =============================================================================

def raw_company(company_id: str = "acme", **overrides: Any) -> Dict[str, Any]:
    company = {
        "id": company_id,
        "name": company_id.capitalize(),
        "stage": "Seed",
        "cash": 2_400_000,
        "burn": 200_000,
        "employees": 12,
        "arr": 600_000,
        "asOf": NOW.isoformat(),
    }
    company.update(overrides)
    return company


def raw_goal(goal_id: str, company_id: str = "acme", **overrides: Any) -> Dict[str, Any]:
    goal = {
        "id": goal_id,
        "companyId": company_id,
        "name": f"Goal {goal_id}",
        "type": "revenue",
        "status": "active",
        "provenance": "manual",
        "cur": 400_000,
        "tgt": 1_000_000,
        "due": (NOW + days(90)).isoformat(),
        "history": [
            {"value": 300_000, "asOf": (NOW - days(60)).isoformat()},
            {"value": 400_000, "asOf": NOW.isoformat()},
        ],
    }
    goal.update(overrides)
    return goal


def raw_event(event_id: str, action_id: str, **overrides: Any) -> Dict[str, Any]:
    event = {
        "id": event_id,
        "actionId": action_id,
        "eventType": "outcome_recorded",
        "timestamp": (NOW - days(2)).isoformat(),
        "actor": "partner-1",
        "payload": {"outcome": "success", "actionType": "PLAN_FUNDRAISE", "notes": "worked"},
    }
    event.update(overrides)
    return event


def raw_dataset() -> Dict[str, Any]:
    """Three companies: one healthy, one at critical runway, one with little data."""
    return {
        "companies": [
            raw_company("acme"),
            raw_company("burnco", cash=150_000, burn=75_000, raising=True, roundTarget=3_000_000),
            raw_company("quiet", stage="Series A", cash=None, burn=None, employees=None, arr=None),
        ],
        "goals": [
            raw_goal("g-acme-rev", "acme"),
            raw_goal("g-burn-raise", "burnco", type="fundraise", cur=500_000, tgt=3_000_000,
                     due=(NOW + days(45)).isoformat()),
        ],
        "deals": [
            {"id": "deal-1", "companyId": "burnco", "status": "open", "firmId": "firm-a",
             "lastActivity": (NOW - days(40)).isoformat()},
        ],
        "constraints": [
            {"id": "c-board", "companyId": "burnco", "type": "board_meeting",
             "date": (NOW + days(5)).isoformat(), "title": "Q1 board"},
        ],
        "actionEvents": [
            raw_event("ev-1", "act-old-1"),
            raw_event("ev-2", "act-old-2", timestamp=(NOW - days(10)).isoformat()),
            raw_event("ev-3", "act-old-3", payload={"outcome": "partial", "actionType": "PLAN_FUNDRAISE"}),
        ],
    }


# =============================================================================
# TYPED FIXTURES
# =============================================================================

def make_company(company_id: str = "acme", stage: str = "Seed", **overrides: Any) -> Company:
    values: Dict[str, Any] = {
        "cash": 2_400_000.0,
        "burn": 200_000.0,
        "employees": 12.0,
        "arr": 600_000.0,
        "as_of": NOW,
    }
    values.update(overrides)
    return Company(id=company_id, name=company_id.capitalize(), stage=stage, **values)


def make_goal(
    goal_id: str = "g1",
    company_id: str = "acme",
    current: Optional[float] = 40.0,
    target: Optional[float] = 100.0,
    due: Optional[datetime] = None,
    history: Sequence[tuple] = (),
    goal_type: GoalType = GoalType.REVENUE,
    status: GoalStatus = GoalStatus.ACTIVE,
) -> Goal:
    return Goal(
        id=goal_id,
        name=f"Goal {goal_id}",
        type=goal_type,
        entity_refs=(EntityRef.company(company_id),),
        current=current,
        target=target,
        due=due if due is not None else NOW + days(60),
        status=status,
        history=tuple(HistoryPoint(value=v, as_of=t) for v, t in history),
        provenance=Provenance.MANUAL,
    )


def make_impact(
    upside: float = 50.0,
    p_success: float = 1.0,
    p_exec: float = 1.0,
    downside: float = 0.0,
    tti: float = 0.0,
    effort: float = 0.0,
    leverage: float = 0.0,
) -> ImpactModel:
    return ImpactModel(
        upside_magnitude=upside,
        probability_of_success=p_success,
        execution_probability=p_exec,
        downside_magnitude=downside,
        time_to_impact_days=tti,
        effort_cost=effort,
        second_order_leverage=leverage,
    )


def make_action(
    action_id: str,
    impact: Optional[ImpactModel] = None,
    source_type: SourceType = SourceType.GOAL,
    company_id: str = "acme",
    resolution_id: str = "ACCELERATE_GOAL",
    steps: Sequence[str] = (),
    goal_id: Optional[str] = None,
    category: Optional[str] = None,
) -> Action:
    return Action(
        action_id=action_id,
        entity_ref=EntityRef.company(company_id),
        title=f"Action {action_id}",
        sources=(ActionSource(source_type=source_type, source_id=f"src-{action_id}"),),
        resolution_id=resolution_id,
        steps=tuple(steps),
        goal_id=goal_id,
        category=category,
        impact=impact if impact is not None else make_impact(),
    )


def actions_with_upsides(upsides: Sequence[float]) -> List[Action]:
    return [make_action(f"a{i}", make_impact(upside=u)) for i, u in enumerate(upsides)]
