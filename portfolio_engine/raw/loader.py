"""
Raw Dataset Loader
==================

Turns a raw dataset mapping (as parsed from JSON by an external caller)
into immutable records.

RESPONSIBILITY:
- Normalize goal aliases and legacy entity ids exactly once
- Group goals / deals / constraints under their company
- Fill absent company metrics from the latest metric facts
- Report malformed records as Error values; never coerce them

MUST NOT:
- Read files or network (the caller supplies the mapping)
- Compute anything derived (runway, scores, ...)
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..contracts.base import (
    EntityRef, EntityRole, EntityType, Error, ErrorCode, Result, parse_timestamp,
)
from ..contracts.records import (
    ActionEvent, Company, Constraint, Dataset, Deal, EventType, Goal,
    GoalStatus, GoalType, HistoryPoint, Provenance,
)
from .constraint_schema import validate_constraint
from .event_schema import validate_action_event
from .goal_schema import normalize_goal_fields, validate_goal_record
from .metric_facts import FACT_TO_COMPANY_FIELD, latest_facts


logger = logging.getLogger(__name__)


NUMERIC_COMPANY_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("cash", "cash"),
    ("burn", "burn"),
    ("revenue", "revenue"),
    ("arr", "arr"),
    ("roundTarget", "round_target"),
    ("raised_to_date", "raised_to_date"),
    ("last_raise_amount", "last_raise_amount"),
    ("employees", "employees"),
    ("target_headcount", "target_headcount"),
    ("open_positions", "open_positions"),
    ("nrr", "nrr"),
    ("gross_margin", "gross_margin"),
    ("cac", "cac"),
    ("logo_retention", "logo_retention"),
    ("grr", "grr"),
    ("nps", "nps"),
    ("paying_customers", "paying_customers"),
    ("acv", "acv"),
)

DATE_COMPANY_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("founded", "founded"),
    ("asOf", "as_of"),
    ("cashAsOf", "cash_as_of"),
    ("burnAsOf", "burn_as_of"),
)


class RawDataError(ValueError):
    """A raw record that cannot be turned into a typed record."""


@dataclass(frozen=True)
class LoadResult:
    """Loaded dataset plus every record-level problem found on the way."""
    dataset: Dataset
    errors: Tuple[Error, ...]

    @property
    def is_clean(self) -> bool:
        return not self.errors


# =============================================================================
# FIELD HELPERS
# =============================================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _number(raw: Mapping[str, Any], key: str, label: str) -> Optional[float]:
    value = raw.get(key)
    if value is None:
        return None
    if not _is_number(value):
        raise RawDataError(f"{label} field '{key}' must be numeric, got {value!r}")
    return value


def _timestamp(raw: Mapping[str, Any], key: str, label: str) -> Optional[datetime]:
    value = raw.get(key)
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise RawDataError(f"{label} field '{key}': {exc}") from None


# =============================================================================
# RECORD BUILDERS
# =============================================================================

def build_goal(raw: Mapping[str, Any]) -> Goal:
    """Build a typed Goal from a raw goal mapping."""
    goal = normalize_goal_fields(raw)
    problems = validate_goal_record(goal)
    if problems:
        raise RawDataError("; ".join(problems))

    label = f"Goal {goal['id']}"
    refs = tuple(
        EntityRef(
            type=EntityType(ref["type"]),
            id=str(ref["id"]),
            role=EntityRole(ref.get("role") or EntityRole.PRIMARY.value),
        )
        for ref in goal["entityRefs"]
    )

    history_raw = goal.get("history") or [
        {"value": m.get("value"), "asOf": m.get("date")} for m in goal.get("milestones") or []
    ]
    history = []
    for point in history_raw:
        value = _number(point, "value", label)
        as_of = _timestamp(point, "asOf", label)
        if value is None or as_of is None:
            raise RawDataError(f"{label} history point needs value and asOf")
        history.append(HistoryPoint(value=value, as_of=as_of))

    status = goal.get("status") or GoalStatus.ACTIVE.value
    if status == "at_risk":
        status = GoalStatus.ACTIVE.value

    return Goal(
        id=str(goal["id"]),
        name=str(goal["name"]),
        type=GoalType(goal["type"]),
        entity_refs=refs,
        current=_number(goal, "current", label),
        target=_number(goal, "target", label),
        due=_timestamp(goal, "due", label),
        status=GoalStatus(status),
        history=tuple(history),
        provenance=Provenance(goal.get("provenance") or Provenance.MANUAL.value),
        weight=_number(goal, "weight", label),
    )


def build_deal(raw: Mapping[str, Any]) -> Deal:
    label = f"Deal {raw.get('id')}"
    if not raw.get("id") or not raw.get("companyId"):
        raise RawDataError(f"{label} requires id and companyId")
    return Deal(
        id=str(raw["id"]),
        company_id=str(raw["companyId"]),
        status=str(raw.get("status") or "open"),
        firm_id=raw.get("firmId"),
        last_activity=_timestamp(raw, "lastActivity", label),
    )


def build_constraint(raw: Mapping[str, Any]) -> Constraint:
    problems = validate_constraint(raw)
    if problems:
        raise RawDataError("; ".join(problems))
    return Constraint(
        id=str(raw["id"]),
        company_id=str(raw["companyId"]),
        type=str(raw["type"]),
        date=parse_timestamp(raw["date"]),
        title=str(raw.get("title") or ""),
        base_weight=raw.get("baseWeight"),
    )


def build_event(raw: Mapping[str, Any]) -> ActionEvent:
    problems = validate_action_event(raw)
    if problems:
        raise RawDataError("; ".join(problems))
    return ActionEvent(
        id=raw["id"],
        action_id=raw["actionId"],
        event_type=EventType(raw["eventType"]),
        timestamp=parse_timestamp(raw["timestamp"]),
        actor=raw["actor"],
        payload=dict(raw["payload"]),
    )


def build_company(
    raw: Mapping[str, Any],
    goals: Sequence[Goal] = (),
    deals: Sequence[Deal] = (),
    constraints: Sequence[Constraint] = (),
    facts: Sequence[Mapping[str, Any]] = (),
) -> Company:
    """Build a typed Company; absent metrics are filled from metric facts."""
    if not raw.get("id"):
        raise RawDataError("Company missing id")
    label = f"Company {raw['id']}"

    merged: Dict[str, Any] = dict(raw)
    for key, fact in latest_facts(facts, str(raw["id"])).items():
        field_name = FACT_TO_COMPANY_FIELD.get(key)
        if field_name and merged.get(field_name) is None:
            merged[field_name] = fact["value"]

    values: Dict[str, Any] = {}
    for raw_key, attr in NUMERIC_COMPANY_FIELDS:
        values[attr] = _number(merged, raw_key, label)
    for raw_key, attr in DATE_COMPANY_FIELDS:
        values[attr] = _timestamp(merged, raw_key, label)

    return Company(
        id=str(raw["id"]),
        name=str(raw.get("name") or raw["id"]),
        stage=str(raw.get("stage") or ""),
        is_portfolio=bool(raw.get("isPortfolio", True)),
        raising=bool(raw.get("raising", False)),
        goals=tuple(goals),
        deals=tuple(deals),
        constraints=tuple(constraints),
        **values,
    )


# =============================================================================
# DATASET
# =============================================================================

def attempt_build(
    build: Callable[..., Any],
    raw: Mapping[str, Any],
    record: str,
    now: datetime,
    **kwargs: Any,
) -> Result:
    """Run one record builder; a malformed record becomes a failed Result."""
    try:
        return Result.success(build(raw, **kwargs))
    except ValueError as exc:
        error = Error(code=ErrorCode.MALFORMED_RECORD, message=str(exc), timestamp=now)
        return Result.failure(
            error.with_context("id", str(raw.get("id"))).with_context("record", record)
        )


def load_dataset(raw: Mapping[str, Any], now: datetime) -> LoadResult:
    """
    Load a whole raw dataset.

    Records that fail to build are left out and reported; the rest of the
    dataset still loads. `now` only stamps the reported errors.
    """
    errors: List[Error] = []

    def loaded(result: Result) -> bool:
        if result.is_failure:
            errors.append(result.error)
        return result.is_success

    goals_by_company: Dict[str, List[Goal]] = {}
    raw_goals = list(raw.get("goals") or [])
    for company in raw.get("companies") or []:
        for nested in company.get("goals") or []:
            raw_goals.append({"companyId": company.get("id"), **nested})
    for raw_goal in raw_goals:
        result = attempt_build(build_goal, raw_goal, "goal", now)
        if loaded(result) and result.value.company_id is not None:
            goals_by_company.setdefault(result.value.company_id, []).append(result.value)

    deals_by_company: Dict[str, List[Deal]] = {}
    for raw_deal in raw.get("deals") or []:
        result = attempt_build(build_deal, raw_deal, "deal", now)
        if loaded(result):
            deals_by_company.setdefault(result.value.company_id, []).append(result.value)

    constraints_by_company: Dict[str, List[Constraint]] = {}
    for raw_constraint in raw.get("constraints") or []:
        result = attempt_build(build_constraint, raw_constraint, "constraint", now)
        if loaded(result):
            constraints_by_company.setdefault(result.value.company_id, []).append(result.value)

    facts = list(raw.get("metricFacts") or [])
    companies: List[Company] = []
    for raw_company in raw.get("companies") or []:
        company_id = str(raw_company.get("id"))
        result = attempt_build(
            build_company, raw_company, "company", now,
            goals=goals_by_company.get(company_id, ()),
            deals=deals_by_company.get(company_id, ()),
            constraints=constraints_by_company.get(company_id, ()),
            facts=facts,
        )
        if loaded(result):
            companies.append(result.value)

    events: List[ActionEvent] = []
    for raw_event in raw.get("actionEvents") or []:
        result = attempt_build(build_event, raw_event, "event", now)
        if loaded(result):
            events.append(result.value)

    if errors:
        logger.warning("Raw dataset loaded with %d record errors", len(errors))

    return LoadResult(
        dataset=Dataset(companies=tuple(companies), events=tuple(events)),
        errors=tuple(errors),
    )
