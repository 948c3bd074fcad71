"""
Action Event Ledger Schema

The action event log is append-only. Each entry records something that
happened to an action (assigned, completed, outcome recorded, ...).
Entries are never edited; corrections are new entries.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Sequence, Tuple

from ..contracts.base import parse_timestamp
from ..contracts.records import EventType, Outcome


VALID_EVENT_TYPES = tuple(t.value for t in EventType)
VALID_OUTCOMES = tuple(o.value for o in Outcome)

REQUIRED_STRING_FIELDS = ("id", "actionId", "eventType", "timestamp", "actor")

FORBIDDEN_PAYLOAD_KEYS = (
    "rankScore",
    "expectedNetImpact",
    "impactScore",
    "rippleScore",
    "priorityScore",
    "healthScore",
    "executionProbability",
    "frictionPenalty",
    "calibratedProbability",
    "learnedExecutionProbability",
    "learnedFrictionPenalty",
)


@dataclass(frozen=True)
class LedgerValidation:
    errors: Tuple[str, ...]
    duplicate_ids: Tuple[str, ...]

    @property
    def valid(self) -> bool:
        return not self.errors


def validate_action_event(event: Any) -> List[str]:
    """Validate one raw event record."""
    if not isinstance(event, Mapping):
        return ["Event must be an object"]

    errors = []
    for name in REQUIRED_STRING_FIELDS:
        if not isinstance(event.get(name), str) or not event.get(name):
            errors.append(f"Event missing required string field: {name}")

    payload = event.get("payload")
    if not isinstance(payload, Mapping):
        errors.append("Event missing required object field: payload")
        payload = None

    event_type = event.get("eventType")
    if isinstance(event_type, str) and event_type and event_type not in VALID_EVENT_TYPES:
        errors.append(
            f"Invalid eventType: {event_type}. Must be one of: {', '.join(VALID_EVENT_TYPES)}"
        )

    timestamp = event.get("timestamp")
    if isinstance(timestamp, str) and timestamp:
        try:
            parse_timestamp(timestamp)
        except ValueError:
            errors.append(f"Invalid timestamp format: {timestamp}. Must be ISO 8601.")

    if event_type == EventType.OUTCOME_RECORDED.value and payload is not None:
        outcome = payload.get("outcome")
        if not outcome:
            errors.append("outcome_recorded event requires payload.outcome")
        elif outcome not in VALID_OUTCOMES:
            errors.append(
                f"Invalid outcome: {outcome}. Must be one of: {', '.join(VALID_OUTCOMES)}"
            )
        for numeric in ("impactObserved", "timeToOutcomeDays"):
            value = payload.get(numeric)
            if numeric in payload and (isinstance(value, bool) or not isinstance(value, (int, float))):
                errors.append(f"payload.{numeric} must be a number if provided")

    if payload is not None:
        for key in FORBIDDEN_PAYLOAD_KEYS:
            if key in payload:
                errors.append(f"Forbidden derived key in payload: {key}")

    return errors


def validate_action_events(events: Any) -> LedgerValidation:
    """Validate the whole ledger, including duplicate ids."""
    if not isinstance(events, (list, tuple)):
        return LedgerValidation(errors=("actionEvents must be an array",), duplicate_ids=())

    errors: List[str] = []
    seen = set()
    duplicates: List[str] = []
    for index, event in enumerate(events):
        errors.extend(f"Event[{index}]: {e}" for e in validate_action_event(event))
        event_id = event.get("id") if isinstance(event, Mapping) else None
        if event_id:
            if event_id in seen:
                duplicates.append(event_id)
                errors.append(f"Event[{index}]: Duplicate event ID: {event_id}")
            seen.add(event_id)

    return LedgerValidation(errors=tuple(errors), duplicate_ids=tuple(duplicates))


def orphaned_action_refs(events: Sequence[Mapping[str, Any]], known_action_ids: Iterable[str]) -> List[str]:
    """Action ids referenced by events that no known action carries."""
    known = set(known_action_ids)
    return [
        event["actionId"] for event in events
        if isinstance(event, Mapping) and event.get("actionId") and event["actionId"] not in known
    ]
