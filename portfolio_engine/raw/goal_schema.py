"""
Goal Schema
===========

Goal types, the entity kinds each type may attach to, and shape validation
for raw goal records.

CANONICAL FIELDS:
=================
- `current` / `target` are canonical. `cur` / `tgt` are accepted on input
  and rewritten by `normalize_goal_fields`; the aliases never leave the raw
  layer.
- Legacy single-entity ids (companyId, firmId, dealId, roundId, personId)
  are rewritten to `entityRefs`.
- `gap` / `gapPct` are derived values and are rejected outright.
"""

from __future__ import annotations
from typing import Any, Dict, FrozenSet, List, Mapping, Tuple

from ..contracts.base import EntityRole, EntityType
from ..contracts.records import GoalStatus, GoalType, Provenance


COMPANY_ONLY: FrozenSet[EntityType] = frozenset({EntityType.COMPANY})

GOAL_TYPE_ENTITIES: Dict[GoalType, FrozenSet[EntityType]] = {
    GoalType.REVENUE: COMPANY_ONLY,
    GoalType.FUNDRAISE: COMPANY_ONLY,
    GoalType.HIRING: COMPANY_ONLY,
    GoalType.PRODUCT: COMPANY_ONLY,
    GoalType.OPERATIONAL: COMPANY_ONLY,
    GoalType.PARTNERSHIP: COMPANY_ONLY,
    GoalType.RETENTION: COMPANY_ONLY,
    GoalType.EFFICIENCY: COMPANY_ONLY,
    GoalType.CUSTOMER_GROWTH: COMPANY_ONLY,
    GoalType.INTRO_TARGET: frozenset({EntityType.COMPANY, EntityType.FIRM, EntityType.PERSON}),
    GoalType.RELATIONSHIP_BUILD: frozenset({EntityType.FIRM, EntityType.PERSON}),
    GoalType.DEAL_CLOSE: frozenset({EntityType.DEAL, EntityType.COMPANY, EntityType.FIRM}),
    GoalType.ROUND_COMPLETION: frozenset({EntityType.ROUND, EntityType.COMPANY}),
    GoalType.INVESTOR_ACTIVATION: frozenset({EntityType.FIRM, EntityType.COMPANY}),
    GoalType.CHAMPION_CULTIVATION: frozenset({EntityType.PERSON, EntityType.FIRM, EntityType.DEAL}),
}

LEGACY_ENTITY_FIELDS: Tuple[Tuple[str, EntityType, EntityRole], ...] = (
    ("companyId", EntityType.COMPANY, EntityRole.PRIMARY),
    ("firmId", EntityType.FIRM, EntityRole.TARGET),
    ("dealId", EntityType.DEAL, EntityRole.PARTICIPANT),
    ("roundId", EntityType.ROUND, EntityRole.PARTICIPANT),
    ("personId", EntityType.PERSON, EntityRole.TARGET),
)

FIELD_ALIASES: Tuple[Tuple[str, str], ...] = (
    ("cur", "current"),
    ("tgt", "target"),
)

REQUIRED_SHAPE_FIELDS = ("id", "name", "type", "status", "due", "provenance")
LEGACY_DERIVED_FIELDS = ("gap", "gapPct")

GOAL_TYPE_VALUES = frozenset(t.value for t in GoalType)
GOAL_STATUS_VALUES = frozenset(s.value for s in GoalStatus) | {"at_risk"}
PROVENANCE_VALUES = frozenset(p.value for p in Provenance)
ENTITY_TYPE_VALUES = frozenset(t.value for t in EntityType)


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_goal_fields(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of a raw goal with canonical field names.

    If both an alias and its canonical field are present, the canonical
    field wins.
    """
    goal = dict(raw)
    for alias, canonical in FIELD_ALIASES:
        if alias in goal:
            value = goal.pop(alias)
            if goal.get(canonical) is None:
                goal[canonical] = value

    if not goal.get("entityRefs"):
        refs = []
        for key, entity_type, role in LEGACY_ENTITY_FIELDS:
            if goal.get(key):
                refs.append({"type": entity_type.value, "id": goal[key], "role": role.value})
        goal["entityRefs"] = refs
    return goal


# =============================================================================
# VALIDATION
# =============================================================================

def validate_goal_record(raw: Mapping[str, Any]) -> List[str]:
    """Validate a raw goal (after field normalization)."""
    errors: List[str] = []
    goal_id = raw.get("id") or "unknown"

    if not raw.get("id"):
        errors.append("Missing id")
    if not raw.get("name"):
        errors.append(f"Goal {goal_id} missing name")

    goal_type = raw.get("type")
    if not goal_type:
        errors.append(f"Goal {goal_id} missing type")
    elif goal_type not in GOAL_TYPE_VALUES:
        errors.append(f"Goal {goal_id} unknown goal type: {goal_type}")

    refs = raw.get("entityRefs") or []
    if not refs:
        errors.append(f"Goal {goal_id} must be attached to at least one entity")

    allowed = GOAL_TYPE_ENTITIES.get(GoalType(goal_type)) if goal_type in GOAL_TYPE_VALUES else None
    for ref in refs:
        ref_type = ref.get("type") if isinstance(ref, Mapping) else None
        if ref_type not in ENTITY_TYPE_VALUES:
            errors.append(f"Goal {goal_id} has invalid entity ref type: {ref_type}")
        elif allowed is not None and EntityType(ref_type) not in allowed:
            errors.append(f"Goal type {goal_type} does not support entity type {ref_type}")

    status = raw.get("status")
    if status is not None and status not in GOAL_STATUS_VALUES:
        errors.append(f"Goal {goal_id} invalid status: {status}")
    provenance = raw.get("provenance")
    if provenance is not None and provenance not in PROVENANCE_VALUES:
        errors.append(f"Goal {goal_id} invalid provenance: {provenance}")
    return errors


def validate_goal_shape(raw: Mapping[str, Any]) -> List[str]:
    """
    Stricter post-migration shape check used by the gate.

    Requires status/due/provenance and forbids legacy derived fields.
    """
    goal_id = raw.get("id") or "unknown"
    errors = []
    for name in REQUIRED_SHAPE_FIELDS:
        if raw.get(name) is None:
            errors.append(f"Goal {goal_id} missing: {name}")

    if not raw.get("companyId") and not raw.get("entityRefs"):
        errors.append(f"Goal {goal_id} has no companyId or entityRefs")

    for name in LEGACY_DERIVED_FIELDS:
        if name in raw:
            errors.append(f"Goal {goal_id} has legacy field: {name}")
    return errors
