"""
Constraint Schema

Hard deadlines attached to a company. Each constraint type declares a base
weight and the action categories it is relevant to; `ALL_CATEGORIES`
means every action feels the deadline at full relevance.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Mapping

from ..contracts.base import parse_timestamp


ALL_CATEGORIES = "all"


@dataclass(frozen=True)
class ConstraintType:
    base_weight: float
    relevance: FrozenSet[str]

    @property
    def applies_to_all(self) -> bool:
        return ALL_CATEGORIES in self.relevance


CONSTRAINT_TYPES: Dict[str, ConstraintType] = {
    "board_meeting": ConstraintType(1.0, frozenset({ALL_CATEGORIES})),
    "fundraise_close": ConstraintType(1.5, frozenset({"fundraise"})),
    "term_sheet_deadline": ConstraintType(1.5, frozenset({"fundraise"})),
    "bridge_maturity": ConstraintType(1.4, frozenset({"fundraise", "efficiency"})),
    "investor_update": ConstraintType(0.6, frozenset({"fundraise", "revenue", "operational"})),
    "reporting_deadline": ConstraintType(0.8, frozenset({"operational", "efficiency", "revenue"})),
    "product_launch": ConstraintType(1.0, frozenset({"product", "customer_growth"})),
    "hiring_deadline": ConstraintType(0.8, frozenset({"hiring"})),
    "contract_renewal": ConstraintType(1.0, frozenset({"retention", "revenue", "customer_growth"})),
}

DEFAULT_CONSTRAINT_TYPE = ConstraintType(1.0, frozenset())


def constraint_type(name: str) -> ConstraintType:
    return CONSTRAINT_TYPES.get(name, DEFAULT_CONSTRAINT_TYPE)


def validate_constraint(raw: Mapping[str, Any]) -> List[str]:
    constraint_id = raw.get("id") or "unknown"
    errors = []
    for name in ("id", "companyId", "type", "date"):
        if not raw.get(name):
            errors.append(f"Constraint {constraint_id} missing: {name}")
    if raw.get("date"):
        try:
            parse_timestamp(raw["date"])
        except ValueError as exc:
            errors.append(f"Constraint {constraint_id}: {exc}")
    weight = raw.get("baseWeight")
    if weight is not None and (isinstance(weight, bool) or not isinstance(weight, (int, float))):
        errors.append(f"Constraint {constraint_id} baseWeight must be numeric")
    return errors
