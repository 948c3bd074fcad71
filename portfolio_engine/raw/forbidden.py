"""
Forbidden Derived Fields
========================

Field names that must only ever be COMPUTED, never persisted in raw data.

Keys are compared case-insensitively with underscores removed, so
`runway_months`, `runwayMonths` and `RunwayMonths` are the same field.
"""

from __future__ import annotations
from typing import Any, FrozenSet, List, Tuple


FORBIDDEN_DERIVED_FIELDS: Tuple[str, ...] = (
    # Core derivations
    "runway", "health", "priority", "impact", "urgency", "risk",
    "score", "tier", "band", "label", "progressPct", "coverage",
    "expectedValue", "conversionProb",
    # Trajectory
    "onTrack", "projectedDate", "velocity",
    # Collections of derived objects
    "issues", "priorities", "actions",
    "healthBand", "healthSignals", "runwayMonths",
    "rippleScore", "rippleEffect",
    # Impact model
    "actionId", "expectedNetImpact", "upsideMagnitude",
    "probabilityOfSuccess", "executionProbability", "downsideMagnitude",
    "timeToImpactDays", "effortCost", "secondOrderLeverage",
    "impactModel", "explain",
    # Goal trajectory / pre-issues
    "goalTrajectory", "probabilityOfHit", "preissues", "preIssues",
    "likelihood", "timeToBreachDays",
    "actionCandidates", "rankedActions", "rank",
    # Timing
    "timing", "timingRationale", "timingConfidence", "timingScore",
    "escalation", "escalationDate", "daysUntilEscalation", "isImminent",
    "costOfDelay", "costMultiplier", "costCurve", "conversionLift",
    "isSecondOrder", "secondOrder",
    # Ranking
    "rankScore", "rankComponents", "trustPenalty",
    "executionFrictionPenalty", "timeCriticalityBoost",
    # Calibration
    "calibratedProbability", "introducerPrior", "pathTypePrior",
    "targetTypePrior", "successRate", "followupFor", "daysSinceSent",
)


def fold_field_name(name: str) -> str:
    return name.replace("_", "").lower()


FORBIDDEN_FOLDED: FrozenSet[str] = frozenset(fold_field_name(f) for f in FORBIDDEN_DERIVED_FIELDS)

# Events are keyed by actionId; that key is raw there.
ALLOWED_CONTEXTS = {
    "actionEvents": frozenset({fold_field_name("actionId")}),
}


def is_forbidden_field(name: str) -> bool:
    return fold_field_name(name) in FORBIDDEN_FOLDED


def find_forbidden_fields(data: Any, path: str = "") -> List[str]:
    """
    Recursively collect paths of forbidden keys in a raw structure.

    Returns paths such as `companies[2].runway`.
    """
    found: List[str] = []
    _scan(data, path, found, frozenset())
    return found


def _scan(data: Any, path: str, found: List[str], allowed: FrozenSet[str]) -> None:
    if isinstance(data, dict):
        for key in sorted(data, key=str):
            key_str = str(key)
            child_path = f"{path}.{key_str}" if path else key_str
            folded = fold_field_name(key_str)
            if folded in FORBIDDEN_FOLDED and folded not in allowed:
                found.append(child_path)
            child_allowed = allowed | ALLOWED_CONTEXTS.get(key_str, frozenset())
            _scan(data[key], child_path, found, child_allowed)
    elif isinstance(data, (list, tuple)):
        for index, item in enumerate(data):
            _scan(item, f"{path}[{index}]", found, allowed)
