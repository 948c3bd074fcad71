"""
Ranking Weights
===============

All ranking weights live here. No magic numbers elsewhere in decide.

    rank_score = expected_net_impact
               - trust_penalty
               - execution_friction_penalty
               + time_criticality_boost
               + source_type_boost
               + pattern_lift
"""

from __future__ import annotations
from dataclasses import dataclass, field
import math
from typing import Any, Dict, Optional


@dataclass
class RankingWeights:
    # Trust: penalty applies above the threshold
    trust_threshold: float = 0.3
    trust_multiplier: float = 20.0

    # Execution friction
    friction_per_step: float = 0.5
    friction_max_steps: int = 10
    complexity_multiplier: float = 5.0

    # Time criticality fallback when no constraint pressure is supplied
    urgent_threshold_days: float = 7.0
    max_time_boost: float = 15.0
    time_decay_rate: float = 7.0

    # Time-to-impact penalty
    time_penalty_days_per_point: float = 7.0
    time_penalty_max: float = 30.0

    source_type_boosts: Dict[str, float] = field(default_factory=lambda: {
        "ISSUE": 8.0,
        "PREISSUE": 5.0,
        "GOAL": 3.0,
        "ANOMALY": 2.0,
        "SUGGESTION": 1.0,
    })

    # Two scores closer than this are a tie
    score_epsilon: float = 0.0001


DEFAULT_WEIGHTS = RankingWeights()


def trust_penalty(trust_risk: float, weights: RankingWeights = DEFAULT_WEIGHTS) -> float:
    if trust_risk <= weights.trust_threshold:
        return 0.0
    return (trust_risk - weights.trust_threshold) * weights.trust_multiplier


def execution_friction_penalty(action: Any, weights: RankingWeights = DEFAULT_WEIGHTS) -> float:
    """Step count plus `complexity`, the friction learned from the outcome ledger."""
    steps = min(len(getattr(action, "steps", ()) or ()), weights.friction_max_steps)
    penalty = steps * weights.friction_per_step
    complexity = getattr(action, "complexity", 0) or 0
    if complexity:
        penalty += complexity * weights.complexity_multiplier
    return penalty


def time_criticality_boost(
    days_until_deadline: Optional[float] = None,
    pressure: Optional[float] = None,
    weights: RankingWeights = DEFAULT_WEIGHTS,
) -> float:
    """
    Constraint pressure, when supplied, is the boost. Otherwise a deadline
    inside four weeks boosts exponentially; past or distant deadlines do not.
    """
    if pressure is not None:
        return pressure
    if days_until_deadline is None or days_until_deadline <= 0:
        return 0.0
    if days_until_deadline > weights.urgent_threshold_days * 4:
        return 0.0
    return weights.max_time_boost * math.exp(-days_until_deadline / weights.time_decay_rate)


def time_penalty(days: float, weights: RankingWeights = DEFAULT_WEIGHTS) -> float:
    return min(weights.time_penalty_max, days / weights.time_penalty_days_per_point)


def source_type_boost(action: Any, weights: RankingWeights = DEFAULT_WEIGHTS) -> float:
    """Largest prior over the action's sources; unknown source types get 0."""
    best = 0.0
    for source in getattr(action, "sources", ()) or ():
        source_type = getattr(source, "source_type", None)
        key = getattr(source_type, "value", source_type)
        best = max(best, weights.source_type_boosts.get(key, 0.0))
    return best
