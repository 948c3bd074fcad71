"""
Unified Action Ranking
======================

SINGLE CANONICAL RANKING SURFACE

All actions are ordered by exactly one scalar: rank_score.

    rank_score = expected_net_impact
               - trust_penalty
               - execution_friction_penalty
               + time_criticality_boost
               + source_type_boost
               + pattern_lift

    expected_net_impact = upside x p + second_order_leverage
                        - downside x (1 - p)
                        - effort_cost - time_penalty(time_to_impact_days)

    p = execution_probability x probability_of_success

RULES:
======
- No other module may sort actions or compute an equivalent score
- The sort is stable: scores within `score_epsilon` keep input order
- No secondary tie-break key, no randomness
- Ranks are 1-indexed
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from functools import cmp_to_key
import logging
import math
from typing import List, Mapping, Optional, Sequence, Tuple

from ..contracts.base import ensure_utc
from ..contracts.records import ActionEvent
from ..derive.pattern_lift import DEFAULT_PATTERN_LIFT_CONFIG, PatternLiftConfig, pattern_lifts
from ..predict.actions import Action, ImpactModel
from .weights import (
    DEFAULT_WEIGHTS,
    RankingWeights,
    execution_friction_penalty,
    source_type_boost,
    time_criticality_boost,
    time_penalty,
    trust_penalty,
)


logger = logging.getLogger(__name__)

TRACE_TOLERANCE = 0.01


@dataclass(frozen=True)
class RankComponents:
    expected_net_impact: float
    trust_penalty: float
    execution_friction_penalty: float
    time_criticality_boost: float
    source_type_boost: float
    pattern_lift: float

    @property
    def total(self) -> float:
        return (
            self.expected_net_impact
            - self.trust_penalty
            - self.execution_friction_penalty
            + self.time_criticality_boost
            + self.source_type_boost
            + self.pattern_lift
        )

    def to_dict(self) -> dict:
        return {
            "expectedNetImpact": self.expected_net_impact,
            "trustPenalty": self.trust_penalty,
            "executionFrictionPenalty": self.execution_friction_penalty,
            "timeCriticalityBoost": self.time_criticality_boost,
            "sourceTypeBoost": self.source_type_boost,
            "patternLift": self.pattern_lift,
        }


@dataclass(frozen=True)
class RankedAction:
    action: Action
    rank_score: float
    rank_components: RankComponents
    rank: int

    @property
    def action_id(self) -> str:
        return self.action.action_id

    def to_dict(self) -> dict:
        data = self.action.to_dict()
        data.update({
            "rankScore": self.rank_score,
            "rankComponents": self.rank_components.to_dict(),
            "rank": self.rank,
        })
        return data


# =============================================================================
# SCORING
# =============================================================================

def compute_expected_net_impact(impact: ImpactModel, weights: RankingWeights = DEFAULT_WEIGHTS) -> float:
    p = impact.execution_probability * impact.probability_of_success
    return (
        impact.upside_magnitude * p
        + impact.second_order_leverage
        - impact.downside_magnitude * (1 - p)
        - impact.effort_cost
        - time_penalty(impact.time_to_impact_days, weights)
    )


def compute_rank_score(
    action: Action,
    trust_risk: float = 0.0,
    pressure: Optional[float] = None,
    days_until_deadline: Optional[float] = None,
    lift: float = 0.0,
    weights: RankingWeights = DEFAULT_WEIGHTS,
) -> Tuple[float, RankComponents]:
    if action.impact is None:
        raise ValueError(f"Action {action.action_id} has no impact model")
    components = RankComponents(
        expected_net_impact=compute_expected_net_impact(action.impact, weights),
        trust_penalty=trust_penalty(trust_risk, weights),
        execution_friction_penalty=execution_friction_penalty(action, weights),
        time_criticality_boost=time_criticality_boost(days_until_deadline, pressure, weights),
        source_type_boost=source_type_boost(action, weights),
        pattern_lift=lift,
    )
    return components.total, components


# =============================================================================
# RANKING
# =============================================================================

def _by_score_descending(epsilon: float):
    def compare(a: Tuple[float, Action], b: Tuple[float, Action]) -> int:
        diff = b[0] - a[0]
        if abs(diff) <= epsilon:
            return 0
        return 1 if diff > 0 else -1
    return cmp_to_key(compare)


def rank_actions(
    actions: Sequence[Action],
    now: datetime,
    events: Sequence[ActionEvent] = (),
    trust_risk: Optional[Mapping[str, float]] = None,
    pressure: Optional[Mapping[str, float]] = None,
    deadlines: Optional[Mapping[str, float]] = None,
    weights: Optional[RankingWeights] = None,
    lift_config: Optional[PatternLiftConfig] = None,
) -> List[RankedAction]:
    """
    Score every action and order by rank_score, descending.

    `trust_risk`, `pressure` and `deadlines` are keyed by action id. An
    action with constraint pressure uses it as its time-criticality boost;
    otherwise its deadline (days) feeds the exponential fallback.
    """
    if not actions:
        return []
    now = ensure_utc(now)
    weights = weights or DEFAULT_WEIGHTS
    trust_risk = trust_risk or {}
    pressure = pressure or {}
    deadlines = deadlines or {}
    lifts = pattern_lifts(actions, events, now, lift_config or DEFAULT_PATTERN_LIFT_CONFIG)

    scored: List[Tuple[float, Action, RankComponents]] = []
    for action in actions:
        score, components = compute_rank_score(
            action,
            trust_risk=trust_risk.get(action.action_id, 0.0),
            pressure=pressure.get(action.action_id),
            days_until_deadline=deadlines.get(action.action_id),
            lift=lifts.get(action.action_id, 0.0),
            weights=weights,
        )
        scored.append((score, action, components))

    ordered = sorted(scored, key=_by_score_descending(weights.score_epsilon))
    ranked = [
        RankedAction(action=action, rank_score=score, rank_components=components, rank=index + 1)
        for index, (score, action, components) in enumerate(ordered)
    ]
    logger.info("Ranked %d actions (%d with pattern lift)", len(ranked), sum(1 for v in lifts.values() if v))
    return ranked


def top_actions(ranked: Sequence[RankedAction], n: int = 5) -> List[RankedAction]:
    return list(ranked[:n])


# =============================================================================
# VALIDATION
# =============================================================================

def validate_ranking(
    ranked: Sequence[RankedAction], weights: RankingWeights = DEFAULT_WEIGHTS
) -> Tuple[bool, List[str]]:
    """Scores present, order non-increasing, ranks contiguous, components traceable."""
    errors: List[str] = []
    for index, item in enumerate(ranked):
        score = item.rank_score
        if not isinstance(score, (int, float)) or math.isnan(score):
            errors.append(f"Action {item.action_id}: missing or invalid rank_score")
            continue
        if item.rank != index + 1:
            errors.append(f"Action {item.action_id}: rank {item.rank} at position {index + 1}")
        if abs(item.rank_components.total - score) > TRACE_TOLERANCE:
            errors.append(f"Action {item.action_id}: components do not sum to rank_score")
        if index > 0 and score > ranked[index - 1].rank_score + weights.score_epsilon:
            errors.append(
                f"Sort violation at position {index + 1}: "
                f"{ranked[index - 1].rank_score} < {score}"
            )
    return not errors, errors


def verify_determinism(
    actions: Sequence[Action],
    now: datetime,
    events: Sequence[ActionEvent] = (),
    weights: RankingWeights = DEFAULT_WEIGHTS,
) -> Tuple[bool, List[str]]:
    """Rank twice; both runs must agree on order and scores within epsilon."""
    first = rank_actions(actions, now, events=events, weights=weights)
    second = rank_actions(actions, now, events=events, weights=weights)
    errors: List[str] = []
    if len(first) != len(second):
        errors.append(f"Length mismatch: {len(first)} vs {len(second)}")
        return False, errors
    for a, b in zip(first, second):
        if a.action_id != b.action_id:
            errors.append(f"Order mismatch at rank {a.rank}: {a.action_id} vs {b.action_id}")
        elif abs(a.rank_score - b.rank_score) > weights.score_epsilon:
            errors.append(f"Score mismatch for {a.action_id}: {a.rank_score} vs {b.rank_score}")
    return not errors, errors
