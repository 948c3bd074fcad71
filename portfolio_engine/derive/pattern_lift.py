"""
Pattern Lift
============

A small, bounded ranking adjustment learned from the action ledger:
"which kinds of action tend to matter here?"

RULES:
======
- Only `outcome_recorded` events are observations
- An observation with notes is a positive signal (1.0), without is neutral (0.5)
- Observations decay with a 30-day half-life
- Fewer than `min_observations` for an action type gives zero lift (cold start)
- |lift| never exceeds `lift_max`

Runtime-derived only; never persisted.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
import math
from typing import Any, Dict, List, Sequence

import numpy as np

from ..contracts.base import days_between
from ..contracts.records import ActionEvent, EventType


@dataclass
class PatternLiftConfig:
    lift_max: float = 0.5
    min_observations: int = 3
    half_life_days: float = 30.0
    confidence_saturation: int = 20


DEFAULT_PATTERN_LIFT_CONFIG = PatternLiftConfig()

UNKNOWN_ACTION_TYPE = "UNKNOWN"


@dataclass(frozen=True)
class PatternStats:
    observed_count: int
    weighted_sum: float

    @property
    def average_signal(self) -> float:
        return self.weighted_sum / self.observed_count if self.observed_count else 0.0


def pattern_stats(
    events: Sequence[ActionEvent],
    now: datetime,
    config: PatternLiftConfig = DEFAULT_PATTERN_LIFT_CONFIG,
) -> Dict[str, PatternStats]:
    """Per action type: observation count and decayed signal sum."""
    signals: Dict[str, List[float]] = {}
    ages: Dict[str, List[float]] = {}
    for event in events:
        if event.event_type is not EventType.OUTCOME_RECORDED:
            continue
        action_type = event.action_type or UNKNOWN_ACTION_TYPE
        signals.setdefault(action_type, []).append(1.0 if event.payload.get("notes") else 0.5)
        ages.setdefault(action_type, []).append(days_between(event.timestamp, now))

    stats = {}
    for action_type in sorted(signals):
        signal = np.array(signals[action_type], dtype=float)
        decay = np.power(0.5, np.array(ages[action_type], dtype=float) / config.half_life_days)
        stats[action_type] = PatternStats(
            observed_count=len(signal),
            weighted_sum=float(np.sum(signal * decay)),
        )
    return stats


def lift_from_stats(
    stats: PatternStats, config: PatternLiftConfig = DEFAULT_PATTERN_LIFT_CONFIG
) -> float:
    if stats.observed_count < config.min_observations:
        return 0.0
    normalized = (stats.average_signal - 0.5) * 2
    confidence = min(1.0, math.log(stats.observed_count) / math.log(config.confidence_saturation))
    raw = normalized * confidence * config.lift_max
    return max(-config.lift_max, min(config.lift_max, raw))


def action_type_of(action: Any) -> str:
    return getattr(action, "resolution_id", None) or UNKNOWN_ACTION_TYPE


def pattern_lifts(
    actions: Sequence[Any],
    events: Sequence[ActionEvent],
    now: datetime,
    config: PatternLiftConfig = DEFAULT_PATTERN_LIFT_CONFIG,
) -> Dict[str, float]:
    """action_id -> lift for every action (0.0 on cold start)."""
    stats = pattern_stats(events, now, config)
    lifts = {}
    for action in actions:
        type_stats = stats.get(action_type_of(action))
        lifts[action.action_id] = lift_from_stats(type_stats, config) if type_stats else 0.0
    return lifts


def lift_within_bounds(lift: float, config: PatternLiftConfig = DEFAULT_PATTERN_LIFT_CONFIG) -> bool:
    return isinstance(lift, float) and not math.isnan(lift) and abs(lift) <= config.lift_max
