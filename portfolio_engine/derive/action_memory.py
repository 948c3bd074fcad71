"""
Action Outcome Memory
=====================

Learns, per action type, how actions of that kind actually went: how
often they were carried through, how often they failed or were
abandoned, and how slowly their ledger events followed each other.

    execution_probability = completed / attempts        clamped [0.05, 0.95]
    friction              = 0.5 x failure_rate
                          + 0.3 x delay_factor
                          + 0.2 x abandon_rate          clamped [0, 1]

RULES:
======
- Attempts are `started` and `completed` events; `completed` also counts
  as a completion
- Only `outcome_recorded` events carry outcomes
- Delays are the gaps between consecutive events of the same action id
- Fewer than `min_samples` gives the default, flagged as not learned
- Event order is by timestamp, never by ledger position

Runtime-derived only; never persisted.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from ..contracts.base import clamp, days_between
from ..contracts.records import ActionEvent, EventType, Outcome
from .pattern_lift import action_type_of


@dataclass
class MemoryConfig:
    min_samples: int = 3
    default_execution_probability: float = 0.7
    min_execution_probability: float = 0.05
    max_execution_probability: float = 0.95
    default_friction: float = 0.1
    ideal_delay_days: float = 2.0
    max_delay_days: float = 14.0
    failure_weight: float = 0.5
    delay_weight: float = 0.3
    abandon_weight: float = 0.2


DEFAULT_MEMORY_CONFIG = MemoryConfig()


@dataclass
class OutcomeStats:
    """Running totals for one action type."""
    action_type: str
    attempts: int = 0
    completed: int = 0
    successes: int = 0
    partials: int = 0
    failures: int = 0
    abandoned: int = 0
    outcomes: int = 0
    delay_sum: float = 0.0
    delay_count: int = 0

    @property
    def average_delay(self) -> Optional[float]:
        return self.delay_sum / self.delay_count if self.delay_count else None


@dataclass(frozen=True)
class ExecutionSignal:
    """What the ledger says about executing one kind of action."""
    execution_probability: float
    friction: float
    execution_learned: bool
    friction_learned: bool


COLD_START = ExecutionSignal(
    execution_probability=DEFAULT_MEMORY_CONFIG.default_execution_probability,
    friction=DEFAULT_MEMORY_CONFIG.default_friction,
    execution_learned=False,
    friction_learned=False,
)


def _event_types(events: Sequence[ActionEvent]) -> Dict[str, str]:
    """action_id -> action type, from any ledger event that names one."""
    types: Dict[str, str] = {}
    for event in events:
        if event.action_type and event.action_id not in types:
            types[event.action_id] = event.action_type
    return types


def compute_outcome_stats(
    events: Sequence[ActionEvent],
    action_types: Optional[Mapping[str, str]] = None,
) -> Dict[str, OutcomeStats]:
    """
    Aggregate the ledger by action type.

    An event's type comes from its own payload, then from another event
    of the same action, then from `action_types`. Events whose type
    cannot be resolved are skipped.
    """
    known = dict(action_types or {})
    known.update(_event_types(events))

    stats: Dict[str, OutcomeStats] = {}
    timelines: Dict[str, List[ActionEvent]] = {}

    for event in sorted(events, key=lambda e: e.timestamp):
        action_type = event.action_type or known.get(event.action_id)
        if action_type is None:
            continue
        bucket = stats.setdefault(action_type, OutcomeStats(action_type=action_type))
        timelines.setdefault(event.action_id, []).append(event)

        if event.event_type is EventType.STARTED:
            bucket.attempts += 1
        elif event.event_type is EventType.COMPLETED:
            bucket.attempts += 1
            bucket.completed += 1
        elif event.event_type is EventType.OUTCOME_RECORDED:
            bucket.outcomes += 1
            outcome = event.payload.get("outcome")
            if outcome == Outcome.SUCCESS.value:
                bucket.successes += 1
            elif outcome == Outcome.PARTIAL.value:
                bucket.partials += 1
            elif outcome == Outcome.FAILED.value:
                bucket.failures += 1
            elif outcome == Outcome.ABANDONED.value:
                bucket.abandoned += 1

    for action_id, timeline in timelines.items():
        if len(timeline) < 2:
            continue
        action_type = timeline[0].action_type or known.get(action_id)
        bucket = stats[action_type]
        for previous, current in zip(timeline, timeline[1:]):
            bucket.delay_sum += days_between(previous.timestamp, current.timestamp)
            bucket.delay_count += 1

    return {t: stats[t] for t in sorted(stats)}


# =============================================================================
# LEARNED SIGNALS
# =============================================================================

def learned_execution_probability(
    stats: Optional[OutcomeStats], config: MemoryConfig = DEFAULT_MEMORY_CONFIG
) -> Optional[float]:
    """None until the type has `min_samples` attempts."""
    if stats is None or stats.attempts < config.min_samples:
        return None
    return clamp(
        stats.completed / stats.attempts,
        config.min_execution_probability,
        config.max_execution_probability,
    )


def learned_friction(
    stats: Optional[OutcomeStats], config: MemoryConfig = DEFAULT_MEMORY_CONFIG
) -> Optional[float]:
    """None until the type has `min_samples` recorded outcomes."""
    if stats is None or stats.outcomes < config.min_samples:
        return None

    failure_rate = (stats.failures + stats.abandoned) / stats.outcomes
    abandon_rate = stats.abandoned / stats.outcomes

    delay_factor = 0.0
    if stats.average_delay is not None:
        span = config.max_delay_days - config.ideal_delay_days
        delay_factor = clamp((stats.average_delay - config.ideal_delay_days) / span, 0.0, 1.0)

    friction = (
        config.failure_weight * failure_rate
        + config.delay_weight * delay_factor
        + config.abandon_weight * abandon_rate
    )
    return clamp(friction, 0.0, 1.0)


def execution_signal(
    stats: Optional[OutcomeStats], config: MemoryConfig = DEFAULT_MEMORY_CONFIG
) -> ExecutionSignal:
    execution = learned_execution_probability(stats, config)
    friction = learned_friction(stats, config)
    return ExecutionSignal(
        execution_probability=config.default_execution_probability if execution is None else execution,
        friction=config.default_friction if friction is None else friction,
        execution_learned=execution is not None,
        friction_learned=friction is not None,
    )


def action_memory(
    events: Sequence[ActionEvent], config: MemoryConfig = DEFAULT_MEMORY_CONFIG
) -> Dict[str, ExecutionSignal]:
    """action type -> ExecutionSignal for every type the ledger mentions."""
    return {
        action_type: execution_signal(stats, config)
        for action_type, stats in compute_outcome_stats(events).items()
    }


def signal_for(
    action: object, memory: Mapping[str, ExecutionSignal]
) -> ExecutionSignal:
    return memory.get(action_type_of(action), COLD_START)
