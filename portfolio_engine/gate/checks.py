"""
Invariant Verifier
==================

A battery of independent checks over raw data, the derivation graph, the
ranked output and the package source.

RULES:
======
- A check whose inputs are missing is SKIPPED, never passed
- A check that raises is FAILED with the exception message
- The gate never ranks; the ranking function is injected as `rank_fn`
- Ranked actions are read by attribute or mapping key, so the gate does
  not depend on decide's types

Exit code is 0 only when no check failed.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
import logging
import math
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, Set, Tuple

from ..raw.event_schema import orphaned_action_refs, validate_action_events
from ..raw.forbidden import find_forbidden_fields
from ..raw.goal_schema import normalize_goal_fields, validate_goal_record, validate_goal_shape
from ..raw.metric_facts import MUTUALLY_EXCLUSIVE_METRICS, mutual_exclusion_violations, validate_metric_fact
from .source_scan import scan_layer_imports, scan_single_ranking_surface


logger = logging.getLogger(__name__)

SCORE_EPSILON = 0.0001
TRACE_TOLERANCE = 0.01
DEFAULT_TERMINAL_NODES: FrozenSet[str] = frozenset({"action_impact", "suggested_goals"})


class CheckStatus(Enum):
    PASS = "pass"
    FAIL = "fail"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: CheckStatus
    messages: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def passed(self) -> bool:
        return self.status is CheckStatus.PASS

    def to_dict(self) -> dict:
        return {"name": self.name, "status": self.status.value, "messages": list(self.messages)}


@dataclass(frozen=True)
class GateReport:
    passed: int
    failed: int
    skipped: int
    results: Tuple[CheckResult, ...]

    @property
    def exit_code(self) -> int:
        return 0 if self.failed == 0 else 1

    def result(self, name: str) -> Optional[CheckResult]:
        for r in self.results:
            if r.name == name:
                return r
        return None

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "exitCode": self.exit_code,
            "results": [r.to_dict() for r in self.results],
        }


class _Skip(Exception):
    """Raised inside a check when one of its inputs is absent."""


def _require(options: Mapping[str, Any], *keys: str) -> Tuple[Any, ...]:
    values = []
    for key in keys:
        if options.get(key) is None:
            raise _Skip(f"missing input: {key}")
        values.append(options[key])
    return tuple(values)


# =============================================================================
# DUCK-TYPED ACCESS
# =============================================================================

def _get(obj: Any, snake: str, camel: Optional[str] = None, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        if snake in obj:
            return obj[snake]
        return obj.get(camel or snake, default)
    return getattr(obj, snake, default)


def _action_id(item: Any) -> Optional[str]:
    direct = _get(item, "action_id", "actionId")
    if direct is not None:
        return direct
    inner = _get(item, "action")
    return _get(inner, "action_id", "actionId") if inner is not None else None


def _score(item: Any) -> Any:
    return _get(item, "rank_score", "rankScore")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def _component_total(components: Any) -> float:
    def part(snake: str, camel: str) -> float:
        return float(_get(components, snake, camel, 0.0) or 0.0)

    return (
        part("expected_net_impact", "expectedNetImpact")
        - part("trust_penalty", "trustPenalty")
        - part("execution_friction_penalty", "executionFrictionPenalty")
        + part("time_criticality_boost", "timeCriticalityBoost")
        + part("source_type_boost", "sourceTypeBoost")
        + part("pattern_lift", "patternLift")
    )


# =============================================================================
# DATA CHECKS
# =============================================================================

def check_no_stored_derivations(options: Mapping[str, Any]) -> List[str]:
    (raw,) = _require(options, "raw_data")
    return [f"Forbidden derived field in raw data: {path}" for path in find_forbidden_fields(raw)]


def check_metric_mutual_exclusion(options: Mapping[str, Any]) -> List[str]:
    """Mutually exclusive metrics on one company record, or one company-date of facts."""
    (raw,) = _require(options, "raw_data")
    errors: List[str] = []
    for index, company in enumerate(raw.get("companies") or []):
        if isinstance(company, Mapping):
            errors.extend(mutual_exclusion_violations(company, f"companies[{index}]"))

    keys_by_record: Dict[Tuple[Any, Any], Set[str]] = {}
    for fact in raw.get("metricFacts") or []:
        if isinstance(fact, Mapping) and fact.get("metricKey"):
            record = (fact.get("companyId"), fact.get("asOf"))
            keys_by_record.setdefault(record, set()).add(fact["metricKey"])
    for (company_id, as_of), keys in keys_by_record.items():
        for first, second in MUTUALLY_EXCLUSIVE_METRICS:
            if first in keys and second in keys:
                errors.append(
                    f"metricFacts {company_id}@{as_of}: both '{first}' and '{second}' present"
                )
    return errors


def check_event_schema(options: Mapping[str, Any]) -> List[str]:
    (events,) = _require(options, "events")
    ledger = validate_action_events(events)
    errors = list(ledger.errors)
    known = options.get("actions")
    if known is not None and isinstance(events, (list, tuple)):
        known_ids = [a if isinstance(a, str) else _action_id(a) for a in known]
        for action_id in orphaned_action_refs(events, known_ids):
            errors.append(f"Event references unknown action: {action_id}")
    return errors


def _raw_goals(raw: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    goals = [g for g in raw.get("goals") or [] if isinstance(g, Mapping)]
    for company in raw.get("companies") or []:
        if not isinstance(company, Mapping):
            continue
        for nested in company.get("goals") or []:
            if isinstance(nested, Mapping):
                goals.append({"companyId": company.get("id"), **nested})
    return goals


def check_goal_schema(options: Mapping[str, Any]) -> List[str]:
    (raw,) = _require(options, "raw_data")
    errors: List[str] = []
    for goal in _raw_goals(raw):
        errors.extend(validate_goal_shape(goal))
        errors.extend(validate_goal_record(normalize_goal_fields(goal)))
    return errors


def check_metric_fact_schema(options: Mapping[str, Any]) -> List[str]:
    (raw,) = _require(options, "raw_data")
    facts = raw.get("metricFacts")
    if facts is None:
        raise _Skip("no metricFacts in raw data")
    errors: List[str] = []
    for index, fact in enumerate(facts):
        if not isinstance(fact, Mapping):
            errors.append(f"metricFacts[{index}]: fact must be an object")
            continue
        errors.extend(f"metricFacts[{index}]: {e}" for e in validate_metric_fact(fact))
    return errors


# =============================================================================
# GRAPH CHECK
# =============================================================================

def _find_cycle(dag: Mapping[str, Sequence[str]]) -> Optional[List[str]]:
    """First cycle found by DFS over sorted node names, as a closed path."""
    visited: Set[str] = set()
    path: List[str] = []
    on_path: Set[str] = set()

    def visit(node: str) -> Optional[List[str]]:
        if node in on_path:
            return path[path.index(node):] + [node]
        if node in visited:
            return None
        path.append(node)
        on_path.add(node)
        for dep in dag.get(node, ()):
            if dep in dag:
                cycle = visit(dep)
                if cycle:
                    return cycle
        path.pop()
        on_path.discard(node)
        visited.add(node)
        return None

    for node in sorted(dag):
        cycle = visit(node)
        if cycle:
            return cycle
    return None


def check_dag_acyclic(options: Mapping[str, Any]) -> List[str]:
    (dag,) = _require(options, "dag")
    terminal = options.get("dag_terminal") or DEFAULT_TERMINAL_NODES
    errors: List[str] = []

    for node in sorted(dag):
        for dep in dag[node]:
            if dep not in dag:
                errors.append(f"Node '{node}' depends on unknown node '{dep}'")

    cycle = _find_cycle(dag)
    if cycle:
        errors.append(f"DAG cycle detected: {' -> '.join(cycle)}")

    depended_on = {dep for deps in dag.values() for dep in deps}
    for node in sorted(dag):
        if node not in depended_on and node not in terminal:
            errors.append(f"Node '{node}' is a dead end: nothing depends on it")
    return errors


# =============================================================================
# RANKING CHECKS
# =============================================================================

def check_score_presence(options: Mapping[str, Any]) -> List[str]:
    (ranked,) = _require(options, "ranked_actions")
    return [
        f"Action {_action_id(item)}: missing or invalid rank_score"
        for item in ranked
        if not _is_number(_score(item))
    ]


def check_sort_order(options: Mapping[str, Any]) -> List[str]:
    (ranked,) = _require(options, "ranked_actions")
    errors: List[str] = []
    previous = None
    for index, item in enumerate(ranked):
        score = _score(item)
        if not _is_number(score):
            previous = None
            continue
        if previous is not None and score > previous + SCORE_EPSILON:
            errors.append(f"Sort violation at position {index + 1}: {previous} < {score}")
        previous = score
    return errors


def check_ranking_trace(options: Mapping[str, Any]) -> List[str]:
    (ranked,) = _require(options, "ranked_actions")
    errors: List[str] = []
    for item in ranked:
        components = _get(item, "rank_components", "rankComponents")
        score = _score(item)
        if components is None:
            errors.append(f"Action {_action_id(item)}: no rank_components")
        elif _is_number(score) and abs(_component_total(components) - score) > TRACE_TOLERANCE:
            errors.append(
                f"Action {_action_id(item)}: components sum to "
                f"{_component_total(components):.4f}, rank_score is {score:.4f}"
            )
    return errors


def _compare_runs(label: str, first: Sequence[Any], second: Sequence[Any]) -> List[str]:
    if len(first) != len(second):
        return [f"{label}: length mismatch {len(first)} vs {len(second)}"]
    errors = []
    for position, (a, b) in enumerate(zip(first, second), start=1):
        if _action_id(a) != _action_id(b):
            errors.append(f"{label}: order mismatch at {position}: {_action_id(a)} vs {_action_id(b)}")
        elif abs(float(_score(a)) - float(_score(b))) > SCORE_EPSILON:
            errors.append(f"{label}: score mismatch for {_action_id(a)}")
    return errors


def check_determinism(options: Mapping[str, Any]) -> List[str]:
    """Rank the same input twice, without and then with events."""
    rank_fn, actions = _require(options, "rank_fn", "actions_input")
    rank: Callable[..., Sequence[Any]] = rank_fn
    errors = _compare_runs("without events", rank(actions), rank(actions))
    events = options.get("events")
    if events is not None:
        errors.extend(_compare_runs(
            "with events", rank(actions, events=events), rank(actions, events=events)
        ))
    return errors


# =============================================================================
# SOURCE CHECKS
# =============================================================================

def check_layer_imports(options: Mapping[str, Any]) -> List[str]:
    (root,) = _require(options, "package_root")
    return scan_layer_imports(Path(root))


def check_single_ranking_surface(options: Mapping[str, Any]) -> List[str]:
    (root,) = _require(options, "package_root")
    return scan_single_ranking_surface(Path(root))


# =============================================================================
# BATTERY
# =============================================================================

CHECKS: Tuple[Tuple[str, Callable[[Mapping[str, Any]], List[str]]], ...] = (
    ("layer_imports", check_layer_imports),
    ("no_stored_derivations", check_no_stored_derivations),
    ("metric_mutual_exclusion", check_metric_mutual_exclusion),
    ("dag_acyclic", check_dag_acyclic),
    ("score_presence", check_score_presence),
    ("sort_order", check_sort_order),
    ("determinism", check_determinism),
    ("single_ranking_surface", check_single_ranking_surface),
    ("ranking_trace", check_ranking_trace),
    ("event_schema", check_event_schema),
    ("goal_schema", check_goal_schema),
    ("metric_fact_schema", check_metric_fact_schema),
)


def run_check(name: str, check: Callable[[Mapping[str, Any]], List[str]], options: Mapping[str, Any]) -> CheckResult:
    try:
        errors = check(options)
    except _Skip as skip:
        return CheckResult(name=name, status=CheckStatus.SKIPPED, messages=(str(skip),))
    except Exception as exc:
        return CheckResult(name=name, status=CheckStatus.FAIL, messages=(f"{type(exc).__name__}: {exc}",))
    if errors:
        return CheckResult(name=name, status=CheckStatus.FAIL, messages=tuple(errors))
    return CheckResult(name=name, status=CheckStatus.PASS)


def run_gate(options: Mapping[str, Any]) -> GateReport:
    """
    Run every check against whatever inputs `options` supplies.

    Recognised keys: raw_data, dag, dag_terminal, ranked_actions, rank_fn,
    actions_input, events, actions, package_root.
    """
    results = tuple(run_check(name, check, options) for name, check in CHECKS)
    report = GateReport(
        passed=sum(1 for r in results if r.status is CheckStatus.PASS),
        failed=sum(1 for r in results if r.status is CheckStatus.FAIL),
        skipped=sum(1 for r in results if r.status is CheckStatus.SKIPPED),
        results=results,
    )
    for r in results:
        if r.status is CheckStatus.FAIL:
            logger.warning("Gate check %s failed: %s", r.name, "; ".join(r.messages[:3]))
    logger.info("Gate: %d passed, %d failed, %d skipped", report.passed, report.failed, report.skipped)
    return report
