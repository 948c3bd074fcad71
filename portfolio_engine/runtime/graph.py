"""
Derivation Graph
================

Execution order is enforced by an explicit dependency graph, not by
convention. Each node lists the nodes it depends on; the executor runs
them in topological order.

INVARIANT: no circular dependencies. A cycle is a hard failure, reported
with the full cycle path.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import logging
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Set, Tuple

import networkx as nx


logger = logging.getLogger(__name__)


GRAPH: Dict[str, Tuple[str, ...]] = {
    # Base derivations
    "runway": (),
    "metrics": (),
    "action_memory": (),
    # Metric-driven
    "anomalies": ("metrics",),
    "trajectory": ("metrics",),
    "goal_trajectory": ("metrics", "trajectory"),
    # Gaps and forecasts
    "issues": ("runway", "trajectory", "goal_trajectory"),
    "preissues": ("runway", "goal_trajectory"),
    "goal_damage": ("issues",),
    # Goals
    "anomaly_goals": ("anomalies",),
    "suggested_goals": ("anomalies",),
    "top_goals": ("anomaly_goals",),
    # Actions
    "action_candidates": ("issues", "preissues", "top_goals"),
    "action_impact": ("action_candidates", "goal_damage", "action_memory"),
}

# Nodes whose output leaves the per-company DAG
TERMINAL_NODES: FrozenSet[str] = frozenset({"action_impact", "suggested_goals"})


class GraphError(ValueError):
    pass


class GraphCycleError(GraphError):
    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"DAG cycle detected: {' -> '.join(self.cycle)}")


class UnknownDependencyError(GraphError):
    def __init__(self, node: str, dependency: str):
        self.node = node
        self.dependency = dependency
        super().__init__(f"Unknown dependency '{dependency}' in node '{node}'")


# =============================================================================
# TOPOLOGICAL SORT
# =============================================================================

def topo_sort(graph: Mapping[str, Sequence[str]]) -> List[str]:
    """
    Dependencies before dependents.

    Depth-first over node names in sorted order, so the result is stable
    for a given graph.
    """
    visited: Set[str] = set()
    stack: List[str] = []
    on_stack: Set[str] = set()
    order: List[str] = []

    def visit(node: str) -> None:
        if node in visited:
            return
        if node in on_stack:
            start = stack.index(node)
            raise GraphCycleError(stack[start:] + [node])
        stack.append(node)
        on_stack.add(node)
        for dep in graph[node]:
            if dep not in graph:
                raise UnknownDependencyError(node, dep)
            visit(dep)
        stack.pop()
        on_stack.discard(node)
        visited.add(node)
        order.append(node)

    for node in sorted(graph):
        visit(node)
    return order


@dataclass(frozen=True)
class CycleCheck:
    valid: bool
    cycle_path: Tuple[str, ...] = field(default_factory=tuple)


def find_cycle(graph: Mapping[str, Sequence[str]]) -> CycleCheck:
    """Unknown dependencies are ignored here; `validate_graph` reports them."""
    known = {node: tuple(d for d in deps if d in graph) for node, deps in graph.items()}
    try:
        topo_sort(known)
    except GraphCycleError as exc:
        return CycleCheck(valid=False, cycle_path=tuple(exc.cycle))
    return CycleCheck(valid=True)


# =============================================================================
# VALIDATION & QUERIES
# =============================================================================

def to_digraph(graph: Mapping[str, Sequence[str]]) -> nx.DiGraph:
    """Edges point from a node to each of its dependencies."""
    g = nx.DiGraph()
    g.add_nodes_from(graph)
    for node, deps in graph.items():
        for dep in deps:
            g.add_edge(node, dep)
    return g


@dataclass(frozen=True)
class GraphValidation:
    valid: bool
    errors: Tuple[str, ...]
    cycle_path: Tuple[str, ...] = field(default_factory=tuple)
    dead_ends: Tuple[str, ...] = field(default_factory=tuple)


def dead_ends(
    graph: Mapping[str, Sequence[str]], terminal: FrozenSet[str] = TERMINAL_NODES
) -> List[str]:
    """Non-terminal nodes that nothing depends on."""
    g = to_digraph(graph)
    return sorted(n for n in graph if g.in_degree(n) == 0 and n not in terminal)


def validate_graph(
    graph: Mapping[str, Sequence[str]], terminal: FrozenSet[str] = TERMINAL_NODES
) -> GraphValidation:
    errors: List[str] = []
    for node in sorted(graph):
        for dep in graph[node]:
            if dep not in graph:
                errors.append(f"Node '{node}' depends on unknown node '{dep}'")

    cycle = find_cycle(graph)
    if not cycle.valid:
        errors.append(f"DAG cycle detected: {' -> '.join(cycle.cycle_path)}")

    unused = dead_ends(graph, terminal)
    for node in unused:
        errors.append(f"Node '{node}' is a dead end: nothing depends on it")

    return GraphValidation(
        valid=not errors,
        errors=tuple(errors),
        cycle_path=cycle.cycle_path,
        dead_ends=tuple(unused),
    )


def depends_on(graph: Mapping[str, Sequence[str]], node_a: str, node_b: str) -> bool:
    """True if node_a depends on node_b, directly or transitively."""
    if node_a not in graph or node_b not in graph or node_a == node_b:
        return False
    return nx.has_path(to_digraph(graph), node_a, node_b)


def execution_order(graph: Optional[Mapping[str, Sequence[str]]] = None) -> List[str]:
    return topo_sort(GRAPH if graph is None else graph)
