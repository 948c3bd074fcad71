"""
Derivation Graph Tests
======================

PROPERTIES UNDER TEST:
======================
1. Every node runs after all of its dependencies
2. A cycle is reported with its full, closed path
3. Unknown dependencies and dead ends are validation errors
"""

import pytest
from hypothesis import given, strategies as st
from hypothesis.strategies import composite

from portfolio_engine.runtime.graph import (
    GRAPH, TERMINAL_NODES, GraphCycleError, UnknownDependencyError,
    dead_ends, depends_on, execution_order, find_cycle, topo_sort, validate_graph,
)


@composite
def dags(draw, max_nodes=12):
    """Random DAG: node i may only depend on nodes with a lower index."""
    size = draw(st.integers(min_value=1, max_value=max_nodes))
    nodes = [f"n{i}" for i in range(size)]
    graph = {}
    for i, node in enumerate(nodes):
        deps = draw(st.lists(st.sampled_from(nodes[:i]), unique=True)) if i else []
        graph[node] = tuple(deps)
    return graph


def assert_dependencies_first(graph, order):
    position = {node: i for i, node in enumerate(order)}
    for node, deps in graph.items():
        for dep in deps:
            assert position[dep] < position[node], f"{dep} must run before {node}"


class TestProductionGraph:

    def test_valid(self):
        validation = validate_graph(GRAPH)
        assert validation.valid, validation.errors
        assert validation.dead_ends == ()

    def test_order_respects_dependencies(self):
        order = execution_order()
        assert sorted(order) == sorted(GRAPH)
        assert_dependencies_first(GRAPH, order)

    def test_order_is_stable(self):
        assert topo_sort(GRAPH) == topo_sort(dict(reversed(list(GRAPH.items()))))

    def test_transitive_dependencies(self):
        assert depends_on(GRAPH, "action_impact", "runway")
        assert depends_on(GRAPH, "top_goals", "anomalies")
        assert not depends_on(GRAPH, "runway", "action_impact")
        assert not depends_on(GRAPH, "runway", "runway")
        assert not depends_on(GRAPH, "runway", "missing")

    def test_terminals_exist(self):
        assert TERMINAL_NODES <= set(GRAPH)


class TestCycles:

    def test_cycle_path_is_closed(self):
        graph = {"a": ("c",), "b": ("a",), "c": ("b",), "d": ()}
        with pytest.raises(GraphCycleError) as excinfo:
            topo_sort(graph)

        cycle = excinfo.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}
        for node, dep in zip(cycle, cycle[1:]):
            assert dep in graph[node]
        assert "DAG cycle detected" in str(excinfo.value)

    def test_self_loop(self):
        check = find_cycle({"a": ("a",)})
        assert not check.valid
        assert check.cycle_path == ("a", "a")

    def test_validation_reports_cycle(self):
        validation = validate_graph({"a": ("b",), "b": ("a",)}, terminal=frozenset({"a", "b"}))
        assert not validation.valid
        assert any(e.startswith("DAG cycle detected") for e in validation.errors)

    @given(dags())
    def test_random_dags_sort(self, graph):
        assert find_cycle(graph).valid
        assert_dependencies_first(graph, topo_sort(graph))

    @given(st.integers(min_value=2, max_value=12))
    def test_back_edge_creates_cycle(self, size):
        graph = {f"n{i}": ((f"n{i - 1}",) if i else ()) for i in range(size)}
        graph["n0"] = (f"n{size - 1}",)
        check = find_cycle(graph)
        assert not check.valid
        assert len(check.cycle_path) == size + 1


class TestValidation:

    def test_unknown_dependency_raises(self):
        with pytest.raises(UnknownDependencyError) as excinfo:
            topo_sort({"a": ("ghost",)})
        assert excinfo.value.dependency == "ghost"

    def test_unknown_dependency_is_reported(self):
        validation = validate_graph({"a": ("ghost",)}, terminal=frozenset({"a"}))
        assert not validation.valid
        assert validation.errors == ("Node 'a' depends on unknown node 'ghost'",)

    def test_dead_end(self):
        graph = {"base": (), "used": ("base",), "orphan": ("base",)}
        assert dead_ends(graph, terminal=frozenset({"used"})) == ["orphan"]
        validation = validate_graph(graph, terminal=frozenset({"used"}))
        assert validation.dead_ends == ("orphan",)
        assert not validation.valid
