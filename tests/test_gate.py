"""
Invariant Gate Tests
====================

The gate must pass a clean engine run and name every injected violation.
"""

import textwrap

import pytest

from portfolio_engine import compute
from portfolio_engine.decide.ranking import rank_actions
from portfolio_engine.gate import CheckStatus, run_gate
from portfolio_engine.gate.checks import check_dag_acyclic, check_layer_imports, run_check
from portfolio_engine.gate.source_scan import (
    PACKAGE_ROOT, scan_layer_imports, scan_single_ranking_surface,
)
from portfolio_engine.raw.loader import build_event
from portfolio_engine.runtime.graph import GRAPH, TERMINAL_NODES

from tests.fixtures import NOW, raw_dataset


def rank_with_raw_events(actions, events=()):
    return rank_actions(actions, NOW, events=[build_event(e) for e in events])


def write_module(root, relative, source):
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(source), encoding="utf-8")
    return path


def ranked_dict(action_id, score, **components):
    parts = {
        "expectedNetImpact": score, "trustPenalty": 0.0, "executionFrictionPenalty": 0.0,
        "timeCriticalityBoost": 0.0, "sourceTypeBoost": 0.0, "patternLift": 0.0,
    }
    parts.update(components)
    return {"actionId": action_id, "rankScore": score, "rankComponents": parts}


def status_of(options, name):
    return run_gate(options).result(name).status


@pytest.fixture
def fake_package(tmp_path):
    root = tmp_path / "pkg"
    write_module(root, "__init__.py", "")
    write_module(root, "decide/ranking.py", """
        def rank_actions(actions):
            return sorted(actions, key=lambda a: a.rank_score)
    """)
    return root


# =============================================================================
# FULL RUN
# =============================================================================

class TestCleanRun:

    def test_engine_output_passes(self):
        raw = raw_dataset()
        output = compute(raw, NOW)
        actions = [r.action for r in output.ranked_actions]

        report = run_gate({
            "raw_data": raw,
            "dag": GRAPH,
            "dag_terminal": TERMINAL_NODES,
            "ranked_actions": output.ranked_actions,
            "rank_fn": rank_with_raw_events,
            "actions_input": actions,
            "events": raw["actionEvents"],
            "package_root": PACKAGE_ROOT,
        })

        failures = {r.name: r.messages for r in report.results if r.status is CheckStatus.FAIL}
        assert failures == {}
        assert report.exit_code == 0
        assert report.result("metric_fact_schema").status is CheckStatus.SKIPPED
        assert report.passed == len(report.results) - 1

    def test_missing_inputs_skip(self):
        report = run_gate({})
        assert report.skipped == len(report.results)
        assert report.exit_code == 0

    def test_mapping_shaped_ranking(self):
        ranked = [ranked_dict("a", 9.0), ranked_dict("b", 4.0, trustPenalty=1.0, expectedNetImpact=5.0)]
        report = run_gate({"ranked_actions": ranked})
        for name in ("score_presence", "sort_order", "ranking_trace"):
            assert report.result(name).status is CheckStatus.PASS

    def test_report_to_dict(self):
        data = run_gate({"dag": GRAPH, "dag_terminal": TERMINAL_NODES}).to_dict()
        assert data["exitCode"] == 0
        assert {"name": "dag_acyclic", "status": "pass", "messages": []} in data["results"]


# =============================================================================
# INJECTED VIOLATIONS
# =============================================================================

class TestDataViolations:

    def test_stored_derivation(self):
        raw = raw_dataset()
        raw["goals"][0]["probabilityOfHit"] = 0.7
        result = run_gate({"raw_data": raw}).result("no_stored_derivations")
        assert result.status is CheckStatus.FAIL
        assert result.messages == ("Forbidden derived field in raw data: goals[0].probabilityOfHit",)

    def test_mutually_exclusive_metrics(self):
        raw = raw_dataset()
        raw["companies"][0]["revenue"] = 10
        raw["metricFacts"] = [
            {"id": "f1", "companyId": "acme", "metricKey": "mrr", "value": 1, "asOf": "2026-01-01"},
            {"id": "f2", "companyId": "acme", "metricKey": "arr", "value": 12, "asOf": "2026-01-01"},
        ]
        result = run_gate({"raw_data": raw}).result("metric_mutual_exclusion")
        assert result.status is CheckStatus.FAIL
        assert result.messages == (
            "companies[0]: both 'revenue' and 'arr' present",
            "metricFacts acme@2026-01-01: both 'mrr' and 'arr' present",
        )

    def test_duplicate_event_ids(self):
        events = raw_dataset()["actionEvents"]
        events.append(dict(events[0]))
        result = run_gate({"events": events}).result("event_schema")
        assert result.status is CheckStatus.FAIL
        assert "Event[3]: Duplicate event ID: ev-1" in result.messages

    def test_orphaned_events(self):
        events = raw_dataset()["actionEvents"]
        result = run_gate({"events": events, "actions": ["act-old-1"]}).result("event_schema")
        assert result.messages == (
            "Event references unknown action: act-old-2",
            "Event references unknown action: act-old-3",
        )

    def test_legacy_goal_field(self):
        raw = raw_dataset()
        raw["goals"][0]["gapPct"] = 0.4
        result = run_gate({"raw_data": raw}).result("goal_schema")
        assert result.status is CheckStatus.FAIL
        assert "Goal g-acme-rev has legacy field: gapPct" in result.messages


class TestGraphViolations:

    def test_cycle(self):
        options = {"dag": {"a": ("b",), "b": ("a",)}, "dag_terminal": frozenset({"a", "b"})}
        assert check_dag_acyclic(options) == ["DAG cycle detected: a -> b -> a"]

    def test_dead_end_and_unknown(self):
        options = {"dag": {"a": ("ghost",), "b": ()}, "dag_terminal": frozenset({"a"})}
        assert check_dag_acyclic(options) == [
            "Node 'a' depends on unknown node 'ghost'",
            "Node 'b' is a dead end: nothing depends on it",
        ]


class TestRankingViolations:

    def test_sort_order(self):
        ranked = [ranked_dict("a", 1.0), ranked_dict("b", 5.0)]
        result = run_gate({"ranked_actions": ranked}).result("sort_order")
        assert result.messages == ("Sort violation at position 2: 1.0 < 5.0",)

    def test_missing_score(self):
        ranked = [{"actionId": "a", "rankScore": None, "rankComponents": {}}]
        assert status_of({"ranked_actions": ranked}, "score_presence") is CheckStatus.FAIL

    def test_broken_trace(self):
        ranked = [ranked_dict("a", 10.0, sourceTypeBoost=3.0)]
        result = run_gate({"ranked_actions": ranked}).result("ranking_trace")
        assert result.messages == ("Action a: components sum to 13.0000, rank_score is 10.0000",)

    def test_rank_fn_raising(self):
        def broken(actions, events=()):
            raise RuntimeError("ranker down")

        result = run_gate({"rank_fn": broken, "actions_input": []}).result("determinism")
        assert result.status is CheckStatus.FAIL
        assert result.messages == ("RuntimeError: ranker down",)

    def test_nondeterministic_rank_fn(self):
        calls = []

        def flaky(actions, events=()):
            calls.append(1)
            ranked = [ranked_dict("a", 2.0), ranked_dict("b", 2.0)]
            return ranked if len(calls) % 2 else list(reversed(ranked))

        result = run_gate({"rank_fn": flaky, "actions_input": []}).result("determinism")
        assert result.status is CheckStatus.FAIL
        assert result.messages[0] == "without events: order mismatch at 1: a vs b"


# =============================================================================
# SOURCE SCANS
# =============================================================================

class TestSourceScans:

    def test_package_is_clean(self):
        assert scan_layer_imports(PACKAGE_ROOT) == []
        assert scan_single_ranking_surface(PACKAGE_ROOT) == []

    def test_ranking_module_may_sort(self, fake_package):
        assert scan_single_ranking_surface(fake_package) == []

    def test_sort_outside_ranking_module(self, fake_package):
        write_module(fake_package, "derive/helper.py", """
            def order(actions):
                return sorted(actions, key=len)

            def reorder(items):
                items.sort(key=lambda i: i.rank_score)
        """)
        assert scan_single_ranking_surface(fake_package) == [
            "derive/helper.py:3: sorted() over an actions collection",
            "derive/helper.py:6: .sort() keyed on rank_score",
        ]

    def test_ranking_function_outside_ranking_module(self, fake_package):
        write_module(fake_package, "predict/shortcut.py", """
            def rank_by_upside(candidates):
                return candidates
        """)
        assert scan_single_ranking_surface(fake_package) == [
            "predict/shortcut.py:2: ranking function 'rank_by_upside' "
            "defined outside decide/ranking.py"
        ]

    def test_relative_import_across_layers(self, fake_package):
        write_module(fake_package, "derive/bad.py", """
            from ..decide.ranking import rank_actions
        """)
        assert scan_layer_imports(fake_package) == [
            "derive/bad.py:2: layer 'derive' imports 'decide.ranking' "
            "(allowed: contracts, derive, raw)"
        ]

    def test_absolute_import_across_layers(self, fake_package):
        write_module(fake_package, "gate/bad.py", """
            import pkg.runtime.engine
            from pkg.predict import actions
        """)
        violations = scan_layer_imports(fake_package)
        assert len(violations) == 2
        assert violations[0].startswith("gate/bad.py:2: layer 'gate' imports 'runtime.engine'")
        assert violations[1].startswith("gate/bad.py:3: layer 'gate' imports 'predict'")

    def test_gate_reports_source_violation(self, fake_package):
        write_module(fake_package, "raw/bad.py", """
            from ..runtime import engine
        """)
        result = run_check("layer_imports", check_layer_imports, {"package_root": fake_package})
        assert result.status is CheckStatus.FAIL
        assert len(result.messages) == 1
