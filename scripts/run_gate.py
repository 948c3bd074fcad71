"""
Gate Runner
===========

Runs the engine over a raw JSON dataset, then the full invariant battery.

USAGE:
    python scripts/run_gate.py DATASET.json [--now 2026-01-15T00:00:00Z]

Exits 0 when every check passed or was skipped, 1 otherwise.
"""
import argparse
from datetime import datetime, timezone
import json
import logging
import sys

from portfolio_engine.contracts.base import parse_timestamp
from portfolio_engine.decide.ranking import rank_actions
from portfolio_engine.gate import CheckStatus, run_gate
from portfolio_engine.gate.source_scan import PACKAGE_ROOT
from portfolio_engine.raw.loader import RawDataError, build_event
from portfolio_engine.runtime.engine import EngineConfig, compute
from portfolio_engine.runtime.graph import GRAPH, TERMINAL_NODES


def make_rank_fn(now, config):
    """Ranking closure for the determinism check; raw events are loaded first."""
    def rank(actions, events=()):
        loaded = []
        for raw_event in events:
            try:
                loaded.append(build_event(raw_event))
            except RawDataError:
                continue  # reported by the event_schema check
        return rank_actions(
            actions, now, events=loaded, weights=config.ranking, lift_config=config.pattern_lift
        )
    return rank


def main():
    parser = argparse.ArgumentParser(description="Portfolio engine invariant gate")
    parser.add_argument("dataset", help="Path to a raw dataset JSON file")
    parser.add_argument("--now", default=None, help="ISO 8601 evaluation time (default: current UTC time)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    now = parse_timestamp(args.now) if args.now else datetime.now(timezone.utc)
    with open(args.dataset, "r", encoding="utf-8") as f:
        raw = json.load(f)

    config = EngineConfig()
    print(f"[*] Computing {args.dataset} at {now.isoformat()}")
    output = compute(raw, now, config)
    print(f"    {len(output.companies)} companies, {len(output.ranked_actions)} ranked actions")
    for error in output.meta.errors:
        print(f"[WARN] {error.code.name}: {error.message}")

    actions = [r.action for r in output.ranked_actions]
    report = run_gate({
        "raw_data": raw,
        "dag": GRAPH,
        "dag_terminal": TERMINAL_NODES,
        "ranked_actions": output.ranked_actions,
        "rank_fn": make_rank_fn(now, config),
        "actions_input": actions,
        "events": raw.get("actionEvents"),
        "actions": actions,
        "package_root": PACKAGE_ROOT,
    })

    for result in report.results:
        tag = {CheckStatus.PASS: "PASS", CheckStatus.FAIL: "FAIL", CheckStatus.SKIPPED: "SKIP"}[result.status]
        print(f"[{tag}] {result.name}")
        if result.status is CheckStatus.FAIL:
            for message in result.messages:
                print(f"    {message}")

    print(f"\n{report.passed} passed, {report.failed} failed, {report.skipped} skipped")
    sys.exit(report.exit_code)


if __name__ == "__main__":
    main()
