"""
Portfolio Engine

This package turns observed facts about portfolio companies into a single
ranked list of recommended actions. It is strictly layered; each layer
imports only contracts and the layers below it.

LAYER STRUCTURE:
================

1. RAW LAYER (raw/)
   - Responsibility: Stage tables, schemas, loading raw records
   - Outputs: Immutable Company / Goal / Constraint / ActionEvent records
   - MUST NOT: Store a value that can be derived

2. DERIVE LAYER (derive/)
   - Responsibility: Runway, anomalies, trajectories, issues, pressure
   - Allowed inputs: raw records plus an explicit `now`
   - MUST NOT: Write results back onto raw records

3. PREDICT LAYER (predict/)
   - Responsibility: Goal candidates, pre-issues, actions with impact models
   - MUST NOT: Compute a rank score

4. DECIDE LAYER (decide/)
   - Responsibility: The one ranking function, rank_actions
   - Outputs: RankedAction list

5. RUNTIME LAYER (runtime/)
   - Responsibility: Run each company's derivation graph, then rank
   - Outputs: EngineOutput

6. GATE (gate/)
   - Responsibility: Verify the invariants above over code and output
   - Receives the ranking function by injection

CONSTRAINTS ENFORCED:
=====================
- Immutability-first: records and derivations are frozen dataclasses
- Deterministic: identical input and `now` give byte-identical output
- Explicit errors: failures are recorded as Error values, never dropped
"""

from .runtime.engine import EngineConfig, EngineOutput, compute

__all__ = ["EngineConfig", "EngineOutput", "compute"]
