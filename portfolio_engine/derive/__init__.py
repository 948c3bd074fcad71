"""
Derive Layer

RESPONSIBILITY: Pure functions over raw records and an explicit `now`
ALLOWED INPUTS: contracts, raw
OUTPUTS: Runway, anomalies, trajectories, issues, goal damage,
         constraint pressure, pattern lift

WHAT THIS LAYER MUST NOT DO:
============================
- Import from predict, decide, runtime or gate
- Write any result back onto a raw record
- Sort actions by score (ranking belongs to decide.ranking)
"""
