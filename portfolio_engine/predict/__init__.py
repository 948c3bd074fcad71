"""
Predict Layer

RESPONSIBILITY: Turn derived facts into forward-looking candidates
ALLOWED INPUTS: contracts, raw, derive
OUTPUTS: Goal candidates, goal suggestions, pre-issues, action
         candidates with impact models

WHAT THIS LAYER MUST NOT DO:
============================
- Import from decide, runtime or gate
- Compute a rank score or order actions by one
- Persist anything it produces
"""
