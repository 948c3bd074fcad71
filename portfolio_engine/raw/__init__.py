"""
Raw Layer

RESPONSIBILITY: Static tables and the shape of observed facts
ALLOWED INPUTS: Raw dataset mappings supplied by an external loader
OUTPUTS: Immutable records (Company, Goal, Constraint, ActionEvent)

WHAT THIS LAYER MUST NOT DO:
============================
- Import from derive, predict, decide, runtime or gate
- Compute or store any derived value (see forbidden.py)
- Read from a filesystem or network
"""
