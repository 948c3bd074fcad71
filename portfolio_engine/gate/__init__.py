"""
Gate

RESPONSIBILITY: Verify architectural and data invariants
ALLOWED INPUTS: contracts, raw, derive; the ranking function by injection
OUTPUTS: GateReport (one CheckResult per check, exit code)

WHAT THIS LAYER MUST NOT DO:
============================
- Import from predict, decide or runtime
- Rank or re-order actions itself
- Pass a check whose inputs were not supplied
"""

from .checks import CHECKS, CheckResult, CheckStatus, GateReport, run_check, run_gate
from .source_scan import ALLOWED_IMPORTS, scan_layer_imports, scan_single_ranking_surface

__all__ = [
    "ALLOWED_IMPORTS",
    "CHECKS",
    "CheckResult",
    "CheckStatus",
    "GateReport",
    "run_check",
    "run_gate",
    "scan_layer_imports",
    "scan_single_ranking_surface",
]
