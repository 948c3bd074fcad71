"""
Decide Layer

RESPONSIBILITY: The single ranking authority
ALLOWED INPUTS: contracts, raw, derive, predict
OUTPUTS: RankedAction list ordered by rank_score

WHAT THIS LAYER MUST NOT DO:
============================
- Import from runtime or gate
- Order actions anywhere except ranking.rank_actions
"""

from .ranking import RankedAction, rank_actions, top_actions, validate_ranking, verify_determinism
from .weights import RankingWeights

__all__ = [
    "RankedAction",
    "RankingWeights",
    "rank_actions",
    "top_actions",
    "validate_ranking",
    "verify_determinism",
]
