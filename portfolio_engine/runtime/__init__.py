"""
Runtime Layer

RESPONSIBILITY: Run the derivation graph and hand actions to the ranker
ALLOWED INPUTS: contracts, raw, derive, predict, decide
OUTPUTS: EngineOutput (per-company derivations, ranked actions, meta)

WHAT THIS LAYER MUST NOT DO:
============================
- Order actions itself (decide.ranking owns that)
- Run a node before the nodes it depends on
- Expose a company's partial output after one of its nodes fails
"""

from .engine import (
    CompanyDerivation, EngineConfig, EngineMeta, EngineOutput, PortfolioSummary, compute, summarize_portfolio,
)
from .graph import GRAPH, GraphCycleError, GraphError, UnknownDependencyError, topo_sort, validate_graph

__all__ = [
    "CompanyDerivation",
    "EngineConfig",
    "EngineMeta",
    "EngineOutput",
    "PortfolioSummary",
    "GRAPH",
    "GraphCycleError",
    "GraphError",
    "UnknownDependencyError",
    "compute",
    "summarize_portfolio",
    "topo_sort",
    "validate_graph",
]
