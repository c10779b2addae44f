"""
Query layer for factgraph.

Provides the hybrid planner that merges vector search with graph
traversal, and the answer types it returns.
"""

from factgraph.query.planner import HybridQueryPlanner
from factgraph.query.results import Answer, Provenance, QueryFilters, RankedResult

__all__ = [
    "HybridQueryPlanner",
    "Answer",
    "Provenance",
    "QueryFilters",
    "RankedResult",
]
