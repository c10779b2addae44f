"""
Runtime layer for factgraph.

Coordinates mutations, unlearning and the query cache around the storage
layer.
"""

from factgraph.runtime.cache import CacheEntry, CacheStats, QueryCache, fingerprint
from factgraph.runtime.cancellation import CancellationToken
from factgraph.runtime.coordinator import CommitResult, ConsistencyCoordinator
from factgraph.runtime.unlearning import CascadePolicy, UnlearningEngine, UnlearnResult

__all__ = [
    "CacheEntry",
    "CacheStats",
    "QueryCache",
    "fingerprint",
    "CancellationToken",
    "CommitResult",
    "ConsistencyCoordinator",
    "CascadePolicy",
    "UnlearningEngine",
    "UnlearnResult",
]
