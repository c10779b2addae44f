"""
Storage layer for factgraph.

Provides the graph store, the vector index and the snapshot stores used to
persist both.
"""

from factgraph.storage.engine import GraphState, GraphStore, GraphTransaction, InMemoryGraphStore
from factgraph.storage.index import InMemoryVectorIndex, VectorIndex
from factgraph.storage.snapshot import JsonSnapshotStore, SnapshotStore
from factgraph.storage.sqlite import SQLiteSnapshotStore

__all__ = [
    "GraphState",
    "GraphStore",
    "GraphTransaction",
    "InMemoryGraphStore",
    "VectorIndex",
    "InMemoryVectorIndex",
    "SnapshotStore",
    "JsonSnapshotStore",
    "SQLiteSnapshotStore",
]
