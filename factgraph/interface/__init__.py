"""
Public client interface for factgraph.
"""

from factgraph.interface.client import FactGraph, build_snapshot_store

__all__ = [
    "FactGraph",
    "build_snapshot_store",
]
