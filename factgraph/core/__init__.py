"""
Core domain models for factgraph.

This module defines the primitives:
- Entity: A named node (service, config, API endpoint, external dependency)
- Fact: An atomic statement with provenance and sensitivity
- Snapshot / VersionRecord: What the engine knew at a version
- EdgeView: The edge graph derived from active facts
"""

from factgraph.core.models import Entity, Fact, RawFact, RedactedStub
from factgraph.core.version import Snapshot, SnapshotDump, VersionRecord
from factgraph.core.graph import DependencyPath, Direction, EdgeView, TraversalResult

__all__ = [
    "Entity",
    "Fact",
    "RawFact",
    "RedactedStub",
    "Snapshot",
    "SnapshotDump",
    "VersionRecord",
    "DependencyPath",
    "Direction",
    "EdgeView",
    "TraversalResult",
]
