"""
factgraph - Privacy-filtered knowledge engine for system architecture.

Scanners submit facts about services, configs, API endpoints and external
dependencies. Facts pass a privacy filter, land in a versioned graph whose
vector index is kept in lock-step, and can be retrieved by hybrid search
or removed for good by unlearning.

Components:
- PrivacyFilter: accept / redact / reject before anything is persisted
- ConsistencyCoordinator: the single writer for graph and vector index
- UnlearningEngine: tombstoning, vector removal and cache invalidation
- HybridQueryPlanner: vector similarity merged with graph proximity
- QueryCache: version-stamped answers
"""
from factgraph.config import FactGraphSettings, configure_logging
from factgraph.core.graph import DependencyPath, Direction, TraversalResult
from factgraph.core.models import (
    Decision,
    Entity,
    EntityKind,
    Fact,
    FactStatus,
    RawFact,
    RedactedStub,
    Sensitivity,
)
from factgraph.core.version import Snapshot, SnapshotDump, VersionRecord
from factgraph.errors import (
    FactGraphError,
    IndexDivergence,
    IngestionConflict,
    MalformedFact,
    PrivacyViolation,
    QueryAborted,
    QueryCancelled,
    QueryTimeout,
    UnknownEntity,
    UnknownFact,
)
from factgraph.interface.client import FactGraph
from factgraph.ingestion.pipeline import IngestionPipeline, SubmissionResult
from factgraph.privacy import Classification, PrivacyFilter, PrivacyPolicy
from factgraph.query import Answer, HybridQueryPlanner, QueryFilters, RankedResult
from factgraph.runtime import (
    CancellationToken,
    CascadePolicy,
    ConsistencyCoordinator,
    QueryCache,
    UnlearningEngine,
    UnlearnResult,
)

__version__ = "0.1.0"

__all__ = [
    # Client
    "FactGraph",
    "FactGraphSettings",
    "configure_logging",
    # Core models
    "Decision",
    "Entity",
    "EntityKind",
    "Fact",
    "FactStatus",
    "RawFact",
    "RedactedStub",
    "Sensitivity",
    # Versioning
    "Snapshot",
    "SnapshotDump",
    "VersionRecord",
    # Graph
    "DependencyPath",
    "Direction",
    "TraversalResult",
    # Components
    "Classification",
    "PrivacyFilter",
    "PrivacyPolicy",
    "IngestionPipeline",
    "SubmissionResult",
    "ConsistencyCoordinator",
    "UnlearningEngine",
    "UnlearnResult",
    "CascadePolicy",
    "HybridQueryPlanner",
    "QueryFilters",
    "Answer",
    "RankedResult",
    "QueryCache",
    "CancellationToken",
    # Errors
    "FactGraphError",
    "MalformedFact",
    "PrivacyViolation",
    "UnknownEntity",
    "UnknownFact",
    "IngestionConflict",
    "IndexDivergence",
    "QueryAborted",
    "QueryTimeout",
    "QueryCancelled",
]
