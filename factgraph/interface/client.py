"""
Main client interface for factgraph.

This module wires the privacy filter, graph store, vector index,
coordinator, unlearning engine, planner and cache into one object.

Usage:
    ```python
    from factgraph import FactGraph

    with FactGraph() as kg:
        kg.submit([
            {"subject": "serviceA", "predicate": "depends_on", "object": "serviceB",
             "object_kind": "service", "confidence": 0.9, "source": "repo:serviceA"},
        ])

        answer = kg.answer("what does serviceA depend on")
        fact_id = answer.results[0].fact.id

        kg.unlearn(fact_id)
        ```
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Sequence

from factgraph.config import FactGraphSettings, configure_logging
from factgraph.core.graph import DependencyPath, Direction, TraversalResult
from factgraph.core.models import Entity, Fact, RawFact, RedactedStub
from factgraph.core.utils.audit_log import AuditLog
from factgraph.core.version import Snapshot, SnapshotDump, VersionRecord
from factgraph.embedding.providers import Embedder, build_embedder
from factgraph.errors import FactGraphError, IndexDivergence
from factgraph.ingestion.pipeline import IngestionPipeline, SubmissionResult
from factgraph.privacy.filter import PrivacyFilter
from factgraph.privacy.policy import PrivacyPolicy
from factgraph.query.planner import HybridQueryPlanner
from factgraph.query.results import Answer, QueryFilters
from factgraph.runtime.cache import QueryCache, fingerprint
from factgraph.runtime.cancellation import CancellationToken
from factgraph.runtime.coordinator import ConsistencyCoordinator
from factgraph.runtime.unlearning import CascadePolicy, UnlearningEngine
from factgraph.storage.engine import GraphStore, InMemoryGraphStore
from factgraph.storage.index import InMemoryVectorIndex, VectorIndex
from factgraph.storage.snapshot import JsonSnapshotStore, SnapshotStore
from factgraph.storage.sqlite import SQLiteSnapshotStore


logger = logging.getLogger(__name__)


def build_snapshot_store(settings: FactGraphSettings) -> Optional[SnapshotStore]:
    """Snapshot store named by the settings, or None when persistence is off."""
    if not settings.snapshot_path:
        return None
    if settings.snapshot_backend == "sqlite":
        return SQLiteSnapshotStore(settings.snapshot_path)
    return JsonSnapshotStore(Path(settings.snapshot_path))


class FactGraph:
    """
    Main entry point for factgraph.

    A privacy-filtered, versioned knowledge graph with a vector index kept
    in lock-step, hybrid retrieval and verifiable unlearning.

    When a snapshot store is configured the latest snapshot is restored on
    start-up, so a cold start does not need a full re-ingestion.

    Thread Safety:
        Reads (``answer``, ``neighbors``, ``shortest_dependency_path``) are
        lock-free and may run concurrently with each other and with one
        mutation. Mutations are serialized by the coordinator.
    """

    def __init__(
        self,
        settings: Optional[FactGraphSettings] = None,
        *,
        embedder: Optional[Embedder] = None,
        store: Optional[GraphStore] = None,
        index: Optional[VectorIndex] = None,
        snapshot_store: Optional[SnapshotStore] = None,
        policy: Optional[PrivacyPolicy] = None,
        audit_log: Optional[AuditLog] = None,
        restore: bool = True,
    ):
        """
        Initialize the engine.

        Args:
            settings: Configuration (read from the environment if omitted)
            embedder: Embedding function (built from settings if omitted)
            store: Graph store (default: InMemoryGraphStore)
            index: Vector index (default: InMemoryVectorIndex)
            snapshot_store: Snapshot persistence (built from settings if omitted)
            policy: Privacy policy (default rules if omitted)
            audit_log: Audit trail (built from settings if omitted)
            restore: Restore the latest persisted snapshot on start-up
        """
        self._settings = settings or FactGraphSettings()
        s = self._settings
        configure_logging(s.log_level)

        self._audit_log = audit_log if audit_log is not None else AuditLog(s.audit_log_path)
        self._snapshot_store = snapshot_store if snapshot_store is not None else build_snapshot_store(s)
        self._privacy = PrivacyFilter(policy, self._audit_log)
        self._coordinator = ConsistencyCoordinator(
            store or InMemoryGraphStore(),
            index or InMemoryVectorIndex(),
            embedder or build_embedder(s),
            multi_valued_predicates=s.multi_valued_predicates,
            batch_timeout=s.batch_timeout_seconds,
            embedding_workers=s.embedding_workers,
            snapshot_store=self._snapshot_store,
            snapshot_every=s.snapshot_every,
        )
        self._cache = QueryCache(max_size=s.cache_max_size, default_ttl=s.cache_ttl_seconds)
        self._coordinator.add_listener(self._cache.on_version)

        self._pipeline = IngestionPipeline(self._privacy, self._coordinator, s.max_batch_size)
        self._unlearning = UnlearningEngine(self._coordinator, self._cache, self._audit_log)
        self._planner = HybridQueryPlanner(
            self._coordinator,
            vector_top_n=s.vector_top_n,
            top_k=s.result_top_k,
            vector_weight=s.vector_weight,
            graph_weight=s.graph_weight,
            graph_depth=s.graph_depth,
            query_timeout=s.query_timeout_seconds,
        )

        if restore and self._snapshot_store is not None:
            dump = self._snapshot_store.load_latest()
            if dump is not None:
                self._coordinator.restore(dump)

    def __enter__(self) -> FactGraph:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def settings(self) -> FactGraphSettings:
        return self._settings

    @property
    def version(self) -> int:
        """Current published version."""
        return self._coordinator.version

    @property
    def coordinator(self) -> ConsistencyCoordinator:
        return self._coordinator

    @property
    def privacy(self) -> PrivacyFilter:
        return self._privacy

    @property
    def unlearning(self) -> UnlearningEngine:
        return self._unlearning

    @property
    def cache(self) -> QueryCache:
        return self._cache

    @property
    def planner(self) -> HybridQueryPlanner:
        return self._planner

    @property
    def audit_log(self) -> AuditLog:
        return self._audit_log

    # =========================================================================
    # Ingestion
    # =========================================================================

    def submit(
        self,
        records: Sequence[RawFact | dict[str, Any]],
        timeout: Optional[float] = None,
    ) -> SubmissionResult:
        """
        Submit a batch of scanner facts.

        Raises:
            MalformedFact: If the batch is too large or a record is malformed
            IngestionConflict: If the batch failed to commit (safe to retry)
        """
        return self._pipeline.submit(records, timeout=timeout)

    # =========================================================================
    # Queries
    # =========================================================================

    def answer(
        self,
        text: str,
        filters: Optional[QueryFilters | dict[str, Any]] = None,
        timeout: Optional[float] = None,
        token: Optional[CancellationToken] = None,
        use_cache: bool = True,
    ) -> Answer:
        """
        Answer a question, serving from the cache when the version matches.

        Raises:
            QueryTimeout: If the deadline passed
            QueryCancelled: If the caller cancelled
        """
        if filters is not None and not isinstance(filters, QueryFilters):
            filters = QueryFilters.model_validate(filters)

        if token is not None:
            token.check()

        key = fingerprint(text, filters)
        if use_cache:
            cached = self._cache.get(key, self._coordinator.version)
            if cached is not None:
                return cached.model_copy(update={"cached": True})

        answer = self._planner.answer(text, filters, timeout=timeout, token=token)
        if use_cache and not answer.dropped_fact_ids:
            self._cache.put(key, answer, answer.version, depends_on=answer.fact_ids)
        return answer

    def neighbors(
        self,
        entity_id: str,
        edge_types: Optional[Sequence[str]] = None,
        direction: Direction | str = Direction.OUT,
        depth: int = 1,
    ) -> TraversalResult:
        """
        Entities reachable within ``depth`` hops.

        Raises:
            UnknownEntity: If the entity does not exist
        """
        return self._coordinator.view().neighbors(entity_id, edge_types, Direction(direction), depth)

    def shortest_dependency_path(self, source_id: str, target_id: str) -> Optional[DependencyPath]:
        """
        Shortest outgoing path, ties broken by configured edge-type priority.

        Raises:
            UnknownEntity: If either entity does not exist
        """
        return self._coordinator.view().shortest_dependency_path(
            source_id, target_id, self._settings.edge_type_priority
        )

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        return self._coordinator.view().get_entity(entity_id)

    def get_fact(self, fact_id: str) -> Optional[Fact]:
        """A fact by id, active or tombstoned."""
        return self._coordinator.view().get_fact(fact_id)

    def facts_about(self, entity_id: str) -> list[Fact]:
        """Active facts with the entity as subject or object."""
        return self._coordinator.view().facts_about(entity_id)

    def stubs(self) -> list[RedactedStub]:
        """Audit stubs of every redacted or rejected fact."""
        return self._coordinator.store.stubs()

    def history(self) -> list[VersionRecord]:
        return self._coordinator.history()

    # =========================================================================
    # Unlearning
    # =========================================================================

    def unlearn(
        self,
        target: str,
        cascade: CascadePolicy | str = CascadePolicy.NONE,
        requested_by: str = "admin",
    ) -> int:
        """
        Unlearn a fact id or every active fact about an entity.

        Returns:
            The version after the request (unchanged for a no-op)

        Raises:
            UnknownFact: If a fact id was never recorded
            UnknownEntity: If an entity was never recorded
        """
        return self._unlearning.unlearn(target, CascadePolicy(cascade), requested_by).version

    # =========================================================================
    # Snapshots and integrity
    # =========================================================================

    def snapshot(self, version: Optional[int] = None) -> Snapshot:
        """Active fact ids at the current or a past version."""
        if version is None:
            return self._coordinator.snapshot()
        return self._coordinator.snapshot_at(version)

    def save_snapshot(self) -> SnapshotDump:
        """
        Persist the current version.

        Raises:
            FactGraphError: If no snapshot store is configured
        """
        if self._snapshot_store is None:
            raise FactGraphError("no snapshot store configured")
        dump = self._coordinator.dump()
        self._snapshot_store.save(dump)
        return dump

    def restore_snapshot(self, dump: Optional[SnapshotDump] = None) -> int:
        """
        Restore a dump, or the latest persisted one.

        Returns:
            The restored version
        """
        if dump is None:
            if self._snapshot_store is None:
                raise FactGraphError("no snapshot store configured")
            dump = self._snapshot_store.load_latest()
            if dump is None:
                raise FactGraphError("no persisted snapshot to restore")
        return self._coordinator.restore(dump).version_number

    def check_integrity(self) -> None:
        """
        Verify that the vector index matches the active facts.

        On divergence the error is logged at critical level, the engine is
        reconciled from the last snapshot when one exists, and the error is
        re-raised for the operator.

        Raises:
            IndexDivergence: If the index and the graph disagreed
        """
        try:
            self._coordinator.verify_consistency()
        except IndexDivergence as e:
            logger.critical(
                "Index divergence: %d missing, %d extra; reconciling",
                len(e.missing), len(e.extra),
            )
            if self._snapshot_store is not None:
                try:
                    self._coordinator.reconcile()
                except FactGraphError:
                    logger.exception("Reconciliation failed")
            raise

    def close(self) -> None:
        """Release worker threads, the snapshot store and the audit log."""
        self._planner.close()
        self._coordinator.close()
        if self._snapshot_store is not None:
            self._snapshot_store.close()
        self._audit_log.close()
