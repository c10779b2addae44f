"""
Consistency coordinator for factgraph.

The coordinator is the only component that mutates the graph store or the
vector index. Every commit and every unlearn runs under one mutation lock
and publishes at most one new version.

Publication order:
    1. Stage entities and facts in a copy-on-write transaction
    2. Embed every new fact (bounded by the batch timeout)
    3. Write the new vectors to the index
    4. Publish the graph state, which advances the version
    5. Remove vectors of facts retired at that version
    6. Record the version and notify listeners

Readers capture a graph state and only trust vector hits for facts active
in that state, so they never observe a version whose vectors are missing.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from contextlib import contextmanager
from datetime import datetime, timezone
from threading import RLock
from types import MappingProxyType
from typing import Callable, Iterator, Optional, Sequence

from pydantic import BaseModel, Field

from factgraph.core.models import Fact, RawFact, Sensitivity, supersession_key
from factgraph.core.version import Operation, Snapshot, SnapshotDump, VersionRecord
from factgraph.embedding.providers import Embedder
from factgraph.errors import FactGraphError, IndexDivergence, IngestionConflict
from factgraph.storage.engine import GraphState, GraphStore, GraphTransaction
from factgraph.storage.index import VectorIndex
from factgraph.storage.snapshot import SnapshotStore


logger = logging.getLogger(__name__)

VersionListener = Callable[[VersionRecord], None]


class CommitResult(BaseModel):
    """Outcome of committing one batch of accepted facts."""

    version: int = Field(..., description="Version after the commit")
    fact_ids: list[str] = Field(default_factory=list, description="Facts made active")
    superseded_fact_ids: list[str] = Field(default_factory=list)
    unchanged_fact_ids: list[str] = Field(
        default_factory=list,
        description="Active facts identical to a resubmitted record"
    )
    noop: bool = Field(default=False, description="True if no version was minted")

    model_config = {"frozen": True, "extra": "forbid"}


class ConsistencyCoordinator:
    """
    Serializes mutations and keeps the graph and the vector index in step.

    Usage:
        ```python
        coordinator = ConsistencyCoordinator(InMemoryGraphStore(), InMemoryVectorIndex(),
                                             HashingEmbedder())
        result = coordinator.commit([RawFact(subject="billing", predicate="depends_on",
                                             object="ledger", object_kind="service",
                                             source="repo:billing")])
        assert result.version == 1
        ```
    """

    def __init__(
        self,
        store: GraphStore,
        index: VectorIndex,
        embedder: Embedder,
        *,
        multi_valued_predicates: Sequence[str] = (),
        batch_timeout: Optional[float] = 30.0,
        embedding_workers: int = 4,
        snapshot_store: Optional[SnapshotStore] = None,
        snapshot_every: int = 0,
    ):
        """
        Initialize the coordinator.

        Args:
            store: Graph store to publish states to
            index: Vector index kept in step with the active facts
            embedder: Embedding function for new facts
            multi_valued_predicates: Predicates keyed by (subject, predicate, object)
            batch_timeout: Seconds allowed for embedding one batch
            embedding_workers: Threads used for embedding calls
            snapshot_store: Where periodic and reconciliation snapshots live
            snapshot_every: Persist every N versions (0 disables)
        """
        self._store = store
        self._index = index
        self._embedder = embedder
        self._multi_valued = frozenset(multi_valued_predicates)
        self._batch_timeout = batch_timeout
        self._embedding_workers = embedding_workers
        self._executor = ThreadPoolExecutor(
            max_workers=embedding_workers, thread_name_prefix="factgraph-embed"
        )
        self._snapshot_store = snapshot_store
        self._snapshot_every = snapshot_every

        self._lock = RLock()
        self._history: list[VersionRecord] = [
            VersionRecord(version_number=store.current.version, operation=Operation.RESTORE)
        ]
        self._listeners: list[VersionListener] = []

    # =========================================================================
    # Read side
    # =========================================================================

    @property
    def store(self) -> GraphStore:
        return self._store

    @property
    def index(self) -> VectorIndex:
        return self._index

    @property
    def embedder(self) -> Embedder:
        return self._embedder

    @property
    def version(self) -> int:
        return self._store.current.version

    @property
    def multi_valued_predicates(self) -> frozenset[str]:
        return self._multi_valued

    def view(self) -> GraphState:
        """The current published state. Lock-free."""
        return self._store.current

    def history(self) -> list[VersionRecord]:
        with self._lock:
            return list(self._history)

    def unlearned_since(self, version: int) -> set[str]:
        """Ids of facts unlearned at any version after ``version``."""
        with self._lock:
            return {
                fact_id
                for record in self._history
                if record.version_number > version
                for fact_id in record.unlearned_fact_ids
            }

    def add_listener(self, listener: VersionListener) -> None:
        """Call ``listener`` with each VersionRecord after publication."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: VersionListener) -> None:
        with self._lock:
            self._listeners.remove(listener)

    # =========================================================================
    # Commit
    # =========================================================================

    def commit(self, facts: Sequence[RawFact], timeout: Optional[float] = None) -> CommitResult:
        """
        Commit a batch of privacy-accepted facts as one version.

        Within a batch the last record for a supersession key wins. Records
        identical to the fact already active for their key are no-ops; a
        batch of only no-ops returns the current version without minting a
        new one.

        Raises:
            IngestionConflict: If embedding or the index write fails or times
                out; nothing from the batch is visible
        """
        timeout = self._batch_timeout if timeout is None else timeout

        with self._lock:
            txn = self._store.begin(self._multi_valued)
            staged = self._dedupe(txn, facts)

            new_facts: list[Fact] = []
            unchanged: list[str] = []
            for raw, fact in staged:
                self._resolve_entities(txn, raw)
                active = txn.active_fact_for(fact)
                if active is not None and active.content_hash == fact.content_hash:
                    unchanged.append(active.id)
                    continue
                new_facts.append(fact)

            if not txn.is_dirty and not new_facts:
                logger.debug("Batch of %d facts changed nothing", len(facts))
                return CommitResult(
                    version=txn.base.version, unchanged_fact_ids=unchanged, noop=True
                )

            vectors = self._embed(new_facts, timeout)
            superseded = []
            for fact, vector in zip(new_facts, vectors):
                previous = txn.insert_fact(fact, vector)
                if previous is not None:
                    superseded.append(previous.id)

            record = self._publish(txn, Operation.COMMIT)

        logger.info(
            "Committed v%d: %d new, %d superseded, %d unchanged",
            record.version_number, len(new_facts), len(superseded), len(unchanged),
        )
        return CommitResult(
            version=record.version_number,
            fact_ids=[f.id for f in new_facts],
            superseded_fact_ids=superseded,
            unchanged_fact_ids=unchanged,
        )

    def _dedupe(self, txn: GraphTransaction, facts: Sequence[RawFact]) -> list[tuple[RawFact, Fact]]:
        """Build facts and keep only the last record per supersession key."""
        by_key: dict[tuple, tuple[RawFact, Fact]] = {}
        for raw in facts:
            fact = Fact(
                subject=raw.subject,
                predicate=raw.predicate,
                object_entity=raw.object if raw.is_edge else None,
                object_value=None if raw.is_edge else raw.object,
                confidence=raw.confidence,
                sensitivity=raw.sensitivity_hint or Sensitivity.PUBLIC,
                source=raw.source,
                created_version=txn.version,
            )
            key = supersession_key(fact, self._multi_valued)
            by_key.pop(key, None)
            by_key[key] = (raw, fact)
        return list(by_key.values())

    @staticmethod
    def _resolve_entities(txn: GraphTransaction, raw: RawFact) -> None:
        txn.upsert_entity(raw.subject, raw.subject_kind, raw.subject_name, raw.attributes)
        if raw.is_edge:
            txn.upsert_entity(raw.object, raw.object_kind, raw.object_name)

    def _embed(self, facts: list[Fact], timeout: Optional[float]) -> list[list[float]]:
        """Embed all facts in concurrent ``embed_many`` chunks; all or nothing."""
        if not facts:
            return []
        size = -(-len(facts) // self._embedding_workers)
        chunks = [facts[i:i + size] for i in range(0, len(facts), size)]
        futures = [
            self._executor.submit(self._embedder.embed_many, [f.embedding_text() for f in chunk])
            for chunk in chunks
        ]
        done, pending = wait(futures, timeout=timeout)
        if pending:
            for future in pending:
                future.cancel()
            raise IngestionConflict(
                f"embedding timed out after {timeout}s ({len(pending)} of {len(chunks)} chunks pending)"
            )

        vectors = []
        for chunk, future in zip(chunks, futures):
            try:
                embedded = future.result()
            except Exception as e:
                subjects = ", ".join(sorted({f.subject for f in chunk}))
                raise IngestionConflict(f"embedding failed for facts on {subjects}: {e}") from e
            if len(embedded) != len(chunk):
                raise IngestionConflict(
                    f"embedder returned {len(embedded)} vectors for {len(chunk)} facts"
                )
            vectors.extend(list(v) for v in embedded)
        return vectors

    # =========================================================================
    # Generic mutations
    # =========================================================================

    @contextmanager
    def mutation(self, operation: Operation = Operation.UNLEARN) -> Iterator[GraphTransaction]:
        """
        Run a mutation under the coordinator lock.

        The transaction is published as one version when the block exits
        normally and changed something; it is discarded if the block raises.

        Usage:
            ```python
            with coordinator.mutation(Operation.UNLEARN) as txn:
                txn.unlearn_fact(fact_id)
            ```
        """
        with self._lock:
            txn = self._store.begin(self._multi_valued)
            yield txn
            if txn.is_dirty:
                self._publish(txn, operation)

    def _publish(self, txn: GraphTransaction, operation: Operation) -> VersionRecord:
        """Apply staged vectors, publish state, record the version."""
        state = txn.freeze()

        writes = dict(txn.vector_writes)
        if writes:
            try:
                self._index.index_many(writes)
            except Exception as e:
                self._index.remove_many(writes.keys())
                raise IngestionConflict(f"vector index write failed: {e}") from e

        self._store.publish(state)
        if txn.vector_removals:
            self._index.remove_many(txn.vector_removals)

        record = VersionRecord(
            version_number=state.version,
            operation=operation,
            added_fact_ids=list(txn.added_fact_ids),
            retired_fact_ids=list(txn.retired_fact_ids),
            unlearned_fact_ids=list(txn.unlearned_fact_ids),
            pruned_entity_ids=list(txn.pruned_entity_ids),
        )
        self._history.append(record)
        self._notify(record)
        self._maybe_persist(state.version)
        return record

    def _notify(self, record: VersionRecord) -> None:
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception:
                logger.exception("Version listener failed for v%d", record.version_number)

    def _maybe_persist(self, version: int) -> None:
        if self._snapshot_store is None or not self._snapshot_every:
            return
        if version % self._snapshot_every:
            return
        try:
            self._snapshot_store.save(self.dump())
        except Exception:
            logger.exception("Periodic snapshot at v%d failed", version)

    # =========================================================================
    # Snapshots
    # =========================================================================

    def snapshot(self) -> Snapshot:
        """Active fact ids at the current version."""
        with self._lock:
            state = self._store.current
            return Snapshot(
                version=state.version,
                timestamp=self._history[-1].created_at,
                fact_ids=list(state.active_fact_ids),
            )

    def snapshot_at(self, version: int) -> Snapshot:
        """
        Active fact ids at a past version.

        Only versions published since the last restore can be reconstructed.

        Raises:
            ValueError: If the version is outside the retained history
        """
        with self._lock:
            records = {r.version_number: r for r in self._history}
            if version not in records:
                raise ValueError(f"version {version} is not in the retained history")
            state = self._store.current
            return Snapshot(
                version=version,
                timestamp=records[version].created_at,
                fact_ids=state.fact_ids_active_at(version),
            )

    def dump(self) -> SnapshotDump:
        """Durable dump of the current version, vectors included."""
        with self._lock:
            state = self._store.current
            vectors = {}
            for fact_id in state.active_fact_ids:
                vector = self._index.get_vector(fact_id)
                if vector is None:
                    raise IndexDivergence({fact_id}, set())
                vectors[fact_id] = vector
            return SnapshotDump(
                version=state.version,
                taken_at=datetime.now(timezone.utc),
                entities=[state.entities[k] for k in sorted(state.entities)],
                facts=state.active_facts(),
                vectors=vectors,
                tombstoned_fact_ids=state.tombstoned_fact_ids(),
                pruned_entity_ids=sorted(state.pruned_entities),
            )

    def restore(self, dump: SnapshotDump) -> VersionRecord:
        """
        Replace the graph and the vector index with a dump.

        Raises:
            ValueError: If the dump is internally inconsistent
        """
        entities = {e.id: e for e in dump.entities}
        facts = {f.id: f for f in dump.facts}
        if set(dump.vectors) != set(facts):
            raise ValueError("snapshot vectors do not match its active facts")
        for fact in facts.values():
            for entity_id in fact.entity_ids():
                if entity_id not in entities:
                    raise ValueError(f"fact {fact.id} references missing entity {entity_id}")

        state = GraphState(
            version=dump.version,
            entities=MappingProxyType(entities),
            facts=MappingProxyType(facts),
            active_keys=MappingProxyType({
                supersession_key(f, self._multi_valued): f.id
                for f in sorted(facts.values(), key=lambda f: f.id)
            }),
            pruned_entities=frozenset(dump.pruned_entity_ids),
            archived_fact_ids=frozenset(dump.tombstoned_fact_ids),
        )

        with self._lock:
            self._index.clear()
            self._index.index_many(dump.vectors)
            self._store.replace(state)
            record = VersionRecord(
                version_number=dump.version,
                operation=Operation.RESTORE,
                added_fact_ids=sorted(facts),
            )
            self._history = [record]
            self._notify(record)

        logger.info("Restored snapshot v%d (%d facts)", dump.version, len(facts))
        return record

    # =========================================================================
    # Integrity
    # =========================================================================

    def verify_consistency(self) -> None:
        """
        Check that the vector index holds exactly the active facts.

        Raises:
            IndexDivergence: If the two disagree
        """
        with self._lock:
            active = set(self._store.current.active_fact_ids)
            indexed = self._index.ids()
        if active != indexed:
            raise IndexDivergence(missing=active - indexed, extra=indexed - active)

    def reconcile(self) -> VersionRecord:
        """
        Restore from the last persisted snapshot.

        Raises:
            FactGraphError: If no snapshot is available
        """
        if self._snapshot_store is None:
            raise FactGraphError("no snapshot store configured for reconciliation")
        dump = self._snapshot_store.load_latest()
        if dump is None:
            raise FactGraphError("no persisted snapshot to reconcile from")
        logger.warning("Reconciling from snapshot v%d", dump.version)
        return self.restore(dump)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
