"""
Graph store for factgraph.

This module holds entities and facts, the durable source of truth for
structure:

- GraphState: An immutable, versioned view that readers share without locks
- GraphTransaction: Copy-on-write staging area for one mutation
- GraphStore / InMemoryGraphStore: Publishes states and keeps the stub ledger

Design Philosophy:
    Readers capture a ``GraphState`` and keep it for the whole request.
    Writers build the next state on the side and publish it by swapping a
    single reference, so no reader can observe a half-applied write.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import cached_property
from threading import RLock
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence

from factgraph.core.graph import (
    DEFAULT_EDGE_PRIORITY,
    DependencyPath,
    Direction,
    EdgeView,
    TraversalResult,
)
from factgraph.core.models import (
    Entity,
    EntityKind,
    Fact,
    FactStatus,
    RedactedStub,
    supersession_key,
)
from factgraph.errors import UnknownEntity


@dataclass(frozen=True)
class GraphState:
    """
    An immutable view of the graph at one version.

    ``facts`` contains every fact ever recorded, tombstones included, so
    history and idempotent unlearns can be answered; queries only ever look
    at active facts. ``archived_fact_ids`` holds retired facts known only by
    id, as restored from a snapshot.
    """

    version: int = 0
    entities: Mapping[str, Entity] = field(default_factory=dict)
    facts: Mapping[str, Fact] = field(default_factory=dict)
    active_keys: Mapping[tuple, str] = field(default_factory=dict)
    pruned_entities: frozenset[str] = frozenset()
    archived_fact_ids: frozenset[str] = frozenset()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        return self.entities.get(entity_id)

    def has_entity(self, entity_id: str) -> bool:
        return entity_id in self.entities

    def knows_entity(self, entity_id: str) -> bool:
        """True if the entity exists or existed and was pruned."""
        return entity_id in self.entities or entity_id in self.pruned_entities

    def get_fact(self, fact_id: str) -> Optional[Fact]:
        return self.facts.get(fact_id)

    def knows_fact(self, fact_id: str) -> bool:
        """True if the fact was ever recorded, active or not."""
        return fact_id in self.facts or fact_id in self.archived_fact_ids

    def is_active(self, fact_id: str) -> bool:
        fact = self.facts.get(fact_id)
        return fact is not None and fact.is_active()

    @cached_property
    def active_fact_ids(self) -> tuple[str, ...]:
        """Ids of active facts in ascending order."""
        return tuple(sorted(fid for fid, fact in self.facts.items() if fact.is_active()))

    def active_facts(self) -> list[Fact]:
        return [self.facts[fid] for fid in self.active_fact_ids]

    @cached_property
    def _incidence(self) -> Mapping[str, tuple[str, ...]]:
        """entity id -> ids of active facts that reference it."""
        index: dict[str, list[str]] = {}
        for fact_id in self.active_fact_ids:
            for entity_id in self.facts[fact_id].entity_ids():
                index.setdefault(entity_id, []).append(fact_id)
        return {k: tuple(v) for k, v in index.items()}

    def facts_about(self, entity_id: str) -> list[Fact]:
        """Active facts in which the entity is subject or object."""
        return [self.facts[fid] for fid in self._incidence.get(entity_id, ())]

    def active_fact_count(self, entity_id: str) -> int:
        return len(self._incidence.get(entity_id, ()))

    def tombstoned_fact_ids(self) -> list[str]:
        retired = {fid for fid, fact in self.facts.items() if not fact.is_active()}
        return sorted(retired | self.archived_fact_ids)

    def fact_ids_active_at(self, version: int) -> list[str]:
        """Facts active at a past version, reconstructed from lifecycles."""
        return sorted(fid for fid, fact in self.facts.items() if fact.active_at(version))

    # ------------------------------------------------------------------
    # Derived edges
    # ------------------------------------------------------------------

    @cached_property
    def edges(self) -> EdgeView:
        """Edge view recomputed from the active facts of this state."""
        return EdgeView(self.entities.keys(), self.active_facts())

    def neighbors(
        self,
        entity_id: str,
        edge_types: Optional[Sequence[str]] = None,
        direction: Direction = Direction.OUT,
        depth: int = 1,
    ) -> TraversalResult:
        """
        Entities reachable within ``depth`` hops, breadth-first.

        Raises:
            UnknownEntity: If the start entity does not exist
        """
        if entity_id not in self.entities:
            raise UnknownEntity(entity_id)
        return self.edges.neighbors(entity_id, edge_types, Direction(direction), depth)

    def shortest_dependency_path(
        self,
        source_id: str,
        target_id: str,
        priority: Sequence[str] = DEFAULT_EDGE_PRIORITY,
    ) -> Optional[DependencyPath]:
        """
        Lexicographically-smallest shortest path, or None if unreachable.

        Raises:
            UnknownEntity: If either endpoint does not exist
        """
        for entity_id in (source_id, target_id):
            if entity_id not in self.entities:
                raise UnknownEntity(entity_id)
        return self.edges.shortest_dependency_path(source_id, target_id, priority)


class GraphTransaction:
    """
    Staging area for one mutation.

    Copies the base state's mappings on creation; nothing here is visible
    to readers until the store publishes ``freeze()``. Vector writes and
    removals are staged alongside so the coordinator can apply them to the
    vector index before publication.
    """

    def __init__(self, base: GraphState, multi_valued: frozenset[str] = frozenset()):
        self.base = base
        self.version = base.version + 1
        self._multi_valued = multi_valued
        self._entities: dict[str, Entity] = dict(base.entities)
        self._facts: dict[str, Fact] = dict(base.facts)
        self._active_keys: dict[tuple, str] = dict(base.active_keys)
        self._pruned: set[str] = set(base.pruned_entities)
        self._archived = base.archived_fact_ids

        self.added_fact_ids: list[str] = []
        self.retired_fact_ids: list[str] = []
        self.unlearned_fact_ids: list[str] = []
        self.pruned_entity_ids: list[str] = []
        self.vector_writes: dict[str, list[float]] = {}
        self.vector_removals: list[str] = []
        self._entity_changes = 0

    @property
    def is_dirty(self) -> bool:
        return bool(
            self.added_fact_ids
            or self.retired_fact_ids
            or self.pruned_entity_ids
            or self._entity_changes
        )

    # ------------------------------------------------------------------
    # Reads against the staged state
    # ------------------------------------------------------------------

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        return self._entities.get(entity_id)

    def get_fact(self, fact_id: str) -> Optional[Fact]:
        return self._facts.get(fact_id)

    def knows_fact(self, fact_id: str) -> bool:
        return fact_id in self._facts or fact_id in self._archived

    def knows_entity(self, entity_id: str) -> bool:
        return entity_id in self._entities or entity_id in self._pruned

    def active_fact_for(self, fact: Fact) -> Optional[Fact]:
        """Currently active fact sharing the supersession key of ``fact``."""
        fact_id = self._active_keys.get(supersession_key(fact, self._multi_valued))
        return self._facts.get(fact_id) if fact_id else None

    def active_facts_where(self, *, subject: Optional[str] = None, obj: Optional[str] = None) -> list[Fact]:
        """Active staged facts with the given subject and/or object entity."""
        matches = []
        for fact_id in sorted(self._active_keys.values()):
            fact = self._facts[fact_id]
            if subject is not None and fact.subject != subject:
                continue
            if obj is not None and fact.object_entity != obj:
                continue
            matches.append(fact)
        return matches

    def active_fact_count(self, entity_id: str) -> int:
        count = 0
        for fact_id in self._active_keys.values():
            if entity_id in self._facts[fact_id].entity_ids():
                count += 1
        return count

    # ------------------------------------------------------------------
    # Staged writes
    # ------------------------------------------------------------------

    def upsert_entity(
        self,
        entity_id: str,
        kind: EntityKind,
        name: Optional[str] = None,
        attributes: Optional[dict[str, Any]] = None,
    ) -> Entity:
        """Resolve an entity, creating it or merging new attributes."""
        existing = self._entities.get(entity_id)
        if existing is None:
            entity = Entity(
                id=entity_id,
                kind=kind,
                name=name or entity_id,
                attributes=dict(attributes or {}),
                created_version=self.version,
                modified_version=self.version,
            )
            self._entities[entity_id] = entity
            self._pruned.discard(entity_id)
            self._entity_changes += 1
            return entity

        merged = {**existing.attributes, **(attributes or {})}
        new_name = name or existing.name
        if merged == existing.attributes and new_name == existing.name:
            return existing
        entity = existing.model_copy(
            update={"attributes": merged, "name": new_name, "modified_version": self.version}
        )
        self._entities[entity_id] = entity
        self._entity_changes += 1
        return entity

    def insert_fact(self, fact: Fact, vector: Optional[list[float]] = None) -> Optional[Fact]:
        """
        Insert an active fact, superseding any active fact with the same key.

        Returns:
            The superseded fact, if any
        """
        for entity_id in fact.entity_ids():
            if entity_id not in self._entities:
                raise UnknownEntity(entity_id)

        key = supersession_key(fact, self._multi_valued)
        previous_id = self._active_keys.get(key)
        superseded = None
        if previous_id is not None:
            superseded = self._retire(previous_id, FactStatus.SUPERSEDED)

        self._facts[fact.id] = fact
        self._active_keys[key] = fact.id
        self.added_fact_ids.append(fact.id)
        if vector is not None:
            self.vector_writes[fact.id] = vector
        return superseded

    def unlearn_fact(self, fact_id: str) -> Fact:
        """Tombstone an active fact as unlearned."""
        fact = self._retire(fact_id, FactStatus.UNLEARNED)
        self.unlearned_fact_ids.append(fact_id)
        return fact

    def prune_entity(self, entity_id: str) -> None:
        """Remove an entity that no active fact references."""
        if self.active_fact_count(entity_id):
            raise ValueError(f"entity {entity_id} is still referenced")
        if self._entities.pop(entity_id, None) is not None:
            self._pruned.add(entity_id)
            self.pruned_entity_ids.append(entity_id)

    def _retire(self, fact_id: str, status: FactStatus) -> Fact:
        fact = self._facts[fact_id]
        if not fact.is_active():
            raise ValueError(f"fact {fact_id} is not active")
        retired = fact.retire(status, self.version)
        self._facts[fact_id] = retired
        self._active_keys.pop(supersession_key(fact, self._multi_valued), None)
        self.retired_fact_ids.append(fact_id)
        if fact_id in self.vector_writes:
            # Created and retired inside the same transaction.
            del self.vector_writes[fact_id]
        else:
            self.vector_removals.append(fact_id)
        return retired

    def freeze(self) -> GraphState:
        """Build the immutable state this transaction would publish."""
        return GraphState(
            version=self.version,
            entities=MappingProxyType(self._entities),
            facts=MappingProxyType(self._facts),
            active_keys=MappingProxyType(self._active_keys),
            pruned_entities=frozenset(self._pruned),
            archived_fact_ids=self._archived,
        )


class GraphStore(ABC):
    """
    Abstract base class for graph stores.

    Stores publish whole states; they never mutate a published state.

    Implementations:
        - InMemoryGraphStore: Default, durable through snapshots
    """

    @property
    @abstractmethod
    def current(self) -> GraphState:
        """The most recently published state."""
        pass

    @abstractmethod
    def begin(self, multi_valued: frozenset[str] = frozenset()) -> GraphTransaction:
        """Start staging a mutation on top of the current state."""
        pass

    @abstractmethod
    def publish(self, state: GraphState) -> None:
        """Make a state visible to readers."""
        pass

    @abstractmethod
    def replace(self, state: GraphState) -> None:
        """Install a state unconditionally (snapshot restore)."""
        pass

    @abstractmethod
    def record_stub(self, stub: RedactedStub) -> None:
        """Append an audit stub for a redacted or rejected fact."""
        pass

    @abstractmethod
    def stubs(self) -> list[RedactedStub]:
        """All recorded stubs, oldest first."""
        pass


class InMemoryGraphStore(GraphStore):
    """
    In-memory graph store.

    Thread Safety:
        ``current`` is a single reference read; any number of threads may
        read concurrently. ``publish`` is expected to be called by one
        writer at a time (the coordinator's mutation lock), and refuses
        states whose version does not advance.
    """

    def __init__(self, initial: Optional[GraphState] = None):
        self._state = initial or GraphState()
        self._stub_lock = RLock()
        self._stubs: list[RedactedStub] = []

    @property
    def current(self) -> GraphState:
        return self._state

    def begin(self, multi_valued: frozenset[str] = frozenset()) -> GraphTransaction:
        return GraphTransaction(self._state, multi_valued)

    def publish(self, state: GraphState) -> None:
        if state.version <= self._state.version:
            raise ValueError(
                f"cannot publish version {state.version} over {self._state.version}"
            )
        self._state = state

    def replace(self, state: GraphState) -> None:
        self._state = state

    def record_stub(self, stub: RedactedStub) -> None:
        with self._stub_lock:
            self._stubs.append(stub)

    def stubs(self) -> list[RedactedStub]:
        with self._stub_lock:
            return list(self._stubs)
