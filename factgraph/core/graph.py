"""
Derived edge view for factgraph.

Edges are never stored. Every active fact whose object is another entity
defines a directed, typed edge ``subject -> object``; this module rebuilds
that view from a set of facts and answers traversal queries over it:

- neighbors(x): Entities reachable from X within a hop budget
- shortest_dependency_path(a, b): Deterministic shortest path from A to B

Because the view is recomputed from live facts, an edge can never outlive
the fact that defined it.
"""

from __future__ import annotations

from collections import deque
from enum import Enum
from typing import Iterable, Optional, Sequence

import networkx as nx
from pydantic import BaseModel, Field

from factgraph.core.models import Fact


DEFAULT_EDGE_PRIORITY: tuple[str, ...] = (
    "depends_on",
    "calls",
    "reads_from",
    "writes_to",
    "publishes_to",
    "subscribes_to",
    "uses",
    "exposes",
    "configured_by",
    "configures",
    "deployed_to",
    "owned_by",
    "part_of",
)


class Direction(str, Enum):
    """Which edges a traversal follows."""

    OUT = "out"  # subject -> object
    IN = "in"  # object -> subject
    BOTH = "both"


class TraversalResult(BaseModel):
    """Result of a neighbors() traversal."""

    root_id: str = Field(..., description="Starting entity ID")
    direction: Direction = Field(..., description="Traversal direction")
    entities: list[str] = Field(default_factory=list, description="Entity IDs in BFS order")
    hops: dict[str, int] = Field(default_factory=dict, description="Hop distance per entity")
    fact_ids: list[str] = Field(default_factory=list, description="Edge facts traversed")
    depth: int = Field(default=0, description="Maximum depth reached")

    model_config = {"extra": "forbid"}


class DependencyPath(BaseModel):
    """A path between two entities with the facts that define each hop."""

    entities: list[str] = Field(default_factory=list, description="Entity IDs from source to target")
    fact_ids: list[str] = Field(default_factory=list, description="Edge fact per hop")
    edge_types: list[str] = Field(default_factory=list, description="Predicate per hop")

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def length(self) -> int:
        return len(self.fact_ids)


class EdgeView:
    """
    A read-only, typed multigraph over the active edge facts.

    Implementation uses a NetworkX ``MultiDiGraph`` keyed by fact id, so
    two predicates between the same pair of entities remain two edges.

    Thread Safety:
        The view is built once and never mutated afterwards; it is safe to
        share between concurrent readers.
    """

    def __init__(self, entity_ids: Iterable[str], facts: Iterable[Fact]):
        self._graph: nx.MultiDiGraph = nx.MultiDiGraph()
        self._graph.add_nodes_from(entity_ids)
        for fact in facts:
            if not fact.is_edge or not fact.is_active():
                continue
            self._graph.add_edge(
                fact.subject,
                fact.object_entity,
                key=fact.id,
                edge_type=fact.predicate,
            )

    @property
    def node_count(self) -> int:
        return self._graph.number_of_nodes()

    @property
    def edge_count(self) -> int:
        return self._graph.number_of_edges()

    def has_entity(self, entity_id: str) -> bool:
        return entity_id in self._graph

    def has_edge(self, source_id: str, target_id: str) -> bool:
        return self._graph.has_edge(source_id, target_id)

    def _incident(
        self,
        entity_id: str,
        direction: Direction,
        edge_types: Optional[set[str]],
    ) -> list[tuple[str, str]]:
        """(neighbor id, fact id) pairs adjacent to an entity, sorted."""
        pairs: list[tuple[str, str]] = []
        if direction in (Direction.OUT, Direction.BOTH):
            for _, target, key, data in self._graph.out_edges(entity_id, keys=True, data=True):
                if edge_types is None or data["edge_type"] in edge_types:
                    pairs.append((target, key))
        if direction in (Direction.IN, Direction.BOTH):
            for source, _, key, data in self._graph.in_edges(entity_id, keys=True, data=True):
                if edge_types is None or data["edge_type"] in edge_types:
                    pairs.append((source, key))
        pairs.sort()
        return pairs

    def neighbors(
        self,
        entity_id: str,
        edge_types: Optional[Sequence[str]] = None,
        direction: Direction = Direction.OUT,
        depth: int = 1,
    ) -> TraversalResult:
        """
        Breadth-first traversal from an entity.

        Neighbors at each hop are visited in ascending entity id order, so
        the result is deterministic for a given set of facts. The root is
        not included in ``entities`` but appears in ``hops`` with distance 0.
        ``entities`` is ordered by hop distance, then entity id.

        Args:
            entity_id: Starting entity (must exist in the view)
            edge_types: Restrict to these predicates (None = all)
            direction: Edge direction to follow
            depth: Maximum number of hops

        Returns:
            TraversalResult
        """
        if depth < 0:
            raise ValueError("depth must be non-negative")
        type_filter = set(edge_types) if edge_types is not None else None

        hops: dict[str, int] = {entity_id: 0}
        result_entities: list[str] = []
        result_facts: list[str] = []
        seen_facts: set[str] = set()
        queue: deque[str] = deque([entity_id])
        max_depth_reached = 0

        while queue:
            current_id = queue.popleft()
            current_depth = hops[current_id]
            if current_depth >= depth:
                continue

            for neighbor_id, fact_id in self._incident(current_id, direction, type_filter):
                if fact_id not in seen_facts:
                    seen_facts.add(fact_id)
                    result_facts.append(fact_id)
                if neighbor_id in hops:
                    continue
                hops[neighbor_id] = current_depth + 1
                max_depth_reached = max(max_depth_reached, current_depth + 1)
                result_entities.append(neighbor_id)
                queue.append(neighbor_id)

        result_entities.sort(key=lambda e: (hops[e], e))
        return TraversalResult(
            root_id=entity_id,
            direction=direction,
            entities=result_entities,
            hops=hops,
            fact_ids=result_facts,
            depth=max_depth_reached,
        )

    def shortest_dependency_path(
        self,
        source_id: str,
        target_id: str,
        priority: Sequence[str] = DEFAULT_EDGE_PRIORITY,
    ) -> Optional[DependencyPath]:
        """
        Find the lexicographically-smallest shortest path from source to target.

        Paths follow outgoing edges. Among all shortest paths, each hop is
        chosen by ``(edge-type rank, next entity id, fact id)`` where the rank
        is the predicate's position in ``priority``; predicates not listed
        rank after all listed ones, alphabetically.

        Returns:
            DependencyPath, or None if target is unreachable
        """
        if source_id == target_id:
            return DependencyPath(entities=[source_id])

        # Distance of every node to the target, following edges backwards.
        distance_to_target = nx.single_source_shortest_path_length(
            self._graph.reverse(copy=False), target_id
        )
        if source_id not in distance_to_target:
            return None

        ranks = {edge_type: i for i, edge_type in enumerate(priority)}
        unranked = len(ranks)

        def hop_key(hop: tuple[str, str, str]) -> tuple:
            target, key, edge_type = hop
            return (ranks.get(edge_type, unranked), edge_type if edge_type not in ranks else "", target, key)

        entities = [source_id]
        fact_ids: list[str] = []
        edge_types: list[str] = []
        current = source_id
        while current != target_id:
            remaining = distance_to_target[current]
            candidates = [
                (target, key, data["edge_type"])
                for _, target, key, data in self._graph.out_edges(current, keys=True, data=True)
                if distance_to_target.get(target) == remaining - 1
            ]
            next_id, fact_id, edge_type = min(candidates, key=hop_key)
            entities.append(next_id)
            fact_ids.append(fact_id)
            edge_types.append(edge_type)
            current = next_id

        return DependencyPath(entities=entities, fact_ids=fact_ids, edge_types=edge_types)
