"""Query filters and ranked answers."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from factgraph.core.graph import Direction
from factgraph.core.models import EntityKind, Fact


class QueryFilters(BaseModel):
    """
    Restrictions and graph seeds for one query.

    ``entities`` seeds the graph traversal; the other fields narrow which
    facts may appear in the answer.
    """

    entities: list[str] = Field(default_factory=list, description="Seed entity ids")
    predicates: Optional[list[str]] = Field(default=None, description="Allowed predicates")
    entity_kinds: Optional[list[EntityKind]] = Field(
        default=None,
        description="Allowed kinds of the fact's subject entity"
    )
    edge_types: Optional[list[str]] = Field(default=None, description="Edge types to traverse")
    direction: Direction = Field(default=Direction.BOTH, description="Traversal direction")
    depth: Optional[int] = Field(default=None, ge=0, description="Traversal depth override")
    top_n: Optional[int] = Field(default=None, gt=0, description="Vector candidates override")
    top_k: Optional[int] = Field(default=None, gt=0, description="Result count override")

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("entities")
    @classmethod
    def dedupe_entities(cls, v: list[str]) -> list[str]:
        seen: dict[str, None] = {}
        for entity_id in v:
            if entity_id.strip():
                seen.setdefault(entity_id.strip(), None)
        return list(seen)


class Provenance(BaseModel):
    """Where a ranked result came from."""

    fact_ids: list[str] = Field(..., description="Facts backing the result")
    version: int = Field(..., description="Graph version the answer was computed against")
    source: str = Field(..., description="Scanner/source reference of the backing fact")
    hops: Optional[int] = Field(default=None, description="Hops from the nearest seed entity")

    model_config = {"frozen": True, "extra": "forbid"}


class RankedResult(BaseModel):
    """One fact in an answer with its combined score."""

    fact: Fact = Field(..., description="The backing fact")
    score: float = Field(..., description="Combined score")
    vector_score: float = Field(default=0.0, description="Normalized cosine similarity")
    graph_score: float = Field(default=0.0, description="Normalized graph proximity")
    provenance: Provenance

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def fact_id(self) -> str:
        return self.fact.id

    @property
    def object(self) -> Any:
        """Object entity id, or the literal value."""
        return self.fact.object_entity if self.fact.is_edge else self.fact.object_value


class Answer(BaseModel):
    """
    A ranked answer computed against one graph version.

    ``dropped_fact_ids`` lists candidates withheld because they were
    unlearned while the query was running.
    """

    query: str
    version: int = Field(..., description="Graph version the answer was computed against")
    results: list[RankedResult] = Field(default_factory=list)
    unresolved_entities: list[str] = Field(default_factory=list, description="Unknown seed entities")
    dropped_fact_ids: list[str] = Field(default_factory=list)
    cached: bool = Field(default=False, description="Served from the query cache")

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def fact_ids(self) -> list[str]:
        return [r.fact.id for r in self.results]

    def entities(self) -> list[str]:
        """Entity ids mentioned by the results, in rank order."""
        seen: dict[str, None] = {}
        for result in self.results:
            for entity_id in result.fact.entity_ids():
                seen.setdefault(entity_id, None)
        return list(seen)

    def mentions(self, entity_id: str) -> bool:
        return entity_id in self.entities()

    def summary(self) -> dict[str, Any]:
        """JSON-friendly form for tool responses."""
        return {
            "query": self.query,
            "version": self.version,
            "cached": self.cached,
            "unresolved_entities": self.unresolved_entities,
            "dropped_fact_ids": self.dropped_fact_ids,
            "results": [
                {
                    "fact_id": r.fact.id,
                    "subject": r.fact.subject,
                    "predicate": r.fact.predicate,
                    "object": r.object,
                    "score": round(r.score, 6),
                    "provenance": r.provenance.model_dump(),
                }
                for r in self.results
            ],
        }
