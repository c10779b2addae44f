"""
Unlearning engine for factgraph.

Unlearning tombstones facts at a freshly minted version, removes their
vectors before returning and invalidates every cached answer that cited
them. Entities are only ever removed by explicit orphan collection, never
implicitly.

Cascade policies:
    none:     Tombstone the target facts only
    orphans:  Also prune the touched entities left without active facts
    full:     For entity targets, also tombstone facts naming the entity as
              object, then prune orphans
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from factgraph.core.models import Fact
from factgraph.core.utils.audit_log import AuditLog
from factgraph.core.version import Operation
from factgraph.errors import UnknownEntity, UnknownFact
from factgraph.runtime.cache import QueryCache
from factgraph.runtime.coordinator import ConsistencyCoordinator
from factgraph.storage.engine import GraphTransaction


logger = logging.getLogger(__name__)


class CascadePolicy(str, Enum):
    """How far an unlearn reaches beyond its target facts."""

    NONE = "none"
    ORPHANS = "orphans"
    FULL = "full"


class UnlearnResult(BaseModel):
    """Outcome of one unlearn request."""

    version: int = Field(..., description="Version after the request")
    target: str = Field(..., description="Fact id or entity id requested")
    fact_ids: list[str] = Field(default_factory=list, description="Facts unlearned")
    pruned_entities: list[str] = Field(default_factory=list, description="Orphans removed")
    invalidated_cache_keys: list[str] = Field(default_factory=list)
    noop: bool = Field(default=False, description="True if nothing was active to unlearn")

    model_config = {"frozen": True, "extra": "forbid"}


class UnlearningEngine:
    """
    Removes facts from the graph, the vector index and the cache together.

    Either every affected fact becomes inactive at the new version or none
    does: all changes are staged in one coordinator mutation.

    Usage:
        ```python
        engine = UnlearningEngine(coordinator, cache=cache, audit_log=audit)
        result = engine.unlearn(fact_id, requested_by="ops@example")
        engine.unlearn("legacy-billing", CascadePolicy.ORPHANS)
        ```
    """

    def __init__(
        self,
        coordinator: ConsistencyCoordinator,
        cache: Optional[QueryCache] = None,
        audit_log: Optional[AuditLog] = None,
    ):
        self._coordinator = coordinator
        self._cache = cache
        self._audit_log = audit_log if audit_log is not None else AuditLog()

    def unlearn(
        self,
        target: str,
        cascade: CascadePolicy = CascadePolicy.NONE,
        requested_by: str = "admin",
    ) -> UnlearnResult:
        """
        Unlearn a fact id or every active fact about an entity.

        Targets are resolved as fact ids first, then as entity ids.
        Repeating an unlearn on an already inactive target is a no-op that
        returns the current version.

        Raises:
            UnknownFact: If the target is a fact id that was never recorded
            UnknownEntity: If an entity target was never recorded
        """
        cascade = CascadePolicy(cascade)
        with self._coordinator.mutation(Operation.UNLEARN) as txn:
            fact_ids = self._resolve_targets(txn, target, cascade)
            for fact_id in fact_ids:
                txn.unlearn_fact(fact_id)

            pruned: list[str] = []
            if cascade != CascadePolicy.NONE and fact_ids:
                pruned = self._collect_orphans(txn, [txn.get_fact(f) for f in fact_ids])

            version = txn.version if txn.is_dirty else txn.base.version

        invalidated = self._cache.invalidate_facts(fact_ids) if self._cache and fact_ids else []

        result = UnlearnResult(
            version=version,
            target=target,
            fact_ids=fact_ids,
            pruned_entities=pruned,
            invalidated_cache_keys=invalidated,
            noop=not fact_ids and not pruned,
        )
        self._audit_log.record(
            category="unlearn",
            source=requested_by,
            decision="noop" if result.noop else "unlearned",
            reason_code=f"cascade.{cascade.value}",
            target=target,
            version=version,
            fact_count=len(fact_ids),
            pruned_entities=pruned,
        )
        if result.noop:
            logger.info("Unlearn of %s was a no-op at v%d", target, version)
        else:
            logger.info(
                "Unlearned %d facts for %s at v%d (%d entities pruned)",
                len(fact_ids), target, version, len(pruned),
            )
        return result

    def _resolve_targets(self, txn: GraphTransaction, target: str, cascade: CascadePolicy) -> list[str]:
        """Ids of the active facts the request covers."""
        if txn.knows_fact(target):
            fact = txn.get_fact(target)
            return [target] if fact is not None and fact.is_active() else []

        if txn.knows_entity(target):
            facts = txn.active_facts_where(subject=target)
            if cascade == CascadePolicy.FULL:
                facts += txn.active_facts_where(obj=target)
            return sorted({f.id for f in facts})

        if _looks_like_fact_id(target):
            raise UnknownFact(target)
        raise UnknownEntity(target)

    @staticmethod
    def _collect_orphans(txn: GraphTransaction, facts: list[Fact]) -> list[str]:
        """Prune touched entities that no longer back any active fact."""
        touched = sorted({entity_id for fact in facts for entity_id in fact.entity_ids()})
        pruned = []
        for entity_id in touched:
            if txn.get_entity(entity_id) is None:
                continue
            if txn.active_fact_count(entity_id) == 0:
                txn.prune_entity(entity_id)
                pruned.append(entity_id)
        return pruned


def _looks_like_fact_id(value: str) -> bool:
    """Fact ids are 26-character Crockford base32 ULIDs."""
    alphabet = set("0123456789ABCDEFGHJKMNPQRSTVWXYZ")
    return len(value) == 26 and all(c in alphabet for c in value.upper())
