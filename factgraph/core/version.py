"""
Versioning for factgraph.

Every committed ingestion batch and every unlearn mints exactly one new
version. This module provides:

- VersionRecord: What a published version changed
- Snapshot: The set of fact ids active at a version
- SnapshotDump: The durable, restorable form of the whole engine state
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from factgraph.core.models import Entity, Fact, FactStatus


SNAPSHOT_FORMAT = "factgraph.snapshot/1"


class Operation(str, Enum):
    """Operation that produced a version."""

    COMMIT = "commit"
    UNLEARN = "unlearn"
    RESTORE = "restore"


class VersionRecord(BaseModel):
    """
    An immutable marker for one published version.

    Records are lightweight: they list ids, not content, so the version
    history never retains an unlearned literal.
    """

    version_number: int = Field(..., ge=0, description="Sequential version number")
    operation: Operation = Field(..., description="Operation that produced this version")
    added_fact_ids: list[str] = Field(default_factory=list, description="Facts made active")
    retired_fact_ids: list[str] = Field(
        default_factory=list,
        description="Facts superseded or unlearned at this version"
    )
    unlearned_fact_ids: list[str] = Field(
        default_factory=list,
        description="Subset of retired facts that were unlearned"
    )
    pruned_entity_ids: list[str] = Field(default_factory=list, description="Orphans removed")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When this version was published"
    )

    model_config = {"frozen": True, "extra": "forbid"}


class Snapshot(BaseModel):
    """
    The set of facts active at a specific version.

    Answers "what did the engine know at version X?" for audits and for
    explaining stale answers.
    """

    version: int = Field(..., ge=0, description="Version number")
    timestamp: datetime = Field(..., description="When this version was published")
    fact_ids: list[str] = Field(default_factory=list, description="Active fact ids, sorted")

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def fact_count(self) -> int:
        return len(self.fact_ids)


class SnapshotDump(BaseModel):
    """
    Durable dump of the engine at one version.

    This is the persistence contract: any ``SnapshotStore`` must round-trip
    it exactly. Tombstones are kept as ids only so that unlearns stay
    idempotent after a restore without retaining any unlearned content.
    """

    format: str = Field(default=SNAPSHOT_FORMAT, description="Format tag")
    version: int = Field(..., ge=0, description="Version captured")
    taken_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the dump was taken"
    )
    entities: list[Entity] = Field(default_factory=list, description="Live entities")
    facts: list[Fact] = Field(default_factory=list, description="Active facts")
    vectors: dict[str, list[float]] = Field(
        default_factory=dict,
        description="Raw embedding vectors keyed by fact id"
    )
    tombstoned_fact_ids: list[str] = Field(default_factory=list)
    pruned_entity_ids: list[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v != SNAPSHOT_FORMAT:
            raise ValueError(f"unsupported snapshot format: {v}")
        return v

    @field_validator("facts")
    @classmethod
    def validate_facts_active(cls, v: list[Fact]) -> list[Fact]:
        for fact in v:
            if fact.status != FactStatus.ACTIVE:
                raise ValueError(f"snapshot contains inactive fact {fact.id}")
        return v

    def summary(self) -> dict[str, Any]:
        """Counts for logs and tool responses."""
        return {
            "version": self.version,
            "entities": len(self.entities),
            "facts": len(self.facts),
            "vectors": len(self.vectors),
        }
