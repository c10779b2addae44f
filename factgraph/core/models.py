"""
Core data models for factgraph.

This module defines the primitives every other layer exchanges:

- Entity: A service, configuration object, API endpoint or external dependency
- Fact: An atomic subject-predicate-object statement with provenance
- RawFact: The record shape scanners submit before privacy filtering
- RedactedStub: The audit-only remainder of a redacted or rejected fact

Design Philosophy:
    Facts are never edited in place. Re-ingestion supersedes, unlearning
    tombstones. Edges between entities are not stored at all; they are
    recomputed from the active facts whose object is another entity.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import ulid
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from factgraph.errors import MalformedFact


REDACTION_MARKER = "[REDACTED]"


class EntityKind(str, Enum):
    """Kinds of entity the knowledge graph tracks."""

    SERVICE = "service"
    CONFIG = "config"
    API_ENDPOINT = "api_endpoint"
    EXTERNAL_DEPENDENCY = "external_dependency"


class Sensitivity(str, Enum):
    """Sensitivity labels, from least to most sensitive."""

    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    PII = "pii"
    CREDENTIAL = "credential"

    @property
    def rank(self) -> int:
        return list(Sensitivity).index(self)

    def marker(self) -> str:
        """Marker substituted for the predicate of a redacted fact."""
        return f"[sensitive:{self.value}]"


class Decision(str, Enum):
    """Outcome of privacy classification. Closed: callers handle all three."""

    ACCEPT = "accept"
    REDACT = "redact"
    REJECT = "reject"


class FactStatus(str, Enum):
    """Lifecycle of a fact."""

    ACTIVE = "active"
    SUPERSEDED = "superseded"  # Replaced by re-ingestion of the same key
    UNLEARNED = "unlearned"  # Explicitly removed; terminal


def generate_id() -> str:
    """Generate a unique, sortable ID using ULID."""
    return str(ulid.new())


def compute_content_hash(data: dict[str, Any]) -> str:
    """
    Compute a content-addressable hash for data.

    Used to detect identical re-submissions and to fingerprint queries.
    """
    serialized = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(serialized.encode()).hexdigest()[:16]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Entity(BaseModel):
    """
    A named node in the graph.

    Entities are created on first reference and are pruned only once the
    last fact referencing them has been unlearned.
    """

    id: str = Field(..., description="Stable identifier supplied by scanners")
    kind: EntityKind = Field(default=EntityKind.SERVICE, description="Entity kind")
    name: str = Field(default="", description="Display name")
    attributes: dict[str, Any] = Field(default_factory=dict, description="Free-form attributes")
    created_version: int = Field(..., ge=0, description="Version that created this entity")
    modified_version: int = Field(..., ge=0, description="Version of the last modification")

    model_config = {"frozen": True, "extra": "forbid"}

    def model_post_init(self, __context: Any) -> None:
        """Default the display name to the identifier."""
        if not self.name:
            object.__setattr__(self, "name", self.id)


class Fact(BaseModel):
    """
    An atomic statement about an entity.

    The object is either another entity (``object_entity``), which makes the
    fact define an edge, or a literal value (``object_value``).
    """

    id: str = Field(default_factory=generate_id, description="Unique, sortable fact id")
    subject: str = Field(..., description="Subject entity id")
    predicate: str = Field(..., description="Relationship or attribute name")
    object_entity: Optional[str] = Field(default=None, description="Object entity id")
    object_value: Any = Field(default=None, description="Literal object value")

    confidence: float = Field(default=1.0, ge=0.0, le=1.0, description="Confidence score [0, 1]")
    sensitivity: Sensitivity = Field(default=Sensitivity.PUBLIC, description="Sensitivity label")
    source: str = Field(..., description="Scanner/source reference")

    created_version: int = Field(..., ge=0, description="Version that created this fact")
    status: FactStatus = Field(default=FactStatus.ACTIVE, description="Lifecycle status")
    retired_version: Optional[int] = Field(
        default=None,
        description="Version at which the fact was superseded or unlearned"
    )
    content_hash: Optional[str] = Field(default=None, description="Hash of the statement")

    model_config = {"frozen": True, "extra": "forbid"}

    def model_post_init(self, __context: Any) -> None:
        """Compute the content hash after initialization."""
        if self.content_hash is None:
            object.__setattr__(self, "content_hash", compute_content_hash(self.statement()))

    def statement(self) -> dict[str, Any]:
        """The content that identifies an identical re-submission."""
        return {
            "subject": self.subject,
            "predicate": self.predicate,
            "object_entity": self.object_entity,
            "object_value": self.object_value,
            "confidence": self.confidence,
            "sensitivity": self.sensitivity.value,
            "source": self.source,
        }

    @property
    def is_edge(self) -> bool:
        """True if the object is an entity reference."""
        return self.object_entity is not None

    def is_active(self) -> bool:
        return self.status == FactStatus.ACTIVE

    def entity_ids(self) -> list[str]:
        """Entities this fact references."""
        if self.object_entity is not None:
            return [self.subject, self.object_entity]
        return [self.subject]

    def embedding_text(self) -> str:
        """Text handed to the embedding function."""
        obj = self.object_entity if self.is_edge else self.object_value
        return f"{self.subject} {self.predicate.replace('_', ' ')} {obj}"

    def retire(self, status: FactStatus, version: int) -> Fact:
        """
        Return a tombstoned copy of this fact.

        Unlearned tombstones drop their literal value; the content hash is kept.
        """
        if status == FactStatus.ACTIVE:
            raise ValueError("retire() requires a terminal status")
        update: dict[str, Any] = {"status": status, "retired_version": version}
        if status == FactStatus.UNLEARNED and not self.is_edge:
            update["object_value"] = REDACTION_MARKER
        return self.model_copy(update=update)

    def active_at(self, version: int) -> bool:
        """Whether this fact was active at the given version."""
        if self.created_version > version:
            return False
        return self.retired_version is None or self.retired_version > version


def supersession_key(fact: Fact, multi_valued: frozenset[str] = frozenset()) -> tuple:
    """
    Key under which a newer fact supersedes an older one.

    Single-valued predicates keep one active fact per (subject, predicate);
    multi-valued predicates keep one per (subject, predicate, object).
    """
    if fact.predicate in multi_valued:
        obj = fact.object_entity if fact.is_edge else json.dumps(fact.object_value, default=str)
        return (fact.subject, fact.predicate, obj)
    return (fact.subject, fact.predicate)


class RawFact(BaseModel):
    """
    A fact record as produced by a scanner.

    Setting ``object_kind`` declares ``object`` to be an entity reference;
    otherwise ``object`` is a literal value.
    """

    subject: str = Field(..., description="Subject entity id")
    predicate: str = Field(..., description="Predicate")
    object: Any = Field(..., description="Object entity id or literal value")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0, description="Confidence score")
    source: str = Field(..., description="Source reference (repository, file, API)")
    sensitivity_hint: Optional[Sensitivity] = Field(
        default=None,
        description="Scanner's own sensitivity estimate"
    )

    subject_kind: EntityKind = Field(default=EntityKind.SERVICE)
    subject_name: Optional[str] = Field(default=None)
    object_kind: Optional[EntityKind] = Field(default=None)
    object_name: Optional[str] = Field(default=None)
    attributes: dict[str, Any] = Field(
        default_factory=dict,
        description="Attributes merged into the subject entity"
    )

    model_config = {"extra": "forbid"}

    @field_validator("subject", "predicate", "source")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Ensure identifying fields are not empty."""
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @model_validator(mode="after")
    def validate_object(self) -> RawFact:
        """Entity references must be non-empty strings; literals must be present."""
        if self.object is None:
            raise ValueError("object must not be null")
        if self.object_kind is not None:
            if not isinstance(self.object, str) or not self.object.strip():
                raise ValueError("entity object must be a non-empty identifier")
            self.object = self.object.strip()
        return self

    @property
    def is_edge(self) -> bool:
        return self.object_kind is not None

    @classmethod
    def parse(cls, record: Any, index: Optional[int] = None) -> RawFact:
        """
        Build a RawFact from a scanner record.

        Raises:
            MalformedFact: If the record does not have the expected shape
        """
        if isinstance(record, RawFact):
            return record
        if not isinstance(record, dict):
            raise MalformedFact(
                f"fact record must be a mapping, got {type(record).__name__}",
                index=index,
            )
        try:
            return cls.model_validate(record)
        except ValidationError as e:
            raise MalformedFact(
                f"malformed fact record: {e.error_count()} validation error(s)",
                index=index,
                details=e.errors(include_url=False),
            ) from e


class RedactedStub(BaseModel):
    """
    Audit remainder of a fact the privacy filter did not accept.

    The original predicate and literal value are gone; only the subject,
    the sensitivity marker and the decision survive.
    """

    id: str = Field(default_factory=generate_id, description="Stub id")
    subject: str = Field(..., description="Subject entity id")
    marker: str = Field(..., description="Sensitivity marker replacing the predicate")
    decision: Decision = Field(..., description="redact or reject")
    sensitivity: Sensitivity = Field(..., description="Assigned sensitivity label")
    reason_code: str = Field(..., description="Rule that triggered the decision")
    source: str = Field(..., description="Source reference")
    recorded_at: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("decision")
    @classmethod
    def validate_decision(cls, v: Decision) -> Decision:
        if v == Decision.ACCEPT:
            raise ValueError("accepted facts do not produce stubs")
        return v
