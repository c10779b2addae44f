"""
Error taxonomy for factgraph.

Recoverable conditions (privacy rejections, unknown entities during a
traversal, idempotent unlearns) are turned into structured results by the
callers that can handle them. ``IndexDivergence`` is the only error that
indicates the core graph/vector invariant has broken.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from factgraph.core.models import RedactedStub
    from factgraph.privacy.filter import Classification


class FactGraphError(Exception):
    """Base class for all factgraph errors."""

    #: Short machine-readable code reported by outer surfaces.
    code = "factgraph_error"


class MalformedFact(FactGraphError):
    """
    Raised when a raw fact record does not have the expected shape.

    Attributes:
        index: Position of the offending record in its batch, if known
        details: Validation details
    """

    code = "malformed_fact"

    def __init__(self, message: str, index: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.index = index
        self.details = details


class PrivacyViolation(FactGraphError):
    """
    Raised when the privacy filter redacts or rejects a fact.

    Logged and converted into an audit stub by the ingestion pipeline,
    never treated as fatal.
    """

    code = "privacy_violation"

    def __init__(self, classification: "Classification", stub: "RedactedStub"):
        super().__init__(
            f"fact from {classification.source!r} was {classification.decision.value}ed "
            f"({classification.reason_code})"
        )
        self.classification = classification
        self.stub = stub


class UnknownEntity(FactGraphError):
    """Raised when a traversal or unlearn target entity does not exist."""

    code = "unknown_entity"

    def __init__(self, entity_id: str):
        super().__init__(f"Unknown entity: {entity_id}")
        self.entity_id = entity_id


class UnknownFact(FactGraphError):
    """Raised when an unlearn target fact id was never recorded."""

    code = "unknown_fact"

    def __init__(self, fact_id: str):
        super().__init__(f"Unknown fact: {fact_id}")
        self.fact_id = fact_id


class IngestionConflict(FactGraphError):
    """
    Raised when a batch fails mid-commit (embedding or write failure).

    The whole batch has been rolled back when this is raised; callers may
    retry the same batch.
    """

    code = "ingestion_conflict"


class IndexDivergence(FactGraphError):
    """
    The vector index and the graph disagree on the active fact set.

    Attributes:
        missing: Active fact ids with no vector
        extra: Vector ids with no active fact
    """

    code = "index_divergence"

    def __init__(self, missing: set[str], extra: set[str]):
        super().__init__(
            f"Vector index diverged from graph: {len(missing)} missing, {len(extra)} extra"
        )
        self.missing = missing
        self.extra = extra


class QueryAborted(FactGraphError):
    """A query stopped before completing; no partial results are returned."""

    code = "query_aborted"


class QueryTimeout(QueryAborted):
    """The query exceeded its deadline."""

    code = "query_timeout"


class QueryCancelled(QueryAborted):
    """The caller cancelled the query."""

    code = "query_cancelled"
