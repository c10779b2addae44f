"""
Ingestion pipeline - scanner batches to committed facts.

Orchestrates the following flow:
1. Cap the batch size
2. Parse every record (a malformed record fails the batch before anything
   is classified)
3. Run each record through the privacy filter; redacted and rejected
   records become audit stubs
4. Commit the accepted records as one version

Batches are idempotent under retry: the coordinator treats a record
identical to the active fact for its key as a no-op.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field

from factgraph.core.models import Decision, RawFact, RedactedStub
from factgraph.errors import MalformedFact, PrivacyViolation
from factgraph.privacy.filter import PrivacyFilter
from factgraph.runtime.coordinator import ConsistencyCoordinator


logger = logging.getLogger(__name__)


class SubmissionResult(BaseModel):
    """Outcome of submitting one scanner batch."""

    version: int = Field(..., description="Version after the batch")
    fact_ids: list[str] = Field(default_factory=list, description="Facts made active")
    superseded_fact_ids: list[str] = Field(default_factory=list)
    unchanged_fact_ids: list[str] = Field(default_factory=list)
    stubs: list[RedactedStub] = Field(default_factory=list, description="Audit stubs recorded")
    decisions: list[Decision] = Field(default_factory=list, description="Decision per record, in order")
    noop: bool = Field(default=False, description="True if no version was minted")

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def accepted(self) -> int:
        return sum(1 for d in self.decisions if d == Decision.ACCEPT)


class IngestionPipeline:
    """
    Validates, filters and commits fact batches.

    Usage:
        ```python
        pipeline = IngestionPipeline(privacy, coordinator, max_batch_size=500)
        result = pipeline.submit([
            {"subject": "billing", "predicate": "depends_on", "object": "ledger",
             "object_kind": "service", "source": "repo:billing"},
        ])
        ```
    """

    def __init__(
        self,
        privacy: PrivacyFilter,
        coordinator: ConsistencyCoordinator,
        max_batch_size: int = 500,
    ):
        self._privacy = privacy
        self._coordinator = coordinator
        self._max_batch_size = max_batch_size

    def submit(
        self,
        records: Sequence[RawFact | dict[str, Any]],
        timeout: Optional[float] = None,
    ) -> SubmissionResult:
        """
        Submit a batch of raw fact records.

        Raises:
            MalformedFact: If the batch is too large or any record is malformed
            IngestionConflict: If the commit failed; the batch may be retried
        """
        if len(records) > self._max_batch_size:
            raise MalformedFact(
                f"batch of {len(records)} records exceeds the limit of {self._max_batch_size}"
            )

        parsed = [RawFact.parse(record, index=i) for i, record in enumerate(records)]

        accepted: list[RawFact] = []
        stubs: list[RedactedStub] = []
        decisions: list[Decision] = []
        for raw in parsed:
            try:
                accepted.append(self._privacy.enforce(raw))
                decisions.append(Decision.ACCEPT)
            except PrivacyViolation as e:
                logger.info("Privacy filter withheld a fact: %s", e)
                stubs.append(e.stub)
                decisions.append(e.classification.decision)

        for stub in stubs:
            self._coordinator.store.record_stub(stub)

        if not accepted:
            return SubmissionResult(
                version=self._coordinator.version,
                stubs=stubs,
                decisions=decisions,
                noop=True,
            )

        commit = self._coordinator.commit(accepted, timeout=timeout)
        return SubmissionResult(
            version=commit.version,
            fact_ids=commit.fact_ids,
            superseded_fact_ids=commit.superseded_fact_ids,
            unchanged_fact_ids=commit.unchanged_fact_ids,
            stubs=stubs,
            decisions=decisions,
            noop=commit.noop,
        )
