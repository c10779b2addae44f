"""
Privacy filter for incoming facts.

Every raw fact passes through ``PrivacyFilter.classify`` before anything is
persisted. The decision is a closed variant (accept, redact, reject) and is
appended to the audit log. Redacted and rejected facts survive only as
``RedactedStub`` records whose predicate and literal value are replaced by
markers.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator, Optional

from pydantic import BaseModel, Field

from factgraph.core.models import (
    REDACTION_MARKER,
    Decision,
    RawFact,
    RedactedStub,
    Sensitivity,
)
from factgraph.core.utils.audit_log import AuditLog
from factgraph.errors import PrivacyViolation
from factgraph.privacy.policy import PrivacyPolicy


logger = logging.getLogger(__name__)


class Classification(BaseModel):
    """
    Outcome of classifying one raw fact.

    ``fact`` is the original record when accepted and a sanitized copy
    otherwise: the predicate becomes the sensitivity marker and a literal
    object becomes ``REDACTION_MARKER``.
    """

    decision: Decision = Field(..., description="accept, redact or reject")
    sensitivity: Sensitivity = Field(..., description="Assigned sensitivity label")
    reason_code: str = Field(..., description="Rule that produced the decision")
    fact: RawFact = Field(..., description="Original (accepted) or sanitized fact")

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def accepted(self) -> bool:
        return self.decision == Decision.ACCEPT

    @property
    def source(self) -> str:
        return self.fact.source

    def to_stub(self) -> RedactedStub:
        """Audit stub for a redacted or rejected fact."""
        if self.accepted:
            raise ValueError("accepted facts do not produce stubs")
        return RedactedStub(
            subject=self.fact.subject,
            marker=self.fact.predicate,
            decision=self.decision,
            sensitivity=self.sensitivity,
            reason_code=self.reason_code,
            source=self.fact.source,
        )


class PrivacyFilter:
    """
    Policy-driven classifier for raw facts.

    Rules are evaluated in the order documented on ``PrivacyPolicy``; the
    first rule that fires decides. Predicates the policy does not know are
    redacted, never accepted.

    Usage:
        ```python
        privacy = PrivacyFilter(audit_log=AuditLog())
        result = privacy.classify({"subject": "billing", "predicate": "depends_on",
                                   "object": "ledger", "object_kind": "service",
                                   "source": "repo:billing"})
        assert result.decision == Decision.ACCEPT
        ```
    """

    def __init__(
        self,
        policy: Optional[PrivacyPolicy] = None,
        audit_log: Optional[AuditLog] = None,
    ):
        """
        Initialize the filter.

        Args:
            policy: Rules to apply (defaults to ``PrivacyPolicy()``)
            audit_log: Where decisions are recorded (a private log if omitted)
        """
        self._policy = policy or PrivacyPolicy()
        self._audit_log = audit_log if audit_log is not None else AuditLog()

    @property
    def policy(self) -> PrivacyPolicy:
        return self._policy

    @property
    def audit_log(self) -> AuditLog:
        return self._audit_log

    def classify(self, raw: RawFact | dict[str, Any]) -> Classification:
        """
        Classify a raw fact and audit the decision.

        Raises:
            MalformedFact: If the record is not a valid fact
        """
        fact = RawFact.parse(raw)
        decision, sensitivity, reason_code = self._evaluate(fact)

        if decision == Decision.ACCEPT:
            classification = Classification(
                decision=decision,
                sensitivity=sensitivity,
                reason_code=reason_code,
                fact=fact,
            )
        else:
            classification = Classification(
                decision=decision,
                sensitivity=sensitivity,
                reason_code=reason_code,
                fact=self._sanitize(fact, sensitivity),
            )

        self._audit_log.record(
            category="privacy",
            source=fact.source,
            decision=decision.value,
            reason_code=reason_code,
            subject=classification.fact.subject,
            sensitivity=sensitivity.value,
        )
        if not classification.accepted:
            logger.debug(
                "Privacy filter %sed fact on %s from %s (%s)",
                decision.value, classification.fact.subject, fact.source, reason_code,
            )
        return classification

    def enforce(self, raw: RawFact | dict[str, Any]) -> RawFact:
        """
        Return the fact if accepted.

        Raises:
            MalformedFact: If the record is not a valid fact
            PrivacyViolation: If the fact was redacted or rejected
        """
        classification = self.classify(raw)
        if not classification.accepted:
            raise PrivacyViolation(classification, classification.to_stub())
        return classification.fact

    def _evaluate(self, fact: RawFact) -> tuple[Decision, Sensitivity, str]:
        """Apply the policy rules in order; the first that fires decides."""
        policy = self._policy
        hint = fact.sensitivity_hint

        if hint == Sensitivity.CREDENTIAL:
            return Decision.REJECT, Sensitivity.CREDENTIAL, "hint.credential"

        if policy.is_denied(fact.subject_kind, fact.predicate):
            return Decision.REJECT, Sensitivity.CONFIDENTIAL, "policy.denied_predicate"

        texts = list(self._inspectable_text(fact))
        for rule in policy.reject_rules:
            if any(rule.compiled.search(text) for text in texts):
                return rule.decision, rule.sensitivity, rule.reason_code

        if hint is not None and hint in policy.redact_hints:
            return Decision.REDACT, hint, f"hint.{hint.value}"

        for rule in policy.redact_rules:
            if any(rule.compiled.search(text) for text in texts):
                return rule.decision, rule.sensitivity, rule.reason_code

        if fact.predicate not in policy.allowed_predicates:
            return Decision.REDACT, hint or Sensitivity.INTERNAL, "policy.unknown_predicate"

        return Decision.ACCEPT, hint or Sensitivity.PUBLIC, "policy.accepted"

    @staticmethod
    def _inspectable_text(fact: RawFact) -> Iterator[str]:
        """Every caller-supplied string: ids, names, predicate, object and attributes."""
        yield fact.subject
        yield fact.predicate
        yield str(fact.object)
        for name in (fact.subject_name, fact.object_name):
            if name is not None:
                yield name
        for key, value in fact.attributes.items():
            yield str(key)
            yield str(value)

    def _matches_rule(self, text: Optional[str]) -> bool:
        if text is None:
            return False
        rules = (*self._policy.reject_rules, *self._policy.redact_rules)
        return any(rule.compiled.search(text) for rule in rules)

    def _sanitize(self, fact: RawFact, sensitivity: Sensitivity) -> RawFact:
        """
        Copy of the fact with no original predicate, literal or attributes.

        Entity ids and names that themselves match a pattern rule are
        replaced by the redaction marker as well.
        """
        obj = fact.object if fact.is_edge and not self._matches_rule(str(fact.object)) else REDACTION_MARKER
        return fact.model_copy(
            update={
                "subject": REDACTION_MARKER if self._matches_rule(fact.subject) else fact.subject,
                "predicate": sensitivity.marker(),
                "object": obj,
                "subject_name": None if self._matches_rule(fact.subject_name) else fact.subject_name,
                "object_name": None if self._matches_rule(fact.object_name) else fact.object_name,
                "attributes": {},
            }
        )
