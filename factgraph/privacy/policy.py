"""
Privacy policy definitions.

A policy is plain data: ordered pattern rules, an allow list of known
predicates and a deny list keyed by entity kind. The filter evaluates it;
nothing in here has side effects.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Pattern

from pydantic import BaseModel, Field, field_validator

from factgraph.core.models import Decision, EntityKind, Sensitivity


@lru_cache(maxsize=256)
def _compile(pattern: str) -> Pattern[str]:
    return re.compile(pattern)


class PatternRule(BaseModel):
    """A regular-expression rule applied to predicates and literal values."""

    reason_code: str = Field(..., description="Identifier reported in the audit log")
    pattern: str = Field(..., description="Regular expression (searched, not matched)")
    decision: Decision = Field(..., description="redact or reject")
    sensitivity: Sensitivity = Field(..., description="Label assigned when the rule fires")

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"invalid pattern: {e}") from e
        return v

    @field_validator("decision")
    @classmethod
    def validate_decision(cls, v: Decision) -> Decision:
        if v == Decision.ACCEPT:
            raise ValueError("pattern rules only redact or reject")
        return v

    @property
    def compiled(self) -> Pattern[str]:
        return _compile(self.pattern)


DEFAULT_REJECT_RULES: list[PatternRule] = [
    PatternRule(
        reason_code="pattern.private_key",
        pattern=r"-----BEGIN [A-Z ]*PRIVATE KEY-----",
        decision=Decision.REJECT,
        sensitivity=Sensitivity.CREDENTIAL,
    ),
    PatternRule(
        reason_code="pattern.cloud_access_key",
        pattern=r"\b(AKIA|ASIA)[0-9A-Z]{16}\b",
        decision=Decision.REJECT,
        sensitivity=Sensitivity.CREDENTIAL,
    ),
    PatternRule(
        reason_code="pattern.secret_keyword",
        pattern=(
            r"(?i)(password|passwd|passphrase|secret|api[_\- ]?key|access[_\- ]?key|"
            r"private[_\- ]?key|auth[_\- ]?token|bearer|credential)"
        ),
        decision=Decision.REJECT,
        sensitivity=Sensitivity.CREDENTIAL,
    ),
    PatternRule(
        reason_code="pattern.internal_ip",
        pattern=(
            r"\b(10(\.\d{1,3}){3}|127(\.\d{1,3}){3}|192\.168(\.\d{1,3}){2}|"
            r"172\.(1[6-9]|2\d|3[01])(\.\d{1,3}){2})\b"
        ),
        decision=Decision.REJECT,
        sensitivity=Sensitivity.INTERNAL,
    ),
]

DEFAULT_REDACT_RULES: list[PatternRule] = [
    PatternRule(
        reason_code="pattern.email",
        pattern=r"[\w.+-]+@[\w-]+(\.[\w-]+)+",
        decision=Decision.REDACT,
        sensitivity=Sensitivity.PII,
    ),
]

DEFAULT_ALLOWED_PREDICATES: list[str] = [
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
    "version",
    "language",
    "runtime",
    "framework",
    "protocol",
    "port",
    "method",
    "path",
    "description",
    "team",
    "repository",
]

DEFAULT_DENIED_PREDICATES: dict[EntityKind, list[str]] = {
    EntityKind.CONFIG: ["connection_string", "dsn", "env_value"],
    EntityKind.API_ENDPOINT: ["sample_payload", "sample_response"],
}


class PrivacyPolicy(BaseModel):
    """
    Rules applied by the privacy filter, evaluated in this order:

    1. Scanner hint ``credential`` rejects outright
    2. Deny list keyed by (entity kind, predicate) rejects
    3. Reject pattern rules
    4. Scanner hints ``confidential`` / ``pii`` redact
    5. Redact pattern rules
    6. Predicates outside the allow list redact (fail-safe default)
    7. Everything else is accepted
    """

    reject_rules: list[PatternRule] = Field(default_factory=lambda: list(DEFAULT_REJECT_RULES))
    redact_rules: list[PatternRule] = Field(default_factory=lambda: list(DEFAULT_REDACT_RULES))
    allowed_predicates: set[str] = Field(default_factory=lambda: set(DEFAULT_ALLOWED_PREDICATES))
    denied_predicates: dict[EntityKind, set[str]] = Field(
        default_factory=lambda: {k: set(v) for k, v in DEFAULT_DENIED_PREDICATES.items()}
    )
    redact_hints: set[Sensitivity] = Field(
        default_factory=lambda: {Sensitivity.CONFIDENTIAL, Sensitivity.PII}
    )

    model_config = {"extra": "forbid"}

    def is_denied(self, kind: EntityKind, predicate: str) -> bool:
        return predicate in self.denied_predicates.get(kind, set())

    def allow(self, *predicates: str) -> PrivacyPolicy:
        """Return a copy of this policy with extra allowed predicates."""
        return self.model_copy(
            update={"allowed_predicates": self.allowed_predicates | set(predicates)}
        )
