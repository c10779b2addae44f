"""
Privacy layer for factgraph.

Classifies incoming facts before anything is persisted and keeps an
append-only audit trail of every decision.
"""

from factgraph.privacy.filter import Classification, PrivacyFilter
from factgraph.privacy.policy import PatternRule, PrivacyPolicy

__all__ = [
    "Classification",
    "PrivacyFilter",
    "PatternRule",
    "PrivacyPolicy",
]
