"""
Core utilities for factgraph.
"""
from .audit_log import AuditEntry, AuditLog

__all__ = [
    "AuditEntry",
    "AuditLog",
]
