"""
Append-only audit log for compliance review.

Records every privacy classification and every unlearn request. Entries
are kept in memory for inspection and, when a path is configured, written
as JSON lines to a dedicated log file.
"""
from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from pydantic import BaseModel, Field


class AuditEntry(BaseModel):
    """One audit record."""

    category: str = Field(..., description="privacy or unlearn")
    source: str = Field(..., description="Fact source or requesting principal")
    decision: str = Field(..., description="Decision or outcome")
    reason_code: str = Field(..., description="Rule or reason identifier")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    detail: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True, "extra": "forbid"}


class AuditLog:
    """
    Append-only audit trail.

    Fields written per line:
    - timestamp: ISO format datetime
    - category: privacy or unlearn
    - source: where the fact came from, or who asked for the unlearn
    - decision: accept/redact/reject, or the unlearn outcome
    - reason_code: rule that fired
    - detail: extra ids (never literal fact values)
    """

    def __init__(self, log_file: Optional[Path | str] = None):
        """
        Initialize the audit log.

        Args:
            log_file: Optional JSON-lines file. Entries are kept in memory
                regardless.
        """
        self._lock = Lock()
        self._entries: list[AuditEntry] = []
        self._log_file = Path(log_file).expanduser() if log_file else None
        self._logger: Optional[logging.Logger] = None
        self._handler: Optional[logging.Handler] = None

        if self._log_file is not None:
            self._log_file.parent.mkdir(parents=True, exist_ok=True)
            digest = hashlib.sha1(str(self._log_file.resolve()).encode()).hexdigest()[:8]

            # Setup dedicated file logger
            self._logger = logging.getLogger(f"factgraph.audit.{digest}")
            self._logger.setLevel(logging.INFO)
            self._logger.handlers.clear()

            self._handler = logging.FileHandler(self._log_file, encoding="utf-8")
            self._handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(self._handler)

            # Prevent propagation to root logger
            self._logger.propagate = False

    @property
    def log_file(self) -> Optional[Path]:
        return self._log_file

    def record(
        self,
        category: str,
        source: str,
        decision: str,
        reason_code: str,
        **detail: Any,
    ) -> AuditEntry:
        """Append an entry and return it."""
        entry = AuditEntry(
            category=category,
            source=source,
            decision=decision,
            reason_code=reason_code,
            detail=detail,
        )
        with self._lock:
            self._entries.append(entry)
            if self._logger is not None:
                self._logger.info(json.dumps(entry.model_dump(mode="json"), ensure_ascii=False))
        return entry

    def entries(self, category: Optional[str] = None) -> list[AuditEntry]:
        """Copy of recorded entries, optionally filtered by category."""
        with self._lock:
            if category is None:
                return list(self._entries)
            return [e for e in self._entries if e.category == category]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def close(self) -> None:
        """Detach and close the file handler."""
        if self._logger is not None and self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None
