"""
Snapshot persistence for factgraph.

A ``SnapshotStore`` keeps ``SnapshotDump`` documents. Restoring the latest
dump must reproduce the graph and the vector index exactly, so stores
serialize the dump with pydantic and never transform its contents.
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from factgraph.core.version import SnapshotDump


logger = logging.getLogger(__name__)


class SnapshotStore(ABC):
    """
    Abstract base class for snapshot stores.

    Implementations:
        - JsonSnapshotStore: A single JSON document, replaced atomically
        - SQLiteSnapshotStore: One row per saved version
    """

    @abstractmethod
    def save(self, dump: SnapshotDump) -> None:
        """Persist a dump."""
        pass

    @abstractmethod
    def load_latest(self) -> Optional[SnapshotDump]:
        """The most recently saved dump, or None if nothing was saved."""
        pass

    def close(self) -> None:
        """Release any resources held by the store."""
        pass


class JsonSnapshotStore(SnapshotStore):
    """
    Stores the latest dump as one JSON file.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash never leaves a truncated snapshot behind.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def save(self, dump: SnapshotDump) -> None:
        payload = dump.model_dump_json(indent=2)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Saved snapshot v%d to %s", dump.version, self.path)

    def load_latest(self) -> Optional[SnapshotDump]:
        if not self.path.exists():
            return None
        return SnapshotDump.model_validate_json(self.path.read_text(encoding="utf-8"))
