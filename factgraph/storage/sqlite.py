"""
SQLite snapshot store for factgraph.

Design Philosophy:
    Every saved dump becomes one row keyed by version, so the history of
    persisted snapshots can be inspected with any SQLite client. Loading
    always returns the row with the highest version.

Thread Safety:
    Each thread gets its own connection; writes are serialized with a lock.
    WAL mode lets readers proceed while a snapshot is being written.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from factgraph.core.version import SnapshotDump
from factgraph.storage.snapshot import SnapshotStore


logger = logging.getLogger(__name__)


class SQLiteSnapshotStore(SnapshotStore):
    """
    SQLite-backed snapshot store.

    Usage:
        ```python
        store = SQLiteSnapshotStore("./factgraph.db", keep=5)
        store.save(coordinator.dump())
        latest = store.load_latest()
        ```
    """

    def __init__(self, db_path: str | Path, timeout: float = 30.0, keep: Optional[int] = None):
        """
        Initialize the store.

        Args:
            db_path: Path to the SQLite database file
            timeout: Connection timeout in seconds
            keep: Number of most recent snapshots to retain (all if None)
        """
        self._db_path = Path(db_path)
        self._timeout = timeout
        self._keep = keep
        self._lock = threading.RLock()
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._init_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create a thread-local connection."""
        if getattr(self._local, "conn", None) is None:
            conn = sqlite3.connect(
                str(self._db_path),
                timeout=self._timeout,
                check_same_thread=False,
            )
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            with self._lock:
                self._connections.append(conn)
        return self._local.conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def _init_schema(self) -> None:
        with self._lock:
            with self._transaction() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS snapshots (
                        version INTEGER PRIMARY KEY,
                        taken_at TEXT NOT NULL,
                        fact_count INTEGER NOT NULL,
                        entity_count INTEGER NOT NULL,
                        data TEXT NOT NULL
                    )
                """)

    def save(self, dump: SnapshotDump) -> None:
        with self._lock:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO snapshots
                        (version, taken_at, fact_count, entity_count, data)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        dump.version,
                        dump.taken_at.isoformat(),
                        len(dump.facts),
                        len(dump.entities),
                        dump.model_dump_json(),
                    ),
                )
                if self._keep is not None:
                    conn.execute(
                        """
                        DELETE FROM snapshots WHERE version NOT IN (
                            SELECT version FROM snapshots ORDER BY version DESC LIMIT ?
                        )
                        """,
                        (self._keep,),
                    )
        logger.info("Saved snapshot v%d to %s", dump.version, self._db_path)

    def load_latest(self) -> Optional[SnapshotDump]:
        row = self._get_connection().execute(
            "SELECT data FROM snapshots ORDER BY version DESC LIMIT 1"
        ).fetchone()
        if row is None:
            return None
        return SnapshotDump.model_validate_json(row["data"])

    def versions(self) -> list[int]:
        """Versions of all retained snapshots, ascending."""
        rows = self._get_connection().execute(
            "SELECT version FROM snapshots ORDER BY version"
        ).fetchall()
        return [row["version"] for row in rows]

    def close(self) -> None:
        """Close every connection opened by this store."""
        with self._lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
            self._local = threading.local()
