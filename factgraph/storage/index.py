"""
Vector index for factgraph.

Maps fact ids to embedding vectors and answers nearest-neighbor queries by
cosine similarity. Only active, privacy-accepted facts ever have an entry;
the consistency coordinator is the only writer.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from threading import RLock
from typing import Callable, Iterable, Optional, Sequence

import numpy as np


@dataclass(frozen=True)
class _Matrix:
    """Immutable published form of the index: ids and unit-normalized rows."""

    ids: tuple[str, ...] = ()
    rows: np.ndarray = field(default_factory=lambda: np.zeros((0, 0), dtype=np.float64))
    raw: dict[str, tuple[float, ...]] = field(default_factory=dict)


class VectorIndex(ABC):
    """
    Abstract base class for vector indexes.

    Implementations:
        - InMemoryVectorIndex: numpy matrix, exact search
    """

    @abstractmethod
    def index(self, fact_id: str, vector: Sequence[float]) -> None:
        """Add or replace the vector for a fact."""
        pass

    @abstractmethod
    def remove(self, fact_id: str) -> bool:
        """Remove a fact's vector. Returns False if it was not indexed."""
        pass

    @abstractmethod
    def query(
        self,
        vector: Sequence[float],
        k: int,
        filter_predicate: Optional[Callable[[str], bool]] = None,
    ) -> list[tuple[str, float]]:
        """Top-k (fact id, cosine similarity), best first, ties by fact id."""
        pass

    @abstractmethod
    def similarity(self, fact_id: str, vector: Sequence[float]) -> Optional[float]:
        """Cosine similarity between an indexed fact and a vector."""
        pass

    @abstractmethod
    def get_vector(self, fact_id: str) -> Optional[list[float]]:
        """The vector stored for a fact, exactly as indexed."""
        pass

    @abstractmethod
    def ids(self) -> set[str]:
        """Ids of all indexed facts."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every vector."""
        pass

    def index_many(self, vectors: dict[str, Sequence[float]]) -> None:
        for fact_id, vector in vectors.items():
            self.index(fact_id, vector)

    def remove_many(self, fact_ids: Iterable[str]) -> None:
        for fact_id in fact_ids:
            self.remove(fact_id)

    def __len__(self) -> int:
        return len(self.ids())


class InMemoryVectorIndex(VectorIndex):
    """
    Exact in-memory vector index backed by a numpy matrix.

    Thread Safety:
        Writers serialize on a lock and publish a new immutable matrix;
        queries read the current matrix reference without locking, so a
        query sees either all or none of a concurrent write.

    Usage:
        ```python
        index = InMemoryVectorIndex()
        index.index("f1", [1.0, 0.0])
        index.index("f2", [0.6, 0.8])
        index.query([1.0, 0.0], k=1)  # [("f1", 1.0)]
        ```
    """

    def __init__(self, dimension: Optional[int] = None):
        """
        Initialize the index.

        Args:
            dimension: Fixed vector dimension; taken from the first vector if omitted
        """
        self._dimension = dimension
        self._lock = RLock()
        self._matrix = _Matrix()

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def _validate(self, vector: Sequence[float]) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float64)
        if arr.ndim != 1 or arr.size == 0:
            raise ValueError("vector must be a non-empty 1-D sequence")
        if self._dimension is not None and arr.size != self._dimension:
            raise ValueError(f"expected dimension {self._dimension}, got {arr.size}")
        if not np.all(np.isfinite(arr)):
            raise ValueError("vector contains non-finite values")
        if float(np.linalg.norm(arr)) == 0.0:
            raise ValueError("vector has zero norm")
        return arr

    @staticmethod
    def _build(raw: dict[str, tuple[float, ...]]) -> _Matrix:
        ids = tuple(sorted(raw))
        if not ids:
            return _Matrix()
        rows = np.array([raw[i] for i in ids], dtype=np.float64)
        rows = rows / np.linalg.norm(rows, axis=1, keepdims=True)
        return _Matrix(ids=ids, rows=rows, raw=raw)

    def index(self, fact_id: str, vector: Sequence[float]) -> None:
        with self._lock:
            arr = self._validate(vector)
            if self._dimension is None:
                self._dimension = int(arr.size)
            raw = dict(self._matrix.raw)
            raw[fact_id] = tuple(float(x) for x in vector)
            self._matrix = self._build(raw)

    def index_many(self, vectors: dict[str, Sequence[float]]) -> None:
        """Add several vectors with a single rebuild; all or nothing."""
        if not vectors:
            return
        with self._lock:
            arrays = {fact_id: self._validate(v) for fact_id, v in vectors.items()}
            sizes = {a.size for a in arrays.values()}
            if len(sizes) != 1:
                raise ValueError("vectors in one batch must share a dimension")
            if self._dimension is None:
                self._dimension = int(sizes.pop())
            raw = dict(self._matrix.raw)
            for fact_id, vector in vectors.items():
                raw[fact_id] = tuple(float(x) for x in vector)
            self._matrix = self._build(raw)

    def remove(self, fact_id: str) -> bool:
        with self._lock:
            if fact_id not in self._matrix.raw:
                return False
            raw = dict(self._matrix.raw)
            del raw[fact_id]
            self._matrix = self._build(raw)
            return True

    def remove_many(self, fact_ids: Iterable[str]) -> None:
        with self._lock:
            raw = dict(self._matrix.raw)
            removed = False
            for fact_id in fact_ids:
                if raw.pop(fact_id, None) is not None:
                    removed = True
            if removed:
                self._matrix = self._build(raw)

    def query(
        self,
        vector: Sequence[float],
        k: int,
        filter_predicate: Optional[Callable[[str], bool]] = None,
    ) -> list[tuple[str, float]]:
        matrix = self._matrix
        if k <= 0 or not matrix.ids:
            return []
        arr = self._validate(vector)
        scores = matrix.rows @ (arr / np.linalg.norm(arr))

        # Ids are sorted, so a stable sort on -score breaks ties by id.
        order = np.argsort(-scores, kind="stable")
        results: list[tuple[str, float]] = []
        for position in order:
            fact_id = matrix.ids[position]
            if filter_predicate is not None and not filter_predicate(fact_id):
                continue
            results.append((fact_id, float(scores[position])))
            if len(results) >= k:
                break
        return results

    def similarity(self, fact_id: str, vector: Sequence[float]) -> Optional[float]:
        matrix = self._matrix
        if fact_id not in matrix.raw:
            return None
        arr = self._validate(vector)
        position = matrix.ids.index(fact_id)
        return float(matrix.rows[position] @ (arr / np.linalg.norm(arr)))

    def get_vector(self, fact_id: str) -> Optional[list[float]]:
        raw = self._matrix.raw.get(fact_id)
        return list(raw) if raw is not None else None

    def ids(self) -> set[str]:
        return set(self._matrix.ids)

    def vectors(self) -> dict[str, list[float]]:
        """Copy of every stored vector, keyed by fact id."""
        return {fact_id: list(v) for fact_id, v in self._matrix.raw.items()}

    def clear(self) -> None:
        with self._lock:
            self._matrix = _Matrix()

    def __len__(self) -> int:
        return len(self._matrix.ids)
