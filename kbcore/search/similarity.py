# ==============================
# Similarity Backend
# ==============================
"""
Vector storage + nearest-neighbour query, called only by the Vector Index.

Rules:
- The first stored vector fixes the dimension; a vector of any other
  dimension raises IndexCorruption.
- query() returns raw cosine similarity in [-1, 1], best first, ties by id.
- Zero vectors are stored but never match (cosine undefined -> 0).
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from kbcore.errors import IndexCorruption


class SimilarityBackend(ABC):
    @abstractmethod
    def upsert(self, record_id: str, vector: Sequence[float], metadata: Optional[Dict[str, Any]] = None) -> None:
        raise NotImplementedError

    def upsert_many(self, items: Iterable[Tuple[str, Sequence[float], Optional[Dict[str, Any]]]]) -> None:
        for record_id, vector, metadata in items:
            self.upsert(record_id, vector, metadata)

    @abstractmethod
    def query(self, vector: Sequence[float], top_k: int) -> List[Tuple[str, float]]:
        raise NotImplementedError

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def count(self) -> int:
        raise NotImplementedError

    @property
    @abstractmethod
    def dimension(self) -> Optional[int]:
        raise NotImplementedError

    def metadata(self, record_id: str) -> Dict[str, Any]:
        return {}


class InMemorySimilarityBackend(SimilarityBackend):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._vectors: Dict[str, np.ndarray] = {}
        self._metadata: Dict[str, Dict[str, Any]] = {}
        self._dimension: Optional[int] = None

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def upsert(self, record_id: str, vector: Sequence[float], metadata: Optional[Dict[str, Any]] = None) -> None:
        arr = np.asarray(vector, dtype=np.float64)
        if arr.ndim != 1 or arr.size == 0:
            raise IndexCorruption("Vector must be a non-empty 1-d sequence.", details={"record_id": record_id})
        norm = float(np.linalg.norm(arr))
        unit = arr / norm if norm > 0.0 else arr
        with self._lock:
            if self._dimension is None:
                self._dimension = int(arr.size)
            elif arr.size != self._dimension:
                raise IndexCorruption(
                    "Vector dimension mismatch.",
                    details={"record_id": record_id, "expected": self._dimension, "received": int(arr.size)},
                )
            self._vectors[record_id] = unit
            self._metadata[record_id] = dict(metadata or {})

    def query(self, vector: Sequence[float], top_k: int) -> List[Tuple[str, float]]:
        q = np.asarray(vector, dtype=np.float64)
        with self._lock:
            if not self._vectors or top_k <= 0:
                return []
            if q.size != self._dimension:
                raise IndexCorruption(
                    "Query vector dimension mismatch.",
                    details={"expected": self._dimension, "received": int(q.size)},
                )
            ids = sorted(self._vectors)
            matrix = np.vstack([self._vectors[i] for i in ids])
        norm = float(np.linalg.norm(q))
        if norm == 0.0:
            return []
        scores = matrix @ (q / norm)
        ranked = sorted(zip(ids, scores.tolist()), key=lambda kv: (-kv[1], kv[0]))
        return [(i, float(s)) for i, s in ranked[:top_k]]

    def delete(self, record_id: str) -> bool:
        with self._lock:
            self._metadata.pop(record_id, None)
            return self._vectors.pop(record_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._vectors.clear()
            self._metadata.clear()
            self._dimension = None

    def count(self) -> int:
        with self._lock:
            return len(self._vectors)

    def metadata(self, record_id: str) -> Dict[str, Any]:
        with self._lock:
            return dict(self._metadata.get(record_id, {}))
