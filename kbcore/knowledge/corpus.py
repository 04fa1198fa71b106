# ==============================
# Corpus
# ==============================
"""
The in-process set of knowledge records, partitioned by file and category.

Rules:
- One Corpus per service; it is passed by reference, never a module global.
- Records are stored as published (copy-on-write). Callers replace a record by
  put()-ing a new instance; nothing mutates a stored record in place.
- Only the Knowledge Store writes. Indexes read.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from kbcore.knowledge.base import KnowledgeRecord

PartitionKey = Tuple[str, Optional[str]]


class Corpus:
    def __init__(self, records: Optional[Iterable[KnowledgeRecord]] = None) -> None:
        self._lock = threading.RLock()
        self._records: Dict[str, KnowledgeRecord] = {}
        self._partitions: Dict[PartitionKey, List[str]] = {}
        for record in records or []:
            self.put(record)

    # ------------------------------
    # Writes (Knowledge Store only)
    # ------------------------------

    def put(self, record: KnowledgeRecord) -> None:
        with self._lock:
            previous = self._records.get(record.id)
            if previous is not None:
                self._unlink(previous)
            self._records[record.id] = record
            self._partitions.setdefault((record.file, record.category), []).append(record.id)

    def remove(self, record_id: str) -> Optional[KnowledgeRecord]:
        with self._lock:
            record = self._records.pop(record_id, None)
            if record is not None:
                self._unlink(record)
            return record

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._partitions.clear()

    def _unlink(self, record: KnowledgeRecord) -> None:
        key = (record.file, record.category)
        ids = self._partitions.get(key)
        if not ids:
            return
        try:
            ids.remove(record.id)
        except ValueError:
            pass
        if not ids:
            del self._partitions[key]

    # ------------------------------
    # Reads
    # ------------------------------

    def get(self, record_id: str) -> Optional[KnowledgeRecord]:
        with self._lock:
            return self._records.get(record_id)

    def records(self) -> List[KnowledgeRecord]:
        """Point-in-time list, ordered by id for deterministic rebuilds."""
        with self._lock:
            return [self._records[k] for k in sorted(self._records)]

    def partition(self, file: str, category: Optional[str]) -> List[KnowledgeRecord]:
        with self._lock:
            ids = list(self._partitions.get((file, category), []))
            return [self._records[i] for i in ids]

    def files(self) -> Dict[str, int]:
        with self._lock:
            counts: Dict[str, int] = {}
            for (file, _category), ids in self._partitions.items():
                counts[file] = counts.get(file, 0) + len(ids)
            return dict(sorted(counts.items()))

    def categories(self, file: str) -> List[str]:
        with self._lock:
            return sorted(c for (f, c) in self._partitions if f == file and c is not None)

    def __contains__(self, record_id: object) -> bool:
        with self._lock:
            return record_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self) -> Iterator[KnowledgeRecord]:
        return iter(self.records())
