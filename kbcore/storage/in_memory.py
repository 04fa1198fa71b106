# ==============================
# In-Memory Backend (Dev)
# ==============================
"""
In-memory corpus backend for local dev/testing.

Not durable. Deterministic. No file I/O.
Stores deep copies so callers can't reach into persisted state.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

from kbcore.knowledge.base import KnowledgeRecord
from kbcore.storage.base import CorpusBackend


class InMemoryCorpusBackend(CorpusBackend):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, KnowledgeRecord] = {}

    def save(self, record: KnowledgeRecord) -> None:
        with self._lock:
            self._records[record.id] = record.model_copy(deep=True)

    def delete(self, record_id: str) -> bool:
        with self._lock:
            return self._records.pop(record_id, None) is not None

    def get(self, record_id: str) -> Optional[KnowledgeRecord]:
        with self._lock:
            record = self._records.get(record_id)
            return record.model_copy(deep=True) if record is not None else None

    def load_all(self) -> List[KnowledgeRecord]:
        with self._lock:
            return [self._records[k].model_copy(deep=True) for k in sorted(self._records)]

    def count(self) -> int:
        with self._lock:
            return len(self._records)
