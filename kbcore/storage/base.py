# ==============================
# Corpus Backend Contracts
# ==============================
"""
Storage layer is the ONLY place where persistence is allowed.

This module defines:
- CorpusBackend interface used by the Knowledge Store.

Rules:
- No index or provider calls.
- Records go in and come out as KnowledgeRecord; round-trip is lossless
  (id, version, history, timestamps).
- Concrete persistence lives in sqlite_backend.py (or other backends).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from kbcore.knowledge.base import KnowledgeRecord


class CorpusBackend(ABC):
    """
    Minimal set of operations:
    - save / delete one record
    - load everything (startup)
    """

    @abstractmethod
    def save(self, record: KnowledgeRecord) -> None:
        raise NotImplementedError

    def save_many(self, records: Iterable[KnowledgeRecord]) -> None:
        for record in records:
            self.save(record)

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def get(self, record_id: str) -> Optional[KnowledgeRecord]:
        raise NotImplementedError

    @abstractmethod
    def load_all(self) -> List[KnowledgeRecord]:
        raise NotImplementedError

    @abstractmethod
    def count(self) -> int:
        raise NotImplementedError

    # Optional hooks for durable backends so tooling/migrations can introspect.
    def ensure_schema(self) -> None:
        """
        Ensure backing schema exists. In-memory backends can no-op.
        """
        return None

    def get_schema_version(self) -> int:
        """
        Return integer schema version if supported. Defaults to 0.
        """
        return 0
