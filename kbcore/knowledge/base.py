# ==============================
# Knowledge Layer Contracts
# ==============================
"""
Core knowledge records (domain-agnostic).

Design goals:
- One record shape shared by the store, the indexes and persistence.
- Records are replaced, never mutated in place, once published to the corpus
  (copy-on-write through model_copy), so index snapshots stay consistent.
- Round-tripping through model_dump(mode="json") / model_validate is lossless.

Invariants:
- id is immutable and never reused.
- metadata.version only increases.
- metadata.history holds prior versions only (snapshot.version < version).
"""

from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_record_id() -> str:
    return f"kr_{uuid.uuid4().hex}"


class SnapshotOutcome(str, Enum):
    SUPERSEDED = "superseded"  # was the current body, replaced by a newer one
    REJECTED = "rejected"  # losing candidate of a merge, never became current


class HistorySnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    body: Dict[str, Any] = Field(default_factory=dict)
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    source: str = Field(default="")
    verified: bool = Field(default=False)
    timestamp: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, ge=1, description="Record version this snapshot belonged to or was compared against")
    outcome: SnapshotOutcome = Field(default=SnapshotOutcome.SUPERSEDED)


class RecordMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: str = Field(..., description="Free-text provenance string")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    usage_count: int = Field(default=0, ge=0)
    last_used_at: Optional[datetime] = Field(default=None)
    verified: bool = Field(default=False)
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    version: int = Field(default=1, ge=1)
    domain_version: Optional[str] = Field(default=None, description="Domain/product version the record targets")
    history: List[HistorySnapshot] = Field(default_factory=list)


class KnowledgeRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_record_id)
    file: str = Field(...)
    category: Optional[str] = Field(default=None)
    body: Dict[str, Any] = Field(default_factory=dict, description="Original payload, preserved verbatim")
    metadata: RecordMetadata

    @property
    def quality_score(self) -> float:
        return self.metadata.quality_score

    @property
    def version(self) -> int:
        return self.metadata.version

    def snapshot(self, *, outcome: SnapshotOutcome = SnapshotOutcome.SUPERSEDED) -> HistorySnapshot:
        return HistorySnapshot(
            body=copy.deepcopy(self.body),
            quality_score=self.metadata.quality_score,
            source=self.metadata.source,
            verified=self.metadata.verified,
            timestamp=self.metadata.updated_at,
            version=self.metadata.version,
            outcome=outcome,
        )


class IngestResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    record: KnowledgeRecord
    merged: bool = False
    quality_score: float = 0.0
    duplicate_of: Optional[str] = Field(default=None, description="Existing record id when merged")
    similarity: Optional[float] = Field(default=None)
    candidate_won: Optional[bool] = Field(default=None, description="For merges: whether the new body replaced the old one")


class ChangeKind(str, Enum):
    CREATED = "created"
    MERGED = "merged"
    UPDATED = "updated"
    DELETED = "deleted"
    USAGE = "usage"


class CorpusChange(BaseModel):
    """Handed to reindex listeners after every successful store mutation."""
    kind: ChangeKind
    record_ids: List[str] = Field(default_factory=list)
    text_changed: bool = Field(default=True, description="False when only counters moved (no reindex needed)")


class StaleRecord(BaseModel):
    record: KnowledgeRecord
    days_old: int
    reasons: List[str] = Field(default_factory=list)
