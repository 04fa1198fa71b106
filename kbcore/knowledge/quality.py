# ==============================
# Quality Scoring
# ==============================
"""
Deterministic quality score for knowledge records.

score = w_source * source_reliability
      + w_recency * recency
      + w_usage * usage
      + w_verified * verification

Rules:
- Every component is in [0, 1]; the weighted sum is clamped to [0, 1].
- source_reliability: exact lookup in the source table, then the longest
  table key contained in the source string, then the default.
- recency: 1.0 for a record updated now, decaying linearly to the floor at the
  horizon (and staying there).
- usage: saturating, 1 - exp(-usage_count / usage_scale).
- verification: 1.0 when verified, else 0.0.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from kbcore.config.schema import QualityConfig
from kbcore.knowledge.base import KnowledgeRecord, RecordMetadata, utc_now


class QualityBreakdown(BaseModel):
    source_reliability: float
    recency: float
    usage: float
    verification: float


class QualityReport(BaseModel):
    record_id: str
    overall_score: float
    tier: str
    breakdown: QualityBreakdown
    recommendations: List[str] = Field(default_factory=list)


# (lower bound, label), checked top-down
QUALITY_TIERS = (
    (0.9, "excellent"),
    (0.75, "good"),
    (0.6, "acceptable"),
    (0.4, "questionable"),
    (0.0, "poor"),
)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class QualityScorer:
    def __init__(self, config: Optional[QualityConfig] = None, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.config = config or QualityConfig()
        self._clock = clock
        # longest keys first so "docs.mendix.com" wins over "docs"
        self._contained_keys = sorted(self.config.source_weights, key=len, reverse=True)

    # ------------------------------
    # Components
    # ------------------------------

    def score_source(self, source: Optional[str]) -> float:
        src = (source or "").strip().lower()
        if not src:
            return self.config.default_source_score
        weights = self.config.source_weights
        if src in weights:
            return _clamp(weights[src])
        for key in self._contained_keys:
            if key.lower() in src:
                return _clamp(weights[key])
        return self.config.default_source_score

    def score_recency(self, updated_at: Optional[datetime], now: Optional[datetime] = None) -> float:
        if updated_at is None:
            return self.config.recency_floor
        now = now or self._clock()
        age_days = max(0.0, (now - updated_at).total_seconds() / 86400.0)
        horizon = self.config.recency_horizon_days
        floor = self.config.recency_floor
        if age_days >= horizon:
            return floor
        return _clamp(1.0 - (1.0 - floor) * (age_days / horizon))

    def score_usage(self, usage_count: int) -> float:
        if usage_count <= 0:
            return 0.0
        return _clamp(1.0 - math.exp(-float(usage_count) / self.config.usage_scale))

    @staticmethod
    def score_verification(verified: bool) -> float:
        return 1.0 if verified else 0.0

    # ------------------------------
    # Aggregates
    # ------------------------------

    def breakdown(self, metadata: RecordMetadata, now: Optional[datetime] = None) -> QualityBreakdown:
        return QualityBreakdown(
            source_reliability=round(self.score_source(metadata.source), 4),
            recency=round(self.score_recency(metadata.updated_at, now), 4),
            usage=round(self.score_usage(metadata.usage_count), 4),
            verification=self.score_verification(metadata.verified),
        )

    def score(self, metadata: RecordMetadata, now: Optional[datetime] = None) -> float:
        parts = self.breakdown(metadata, now)
        w = self.config.weights
        total = (
            w.source_reliability * parts.source_reliability
            + w.recency * parts.recency
            + w.usage * parts.usage
            + w.verification * parts.verification
        )
        return round(_clamp(total), 4)

    @staticmethod
    def tier(score: float) -> str:
        for bound, label in QUALITY_TIERS:
            if score >= bound:
                return label
        return "poor"

    def report(self, record: KnowledgeRecord, now: Optional[datetime] = None) -> QualityReport:
        parts = self.breakdown(record.metadata, now)
        overall = self.score(record.metadata, now)
        recommendations: List[str] = []
        if overall < 0.7:
            if not record.metadata.verified:
                recommendations.append("Verify against the official documentation")
            if parts.source_reliability < 0.7:
                recommendations.append("Add a reference to an authoritative source")
            if parts.recency < 0.7:
                recommendations.append("Review and update for the latest domain version")
        return QualityReport(
            record_id=record.id,
            overall_score=overall,
            tier=self.tier(overall),
            breakdown=parts,
            recommendations=recommendations,
        )
