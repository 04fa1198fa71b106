# ==============================
# Config Schemas (Pydantic)
# ==============================
"""
Pydantic settings models for the knowledge engine.

Notes:
- Keep these schemas stable: every component is constructed from them.
- No env reads here. No file IO here. Pure types + defaults.
- loader.py builds a single Settings object with precedence merging.

Precedence (implemented in loader.py):
env > secrets/secrets.yaml > configs/*.yaml > defaults

Numeric defaults (fusion weights, quality weights, horizons) are tuning knobs,
not invariants.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


# ==============================
# App Settings
# ==============================


class PathsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    repo_root: str = Field(default=".", description="Repo root (relative or absolute)")
    configs_dir: str = Field(default="configs", description="Configs directory")
    secrets_dir: str = Field(default="secrets", description="Secrets directory")
    storage_dir: str = Field(default="storage", description="Runtime storage directory")


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    env: str = Field(default="local", description="Environment name (local/stage/prod)")
    debug: bool = Field(default=False)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    paths: PathsConfig = Field(default_factory=PathsConfig)


# ==============================
# Storage Settings
# ==============================


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: str = Field(default="sqlite", description="Corpus backend: sqlite | memory")
    db_path: str = Field(
        default="knowledge.sqlite",
        description="SQLite file, relative to app.paths.storage_dir unless absolute.",
    )


# ==============================
# Cache Settings
# ==============================


class CacheConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True)
    max_size: int = Field(default=100, ge=1)
    default_ttl_seconds: float = Field(default=3600.0, description="<= 0 means entries never expire")
    strategy: str = Field(default="lru", description="Eviction strategy: lru | lfu")
    sweep_interval_seconds: float = Field(default=60.0, description="<= 0 disables the background sweeper")


# ==============================
# Search Settings
# ==============================


class KeywordWeights(BaseModel):
    model_config = ConfigDict(extra="forbid")

    coverage: float = Field(default=0.5, ge=0.0)
    proximity: float = Field(default=0.3, ge=0.0)
    quality: float = Field(default=0.2, ge=0.0)


class SearchConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_results: int = Field(default=10, ge=1)
    min_score: float = Field(default=0.3, ge=0.0, le=1.0)
    weights: KeywordWeights = Field(default_factory=KeywordWeights)
    fuzzy_enabled: bool = Field(default=True)
    fuzzy_max_distance: int = Field(default=2, ge=0)
    fuzzy_min_term_length: int = Field(default=4, ge=1)
    fuzzy_credit: float = Field(default=0.8, ge=0.0, le=1.0, description="Coverage credit for a fuzzy-matched term")
    stopwords: Optional[List[str]] = Field(default=None, description="Override the built-in stopword list")
    stemming: bool = Field(default=True, description="Suffix-strip indexed and query terms")
    stem_rules: Optional[List[Tuple[str, str]]] = Field(
        default=None,
        description="(suffix, replacement) pairs, first match wins. None uses the built-in rules.",
    )
    term_expansions: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Query term -> extra terms (acronyms, domain shorthand).",
    )
    analytics_history: int = Field(default=100, ge=1)
    missed_query_limit: int = Field(default=50, ge=1)


class VectorConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True)
    top_k: int = Field(default=20, ge=1)
    min_score: float = Field(default=0.3, ge=0.0, le=1.0)
    batch_size: int = Field(default=50, ge=1)
    timeout_seconds: float = Field(default=3.0, gt=0.0, description="Bound on every embedding provider call")
    embed_cache_size: int = Field(default=500, ge=1, description="Only used when no shared cache is injected")
    embed_cache_ttl_seconds: float = Field(default=86400.0)


class FusionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    keyword_weight: float = Field(default=0.4, ge=0.0)
    vector_weight: float = Field(default=0.6, ge=0.0)
    rrf_k: int = Field(default=60, ge=1)
    default_limit: int = Field(default=10, ge=1)
    candidate_multiplier: int = Field(default=2, ge=1, description="Sub-search depth = limit * multiplier")


# ==============================
# Embedding Provider Settings
# ==============================


class OpenAIEmbeddingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    api_base: str = Field(default="https://api.openai.com/v1")
    api_key: Optional[str] = Field(default=None, description="Resolved via loader from env/secrets only")
    model: str = Field(default="text-embedding-3-small")
    dimension: int = Field(default=1536)
    batch_size: int = Field(default=100, ge=1)


class AzureEmbeddingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    endpoint: Optional[str] = Field(default=None)
    api_key: Optional[str] = Field(default=None, description="Resolved via loader from env/secrets only")
    deployment: str = Field(default="text-embedding-ada-002")
    api_version: str = Field(default="2024-02-01")
    dimension: int = Field(default=1536)
    batch_size: int = Field(default=16, ge=1)


class EmbeddingsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: str = Field(default="auto", description="auto | azure | openai | local")
    local_dimension: int = Field(default=384, ge=8)
    openai: OpenAIEmbeddingConfig = Field(default_factory=OpenAIEmbeddingConfig)
    azure: AzureEmbeddingConfig = Field(default_factory=AzureEmbeddingConfig)


# ==============================
# Knowledge Store Settings
# ==============================


class KnowledgeConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    files: List[str] = Field(
        default_factory=list,
        description="Allowed knowledge file names. Empty means any file name is accepted.",
    )
    duplicate_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    conflict_detection: bool = Field(default=True)
    max_history: int = Field(default=10, ge=0)
    stale_horizon_days: int = Field(default=180, ge=1)
    superseded_versions: List[str] = Field(
        default_factory=list,
        description="Domain-version tags that mark a record stale regardless of age.",
    )
    track_usage: bool = Field(default=True, description="Increment usage_count for records returned by search")


class QualityWeights(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_reliability: float = Field(default=0.4, ge=0.0)
    recency: float = Field(default=0.2, ge=0.0)
    usage: float = Field(default=0.2, ge=0.0)
    verification: float = Field(default=0.2, ge=0.0)


class QualityConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    weights: QualityWeights = Field(default_factory=QualityWeights)
    source_weights: Dict[str, float] = Field(
        default_factory=lambda: {
            "official-docs": 1.0,
            "docs.mendix.com": 1.0,
            "docs": 0.8,
            "academy": 0.8,
            "github": 0.7,
            "harvest": 0.7,
            "community": 0.6,
            "forum": 0.5,
            "user": 0.5,
        },
        description="Provenance key -> reliability in [0, 1]. Unknown sources score default_source_score.",
    )
    default_source_score: float = Field(default=0.5, ge=0.0, le=1.0)
    recency_horizon_days: float = Field(default=365.0, gt=0.0)
    recency_floor: float = Field(default=0.3, ge=0.0, le=1.0)
    usage_scale: float = Field(default=10.0, gt=0.0, description="Usage count at which the usage score reaches ~63%")


# ==============================
# Logging Settings
# ==============================


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    level: str = Field(default="INFO")
    console: bool = Field(default=True)
    json_lines: bool = Field(default=True, description="Emit JSON lines instead of plain text")


# ==============================
# Secrets Settings
# ==============================


class SecretsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    # Common secret surfaces. Keep optional; loader fills.
    openai_api_key: Optional[str] = Field(default=None)
    azure_openai_api_key: Optional[str] = Field(default=None)
    azure_openai_endpoint: Optional[str] = Field(default=None)


# ==============================
# Top-Level Settings
# ==============================


class Settings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    app: AppConfig = Field(default_factory=AppConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    vector: VectorConfig = Field(default_factory=VectorConfig)
    fusion: FusionConfig = Field(default_factory=FusionConfig)
    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    knowledge: KnowledgeConfig = Field(default_factory=KnowledgeConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    secrets: SecretsConfig = Field(default_factory=SecretsConfig)

    def repo_root_path(self) -> Path:
        return Path(self.app.paths.repo_root).expanduser().resolve()

    def storage_path(self) -> Path:
        storage = Path(self.app.paths.storage_dir).expanduser()
        if not storage.is_absolute():
            storage = self.repo_root_path() / storage
        return storage

    def db_path(self) -> Path:
        db = Path(self.storage.db_path).expanduser()
        if db.is_absolute():
            return db
        return self.storage_path() / db
