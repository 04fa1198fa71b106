# ==============================
# Testing Fixtures
# ==============================
from __future__ import annotations

import sys
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from kbcore.config.schema import Settings
from kbcore.embeddings.base import EmbeddingProvider
from kbcore.embeddings.providers.local_provider import LocalHashingProvider
from kbcore.errors import ProviderUnavailable
from kbcore.knowledge.base import KnowledgeRecord, RecordMetadata
from kbcore.knowledge.corpus import Corpus
from kbcore.knowledge.quality import QualityScorer
from kbcore.knowledge.store import KnowledgeStore
from kbcore.service import KnowledgeService
from kbcore.storage.in_memory import InMemoryCorpusBackend
from gateway.api.http_app import create_app
from gateway.api import deps as gateway_deps

START = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, *, days: float = 0, seconds: float = 0) -> None:
        self.now = self.now + timedelta(days=days, seconds=seconds)


class FakeEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic stub matching the provider interface.

    Vectors are derived from the local hashing provider so similarity still
    follows token overlap. Flip `failing` to simulate an outage, set `delay`
    to simulate a slow provider, or list texts in `fail_on` to fail only
    those inputs.
    """

    name = "fake"

    def __init__(self, *, dimension: int = 64) -> None:
        self._inner = LocalHashingProvider(dimension=dimension)
        self.failing = False
        self.delay = 0.0
        self.fail_on: List[str] = []
        self.calls: List[List[str]] = []
        self._lock = threading.Lock()

    @property
    def dimension(self) -> int:
        return self._inner.dimension

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        with self._lock:
            self.calls.append(list(texts))
        if self.delay:
            time.sleep(self.delay)
        if self.failing:
            raise ProviderUnavailable("simulated provider outage")
        if any(marker in t for t in texts for marker in self.fail_on):
            raise ProviderUnavailable("simulated per-input failure")
        return self._inner.embed_batch(texts)

    def fit(self, texts: Sequence[str]) -> None:
        self._inner.fit(texts)

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)


def build_record(
    record_id: str,
    title: str,
    text: str,
    *,
    file: str = "best-practices",
    category: Optional[str] = None,
    quality: float = 0.5,
    source: str = "docs",
    updated_at: datetime = START,
) -> KnowledgeRecord:
    return KnowledgeRecord(
        id=record_id,
        file=file,
        category=category,
        body={"title": title, "text": text},
        metadata=RecordMetadata(
            source=source,
            created_at=updated_at,
            updated_at=updated_at,
            quality_score=quality,
        ),
    )


@pytest.fixture
def make_record():
    """Factory for records with explicit ids (deterministic ordering)."""
    return build_record


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Offline settings: in-memory corpus, local embeddings, no sweeper."""
    return Settings.model_validate(
        {
            "app": {"paths": {"repo_root": str(tmp_path), "storage_dir": str(tmp_path / "storage")}},
            "storage": {"backend": "memory"},
            "cache": {"sweep_interval_seconds": 0},
            "embeddings": {"provider": "local", "local_dimension": 64},
            "logging": {"console": False},
        }
    )


@pytest.fixture
def corpus() -> Corpus:
    return Corpus()


@pytest.fixture
def store(corpus: Corpus, clock: FixedClock) -> KnowledgeStore:
    return KnowledgeStore(corpus, InMemoryCorpusBackend(), scorer=QualityScorer(clock=clock), clock=clock)


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def service(settings: Settings, clock: FixedClock, fake_provider: FakeEmbeddingProvider) -> Iterator[KnowledgeService]:
    svc = KnowledgeService.from_settings(
        settings,
        backend=InMemoryCorpusBackend(),
        provider=fake_provider,
        clock=clock,
    )
    yield svc
    svc.close()


@pytest.fixture
def app_client(service: KnowledgeService) -> Iterator[TestClient]:
    """FastAPI test client wired to the provided service."""
    gateway_deps.get_service.cache_clear()
    gateway_deps.get_settings.cache_clear()
    app = create_app()
    app.dependency_overrides[gateway_deps.get_service] = lambda: service
    client = TestClient(app)
    yield client
    client.close()
