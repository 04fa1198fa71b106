# ==============================
# Embedding Provider Tests
# ==============================
from __future__ import annotations

from typing import Any, Dict, List

import numpy as np
import pytest
import requests

from kbcore.config.schema import AzureEmbeddingConfig, OpenAIEmbeddingConfig, Settings
from kbcore.embeddings.providers.local_provider import LocalHashingProvider
from kbcore.embeddings.providers.openai_provider import AzureOpenAIEmbeddingProvider, OpenAIEmbeddingProvider
from kbcore.embeddings.router import build_embedding_provider
from kbcore.errors import ProviderUnavailable


class _Response:
    def __init__(self, status_code: int, payload: Any) -> None:
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._payload = payload

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _Session:
    """Records posts; answers with one vector per input, shuffled index order."""

    def __init__(self, *, status_code: int = 200, error: Exception = None, drop_one: bool = False) -> None:
        self.status_code = status_code
        self.error = error
        self.drop_one = drop_one
        self.posts: List[Dict[str, Any]] = []

    def post(self, url: str, *, json: Dict[str, Any], headers: Dict[str, str], timeout: float) -> _Response:
        self.posts.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        rows = [{"index": i, "embedding": [float(i + 1), 0.5]} for i, _ in enumerate(json["input"])]
        if self.drop_one:
            rows = rows[:-1]
        return _Response(self.status_code, {"data": list(reversed(rows)), "usage": {"total_tokens": 3}})


def test_openai_provider_sends_bearer_and_batches() -> None:
    session = _Session()
    provider = OpenAIEmbeddingProvider(
        OpenAIEmbeddingConfig(api_key="sk-test", batch_size=2, dimension=2), timeout=1.5, session=session
    )
    vectors = provider.embed_batch(["a", "b", "c"])

    assert vectors == [[1.0, 0.5], [2.0, 0.5], [1.0, 0.5]]
    assert len(session.posts) == 2
    first = session.posts[0]
    assert first["url"] == "https://api.openai.com/v1/embeddings"
    assert first["headers"]["Authorization"] == "Bearer sk-test"
    assert first["json"] == {"input": ["a", "b"], "model": "text-embedding-3-small"}
    assert first["timeout"] == 1.5


def test_azure_provider_uses_deployment_url_and_api_key() -> None:
    session = _Session()
    provider = AzureOpenAIEmbeddingProvider(
        AzureEmbeddingConfig(endpoint="https://example.openai.azure.com/", api_key="az-key", deployment="embed"),
        session=session,
    )
    provider.embed("hello")

    post = session.posts[0]
    assert post["url"] == "https://example.openai.azure.com/openai/deployments/embed/embeddings?api-version=2024-02-01"
    assert post["headers"]["api-key"] == "az-key"
    assert "Authorization" not in post["headers"]


@pytest.mark.parametrize(
    "session",
    [
        _Session(status_code=503),
        _Session(error=requests.ConnectionError("refused")),
        _Session(drop_one=True),
    ],
)
def test_http_failures_become_provider_unavailable(session: _Session) -> None:
    provider = OpenAIEmbeddingProvider(OpenAIEmbeddingConfig(api_key="sk-test"), session=session)
    with pytest.raises(ProviderUnavailable):
        provider.embed_batch(["a", "b"])


def test_hosted_providers_require_credentials() -> None:
    with pytest.raises(ValueError):
        OpenAIEmbeddingProvider(OpenAIEmbeddingConfig())
    with pytest.raises(ValueError):
        AzureOpenAIEmbeddingProvider(AzureEmbeddingConfig(api_key="only-key"))


def test_local_provider_is_deterministic_and_normalized() -> None:
    provider = LocalHashingProvider(dimension=32)
    first = provider.embed("Loop over a list of objects")
    second = LocalHashingProvider(dimension=32).embed("Loop over a list of objects")

    assert first == second
    assert len(first) == 32
    assert np.linalg.norm(first) == pytest.approx(1.0)
    assert provider.embed("the of and") == [0.0] * 32

    provider = LocalHashingProvider()
    provider.fit(["loop list", "loop commit", "loop retrieve"])
    rare = np.dot(provider.embed("loop list"), provider.embed("list"))
    common = np.dot(provider.embed("loop list"), provider.embed("loop"))
    assert rare > common


def test_router_selection() -> None:
    def _settings(**embeddings) -> Settings:
        return Settings.model_validate({"embeddings": embeddings})

    assert isinstance(build_embedding_provider(_settings()), LocalHashingProvider)
    assert isinstance(build_embedding_provider(_settings(openai={"api_key": "sk"})), OpenAIEmbeddingProvider)
    azure = _settings(openai={"api_key": "sk"}, azure={"api_key": "az", "endpoint": "https://x"})
    assert isinstance(build_embedding_provider(azure), AzureOpenAIEmbeddingProvider)
    assert isinstance(build_embedding_provider(_settings(provider="local", openai={"api_key": "sk"})), LocalHashingProvider)

    with pytest.raises(ValueError):
        build_embedding_provider(_settings(provider="openai"))
    with pytest.raises(ValueError):
        build_embedding_provider(_settings(provider="cohere"))
