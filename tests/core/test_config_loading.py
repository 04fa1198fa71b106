# ==============================
# Config Precedence Tests
# ==============================
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from kbcore.config.loader import load_settings

ROOT = Path(__file__).resolve().parents[2]


def _write_yaml(path, body: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(body), encoding="utf-8")


def _base_configs(root) -> None:
    _write_yaml(root / "configs" / "app.yaml", """\
    host: config-host
    port: 1111
    paths:
      storage_dir: storage
    """)
    _write_yaml(root / "configs" / "search.yaml", """\
    min_score: 0.2
    term_expansions:
      mf: [microflow]
    vector:
      timeout_seconds: 1.5
    fusion:
      vector_weight: 0.5
    """)
    _write_yaml(root / "configs" / "knowledge.yaml", """\
    stale_horizon_days: 90
    quality:
      recency_floor: 0.1
    """)


def test_config_precedence(tmp_path) -> None:
    repo_root = tmp_path / "repo"
    repo_root.mkdir()
    _base_configs(repo_root)

    secrets_path = repo_root / "secrets" / "secrets.yaml"
    _write_yaml(secrets_path, """\
    secrets:
      openai_api_key: secret-key
    """)

    env = {"KBASE__APP__PORT": "3333", "KBASE__FUSION__VECTOR_WEIGHT": "0.7", "UNRELATED": "x"}
    settings = load_settings(repo_root=str(repo_root), secrets_file=str(secrets_path), env=env)

    assert settings.app.host == "config-host"
    assert settings.app.port == 3333
    assert settings.search.min_score == 0.2
    assert settings.search.term_expansions == {"mf": ["microflow"]}
    assert settings.vector.timeout_seconds == 1.5
    assert settings.fusion.vector_weight == 0.7
    assert settings.fusion.keyword_weight == 0.4
    assert settings.knowledge.stale_horizon_days == 90
    assert settings.quality.recency_floor == 0.1
    assert settings.embeddings.openai.api_key == "secret-key"
    assert settings.app.paths.repo_root == str(repo_root.resolve())
    assert settings.storage_path() == repo_root.resolve() / "storage"


def test_dotenv_fills_but_real_env_wins(tmp_path) -> None:
    repo_root = tmp_path / "repo"
    repo_root.mkdir()
    _base_configs(repo_root)
    (repo_root / ".env").write_text(
        "# local overrides\nKBASE__APP__PORT=1234\nKBASE__EMBEDDINGS__PROVIDER='local'\nKBASE__CACHE__ENABLED=false\n",
        encoding="utf-8",
    )

    settings = load_settings(repo_root=str(repo_root), env={"KBASE__APP__PORT": "9999"})

    assert settings.app.port == 9999
    assert settings.embeddings.provider == "local"
    assert settings.cache.enabled is False


def test_secrets_hydrate_azure_provider(tmp_path) -> None:
    repo_root = tmp_path / "repo"
    repo_root.mkdir()
    env = {
        "KBASE__SECRETS__AZURE_OPENAI_API_KEY": "az-key",
        "KBASE__SECRETS__AZURE_OPENAI_ENDPOINT": "https://example.openai.azure.com",
    }
    settings = load_settings(repo_root=str(repo_root), env=env)
    assert settings.embeddings.azure.api_key == "az-key"
    assert settings.embeddings.azure.endpoint == "https://example.openai.azure.com"


def test_shipped_configs_load() -> None:
    settings = load_settings(repo_root=str(ROOT), secrets_file=str(ROOT / "missing.yaml"), dotenv_file=str(ROOT / "missing.env"), env={})

    assert settings.search.weights.coverage == 0.5
    assert settings.search.weights.proximity == 0.3
    assert settings.search.weights.quality == 0.2
    assert settings.fusion.keyword_weight == 0.4
    assert settings.fusion.vector_weight == 0.6
    assert settings.fusion.rrf_k == 60
    assert settings.knowledge.duplicate_threshold == 0.8
    assert settings.quality.weights.source_reliability == 0.4
    assert settings.cache.strategy == "lru"


def test_unknown_keys_are_rejected(tmp_path) -> None:
    repo_root = tmp_path / "repo"
    _write_yaml(repo_root / "configs" / "cache.yaml", "max_entries: 5\n")
    with pytest.raises(ValueError):
        load_settings(repo_root=str(repo_root), env={})
