# ==============================
# Integration fixtures
# ==============================
from __future__ import annotations

import json
from pathlib import Path

import pytest


@pytest.fixture
def kbase_test_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """
    Shared env for integration tests that build their own service from settings.

    Pins the corpus to a throwaway sqlite file and the embeddings to the offline
    provider, so nothing touches the repo's storage dir or the network.
    """
    repo_root = Path(__file__).resolve().parents[2]
    sqlite_path = tmp_path / "integration.sqlite"

    monkeypatch.chdir(repo_root)
    monkeypatch.setenv("KBASE__APP__PATHS__STORAGE_DIR", (tmp_path / "storage").as_posix())
    monkeypatch.setenv("KBASE__STORAGE__BACKEND", "sqlite")
    monkeypatch.setenv("KBASE__STORAGE__DB_PATH", sqlite_path.as_posix())
    monkeypatch.setenv("KBASE__EMBEDDINGS__PROVIDER", "local")
    monkeypatch.setenv("KBASE__LOGGING__CONSOLE", "false")

    return sqlite_path


@pytest.fixture
def harvest_dir(tmp_path: Path) -> Path:
    """A harvested knowledge folder with one well-formed file."""
    data_dir = tmp_path / "harvest"
    data_dir.mkdir()
    (data_dir / "best-practices.json").write_text(
        json.dumps(
            {
                "categories": {
                    "loops": [
                        {"title": "Loop over a list", "text": "Use the Loop activity with an IterableList source."},
                        {"title": "Break out of a loop", "text": "Use the Break event to stop iterating early."},
                    ]
                },
                "items": [
                    {"question": "When should I commit?", "answer": "Commit once after the loop, not inside it."},
                ],
            }
        ),
        encoding="utf-8",
    )
    return data_dir
