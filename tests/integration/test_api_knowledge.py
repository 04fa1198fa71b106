from __future__ import annotations

# ==============================
# Integration: Knowledge API
# ==============================

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from gateway.api.http_app import create_app
import gateway.api.deps as deps

LOOP_BODY = {"title": "Loop over a list", "text": "Use the Loop activity with an IterableList source."}


def _reset_deps() -> None:
    for dep in (deps.get_service, deps.get_settings):
        dep.cache_clear()


@pytest.mark.integration
def test_ingest_search_and_merge_over_http(app_client: TestClient) -> None:
    created = app_client.post(
        "/api/knowledge",
        json={"file": "best-practices", "category": "loops", "body": LOOP_BODY, "source": "docs"},
    )
    assert created.status_code == 200
    payload = created.json()
    assert payload["ok"] is True
    assert payload["meta"] == {"file": "best-practices"}
    record_id = payload["data"]["record"]["id"]
    assert payload["data"]["merged"] is False

    merged = app_client.post(
        "/api/knowledge",
        json={"file": "best-practices", "category": "loops", "body": LOOP_BODY, "source": "official-docs", "verified": True},
    ).json()["data"]
    assert merged["merged"] is True
    assert merged["duplicate_of"] == record_id
    assert merged["record"]["metadata"]["version"] == 2

    found = app_client.get("/api/search", params={"q": "loop activity", "limit": 3}).json()
    assert found["ok"] is True
    assert found["meta"] == {"query": "loop activity", "mode": "hybrid"}
    assert found["data"]["status"] == "ok"
    assert [r["record"]["id"] for r in found["data"]["results"]] == [record_id]

    detail = app_client.get(f"/api/knowledge/{record_id}").json()["data"]
    assert detail["record"]["id"] == record_id
    assert detail["quality"]["record_id"] == record_id
    assert detail["record"]["metadata"]["usage_count"] == 1


@pytest.mark.integration
def test_patch_stale_and_delete(app_client: TestClient, clock) -> None:
    record_id = app_client.post(
        "/api/knowledge", json={"file": "best-practices", "body": LOOP_BODY, "source": "forum"}
    ).json()["data"]["record"]["id"]

    patched = app_client.patch(
        f"/api/knowledge/{record_id}",
        json={"body": {"title": "Nanoflow basics", "text": "Nanoflows run on the client."}},
    )
    assert patched.status_code == 200
    assert patched.json()["data"]["record"]["metadata"]["version"] == 2
    hits = app_client.get("/api/search", params={"q": "nanoflows client", "mode": "keyword"}).json()["data"]
    assert hits["results"][0]["record"]["id"] == record_id

    assert app_client.get("/api/knowledge/stale").json()["data"]["stale_count"] == 0
    clock.advance(days=400)
    stale = app_client.get("/api/knowledge/stale", params={"horizon_days": 180}).json()["data"]
    assert stale["horizon_days"] == 180
    assert stale["stale_count"] == 1
    assert stale["records"][0]["record"]["id"] == record_id

    deleted = app_client.delete(f"/api/knowledge/{record_id}").json()
    assert deleted["data"] == {"deleted": record_id}

    missing = app_client.get(f"/api/knowledge/{record_id}")
    assert missing.status_code == 404
    error = missing.json()["detail"]
    assert error["ok"] is False
    assert error["error"]["code"] == "not_found"
    assert error["meta"] == {"record_id": record_id}


@pytest.mark.integration
def test_validation_errors_map_to_422(app_client: TestClient) -> None:
    bad_body = app_client.post("/api/knowledge", json={"file": "best-practices", "body": {"title": "x"}, "source": "docs"})
    assert bad_body.status_code == 422
    assert bad_body.json()["detail"]["error"]["code"] == "invalid_input"

    bad_mode = app_client.get("/api/search", params={"q": "loop", "mode": "semantic"})
    assert bad_mode.status_code == 422
    assert bad_mode.json()["detail"]["meta"] == {"query": "loop"}

    record_id = app_client.post(
        "/api/knowledge", json={"file": "best-practices", "body": LOOP_BODY, "source": "docs"}
    ).json()["data"]["record"]["id"]
    bad_patch = app_client.patch(f"/api/knowledge/{record_id}", json={"usage_count": 99})
    assert bad_patch.status_code == 422
    assert bad_patch.json()["detail"]["error"]["details"]["allowed"]
    bad_flag = app_client.patch(f"/api/knowledge/{record_id}", json={"verified": "false"})
    assert bad_flag.status_code == 422
    assert bad_flag.json()["detail"]["error"]["details"] == {"field": "verified"}
    assert app_client.get(f"/api/knowledge/{record_id}").json()["data"]["record"]["metadata"]["verified"] is False

    assert app_client.delete("/api/knowledge/kr_missing").status_code == 404


@pytest.mark.integration
def test_stats_gaps_and_reindex(app_client: TestClient) -> None:
    app_client.post("/api/knowledge", json={"file": "best-practices", "body": LOOP_BODY, "source": "docs"})
    app_client.get("/api/search", params={"q": "widget styling", "mode": "keyword"})

    stats = app_client.get("/api/stats").json()["data"]
    assert stats["corpus_size"] == 1
    assert stats["vector_count"] == 1
    assert stats["embedding_provider"] == "fake"
    assert stats["search"]["misses"] == 1

    gaps = app_client.get("/api/analytics/gaps").json()["data"]
    assert gaps["missed_queries"] == ["widget styling"]

    summary = app_client.post("/api/reindex").json()["data"]
    assert summary["keyword"]["entries"] == 1
    assert summary["vector"]["status"] == "ok"
    assert summary["vector"]["indexed"] == 1


@pytest.mark.integration
def test_app_wires_service_from_settings(kbase_test_env: Path) -> None:
    _reset_deps()
    try:
        client = TestClient(create_app())
        resp = client.post("/api/knowledge", json={"file": "best-practices", "body": LOOP_BODY, "source": "docs"})
        assert resp.status_code == 200
        assert client.get("/api/stats").json()["data"]["embedding_provider"] == "local"
        client.close()
    finally:
        if deps.get_service.cache_info().currsize:
            deps.get_service().close()
        _reset_deps()

    assert kbase_test_env.exists()
