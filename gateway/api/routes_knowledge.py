# ==============================
# Knowledge Routes
# ==============================
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status
from fastapi import HTTPException
from pydantic import BaseModel, Field

from kbcore.errors import KnowledgeEngineError, NotFoundError, ValidationError
from kbcore.service import KnowledgeService
from gateway.api.deps import get_service


router = APIRouter()


class IngestRequest(BaseModel):
    file: str = Field(..., description="Knowledge file (top-level partition)")
    category: Optional[str] = Field(default=None)
    body: Dict[str, Any] = Field(default_factory=dict)
    source: str = Field(..., description="Provenance, e.g. 'official-docs' or 'harvest:<url>@<ts>'")
    verified: bool = Field(default=False)
    domain_version: Optional[str] = Field(default=None)


def _ok(data: Dict[str, Any], *, meta: Dict[str, Any] | None = None) -> Dict[str, Any]:
    return {"ok": True, "data": data, "error": None, "meta": meta or {}}


def _error(
    *,
    http_status: int,
    code: str,
    message: str,
    details: Dict[str, Any] | None = None,
    meta: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    payload = {
        "ok": False,
        "data": None,
        "error": {"code": code, "message": message, "details": details or {}},
        "meta": meta or {},
    }
    raise HTTPException(status_code=http_status, detail=payload)


def _raise_engine_error(err: KnowledgeEngineError, *, meta: Dict[str, Any] | None = None) -> None:
    if isinstance(err, NotFoundError):
        http_status = status.HTTP_404_NOT_FOUND
    elif isinstance(err, ValidationError):
        http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    _error(http_status=http_status, code=err.code.value, message=err.message, details=err.details, meta=meta)


@router.get("/search")
def search(
    q: str,
    limit: Optional[int] = None,
    mode: str = "hybrid",
    service: KnowledgeService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        outcome = service.search(q, limit=limit, mode=mode)
    except KnowledgeEngineError as e:
        _raise_engine_error(e, meta={"query": q})
    return _ok(outcome.model_dump(mode="json"), meta={"query": q, "mode": outcome.mode})


@router.post("/knowledge")
def ingest(req: IngestRequest, service: KnowledgeService = Depends(get_service)) -> Dict[str, Any]:
    try:
        result = service.ingest(
            req.file,
            req.category,
            req.body,
            req.source,
            verified=req.verified,
            domain_version=req.domain_version,
        )
    except KnowledgeEngineError as e:
        _raise_engine_error(e, meta={"file": req.file})
    return _ok(result.model_dump(mode="json"), meta={"file": req.file})


@router.get("/knowledge/stale")
def stale(horizon_days: Optional[int] = None, service: KnowledgeService = Depends(get_service)) -> Dict[str, Any]:
    try:
        report = service.staleness_report(horizon_days)
    except KnowledgeEngineError as e:
        _raise_engine_error(e)
    return _ok(report.model_dump(mode="json"))


@router.get("/knowledge/{record_id}")
def get_record(record_id: str, service: KnowledgeService = Depends(get_service)) -> Dict[str, Any]:
    try:
        record = service.get_record(record_id)
        report = service.quality_report(record_id)
    except KnowledgeEngineError as e:
        _raise_engine_error(e, meta={"record_id": record_id})
    return _ok({"record": record.model_dump(mode="json"), "quality": report.model_dump(mode="json")})


@router.patch("/knowledge/{record_id}")
def update(record_id: str, patch: Dict[str, Any], service: KnowledgeService = Depends(get_service)) -> Dict[str, Any]:
    try:
        record = service.update(record_id, patch)
    except KnowledgeEngineError as e:
        _raise_engine_error(e, meta={"record_id": record_id})
    return _ok({"record": record.model_dump(mode="json")}, meta={"record_id": record_id})


@router.delete("/knowledge/{record_id}")
def delete(record_id: str, service: KnowledgeService = Depends(get_service)) -> Dict[str, Any]:
    try:
        service.delete(record_id)
    except KnowledgeEngineError as e:
        _raise_engine_error(e, meta={"record_id": record_id})
    return _ok({"deleted": record_id})


@router.get("/stats")
def stats(service: KnowledgeService = Depends(get_service)) -> Dict[str, Any]:
    return _ok(service.get_stats().model_dump(mode="json"))


@router.get("/analytics/gaps")
def gaps(service: KnowledgeService = Depends(get_service)) -> Dict[str, Any]:
    return _ok(service.knowledge_gaps().model_dump(mode="json"))


@router.post("/reindex")
def reindex(service: KnowledgeService = Depends(get_service)) -> Dict[str, Any]:
    summary = service.reindex_all()
    return _ok(summary.model_dump(mode="json"))
