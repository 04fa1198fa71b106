# ==============================
# Engine Errors
# ==============================
"""
Error taxonomy for the knowledge engine.

Propagation:
- ValidationError / NotFoundError: surfaced to callers as rejected operations.
- ProviderUnavailable: raised inside the vector layer only, recovered there by
  returning no vector signal.
- IndexCorruption: raised by index builders, answered by a full rebuild from
  the corpus.

Duplicate submissions are not errors: ingest reports them as merged.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Stable codes used in error envelopes."""
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    INDEX_CORRUPTION = "index_corruption"


class KnowledgeEngineError(Exception):
    code: ErrorCode = ErrorCode.INVALID_INPUT

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "details": self.details}


class ValidationError(KnowledgeEngineError, ValueError):
    """Malformed ingest payload or options."""
    code = ErrorCode.INVALID_INPUT

    def __init__(self, message: str, *, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        merged = dict(details or {})
        if field is not None:
            merged.setdefault("field", field)
        super().__init__(message, details=merged)
        self.field = field


class NotFoundError(KnowledgeEngineError, KeyError):
    """Unknown record id on update/delete."""
    code = ErrorCode.NOT_FOUND

    def __str__(self) -> str:
        return self.message


class ProviderUnavailable(KnowledgeEngineError):
    """Embedding provider or similarity backend unreachable, slow or failing."""
    code = ErrorCode.PROVIDER_UNAVAILABLE


class IndexCorruption(KnowledgeEngineError):
    """Inconsistency detected while building or updating a derived index."""
    code = ErrorCode.INDEX_CORRUPTION
