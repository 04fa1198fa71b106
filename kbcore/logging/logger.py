# ==============================
# Logging Bootstrap
# ==============================
"""
Logging bootstrap.

Goals:
- Centralize logger configuration using Settings.logging.
- Provide structured context fields (component, record_id, query, file).
- Keep it simple: stdlib logging + JSON-line formatter.

Components log through logging.getLogger("kbase.<component>") and pass
structured fields via `extra=`.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from typing import Any, Dict, Optional

from kbcore.config.schema import Settings

ROOT_LOGGER = "kbase"
CONTEXT_FIELDS = ("component", "record_id", "query", "file", "category", "count", "error")


@dataclass(frozen=True)
class LogContext:
    component: Optional[str] = None
    record_id: Optional[str] = None
    query: Optional[str] = None
    file: Optional[str] = None


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        # Optional structured extras
        for k in CONTEXT_FIELDS:
            if hasattr(record, k):
                value = getattr(record, k)
                if value is not None:
                    payload[k] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def get_logger(component: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")


def bootstrap_logger(settings: Settings) -> logging.Logger:
    """
    Configure root logger based on settings.
    Returns the named engine logger ("kbase").
    """
    level = getattr(logging, settings.logging.level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)

    # clear existing handlers to avoid duplicates in reload
    root.handlers = []

    if settings.logging.console:
        # stderr keeps stdout clean for CLI JSON output
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level)
        if settings.logging.json_lines:
            handler.setFormatter(JsonLineFormatter())
        else:
            handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)

    return logging.getLogger(ROOT_LOGGER)


def with_context(logger: logging.Logger, ctx: LogContext) -> logging.LoggerAdapter:
    return logging.LoggerAdapter(
        logger,
        {
            "component": ctx.component,
            "record_id": ctx.record_id,
            "query": ctx.query,
            "file": ctx.file,
        },
    )
