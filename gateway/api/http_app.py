# ==============================
# FastAPI App Factory
# ==============================
from __future__ import annotations

from fastapi import FastAPI

from gateway.api.routes_knowledge import router as knowledge_router


def create_app() -> FastAPI:
    app = FastAPI(title="knowledge-engine", version="0.1.0")
    app.include_router(knowledge_router, prefix="/api")
    return app
