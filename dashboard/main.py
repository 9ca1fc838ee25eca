"""
Composite Risk Read API - Application Factory.

Read-only: the API never scores, writes snapshots or sends
alerts. The CLI "run" command owns all writes.
"""

import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from composite_risk.config import ENGINE_VERSION
from dashboard.routers import alerts, health, risk
from database import DatabasePersistenceError


logger = logging.getLogger(__name__)


def _cors_origins() -> list:
    raw = os.getenv("DASHBOARD_CORS_ORIGINS", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app() -> FastAPI:
    app = FastAPI(
        title="Composite Risk API",
        description="Daily composite risk snapshots, history and alerts.",
        version=ENGINE_VERSION,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(DatabasePersistenceError)
    async def database_error_handler(request: Request, exc: DatabasePersistenceError):
        logger.error(f"{request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"detail": "database unavailable"})

    for module in (health, risk, alerts):
        app.include_router(module.router)

    @app.get("/")
    def root():
        return {"status": "ok", "service": "composite-risk", "version": ENGINE_VERSION}

    return app


app = create_app()
