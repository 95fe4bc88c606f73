"""
FastAPI application for the AFU-9 Control Center.
"""

from __future__ import annotations

import importlib.metadata
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .db.base import init_database
from .github.client import GitHubError
from .loop.results import IssueNotFoundError, LoopError
from .routes import router

logger = structlog.get_logger()

settings = get_settings()

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("control_center_starting", environment=settings.environment)
    try:
        await init_database()
    except Exception as e:
        logger.error("control_center_start_failed", error=str(e))
        raise

    yield

    logger.info("control_center_stopped")


app = FastAPI(
    title="AFU-9 Control Center",
    description="Issue lifecycle state machine, step executors and publish pipeline",
    version=importlib.metadata.version("afu9-control-center"),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.exception_handler(LoopError)
async def loop_error_handler(request: Request, exc: LoopError) -> JSONResponse:
    status_code = 404 if isinstance(exc, IssueNotFoundError) else 409
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(GitHubError)
async def github_error_handler(request: Request, exc: GitHubError) -> JSONResponse:
    logger.error("github_error_unhandled", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=502, content=exc.to_dict())


@app.get("/health", tags=["system"])
async def health() -> dict:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.get("/healthz")
def healthz() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": importlib.metadata.version("afu9-control-center")}
