"""FastAPI application for the flow service."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..app import Application
from ..errors import FlowError
from ..logging_config import get_logger
from .routes import control, flows, inbound, observability

logger = get_logger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:5174"

_app: Application | None = None


def get_app() -> Application:
    """Process-wide Application used when none is passed in."""
    global _app
    if not _app:
        _app = Application()
    return _app


def create_fastapi_app(application: Application | None = None) -> FastAPI:
    """Build the API around ``application``; its start/stop follow the lifespan."""
    application = application or get_app()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await application.start()
        try:
            yield
        finally:
            await application.stop()

    fastapi_app = FastAPI(
        title="Agent Flow API",
        description="Multi-round agent flow orchestration",
        version="0.1.0",
        lifespan=lifespan,
    )

    origins = os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @fastapi_app.exception_handler(FlowError)
    async def flow_error_handler(request: Request, exc: FlowError) -> JSONResponse:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    @fastapi_app.get("/api/health")
    async def health():
        return {"status": "ok", "sweep_interval_seconds": application.settings.sweep_interval_seconds}

    fastapi_app.include_router(flows.create_flows_router(application))
    fastapi_app.include_router(inbound.create_inbound_router(application))
    fastapi_app.include_router(observability.create_observability_router(application))
    fastapi_app.include_router(control.create_control_router(application))

    return fastapi_app
