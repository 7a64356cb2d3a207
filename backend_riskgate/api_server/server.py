"""
FastAPI server for the risk gate.

Routes live in routes.py (/api/v1/*); this module owns the app, its lifespan
(service creation, periodic cache cleanup, draining background writes on
shutdown), /health, /stats and the error handlers. Error responses always
carry decision=BLOCK so callers never receive a verdict-less body.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend_riskgate import __version__
from backend_riskgate.api_server.routes import router as gate_router
from backend_riskgate.config import get_settings
from backend_riskgate.gateway.service import GateService, create_gate_service
from backend_riskgate.riskgate_logging import get_logger

logger = get_logger(__name__)


async def _cache_cleanup_loop(service: GateService, interval_sec: float) -> None:
    """Reclaim expired cache entries periodically. Expiry itself is lazy."""
    loop = asyncio.get_running_loop()
    while True:
        await asyncio.sleep(interval_sec)
        try:
            await loop.run_in_executor(None, service.cleanup)
        except Exception as e:
            logger.warning("cache_cleanup_failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the gate service (unless one was injected) and the cleanup task; drain writes on shutdown."""
    owns_service = getattr(app.state, "service", None) is None
    if owns_service:
        app.state.service = create_gate_service()
    service: GateService = app.state.service
    interval = get_settings().cache_cleanup_interval_sec if owns_service else 3600.0
    cleanup_task = asyncio.create_task(_cache_cleanup_loop(service, interval), name="riskgate-cache-cleanup")
    logger.info("api_started", cleanup_interval_sec=interval, policy=service.policy.name)

    yield

    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass
    if owns_service:
        await service.aclose()
        app.state.service = None
    else:
        await service.drain()
    logger.info("api_stopped")


app = FastAPI(
    title="Risk Gate API",
    description="Pre-execution risk verdicts (PASS / WARN / BLOCK) for on-chain contract interactions.",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(gate_router)


@app.get("/health")
def health() -> dict[str, Any]:
    """Liveness check."""
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/stats")
def stats(request: Request) -> dict[str, Any]:
    """Cache, analyzer and background-writer counters."""
    return request.app.state.service.stats()


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed body: 400 with a fail-safe decision."""
    logger.info("api_request_invalid", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(
        status_code=400,
        content={
            "decision": "BLOCK",
            "error": "Malformed request body",
            "error_code": "INVALID_INPUT",
        },
    )


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return consistent JSON error body for HTTPException."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"decision": "BLOCK", "error": exc.detail},
    )


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything that escaped the service: 500, still with a decision."""
    logger.exception("api_unhandled_error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={"decision": "BLOCK", "error": "Internal error", "error_code": "INTERNAL_ERROR"},
    )
