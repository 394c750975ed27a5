"""HTTP service hosting the browser quota governor and diagnostic endpoints.

Run with a single worker process: the governor registry lives in this
process and every pipeline process serializes through it.
"""

import json
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from backend.app.lifecycle import (
    check_db_health,
    shutdown_resources,
    startup_resources,
)
from worknuggets import config
from worknuggets.crawler.browser_extractor import check_renderer_health
from worknuggets.crawler.errors import AcquisitionDeniedError
from worknuggets.pipeline.diagnostics import run_direct_extraction, run_guarded_extraction
from worknuggets.services.browser_quota import (
    COMMANDS,
    BrowserQuotaActor,
    QuotaCommandError,
    get_quota_actor,
)
from worknuggets.services.quota_client import LocalQuotaClient
from worknuggets.utils.logging_config import (
    bind_request_context,
    get_logger,
    setup_logging,
    unbind_trace_context,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Configure logging, then bring shared resources up and down."""
    setup_logging(level=config.LOG_LEVEL, service_name="api")
    logger.info("Structured logging initialized", log_level=config.LOG_LEVEL)

    await startup_resources(app)
    yield
    await shutdown_resources(app)


app = FastAPI(title="WorkNuggets Extraction API", lifespan=lifespan)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Middleware to log API requests with context."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    bind_request_context(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    start_time = time.time()
    try:
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        response.headers["X-Request-ID"] = request_id
        return response
    except Exception as exc:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(
            "request_failed",
            duration_ms=duration_ms,
            error=str(exc),
            exc_info=True,
        )
        raise
    finally:
        unbind_trace_context()


def _resolve_actor(request: Request, name: str) -> BrowserQuotaActor:
    actor = getattr(request.app.state, "quota_actor", None)
    if actor is not None and actor.name == name:
        return actor
    return get_quota_actor(name)


def _served_quota_names() -> set[str]:
    return {config.QUOTA_INSTANCE_NAME, *config.QUOTA_ALLOWED_NAMES}


def _default_actor(request: Request) -> BrowserQuotaActor:
    return _resolve_actor(request, config.QUOTA_INSTANCE_NAME)


async def _read_json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


# Only POST is routed; FastAPI answers 405 for any other method on this path
@app.post("/quota/{name}/{command}")
async def quota_command(name: str, command: str, request: Request):
    """Apply one governor command to the named quota."""
    if name not in _served_quota_names():
        return JSONResponse(status_code=404, content={"error": "Unknown quota"})
    if command not in COMMANDS:
        return JSONResponse(status_code=400, content={"error": "Unknown command"})

    payload = await _read_json_body(request)
    actor = _resolve_actor(request, name)
    try:
        return await run_in_threadpool(actor.handle_command, command, payload)
    except QuotaCommandError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    except Exception as exc:
        logger.error("quota_command_failed", name=name, command=command, error=str(exc))
        return JSONResponse(status_code=500, content={"error": str(exc)})


@app.get("/test")
def test_guarded_extraction(request: Request, url: Optional[str] = None):
    """Acquire a slot, render ``url`` in the browser, report usage, release."""
    if not url:
        return JSONResponse(
            status_code=400, content={"ok": False, "error": "Missing url parameter"}
        )

    extractor = request.app.state.browser_extractor
    client = LocalQuotaClient(_default_actor(request))
    try:
        return run_guarded_extraction(url, client, extractor)
    except AcquisitionDeniedError as exc:
        return JSONResponse(status_code=429, content={"ok": False, "reason": exc.reason})
    except Exception as exc:
        logger.error("test_extraction_failed", url=url, error=str(exc))
        return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})


@app.get("/test-direct")
def test_direct_extraction(request: Request, url: Optional[str] = None):
    """Render ``url`` without the quota governor."""
    if not url:
        return JSONResponse(
            status_code=400, content={"ok": False, "error": "Missing url parameter"}
        )

    try:
        return run_direct_extraction(url, request.app.state.browser_extractor)
    except Exception as exc:
        logger.error("direct_extraction_failed", url=url, error=str(exc))
        return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})


@app.get("/debug")
def debug_renderer():
    """Renderer binding health; never touches quota state."""
    return check_renderer_health()


class RunOnceResponse(BaseModel):
    extracted: bool
    article_id: Optional[str] = None
    method: Optional[str] = None
    category: Optional[str] = None
    quality_score: Optional[float] = None
    error: Optional[str] = None


@app.post("/run-once", response_model=RunOnceResponse, response_model_exclude_none=True)
def run_once(request: Request):
    """Run one extraction pass against the article store."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Extraction pipeline unavailable")
    return pipeline.run_once().as_dict()


@app.get("/health")
async def health_check():
    """Liveness endpoint for the load balancer."""
    return {"status": "healthy", "service": "api"}


@app.get("/ready")
async def readiness_check(request: Request):
    """Readiness check endpoint for orchestration systems.

    Returns 200 when startup completed, the database answers and the quota
    governor is running; 503 otherwise.
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503, detail="Application not ready: startup incomplete"
        )

    db_healthy, db_message = check_db_health(getattr(request.app.state, "db_manager", None))
    if not db_healthy:
        raise HTTPException(
            status_code=503, detail=f"Application not ready: {db_message}"
        )

    actor = getattr(request.app.state, "quota_actor", None)
    if actor is None:
        raise HTTPException(
            status_code=503, detail="Application not ready: quota governor not started"
        )

    return {
        "status": "ready",
        "service": "api",
        "resources": {
            "database": db_message,
            "quota_governor": actor.name,
            "pipeline": getattr(request.app.state, "pipeline", None) is not None,
        },
    }
