"""FastAPI application for the QueryDesk API.

Provides the main application instance with routers, middleware and
exception handlers configured.
"""

import logging
import shutil
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import version as _pkg_version

from fastapi import FastAPI, Request

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logging.getLogger("querydesk").setLevel(logging.INFO)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from querydesk.api.dependencies import get_credential_store
from querydesk.api.routes import chat, credentials
from querydesk.api.schemas import HealthResponse
from querydesk.config import get_config
from querydesk.errors import QueryDeskError

logger = logging.getLogger(__name__)

_startup_time: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load configuration and the credential store before serving."""
    global _startup_time
    _startup_time = _time.time()

    config = get_config()
    get_credential_store()
    if shutil.which(config.gateway.command) is None:
        logger.warning(
            "Tool launcher '%s' not found on PATH; chat requests will fail until it is installed.",
            config.gateway.command,
        )
    logger.info("QueryDesk API started (model=%s, max_steps=%d)", config.agent.model, config.agent.max_steps)

    yield

    logger.info("QueryDesk API shutting down")


app = FastAPI(
    title="QueryDesk API",
    description="Natural language questions over your Postgres data",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS allowlist comes from config. If empty, CORS is disabled (same-origin only).
allowed_origins = get_config().server.allowed_origins
if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )


@app.exception_handler(QueryDeskError)
async def querydesk_error_handler(request: Request, exc: QueryDeskError) -> JSONResponse:
    """Return domain errors as ``{error, error_code}`` with the mapped status.

    Args:
        request: The incoming request.
        exc: The QueryDeskError exception.

    Returns:
        JSONResponse with the error payload.
    """
    logger.info(
        "%s %s -> %d %s: %s",
        request.method, request.url.path, exc.status_code, exc.code, exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


app.include_router(chat.router, prefix="/api/v1")
app.include_router(credentials.router, prefix="/api/v1")


@app.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Health check with version, uptime and collaborator status."""
    config = get_config()
    try:
        version = _pkg_version("querydesk")
    except Exception:
        version = "unknown"

    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    return HealthResponse(
        status="healthy",
        version=version,
        uptime_seconds=uptime,
        credential_backend=config.credentials.backend,
        launcher="available" if shutil.which(config.gateway.command) else "missing",
    )
