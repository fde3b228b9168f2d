from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from account.api.error_handling import error_response, register_exception_handlers
from account.api.routes import router
from account.config import get_settings
from account.logging import get_logger, start_request_context
from account.service.errors import ServiceUnavailableError

logger = get_logger(__name__)

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and release its connections on shutdown."""
    from account.service.runtime import get_runtime

    runtime = get_runtime()
    logger.info("account_service_started", base_url=runtime.settings.account_api_url)
    yield
    try:
        await runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Account Service", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    origins = get_settings().cors_allow_origins
    if origins:
        return origins
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def enforce_handler_timeout(request: Request, call_next):
    """Answer 503 when a request under the account API outlives HANDLER_TIMEOUT.

    Disabled in TEST_MODE so that debugging sessions are not cut short.
    """
    settings = get_settings()
    if settings.test_mode or not request.url.path.startswith(settings.account_api_url):
        return await call_next(request)
    try:
        return await asyncio.wait_for(
            call_next(request), timeout=settings.handler_timeout_seconds
        )
    except asyncio.TimeoutError:
        exc = ServiceUnavailableError()
        logger.error(
            "handler_timeout",
            path=request.url.path,
            method=request.method,
            timeout=settings.handler_timeout_seconds,
        )
        return error_response(exc.status_code, exc.message, code=exc.error_code)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation ID for log tracing.

    The ID comes from the client's X-Request-ID header when present, otherwise a
    new UUID. It is bound for structured logging and echoed in the response.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = start_request_context(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app)
app.include_router(router, prefix=get_settings().account_api_url)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    return {"status": "ok", "version": __version__}
