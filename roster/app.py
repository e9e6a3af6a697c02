"""
FastAPI application entry point for the rider roster service.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from roster.config import Settings, get_settings
from roster.db import RiderStoreError
from roster.dependencies import UNAVAILABLE_DETAIL
from roster.persistence import PersistenceMode, Runtime, select_persistence
from roster.routes import router
from roster.seed import seed_initial_riders

logger = logging.getLogger(__name__)

PAYLOAD_TOO_LARGE = {
    "error": "Request entity too large",
    "details": [
        "The image file is too large. Please use a smaller image or compress it."
    ],
}
INVALID_JSON = {
    "error": "Invalid JSON",
    "details": ["The request body contains invalid JSON format."],
}
REQUEST_TIMEOUT = {
    "error": "Request timeout",
    "details": ["The request took too long to process. Please try again."],
}
INTERNAL_ERROR = {
    "error": "Internal server error",
    "details": ["An unexpected error occurred. Please try again."],
}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        logger.info("%s %s", request.method, request.url.path)
        return await call_next(request)


class BodySizeLimitMiddleware:
    """
    Reject request bodies larger than the configured limit with 413.

    A declared Content-Length is checked up front. Bodies without one (chunked
    uploads) are counted as they are received, and the handler reading them
    gets the 413 as soon as the running total passes the limit.
    """

    def __init__(self, app: ASGIApp, *, max_bytes: int) -> None:
        self.app = app
        self._max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length", "")
        if length.isdigit() and int(length) > self._max_bytes:
            logger.warning(
                "Rejected %s %s: body of %s bytes", scope["method"], scope["path"], length
            )
            response = JSONResponse(status_code=413, content=PAYLOAD_TOO_LARGE)
            await response(scope, receive, send)
            return

        received = 0

        async def counting_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self._max_bytes:
                    logger.warning(
                        "Rejected %s %s: streamed body over %d bytes",
                        scope["method"],
                        scope["path"],
                        self._max_bytes,
                    )
                    raise HTTPException(status_code=413, detail=PAYLOAD_TOO_LARGE)
            return message

        await self.app(scope, counting_receive, send)


class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """
    Answer 408 when a request runs longer than the configured budget.

    The handler's store call is not interrupted; only the response is given up.
    """

    def __init__(self, app, *, timeout_seconds: float) -> None:
        super().__init__(app)
        self._timeout = timeout_seconds

    async def dispatch(self, request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Request timed out after %.1fs: %s %s",
                self._timeout,
                request.method,
                request.url.path,
            )
            return JSONResponse(status_code=408, content=REQUEST_TIMEOUT)


class AvailabilityMiddleware(BaseHTTPMiddleware):
    """Turn API requests away with 503 while the database is not connected."""

    def __init__(self, app, *, api_prefix: str, exempt_paths: tuple[str, ...]) -> None:
        super().__init__(app)
        self._api_prefix = api_prefix
        self._exempt_paths = exempt_paths

    async def dispatch(self, request, call_next):
        path = request.url.path
        if path.startswith(self._api_prefix) and path not in self._exempt_paths:
            runtime: Optional[Runtime] = getattr(request.app.state, "runtime", None)
            if runtime is None or not runtime.available:
                return JSONResponse(status_code=503, content=UNAVAILABLE_DETAIL)
        return await call_next(request)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Select the persistence mode once, before serving any request."""
    runtime: Optional[Runtime] = app.state.runtime
    owned = runtime is None
    if owned:
        settings: Settings = app.state.settings
        runtime = await run_in_threadpool(select_persistence, settings)
        app.state.runtime = runtime
        if (
            runtime.mode is PersistenceMode.DATABASE
            and runtime.connected
            and settings.seed_on_startup
        ):
            try:
                await run_in_threadpool(seed_initial_riders, runtime.store)
            except RiderStoreError as exc:
                logger.error("Error seeding initial data: %s", exc)

    yield

    if owned and runtime.store is not None:
        runtime.store.close()


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = exc.detail
    else:
        content = {"error": str(exc.detail), "details": []}
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if any(err.get("type") == "json_invalid" for err in errors):
        return JSONResponse(status_code=400, content=INVALID_JSON)

    details = []
    for err in errors:
        location = [
            str(part)
            for part in err.get("loc", ())
            if part not in ("body", "query", "path")
        ]
        field = ".".join(location) or "request"
        details.append(f"{field}: {err.get('msg', 'Invalid value')}")
    return JSONResponse(
        status_code=400, content={"error": "Validation failed", "details": details}
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(status_code=500, content=INTERNAL_ERROR)


def create_app(
    settings: Optional[Settings] = None, runtime: Optional[Runtime] = None
) -> FastAPI:
    """
    Build the app. Passing a `runtime` skips persistence selection, which is
    how tests run the API against a local store.
    """
    if settings is None:
        settings = runtime.settings if runtime is not None else get_settings()

    app = FastAPI(title="Rider Roster API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.runtime = runtime

    app.include_router(router, prefix=settings.api_prefix)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Added innermost first. The body counter sits next to the router so the
    # 413 it raises while the handler reads the body reaches the exception
    # handlers directly.
    app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_body_bytes)
    app.add_middleware(
        AvailabilityMiddleware,
        api_prefix=settings.api_prefix,
        exempt_paths=(f"{settings.api_prefix}/health",),
    )
    app.add_middleware(
        RequestTimeoutMiddleware, timeout_seconds=settings.request_timeout_seconds
    )
    if settings.request_logging:
        app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    return app


app = create_app()
