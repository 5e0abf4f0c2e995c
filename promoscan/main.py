from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from promoscan.api.routes import router
from promoscan.dependencies import close_dependencies, get_settings, get_telemetry
from promoscan.errors import (
    ChannelUnresolvableError,
    InvalidInputError,
    QuotaExceededError,
    ScanError,
    UpstreamHttpError,
)
from promoscan.logging_config import configure_application_logging

LOGGER = logging.getLogger("promoscan.api")


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    if settings.youtube_api_key is None:
        LOGGER.warning("youtube api key not configured; upstream-backed routes will fail")
    try:
        yield
    finally:
        await close_dependencies()


def create_app() -> FastAPI:
    app = FastAPI(title="Promoscan API", version="0.1.0", lifespan=app_lifespan)

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        incoming_request_id = request.headers.get("X-Request-ID")
        request_id = (
            incoming_request_id.strip()
            if isinstance(incoming_request_id, str) and incoming_request_id.strip()
            else str(uuid4())
        )
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        started_at = perf_counter()
        telemetry.emit(
            "http.request.start",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            telemetry.emit(
                "http.request.error",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            raise
        else:
            response.headers["X-Request-ID"] = request_id
            telemetry.emit(
                "http.request.finish",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                status_code=response.status_code,
            )
            return response
        finally:
            reset_contextvars(**context_tokens)

    app.middleware("http")(request_context_middleware)
    app.add_exception_handler(ScanError, scan_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    return app


async def scan_error_handler(_: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, QuotaExceededError):
        return JSONResponse(
            status_code=429,
            content={
                "error": str(exc),
                "code": "QUOTA_EXCEEDED",
                "quota_status": exc.status.to_dict(),
            },
        )

    status_code = _status_code_for(exc)
    code = exc.code if isinstance(exc, ScanError) else ScanError.code
    if status_code >= 500:
        LOGGER.error("request failed code=%s error=%s", code, exc)
    else:
        LOGGER.info("request rejected code=%s error=%s", code, exc)
    return JSONResponse(status_code=status_code, content={"error": str(exc), "code": code})


async def request_validation_handler(_: Request, exc: Exception) -> JSONResponse:
    errors = exc.errors() if isinstance(exc, RequestValidationError) else []
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "query")
    message = first.get("msg", "Invalid request parameters.")
    return JSONResponse(
        status_code=400,
        content={
            "error": f"{location}: {message}" if location else str(message),
            "code": InvalidInputError.code,
        },
    )


def _status_code_for(exc: Exception) -> int:
    if isinstance(exc, InvalidInputError | ChannelUnresolvableError):
        return 400
    if isinstance(exc, UpstreamHttpError):
        return 502
    # ConfigurationError and anything unclassified.
    return 500


app = create_app()
