import json
import logging
import time
import traceback
from contextvars import ContextVar
from typing import Any
from uuid import uuid4

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from restaurant_admin.core.config import settings
from restaurant_admin.core.errors import ServiceError

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")
logger = logging.getLogger("restaurant_admin.api")

REQUEST_ID_HEADER = "X-Request-ID"


def setup_observability() -> None:
    # Handlers hang off the package logger so every restaurant_admin.* logger shares them.
    package_logger = logging.getLogger("restaurant_admin")
    if package_logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(settings.log_level.upper())
    package_logger.propagate = False


def get_request_id() -> str:
    return request_id_ctx.get()


def log_event(log: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one JSON line tagged with the current request id."""
    payload = {"event": event, "request_id": get_request_id(), **fields}
    log.log(level, json.dumps(payload, default=str))


def _request_id_for(request: Request) -> str:
    return (
        getattr(request.state, "request_id", None)
        or request.headers.get(REQUEST_ID_HEADER)
        or get_request_id()
    )


def _error_response(
    *,
    status_code: int,
    request: Request,
    code: str,
    message: str,
    details: list[dict] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = {
        "error": message,
        "code": code,
        "request_id": _request_id_for(request),
        "path": request.url.path,
        "details": details,
    }
    return JSONResponse(status_code=status_code, headers=headers, content=body)


async def request_logging_middleware(request: Request, call_next):
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
    request.state.request_id = request_id
    token = request_id_ctx.set(request_id)
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
    finally:
        log_event(
            logger,
            "request",
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        request_id_ctx.reset(token)

    response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def service_error_handler(request: Request, exc: ServiceError):
    # 4xx are caller mistakes; only store failures log at WARNING.
    log_event(
        logger,
        "service_error",
        level=logging.WARNING if exc.status_code >= 500 else logging.INFO,
        path=request.url.path,
        code=exc.code,
        error=exc.message,
    )
    return _error_response(
        status_code=exc.status_code,
        request=request,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


_HTTP_ERROR_CODES = {
    400: "bad_request",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "validation_error",
}


async def http_exception_handler(request: Request, exc: HTTPException):
    if isinstance(exc.detail, str):
        message, details = exc.detail, None
    else:
        message, details = "HTTP error", exc.detail
    return _error_response(
        status_code=exc.status_code,
        request=request,
        code=_HTTP_ERROR_CODES.get(exc.status_code, "http_error"),
        message=message,
        details=details,
        headers=exc.headers,
    )


def _field_name(location: tuple | list) -> str:
    parts = [str(part) for part in location if part != "body"]
    return ".".join(parts) if parts else "body"


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "field": _field_name(err.get("loc", ())),
            "message": err.get("msg", "Invalid value"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    return _error_response(
        status_code=422,
        request=request,
        code="validation_error",
        message="Validation failed",
        details=details,
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    log_event(
        logger,
        "unhandled_exception",
        level=logging.ERROR,
        request_id=_request_id_for(request),
        path=request.url.path,
        error=str(exc),
        traceback=traceback.format_exc(limit=10),
    )
    return _error_response(
        status_code=500,
        request=request,
        code="internal_error",
        message="Internal server error",
    )
