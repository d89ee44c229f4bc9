# esiri/common/errors.py
"""Application error taxonomy and the FastAPI handlers that render it."""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from esiri.common.utils.global_functions import get_client_ip
from esiri.common.utils.global_messages import GlobalMessages
from esiri.common.utils.logger import log_event

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.metadata = metadata or {}

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        return None


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class Unauthorized(AppError):
    status_code = 401
    code = "UNAUTHORIZED"

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        return {"WWW-Authenticate": "Bearer"}


class Forbidden(AppError):
    status_code = 403
    code = "FORBIDDEN"


class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(AppError):
    status_code = 409
    code = "CONFLICT"


class RateLimited(AppError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after: int = 60, metadata: Optional[Dict[str, Any]] = None):
        super().__init__(message, metadata)
        self.retry_after = retry_after

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": str(self.retry_after)}


class UpstreamError(AppError):
    status_code = 502
    code = "UPSTREAM_ERROR"


class InternalError(AppError):
    status_code = 500
    code = "INTERNAL_ERROR"


def error_body(code: str, message: str) -> Dict[str, Any]:
    return {"success": False, "error": {"code": code, "message": message}}


async def _record(request: Request, level: str, action: str, message: str, metadata: Dict[str, Any]) -> None:
    endpoint = request.scope.get("endpoint")
    await log_event(
        function_name=getattr(endpoint, "__name__", request.url.path),
        level=level,
        action=action,
        identity=getattr(request.state, "identity", None),
        metadata={"path": request.url.path, "method": request.method, **metadata},
        error_message=message,
        ip_address=get_client_ip(request),
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    level = "error" if exc.status_code >= 500 else "warn"
    await _record(request, level, exc.code.lower(), exc.message, exc.metadata)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message),
        headers=exc.headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg')}" if field else GlobalMessages.INVALID_REQUEST
    await _record(request, "warn", "validation_error", message, {"errors": len(errors)})
    return JSONResponse(status_code=400, content=error_body(ValidationError.code, message))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    await _record(request, "error", "unhandled_exception", str(exc), {"exception": type(exc).__name__})
    return JSONResponse(
        status_code=500,
        content=error_body(InternalError.code, GlobalMessages.INTERNAL_ERROR),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
