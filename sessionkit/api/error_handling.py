from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from sessionkit.api.schemas import Envelope, ErrorBody
from sessionkit.logging import get_logger
from sessionkit.service.errors import ServiceError
from sessionkit.storage.errors import ConstraintViolation

logger = get_logger(__name__)

# Fallback codes for errors that carry only an HTTP status
_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "validation_error",
    409: "conflict",
    422: "validation_error",
    500: "server_error",
}


def _error_code_for_status(status_code: int) -> str:
    return _STATUS_TO_CODE.get(status_code, "server_error")


def _error_response(
    status_code: int,
    message: str,
    details: Any = None,
    code: str | None = None,
) -> JSONResponse:
    body = ErrorBody(
        code=code or _error_code_for_status(status_code),
        message=message,
        details=details,
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(Envelope(status="error", error=body)),
    )


def _log(request: Request, event: str, *, status_code: int, **fields: Any) -> None:
    emit = logger.error if status_code >= 500 else logger.warning
    emit(
        event,
        path=request.url.path,
        method=request.method,
        status_code=status_code,
        **fields,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure as an error ``Envelope``.

    Domain errors keep their own status and code. Unexpected exceptions
    become a 500 whose message reveals nothing about the cause.
    """

    @app.exception_handler(ServiceError)
    async def on_service_error(request: Request, exc: ServiceError):
        _log(
            request,
            "service_error",
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        return _error_response(exc.status_code, exc.message, exc.detail, code=exc.error_code)

    @app.exception_handler(ConstraintViolation)
    async def on_constraint_violation(request: Request, exc: ConstraintViolation):
        _log(request, "constraint_violation", status_code=409, message=exc.message)
        return _error_response(409, exc.message, exc.detail, code="conflict")

    @app.exception_handler(RequestValidationError)
    async def on_invalid_request(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        _log(request, "request_validation_error", status_code=422, errors=errors)
        return _error_response(422, "invalid request", errors, code="validation_error")

    @app.exception_handler(HTTPException)
    async def on_http_exception(request: Request, exc: HTTPException):
        if isinstance(exc.detail, dict):
            details, message = exc.detail, str(exc.detail.get("detail", "http error"))
        else:
            details, message = {"detail": exc.detail}, str(exc.detail)
        if exc.status_code >= 500:
            _log(request, "http_error", status_code=exc.status_code, message=message)
        return _error_response(exc.status_code, message, details)

    @app.exception_handler(Exception)
    async def on_unexpected(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        return _error_response(500, "internal server error", code="server_error")
