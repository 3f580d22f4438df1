"""
Exception handlers.

Every error response has the same envelope:

    {"success": false, "code": "...", "error": "...", "requestId": "...", "details": {...}}

Messages of unexpected exceptions never reach the client; they are logged
with the request id instead.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.exceptions import (
    DEFAULT_ERROR_MESSAGES,
    BookingConflictException,
    BusinessErrorCode,
    DomainException,
    DuplicateEntryException,
    OverlapViolation,
    UniqueViolation,
)
from .core.request_context import get_request_id

logger = logging.getLogger(__name__)

_STATUS_CODES: Dict[int, BusinessErrorCode] = {
    400: BusinessErrorCode.VALIDATION_ERROR,
    401: BusinessErrorCode.UNAUTHORIZED,
    403: BusinessErrorCode.FORBIDDEN,
    404: BusinessErrorCode.NOT_FOUND,
    405: BusinessErrorCode.VALIDATION_ERROR,
    409: BusinessErrorCode.CONFLICT,
    422: BusinessErrorCode.VALIDATION_ERROR,
    423: BusinessErrorCode.SERVICE_UNAVAILABLE,
    429: BusinessErrorCode.RATE_LIMITED,
    503: BusinessErrorCode.SERVICE_UNAVAILABLE,
}


def _request_id(request: Request) -> Optional[str]:
    return get_request_id() or getattr(request.state, "request_id", None)


def _envelope(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Optional[Any] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    body: Dict[str, Any] = {
        "success": False,
        "code": code,
        "error": message,
        "requestId": _request_id(request),
    }
    if details:
        body["details"] = jsonable_encoder(details)
    return JSONResponse(body, status_code=status_code, headers=headers)


def _code_for_status(status_code: int) -> BusinessErrorCode:
    if status_code >= 500:
        return BusinessErrorCode.INTERNAL_ERROR
    return _STATUS_CODES.get(status_code, BusinessErrorCode.VALIDATION_ERROR)


def _parse_detail(detail: Any) -> tuple[Optional[str], Optional[str], Optional[Any]]:
    if isinstance(detail, dict):
        code = detail.get("code") if isinstance(detail.get("code"), str) else None
        message = detail.get("message") or detail.get("detail")
        detail_text = message if isinstance(message, str) else None
        errors = detail.get("details") or detail.get("errors")
        return detail_text, code, errors
    if isinstance(detail, str):
        return detail, None, None
    return None, None, None


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        return _envelope(
            request,
            status_code=exc.status_code,
            code=exc.code.value,
            message=exc.message,
            details=exc.details,
        )

    @app.exception_handler(UniqueViolation)
    async def unique_violation_handler(request: Request, exc: UniqueViolation) -> JSONResponse:
        logger.warning(
            "Unique constraint %s rejected %s %s",
            exc.constraint,
            request.method,
            request.url.path,
            extra={"constraint": exc.constraint},
        )
        return await domain_exception_handler(request, DuplicateEntryException(exc.constraint))

    @app.exception_handler(OverlapViolation)
    async def overlap_violation_handler(request: Request, exc: OverlapViolation) -> JSONResponse:
        logger.warning(
            "Exclusion constraint rejected %s %s",
            request.method,
            request.url.path,
            extra={"constraint": exc.constraint},
        )
        return await domain_exception_handler(
            request, BookingConflictException(details={"source": "constraint"})
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return _http_envelope(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def starlette_http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return _http_envelope(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {
                "loc": list(err.get("loc", ())),
                "msg": err.get("msg"),
                "type": err.get("type"),
            }
            for err in exc.errors()
        ]
        return _envelope(
            request,
            status_code=400,
            code=BusinessErrorCode.VALIDATION_ERROR.value,
            message=DEFAULT_ERROR_MESSAGES[BusinessErrorCode.VALIDATION_ERROR],
            details={"errors": errors},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled error on %s %s",
            request.method,
            request.url.path,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        return _envelope(
            request,
            status_code=500,
            code=BusinessErrorCode.INTERNAL_ERROR.value,
            message=DEFAULT_ERROR_MESSAGES[BusinessErrorCode.INTERNAL_ERROR],
        )


def _http_envelope(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail_text, code, errors = _parse_detail(exc.detail)
    if code is None:
        code = _code_for_status(exc.status_code).value
    if exc.status_code >= 500 or not detail_text:
        known = BusinessErrorCode.__members__.get(code)
        detail_text = DEFAULT_ERROR_MESSAGES[known] if known else "Error"
    return _envelope(
        request,
        status_code=exc.status_code,
        code=code,
        message=detail_text,
        details=errors,
        headers=getattr(exc, "headers", None),
    )
