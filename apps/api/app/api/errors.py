from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.context import get_correlation_id


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def http_error_response(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


_STATUS_CODES = {
    401: "unauthorized",
    403: "permission_denied",
    404: "not_found",
    409: "conflict",
}


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Envelope for HTTP errors raised outside route bodies, such as auth and role dependencies."""

    response = error_response(
        request,
        status_code=exc.status_code,
        code=_STATUS_CODES.get(exc.status_code, "http_error"),
        message=str(exc.detail),
        details=exc.detail,
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response
