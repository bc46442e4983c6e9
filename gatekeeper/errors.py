"""Structured error handlers with request_id correlation.

Every error response includes a consistent envelope:
    {
        "code": "error_code",
        "message": "Human-readable message",
        "details": null | object,
        "request_id": "uuid"
    }
"""
from __future__ import annotations

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gatekeeper.services.auth_provider import AuthProviderUnavailable
from gatekeeper.services.cookies import CookieDirective, apply_cookie_directives

logger = logging.getLogger(__name__)


class SessionHTTPException(StarletteHTTPException):
    """HTTP error that still carries the session cookie changes made while
    resolving the caller, such as a cleared or refreshed session."""

    def __init__(
        self, status_code: int, detail: object, cookies: list[CookieDirective]
    ) -> None:
        super().__init__(status_code=status_code, detail=detail)
        self.cookies = list(cookies)


def _get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def error_payload(
    code: str, message: str, details: object = None, request_id: str = "unknown"
) -> dict:
    return {
        "code": code,
        "message": message,
        "details": details,
        "request_id": request_id,
    }


def register_error_handlers(app: object) -> None:
    @app.exception_handler(StarletteHTTPException)  # type: ignore[arg-type]
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        detail = exc.detail
        code = f"http_{exc.status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        response = JSONResponse(
            status_code=exc.status_code,
            content=error_payload(code, message, details, _get_request_id(request)),
            headers=getattr(exc, "headers", None),
        )
        apply_cookie_directives(response, getattr(exc, "cookies", ()))
        return response

    @app.exception_handler(RequestValidationError)  # type: ignore[arg-type]
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        request_id = _get_request_id(request)
        logger.warning(
            "Validation error on %s %s: %s",
            request.method,
            request.url.path,
            exc.errors(),
            extra={"request_id": request_id},
        )
        return JSONResponse(
            status_code=422,
            content=error_payload(
                "validation_error", "Validation error", exc.errors(), request_id
            ),
        )

    @app.exception_handler(AuthProviderUnavailable)  # type: ignore[arg-type]
    async def auth_unavailable_handler(
        request: Request, exc: AuthProviderUnavailable
    ) -> JSONResponse:
        request_id = _get_request_id(request)
        logger.warning(
            "Auth provider unavailable on %s %s: %s",
            request.method,
            request.url.path,
            exc,
            extra={"request_id": request_id},
        )
        return JSONResponse(
            status_code=503,
            content=error_payload(
                "auth_unavailable", "Identity provider unavailable", None, request_id
            ),
        )

    @app.exception_handler(Exception)  # type: ignore[arg-type]
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        request_id = _get_request_id(request)
        logger.exception(
            "Unhandled exception on %s %s",
            request.method,
            request.url.path,
            extra={"request_id": request_id},
        )
        return JSONResponse(
            status_code=500,
            content=error_payload(
                "internal_error", "Internal server error", None, request_id
            ),
        )
