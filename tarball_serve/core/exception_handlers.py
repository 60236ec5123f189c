from __future__ import annotations

"""
Problem+JSON exception handlers (RFC 7807).

The app factory registers these in `tarball_serve.main`. All HTTP errors are
rendered as application/problem+json with a stable schema. This is the single
place where an exception becomes a status code and body.
"""

import logging
from typing import Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from tarball_serve.core.exceptions import AppException, UnknownError

logger = logging.getLogger(__name__)

_UNPROCESSABLE = 422


def problem_response(
    title: str,
    detail: str,
    status_code: int,
    instance: str,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "type": "about:blank",
            "title": title,
            "detail": detail,
            "status": status_code,
            "instance": instance,
        },
        media_type="application/problem+json",
        headers=headers,
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:  # type: ignore
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc.message)
    return problem_response(type(exc).__name__, exc.message, exc.status_code, str(request.url), exc.headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:  # type: ignore
    title = exc.__class__.__name__.replace("Exception", "").strip() or "Error"
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return problem_response(title, detail, exc.status_code, str(request.url), getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # type: ignore
    detail = "Validation error"
    return JSONResponse(
        status_code=_UNPROCESSABLE,
        content={
            "type": "about:blank",
            "title": detail,
            "detail": detail,
            "status": _UNPROCESSABLE,
            "instance": str(request.url),
            "errors": exc.errors(),
        },
        media_type="application/problem+json",
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # type: ignore
    # Hide internals; the traceback goes to the log only.
    logger.error("Unhandled error while serving %s", request.url.path, exc_info=exc)
    unknown = UnknownError("An unexpected error occurred.")
    return problem_response(type(unknown).__name__, unknown.message, unknown.status_code, str(request.url))


__all__ = [
    "problem_response",
    "app_exception_handler",
    "http_exception_handler",
    "validation_exception_handler",
    "global_exception_handler",
]
