# tarball_serve/middleware/token_auth.py
from __future__ import annotations

"""
# tarball-serve • Token gate (ASGI)

Rejects requests without a valid signed token before they reach routing.

- Auth mode is fixed when the middleware is built; it is never re-derived
  per request.
- With `AuthDisabled` the middleware is a pass-through.
- With `AuthEnabled`, the JWT is the password of HTTP Basic credentials.
  Any failure answers 401 (problem+json) right here, so no route handler
  and no presigning ever runs for that request.
- Meta paths (`/healthz`, `/readyz`) are exempt so probes need no token.

Order matters: this must sit inside `RequestIDMiddleware`, which logs the
401s it produces.
"""

import logging
from typing import Iterable

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

from tarball_serve.core.exception_handlers import problem_response
from tarball_serve.core.exceptions import AuthInvalid
from tarball_serve.core.jwt import AuthEnabled, AuthMode, verify_authorization

logger = logging.getLogger(__name__)

DEFAULT_EXEMPT_PATHS = ("/healthz", "/readyz")


class TokenAuthMiddleware:
    def __init__(self, app: ASGIApp, mode: AuthMode, exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS) -> None:
        self.app = app
        self.mode = mode
        self.exempt_paths = frozenset(exempt_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            scope.get("type") != "http"
            or not isinstance(self.mode, AuthEnabled)
            or scope.get("path") in self.exempt_paths
        ):
            return await self.app(scope, receive, send)

        headers = Headers(scope=scope)
        try:
            claims = verify_authorization(headers.get("authorization"), self.mode)
        except AuthInvalid as exc:
            logger.info("Rejected request to %s: %s", scope.get("path"), exc.reason)
            response = problem_response(
                type(exc).__name__,
                exc.message,
                exc.status_code,
                scope.get("path", ""),
                exc.headers,
            )
            return await response(scope, receive, send)

        logger.debug("Token accepted for %s (sub=%s)", scope.get("path"), claims.get("sub"))
        await self.app(scope, receive, send)


__all__ = ["TokenAuthMiddleware", "DEFAULT_EXEMPT_PATHS"]
