# tarball_serve/middleware/request_id.py
from __future__ import annotations

"""
# tarball-serve • Request ID + access log middleware (ASGI)

- Reuses a client-supplied `X-Request-ID` / `X-Correlation-ID` when it is a
  UUIDv4, otherwise mints one.
- Exposes it as `request.state.request_id` and echoes it on the response.
- Binds `request_id` into the **loguru** context for the whole request.
- Emits one access line per request: method, path, status, duration.

It is the outermost stage of the pipeline, so the 401s produced by the
token gate are logged here too.

## Usage
    app.add_middleware(RequestIDMiddleware)   # add last → runs first
"""

import time
import uuid
from typing import Optional

from loguru import logger
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

DEFAULT_HEADER = "X-Request-ID"
_FALLBACK_HEADER = "X-Correlation-ID"
_MAX_LEN = 64


def _accept_client_id(value: Optional[str]) -> Optional[str]:
    """Canonical form of `value` if it is a UUIDv4, else None."""
    if not value or len(value) > _MAX_LEN:
        return None
    try:
        parsed = uuid.UUID(value.strip())
    except ValueError:
        return None
    return str(parsed) if parsed.version == 4 else None


class RequestIDMiddleware:
    def __init__(self, app: ASGIApp, header_name: str = DEFAULT_HEADER, trust_client_ids: bool = True) -> None:
        self.app = app
        self.header_name = header_name
        self.trust_client_ids = trust_client_ids

    def _request_id(self, scope: Scope) -> str:
        if self.trust_client_ids:
            headers = Headers(scope=scope)
            client_id = _accept_client_id(headers.get(self.header_name) or headers.get(_FALLBACK_HEADER))
            if client_id:
                return client_id
        return str(uuid.uuid4())

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = self._request_id(scope)
        scope.setdefault("state", {})["request_id"] = request_id
        status = 500
        started = time.perf_counter()

        async def send_with_id(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
                MutableHeaders(scope=message)[self.header_name] = request_id
            await send(message)

        with logger.contextualize(request_id=request_id):
            try:
                await self.app(scope, receive, send_with_id)
            except Exception:
                logger.exception("Unhandled exception while serving {} {}", scope.get("method"), scope.get("path"))
                raise
            finally:
                logger.info(
                    "{} {} -> {} ({:.1f} ms)",
                    scope.get("method", "-"),
                    scope.get("path", "-"),
                    status,
                    (time.perf_counter() - started) * 1000,
                )


__all__ = ["RequestIDMiddleware"]
