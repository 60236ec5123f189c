# tarball_serve/main.py
from __future__ import annotations

"""
# tarball-serve • Application Entrypoint (FastAPI)

ASGI application factory and lifecycle for the channel gateway.

## Design Goals
- Deterministic, testable **app factory** (`create_app`) with explicit lifespan.
- Every startup decision is made before traffic is accepted: settings are
  validated, the auth mode is resolved, and the initial channel snapshot is
  loaded. Any failure aborts startup.
- Explicit **middleware order** (outermost first):
  1) request id + access log → 2) token gate → 3) routes.
- Centralized exception handling (problem+json).

## Probes
- `/healthz`: liveness (process up).
- `/readyz`: readiness (channel registry loaded).
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from tarball_serve.api.routers.channels import router as channels_router
from tarball_serve.core.config import Settings, get_settings
from tarball_serve.core.exception_handlers import (
    app_exception_handler,
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from tarball_serve.core.exceptions import AppException, AuthConfigError
from tarball_serve.core.jwt import AuthMode, load_auth_mode
from tarball_serve.core.logger import setup_logging
from tarball_serve.middleware.request_id import RequestIDMiddleware
from tarball_serve.middleware.token_auth import TokenAuthMiddleware
from tarball_serve.services.channel_loader import load_channels_snapshot
from tarball_serve.services.channel_registry import ChannelRegistry
from tarball_serve.services.config_refresher import ConfigRefresher
from tarball_serve.utils.aws import BlobStore, S3Client

logger = logging.getLogger("tarball_serve")


# ─────────────────────────────────────────────────────────────────────────────
# 🔄 Lifespan: startup & shutdown
# ─────────────────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Startup:
        - Load the channel configuration synchronously (must succeed).
        - Start the background refresher.

    Shutdown:
        - Stop the refresher.
    """
    registry: ChannelRegistry = app.state.registry
    settings: Settings = app.state.settings

    if not registry.is_loaded:
        # Raises ConfigError → startup fails; serving without channels is pointless.
        registry.replace(await load_channels_snapshot(app.state.blob_store))
    logger.info("✅ %s starting up with %d channel(s)", settings.PROJECT_NAME, len(registry.current()))

    refresher: Optional[ConfigRefresher] = app.state.refresher
    if refresher is not None:
        refresher.start()

    try:
        yield
    finally:
        if refresher is not None:
            refresher.shutdown()
        logger.info("🛑 %s shutting down", settings.PROJECT_NAME)


# ─────────────────────────────────────────────────────────────────────────────
# 🏗️ App factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(
    settings: Optional[Settings] = None,
    *,
    blob_store: Optional[BlobStore] = None,
    registry: Optional[ChannelRegistry] = None,
    auth_mode: Optional[AuthMode] = None,
    start_refresher: bool = True,
) -> FastAPI:
    """
    Build and configure the FastAPI app instance.

    Collaborators default to the production ones built from `settings`;
    tests inject fakes.

    Raises:
        AuthConfigError: a JWT public key is configured but unusable.
    """
    settings = settings or get_settings()
    blob_store = blob_store if blob_store is not None else S3Client.from_settings(settings)
    registry = registry if registry is not None else ChannelRegistry()
    auth_mode = auth_mode if auth_mode is not None else load_auth_mode(settings.JWT_PUBLIC_KEY_PATH)

    docs_url = "/docs" if settings.ENABLE_DOCS else None
    openapi_url = "/openapi.json" if settings.ENABLE_DOCS else None

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        docs_url=docs_url,
        redoc_url=None,
        openapi_url=openapi_url,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.blob_store = blob_store
    app.state.registry = registry
    app.state.auth_mode = auth_mode
    app.state.refresher = (
        ConfigRefresher(blob_store, registry, interval_seconds=settings.REFRESH_INTERVAL_SECONDS)
        if start_refresher
        else None
    )

    # ── Middlewares (added inside-out: the last one added runs first) ───────
    app.add_middleware(TokenAuthMiddleware, mode=auth_mode)  # 2) token gate
    app.add_middleware(RequestIDMiddleware)  # 1) correlation id + access log

    # ── Exception handlers: the one place errors become status codes ────────
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)  # type: ignore[arg-type]

    # ── Routes ──────────────────────────────────────────────────────────────
    app.include_router(channels_router)

    @app.get("/healthz", tags=["meta"])
    async def healthz() -> dict[str, bool]:
        """Liveness probe. No external checks."""
        return {"ok": True}

    @app.get("/readyz", tags=["meta"])
    async def readyz() -> dict[str, object]:
        """Readiness: the registry holds a snapshot."""
        reg: ChannelRegistry = app.state.registry
        ready = reg.is_loaded
        return {
            "ready": ready,
            "generation": reg.generation,
            "channels": len(reg.current()) if ready else 0,
            "loaded_at": reg.current().loaded_at.isoformat() if ready else None,
            "refresher": bool(app.state.refresher and app.state.refresher.running),
        }

    return app


# ─────────────────────────────────────────────────────────────────────────────
# 🚀 Server entry point (`tarball-serve`)
# ─────────────────────────────────────────────────────────────────────────────
def run() -> None:
    """Validate configuration, then serve with uvicorn until interrupted."""
    import uvicorn

    setup_logging()
    try:
        settings = get_settings()
        app = create_app(settings)
    except ValidationError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(2)
    except AuthConfigError as e:
        logger.error("%s", e)
        sys.exit(2)

    # A failed initial channel load aborts the lifespan; uvicorn then exits non-zero.
    uvicorn.run(
        app,
        host=settings.LISTEN_HOST,
        port=settings.LISTEN_PORT,
        log_config=None,  # loguru intercepts uvicorn's loggers
        proxy_headers=True,
    )


__all__ = ["create_app", "lifespan", "run"]


if __name__ == "__main__":
    run()
