"""
🔗 tarball-serve · Channel & Permanent Object Routes
===================================================

Implements the Lockable Tarball Protocol on top of presigned S3 URLs.

Routes
------
- GET|HEAD /channel/{name}{ext}   → 307 to the channel's current artifact +
                                    `Link: <{BASE_URL}/permanent/{key}>; rel="immutable"`
- GET|HEAD /permanent/{key}       → 307 to that exact object

Clients (Nix) keep re-resolving the channel URL for freshness and lock the
permanent URL from the `Link` header, which they may cache forever.

Semantics
---------
- The channel snapshot is read once per request.
- The suffix stripped from `/channel/...` is the matched channel's own
  `file_extension`; nothing assumes `.tar.xz`.
- `/permanent/...` does not check that the object exists. A stale or made-up
  key gets a presigned URL that itself answers 404.
- Redirects carry `Cache-Control: no-store`; the presigned target expires
  after ten minutes.
"""
from __future__ import annotations

import logging
from typing import Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from tarball_serve.core.config import DEFAULT_FILE_EXTENSION, PRESIGN_TTL_SECONDS, Settings
from tarball_serve.core.dependencies import get_app_settings, get_blob_store, get_registry
from tarball_serve.core.exceptions import ChannelNotFound, InvalidObjectName, PresignFailure
from tarball_serve.schemas.channels import ChannelConfig, ChannelSnapshot
from tarball_serve.services.channel_registry import ChannelRegistry
from tarball_serve.utils.aws import BlobStore, S3StorageError, is_safe_key

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Channels"])

_NO_STORE = {"Cache-Control": "no-store"}


# ─────────────────────────────────────────────────────────────────────────────
# 🧰 Helpers
# ─────────────────────────────────────────────────────────────────────────────
def match_channel(snapshot: ChannelSnapshot, file_name: str) -> Tuple[str, ChannelConfig]:
    """
    Find the channel served as `file_name` (= name + its file_extension).

    Overlapping candidates resolve to the longest channel name.

    Raises
    ------
    InvalidObjectName
        A known channel is addressed with the wrong (or no) suffix, or the
        name carries no extension at all.
    ChannelNotFound
        No channel by that name. A name ending in a served suffix whose
        stem is unknown lands here even when it starts with a known name
        (`nixos.small.tar.xz` next to `nixos`).
    """
    best: Tuple[str, ChannelConfig] | None = None
    for name, config in snapshot.channels.items():
        if file_name == f"{name}{config.file_extension}":
            if best is None or len(name) > len(best[0]):
                best = (name, config)
    if best is not None:
        return best

    bare_names = [
        file_name[: -len(ext)]
        for ext in snapshot.file_extensions()
        if file_name.endswith(ext) and len(file_name) > len(ext)
    ]
    if bare_names:
        # Served suffix: either a known channel under another channel's suffix, or nobody.
        for bare in bare_names:
            config = snapshot.get(bare)
            if config is not None:
                raise InvalidObjectName(
                    name=file_name,
                    reason=f"channel {bare!r} is served as {bare}{config.file_extension}",
                )
        raise ChannelNotFound(channel=file_name)

    for name, config in snapshot.channels.items():
        if file_name == name or file_name.startswith(f"{name}."):
            raise InvalidObjectName(
                name=file_name,
                reason=f"channel {name!r} is served as {name}{config.file_extension}",
            )

    if "." not in file_name:
        raise InvalidObjectName(name=file_name, reason="missing file extension")
    raise ChannelNotFound(channel=file_name)


def validate_object_key(snapshot: ChannelSnapshot, object_key: str) -> str:
    """
    Accept keys that are safe S3 keys ending in a served extension: any
    channel's `file_extension`, or the default `.tar.xz`.
    """
    if not is_safe_key(object_key):
        raise InvalidObjectName(name=object_key, reason="not a valid object key")

    accepted = snapshot.file_extensions() | {DEFAULT_FILE_EXTENSION}
    if not any(object_key.endswith(ext) and len(object_key) > len(ext) for ext in accepted):
        raise InvalidObjectName(
            name=object_key,
            reason=f"only {', '.join(sorted(accepted))} objects are served",
        )
    return object_key


async def _presign(store: BlobStore, method: str, object_key: str) -> str:
    try:
        return await store.presign(method, object_key, expires_in=PRESIGN_TTL_SECONDS)
    except S3StorageError as e:
        logger.error("Presigning %s %s failed: %s", method, object_key, e)
        raise PresignFailure(object_key=object_key) from e


# ─────────────────────────────────────────────────────────────────────────────
# 🚪 Channel: mutable URL → current artifact
# ─────────────────────────────────────────────────────────────────────────────
@router.api_route(
    "/channel/{file_name}",
    methods=["GET", "HEAD"],
    summary="Redirect to the channel's current artifact",
    response_class=RedirectResponse,
    status_code=307,
)
async def get_channel(
    file_name: str,
    request: Request,
    registry: ChannelRegistry = Depends(get_registry),
    store: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_app_settings),
) -> RedirectResponse:
    snapshot = registry.current()
    channel_name, config = match_channel(snapshot, file_name)

    object_key = config.latest_object_key
    if object_key is None:
        # Known channel, nothing published yet.
        raise ChannelNotFound(channel=channel_name)

    url = await _presign(store, request.method, object_key)

    headers = dict(_NO_STORE)
    # The Lockable HTTP Tarball Protocol, see
    # https://nix.dev/manual/nix/stable/protocols/tarball-fetcher
    headers["Link"] = f'<{settings.permanent_url(object_key)}>; rel="immutable"'
    return RedirectResponse(url=url, status_code=307, headers=headers)


# ─────────────────────────────────────────────────────────────────────────────
# 🧊 Permanent: immutable URL → exact object
# ─────────────────────────────────────────────────────────────────────────────
@router.api_route(
    "/permanent/{object_key:path}",
    methods=["GET", "HEAD"],
    summary="Redirect to an immutable object",
    response_class=RedirectResponse,
    status_code=307,
)
async def get_permanent(
    object_key: str,
    request: Request,
    registry: ChannelRegistry = Depends(get_registry),
    store: BlobStore = Depends(get_blob_store),
) -> RedirectResponse:
    validate_object_key(registry.current(), object_key)
    url = await _presign(store, request.method, object_key)
    return RedirectResponse(url=url, status_code=307, headers=dict(_NO_STORE))


__all__ = ["router", "match_channel", "validate_object_key"]
