from __future__ import annotations

"""
Publish workflow
================

Uploads a new artifact and moves a channel's `latest` pointer to it.

Ordering
--------
1. Load the channel configuration fresh from the bucket.
2. Validate the channel and the file name.
3. Refuse if the object key already exists (artifacts are never overwritten).
4. Upload the object.
5. Only then rewrite `<channel>.json` (and, for a new channel, `channels.json`).

A crash between 4 and 5 leaks an unreferenced object; it can never leave a
pointer to an object that does not exist. Leaked objects are not cleaned up
automatically.

Caveats
-------
- Step 3 is check-then-act. Unless the store honours conditional writes
  (`S3_CONDITIONAL_WRITES=true` → `If-None-Match: *`) two publishers can
  race on the same key. The guarantee is best-effort otherwise.
- Concurrent publishes to the *same* channel race on the read-modify-write
  of `<channel>.json`; callers must serialize them. Different channels are
  independent.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from tarball_serve.core.config import CHANNELS_MANIFEST_KEY, DEFAULT_FILE_EXTENSION
from tarball_serve.core.exceptions import (
    ChannelConfigError,
    ChannelNotFound,
    InvalidObjectName,
    PointerUpdateError,
    UploadConflict,
)
from tarball_serve.schemas.channels import ChannelConfig, ChannelsManifest
from tarball_serve.services.channel_loader import channel_config_key, load_channel_config, load_manifest
from tarball_serve.utils.aws import BlobStore, S3PreconditionFailed, S3StorageError, is_safe_key

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
ARTIFACT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class PublishResult:
    channel: str
    object_key: str
    latest: str
    previous_latest: Optional[str]
    created: bool


async def publish(
    store: BlobStore,
    channel_name: str,
    file_path: Path,
    *,
    create: bool = False,
    file_extension: Optional[str] = None,
) -> PublishResult:
    """
    Upload `file_path` and make it the channel's latest artifact.

    Parameters
    ----------
    create : bool
        Create the channel when it does not exist yet.
    file_extension : str | None
        Extension for a channel created by this call (default `.tar.xz`).
        Ignored for existing channels.

    Raises
    ------
    ChannelNotFound
        Unknown channel and `create` is False.
    InvalidObjectName
        File name does not end with the channel's extension, or a new
        channel's `file_extension` is malformed. Also raised for a channel name
        that cannot form the `<channel>.json` key.
    UploadConflict
        The object key already exists.
    PointerUpdateError
        The upload succeeded but the channel could not be updated.
    ConfigError, S3StorageError
        Reading the configuration or uploading failed.
    """
    file_path = Path(file_path)
    if not is_safe_key(channel_config_key(channel_name)):
        raise InvalidObjectName(name=channel_name, reason="channel name is not usable as an object key")

    # 1) Fresh configuration, straight from the bucket
    manifest = await load_manifest(store)
    channel: Optional[ChannelConfig] = None
    if channel_name in manifest.channels:
        try:
            channel = await load_channel_config(store, channel_name)
        except ChannelConfigError as e:
            if not create:
                raise ChannelNotFound(channel=channel_name) from e
            logger.warning("Channel %r is listed but unreadable (%s); recreating it", channel_name, e.reason)

    created = channel is None
    if channel is None:
        if not create:
            raise ChannelNotFound(channel=channel_name)
        extension = file_extension or DEFAULT_FILE_EXTENSION
        try:
            channel = ChannelConfig(file_extension=extension)
        except ValidationError as e:
            raise InvalidObjectName(name=extension, reason="file extension must start with a period") from e

    # 2) File name must carry the channel's extension
    object_key = file_path.name
    if not object_key.endswith(channel.file_extension) or len(object_key) == len(channel.file_extension):
        raise InvalidObjectName(
            name=object_key,
            reason=f"only {channel.file_extension} is supported for channel {channel_name!r}",
        )
    base_key = object_key[: -len(channel.file_extension)]

    # 3) Never overwrite
    if await store.exists(object_key):
        raise UploadConflict(object_key=object_key)

    # 4) Upload
    try:
        await store.put_file(object_key, file_path, content_type=ARTIFACT_CONTENT_TYPE, if_none_match=True)
    except S3PreconditionFailed as e:
        raise UploadConflict(object_key=object_key) from e

    # 5) Pointer update, strictly after the upload
    updated = channel.with_published(base_key)
    logger.info(
        "Updating channel %s from %s to %s.",
        channel_name, channel.latest or "(nothing)", object_key,
    )
    try:
        await store.put_bytes(
            channel_config_key(channel_name),
            updated.to_json_bytes(),
            content_type=JSON_CONTENT_TYPE,
        )
        if channel_name not in manifest.channels:
            new_manifest = ChannelsManifest(channels=[*manifest.channels, channel_name])
            await store.put_bytes(
                CHANNELS_MANIFEST_KEY,
                new_manifest.model_dump_json(indent=2).encode("utf-8"),
                content_type=JSON_CONTENT_TYPE,
            )
    except S3StorageError as e:
        raise PointerUpdateError(channel=channel_name, object_key=object_key, cause=e) from e

    return PublishResult(
        channel=channel_name,
        object_key=object_key,
        latest=base_key,
        previous_latest=channel.latest,
        created=created,
    )


__all__ = ["publish", "PublishResult"]
