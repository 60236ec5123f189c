from __future__ import annotations

"""
Channel config loader
---------------------
Turns the bucket's `channels.json` + `<channel>.json` documents into a
validated, immutable `ChannelSnapshot`.

- The manifest is all-or-nothing: failing to fetch or parse it raises a
  `ConfigError` and no snapshot is produced.
- Channels are individually optional: a missing or broken `<channel>.json`
  drops that channel from the snapshot (logged), the rest still load.
- Given the same bucket contents the result is always the same.
"""

import logging
from typing import Dict, Optional

from pydantic import ValidationError

from tarball_serve.core.config import CHANNELS_MANIFEST_KEY
from tarball_serve.core.exceptions import ChannelConfigError, ConfigFetchError, ConfigParseError
from tarball_serve.schemas.channels import ChannelConfig, ChannelSnapshot, ChannelsManifest
from tarball_serve.utils.aws import BlobStore, S3ObjectNotFound, S3StorageError, is_safe_key

logger = logging.getLogger(__name__)


def channel_config_key(channel_name: str) -> str:
    return f"{channel_name}.json"


async def load_manifest(store: BlobStore) -> ChannelsManifest:
    """Fetch and parse `channels.json`. Raises `ConfigFetchError` / `ConfigParseError`."""
    try:
        raw = await store.get_bytes(CHANNELS_MANIFEST_KEY)
    except S3StorageError as e:
        raise ConfigFetchError(f"Failed to read {CHANNELS_MANIFEST_KEY}: {e}") from e

    try:
        manifest = ChannelsManifest.model_validate_json(raw)
    except ValidationError as e:
        raise ConfigParseError(f"Failed to deserialize {CHANNELS_MANIFEST_KEY}: {e}") from e

    logger.debug("Loaded channel manifest: %s", manifest.channels)
    return manifest


async def load_channel_config(store: BlobStore, channel_name: str) -> ChannelConfig:
    """Fetch and parse one `<channel>.json`. Raises `ChannelConfigError`."""
    key = channel_config_key(channel_name)
    if not is_safe_key(key):
        raise ChannelConfigError(
            channel_name,
            f"{key!r} is not a valid object key (allowed: letters, digits, space and ._-/+=@())",
        )
    try:
        raw = await store.get_bytes(key)
    except S3ObjectNotFound as e:
        raise ChannelConfigError(channel_name, f"no corresponding {key} in the bucket") from e
    except S3StorageError as e:
        raise ChannelConfigError(channel_name, f"failed to read {key}: {e}") from e

    try:
        return ChannelConfig.model_validate_json(raw)
    except ValidationError as e:
        raise ChannelConfigError(channel_name, f"failed to deserialize {key}: {e}") from e


async def load_channels_snapshot(store: BlobStore) -> ChannelSnapshot:
    """
    Build a snapshot of every channel that loads cleanly.

    Raises
    ------
    ConfigFetchError, ConfigParseError
        The manifest itself could not be read or parsed.
    """
    manifest = await load_manifest(store)

    channels: Dict[str, ChannelConfig] = {}
    first_error: Optional[ChannelConfigError] = None
    skipped = 0

    for channel_name in manifest.channels:
        if channel_name in channels:
            continue
        try:
            config = await load_channel_config(store, channel_name)
        except ChannelConfigError as e:
            logger.error("Configured channel %r ignored: %s", channel_name, e.reason)
            first_error = first_error or e
            skipped += 1
            continue

        logger.info("Channel %s points to: %s", channel_name, config.latest or "(nothing yet)")
        channels[channel_name] = config

    if first_error is not None:
        logger.warning(
            "Loaded %d channel(s), skipped %d; first error: %s",
            len(channels), skipped, first_error,
        )

    return ChannelSnapshot.build(channels)


__all__ = [
    "channel_config_key",
    "load_manifest",
    "load_channel_config",
    "load_channels_snapshot",
]
