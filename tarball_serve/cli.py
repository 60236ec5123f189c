#!/usr/bin/env python3
"""
tarball-serve • Channel admin CLI
=================================

Inspect channels and publish new artifacts straight to the bucket. The
server picks changes up on its next refresh tick.

Examples
--------
List channels:
    tarball-serve-upload list-channels

Show one channel's pointer and history:
    tarball-serve-upload show-channel nixos-24.05

Publish (the file name becomes the object key):
    tarball-serve-upload publish nixos-24.05 ./abc123.tar.xz

Create the channel on first publish:
    tarball-serve-upload publish my-iso ./build-1.iso --create --file-extension .iso

Bucket and endpoint come from the same environment as the server
(`S3_BUCKET`, `S3_ENDPOINT_URL`, `AWS_*`); `--bucket` overrides `S3_BUCKET`.

Publishing is not safe against concurrent publishes to the same channel;
serialize them.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

from tarball_serve.core.config import Settings
from tarball_serve.core.exceptions import (
    AppException,
    ChannelConfigError,
    ChannelNotFound,
    ConfigError,
    PointerUpdateError,
)
from tarball_serve.core.logger import setup_logging
from tarball_serve.services.channel_loader import load_channel_config, load_channels_snapshot, load_manifest
from tarball_serve.services.publish_service import publish
from tarball_serve.utils.aws import BlobStore, S3Client, S3StorageError


def build_store(settings: Settings) -> BlobStore:
    return S3Client.from_settings(settings)


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="tarball-serve-upload",
        description="Manage the channels served via the Nix Lockable Tarball Protocol.",
    )
    ap.add_argument("--bucket", help="S3 bucket (default: $S3_BUCKET)")
    ap.add_argument("--endpoint-url", help="S3 endpoint (default: $S3_ENDPOINT_URL)")
    ap.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")

    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("list-channels", help="List all channels.")

    show = sub.add_parser("show-channel", help="Show the channel details.")
    show.add_argument("channel", help="The channel to show.")

    pub = sub.add_parser("publish", help="Upload a file and point the channel at it.")
    pub.add_argument("channel", help="The channel to publish for.")
    pub.add_argument("file", type=Path, help="The file to upload.")
    pub.add_argument("--create", action="store_true", help="Create the channel if it doesn't exist.")
    pub.add_argument(
        "--file-extension",
        help="File extension for a channel created with --create (default: .tar.xz).",
    )
    return ap


def _load_settings(args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.bucket:
        overrides["S3_BUCKET"] = args.bucket
    if args.endpoint_url:
        overrides["S3_ENDPOINT_URL"] = args.endpoint_url
    return Settings(**overrides)


async def _list_channels(store: BlobStore) -> int:
    snapshot = await load_channels_snapshot(store)
    for name in snapshot.names():
        print(name)
    return 0


async def _show_channel(store: BlobStore, channel: str) -> int:
    manifest = await load_manifest(store)
    if channel not in manifest.channels:
        raise ChannelNotFound(channel=channel)
    try:
        config = await load_channel_config(store, channel)
    except ChannelConfigError as e:
        print(f"Channel {channel} is listed but broken: {e.reason}", file=sys.stderr)
        return 1
    print(json.dumps({"channel": channel, **config.model_dump(mode="json")}, indent=2))
    return 0


async def _publish(store: BlobStore, args: argparse.Namespace) -> int:
    if not args.file.is_file():
        print(f"Not a file: {args.file}", file=sys.stderr)
        return 2
    result = await publish(
        store,
        args.channel,
        args.file,
        create=args.create,
        file_extension=args.file_extension,
    )
    print(
        f"Updated channel {result.channel} from {result.previous_latest or '(nothing)'} "
        f"to {result.object_key}."
    )
    return 0


async def _dispatch(store: BlobStore, args: argparse.Namespace) -> int:
    if args.command == "list-channels":
        return await _list_channels(store)
    if args.command == "show-channel":
        return await _show_channel(store, args.channel)
    return await _publish(store, args)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        settings = _load_settings(args)
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    store = build_store(settings)
    try:
        return asyncio.run(_dispatch(store, args))
    except (AppException, ConfigError, PointerUpdateError, S3StorageError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
