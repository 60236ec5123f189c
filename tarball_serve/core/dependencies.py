# tarball_serve/core/dependencies.py
from __future__ import annotations

"""
Request dependencies
====================

The app factory stores the long-lived collaborators on `app.state`; routes
pull them in through these small `Depends` providers so tests can swap any
of them with `app.dependency_overrides` or by building the app with fakes.
"""

from fastapi import Request

from tarball_serve.core.config import Settings
from tarball_serve.services.channel_registry import ChannelRegistry
from tarball_serve.utils.aws import BlobStore

__all__ = ["get_app_settings", "get_registry", "get_blob_store"]


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> ChannelRegistry:
    return request.app.state.registry


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store
