from __future__ import annotations

"""
tarball-serve • Channel Schemas
===============================

Purpose
-------
- Typed views of the JSON documents that live in the bucket:
  `channels.json` (the manifest) and `<channel>.json` (one per channel).
- `ChannelSnapshot`: the immutable, point-in-time registry built from them.

Design
------
- Models are frozen; `previous` is a tuple. A snapshot can be shared by any
  number of concurrent readers without copying or locking.
- Unknown JSON fields are ignored so newer writers don't break older servers.
- Writing a channel always emits all three fields (pretty-printed), the way
  the publish tool has always written them.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Iterator, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tarball_serve.core.config import DEFAULT_FILE_EXTENSION


class ChannelsManifest(BaseModel):
    """`channels.json`: every channel we serve. Each needs a `<channel>.json`."""

    model_config = ConfigDict(extra="ignore")

    channels: list[str]


class ChannelConfig(BaseModel):
    """Persistent configuration of a single channel (`<channel>.json`).

    - latest: base key of the newest artifact; the object itself is
      `latest + file_extension`. None means nothing was published yet.
    - file_extension: must include the leading period; multiple periods are
      fine (`.tar.xz`).
    - previous: superseded base keys, oldest first.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    latest: Optional[str] = None
    file_extension: str = DEFAULT_FILE_EXTENSION
    previous: Tuple[str, ...] = Field(default_factory=tuple)

    @field_validator("file_extension")
    @classmethod
    def _leading_period(cls, v: str) -> str:
        if not v.startswith(".") or len(v) < 2:
            raise ValueError("file_extension must start with a period, e.g. '.tar.xz'")
        return v

    @field_validator("latest")
    @classmethod
    def _non_empty_latest(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("latest must be null or a non-empty key")
        return v

    @property
    def latest_object_key(self) -> Optional[str]:
        """Full object key of the current artifact, if any."""
        return None if self.latest is None else f"{self.latest}{self.file_extension}"

    def with_published(self, base_key: str) -> "ChannelConfig":
        """Copy with `base_key` as latest and the old latest appended to history."""
        previous = self.previous + (self.latest,) if self.latest is not None else self.previous
        return self.model_copy(update={"latest": base_key, "previous": previous})

    def to_json_bytes(self) -> bytes:
        return json.dumps(self.model_dump(mode="json"), indent=2).encode("utf-8")


@dataclass(frozen=True)
class ChannelSnapshot:
    """Immutable mapping channel name → `ChannelConfig`, as loaded at `loaded_at`."""

    channels: Mapping[str, ChannelConfig] = field(default_factory=lambda: MappingProxyType({}))
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def build(cls, channels: Mapping[str, ChannelConfig]) -> "ChannelSnapshot":
        return cls(channels=MappingProxyType(dict(channels)))

    def get(self, name: str) -> Optional[ChannelConfig]:
        return self.channels.get(name)

    def names(self) -> list[str]:
        return sorted(self.channels)

    def file_extensions(self) -> frozenset[str]:
        return frozenset(c.file_extension for c in self.channels.values())

    def __contains__(self, name: object) -> bool:
        return name in self.channels

    def __iter__(self) -> Iterator[str]:
        return iter(self.channels)

    def __len__(self) -> int:
        return len(self.channels)


__all__ = ["ChannelsManifest", "ChannelConfig", "ChannelSnapshot"]
