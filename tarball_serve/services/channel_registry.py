from __future__ import annotations

"""
Channel registry: the currently published `ChannelSnapshot`.

One writer (startup load, then the config refresher) and any number of
readers (request handlers). The snapshot is immutable, so publishing a new
one is a single reference assignment: readers calling `current()` get the
old snapshot or the new one in full, never a mix, and never wait. A reader
keeps whatever snapshot it got for as long as it needs it; the old one is
reclaimed once the last reference goes away.

Handlers should call `current()` once per request and reuse the result.
"""

import logging
from typing import Optional

from tarball_serve.core.exceptions import RegistryNotLoaded
from tarball_serve.schemas.channels import ChannelSnapshot

logger = logging.getLogger(__name__)


class ChannelRegistry:
    def __init__(self, snapshot: Optional[ChannelSnapshot] = None) -> None:
        self._snapshot: Optional[ChannelSnapshot] = snapshot
        self._generation = 0 if snapshot is None else 1

    def current(self) -> ChannelSnapshot:
        snapshot = self._snapshot
        if snapshot is None:
            raise RegistryNotLoaded("channel registry read before the initial load")
        return snapshot

    def replace(self, snapshot: ChannelSnapshot) -> None:
        self._snapshot = snapshot
        self._generation += 1
        logger.debug("Installed channel snapshot #%d (%d channels)", self._generation, len(snapshot))

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    @property
    def generation(self) -> int:
        """Number of snapshots installed so far."""
        return self._generation


__all__ = ["ChannelRegistry"]
