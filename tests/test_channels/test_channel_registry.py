# tests/test_channels/test_channel_registry.py

import pytest

from tarball_serve.core.exceptions import RegistryNotLoaded
from tarball_serve.schemas.channels import ChannelConfig, ChannelSnapshot
from tarball_serve.services.channel_registry import ChannelRegistry


def _snap(**channels):
    return ChannelSnapshot.build({k: ChannelConfig(latest=v) for k, v in channels.items()})


def test_reading_before_initial_load_raises():
    reg = ChannelRegistry()
    assert not reg.is_loaded
    assert reg.generation == 0
    with pytest.raises(RegistryNotLoaded):
        reg.current()


def test_constructed_with_snapshot_is_loaded():
    snap = _snap(a="x")
    reg = ChannelRegistry(snap)
    assert reg.is_loaded
    assert reg.generation == 1
    assert reg.current() is snap


def test_replace_swaps_whole_snapshot():
    old, new = _snap(a="x"), _snap(b="y")
    reg = ChannelRegistry(old)

    held = reg.current()
    reg.replace(new)

    # a reader that already holds the old snapshot keeps a consistent view
    assert held is old
    assert held.get("a").latest == "x"
    assert "b" not in held

    assert reg.current() is new
    assert reg.generation == 2
