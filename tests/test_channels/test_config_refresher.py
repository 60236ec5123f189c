# tests/test_channels/test_config_refresher.py

from datetime import datetime, timedelta, timezone

import pytest

from tarball_serve.services.channel_loader import load_channels_snapshot
from tarball_serve.services.channel_registry import ChannelRegistry
from tarball_serve.services.config_refresher import JOB_ID, ConfigRefresher


async def _loaded_registry(store) -> ChannelRegistry:
    return ChannelRegistry(await load_channels_snapshot(store))


@pytest.mark.anyio
async def test_refresh_installs_new_snapshot(blob_store):
    reg = await _loaded_registry(blob_store)
    refresher = ConfigRefresher(blob_store, reg, interval_seconds=60)

    blob_store.put_json("fresh.json", {"latest": "first", "file_extension": ".tar.xz", "previous": []})
    assert await refresher.refresh_once() is True

    assert reg.generation == 2
    assert reg.current().get("fresh").latest == "first"


@pytest.mark.anyio
async def test_failed_refresh_keeps_previous_snapshot(blob_store):
    reg = await _loaded_registry(blob_store)
    before = reg.current()
    refresher = ConfigRefresher(blob_store, reg, interval_seconds=60)

    blob_store.fail_get.add("channels.json")
    assert await refresher.refresh_once() is False
    assert reg.current() is before
    assert reg.generation == 1

    blob_store.objects["channels.json"] = b"{ broken"
    blob_store.fail_get.clear()
    assert await refresher.refresh_once() is False
    assert reg.current() is before


@pytest.mark.anyio
async def test_refresh_recovers_after_failures(blob_store):
    reg = await _loaded_registry(blob_store)
    refresher = ConfigRefresher(blob_store, reg, interval_seconds=60)

    blob_store.fail_get.add("channels.json")
    assert await refresher.refresh_once() is False
    blob_store.fail_get.clear()
    assert await refresher.refresh_once() is True
    assert reg.generation == 2


@pytest.mark.anyio
async def test_unexpected_error_is_contained(blob_store):
    reg = await _loaded_registry(blob_store)
    refresher = ConfigRefresher(blob_store, reg, interval_seconds=60)

    async def _boom(key):
        raise RuntimeError("boom")

    blob_store.get_bytes = _boom
    assert await refresher.refresh_once() is False
    assert reg.generation == 1


@pytest.mark.anyio
async def test_first_tick_is_one_interval_after_start(blob_store):
    reg = await _loaded_registry(blob_store)
    refresher = ConfigRefresher(blob_store, reg, interval_seconds=120)

    started = datetime.now(timezone.utc)
    refresher.start()
    try:
        assert refresher.running
        job = refresher.scheduler.get_job(JOB_ID)
        assert job is not None
        assert job.max_instances == 1
        assert job.coalesce is True
        assert job.next_run_time >= started + timedelta(seconds=119)
        # nothing ran yet
        assert reg.generation == 1

        with pytest.raises(RuntimeError):
            refresher.start()
    finally:
        refresher.shutdown()

    assert not refresher.running
    refresher.shutdown()  # idempotent


def test_interval_must_be_positive(blob_store):
    with pytest.raises(ValueError):
        ConfigRefresher(blob_store, ChannelRegistry(), interval_seconds=0)
