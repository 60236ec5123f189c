# tests/test_gateway/test_channel_routes.py

import pytest

from tarball_serve.api.routers.channels import match_channel, validate_object_key
from tarball_serve.core.exceptions import ChannelNotFound, InvalidObjectName
from tarball_serve.schemas.channels import ChannelConfig, ChannelSnapshot
from tests.fixtures.blob_store import FakeBlobStore, seed_channels


# ─────────────────────────────────────────────────────────────
# Channel redirect
# ─────────────────────────────────────────────────────────────

def test_channel_redirects_to_latest_with_immutable_link(blob_store, make_client):
    with make_client(blob_store) as client:
        r = client.get("/channel/nixos-24.05.tar.xz", follow_redirects=False)

    assert r.status_code == 307
    assert r.headers["location"] == "https://signed.example/abc123.tar.xz?m=GET&e=600"
    assert r.headers["link"] == '<https://example.com/permanent/abc123.tar.xz>; rel="immutable"'
    assert r.headers["cache-control"] == "no-store"
    assert blob_store.presign_calls == [{"method": "GET", "key": "abc123.tar.xz", "expires_in": 600}]


def test_channel_head_presigns_head(blob_store, make_client):
    with make_client(blob_store) as client:
        r = client.head("/channel/nixos-24.05.tar.xz", follow_redirects=False)

    assert r.status_code == 307
    assert r.headers["location"].endswith("?m=HEAD&e=600")
    assert "rel=\"immutable\"" in r.headers["link"]


def test_unknown_channel_is_404(blob_store, make_client):
    with make_client(blob_store) as client:
        r = client.get("/channel/nixos-99.99.tar.xz", follow_redirects=False)

    assert r.status_code == 404
    assert r.headers["content-type"].startswith("application/problem+json")
    body = r.json()
    assert body["status"] == 404
    assert body["title"] == "ChannelNotFound"
    assert blob_store.presign_calls == []


def test_known_channel_with_wrong_extension_is_400(blob_store, make_client):
    with make_client(blob_store) as client:
        r = client.get("/channel/nixos-24.05.iso", follow_redirects=False)

    assert r.status_code == 400
    assert r.json()["title"] == "InvalidObjectName"
    assert blob_store.presign_calls == []


def test_name_without_extension_is_400(blob_store, make_client):
    with make_client(blob_store) as client:
        r = client.get("/channel/whatever", follow_redirects=False)
    assert r.status_code == 400


def test_channel_with_nothing_published_is_404(blob_store, make_client):
    with make_client(blob_store) as client:
        r = client.get("/channel/fresh.tar.xz", follow_redirects=False)

    assert r.status_code == 404
    assert blob_store.presign_calls == []


def test_presign_failure_is_500(blob_store, make_client):
    blob_store.fail_presign = True
    with make_client(blob_store) as client:
        r = client.get("/channel/nixos-24.05.tar.xz", follow_redirects=False)

    assert r.status_code == 500
    assert r.json()["title"] == "PresignFailure"


def test_channel_with_custom_extension(make_client):
    store = FakeBlobStore()
    seed_channels(store, {"installer": {"latest": "build-7", "file_extension": ".iso", "previous": []}})

    with make_client(store) as client:
        ok = client.get("/channel/installer.iso", follow_redirects=False)
        wrong = client.get("/channel/installer.tar.xz", follow_redirects=False)

    assert ok.status_code == 307
    assert ok.headers["link"] == '<https://example.com/permanent/build-7.iso>; rel="immutable"'
    assert wrong.status_code == 400


def test_unknown_dotted_channel_sharing_a_prefix_is_404(make_client):
    store = FakeBlobStore()
    seed_channels(store, {"nixos": {"latest": "abc", "file_extension": ".tar.xz", "previous": []}})

    with make_client(store) as client:
        r = client.get("/channel/nixos.small.tar.xz", follow_redirects=False)

    assert r.status_code == 404
    assert r.json()["title"] == "ChannelNotFound"
    assert store.presign_calls == []


def test_known_channel_under_another_channels_extension_is_400(make_client):
    store = FakeBlobStore()
    seed_channels(
        store,
        {
            "nixos": {"latest": "abc", "file_extension": ".tar.xz", "previous": []},
            "installer": {"latest": "build-7", "file_extension": ".iso", "previous": []},
        },
    )

    with make_client(store) as client:
        r = client.get("/channel/installer.tar.xz", follow_redirects=False)

    assert r.status_code == 400
    assert r.json()["title"] == "InvalidObjectName"


def test_post_is_not_allowed(blob_store, make_client):
    with make_client(blob_store) as client:
        r = client.post("/channel/nixos-24.05.tar.xz")
    assert r.status_code == 405
    assert blob_store.presign_calls == []


def test_response_carries_request_id(blob_store, make_client):
    rid = "0f8fad5b-d9cb-469f-a165-70867728950e"
    with make_client(blob_store) as client:
        r = client.get("/channel/nixos-24.05.tar.xz", headers={"X-Request-ID": rid}, follow_redirects=False)
    assert r.headers["x-request-id"] == rid


# ─────────────────────────────────────────────────────────────
# Permanent redirect
# ─────────────────────────────────────────────────────────────

def test_permanent_redirects_to_exact_object(blob_store, make_client):
    with make_client(blob_store) as client:
        r = client.get("/permanent/old1.tar.xz", follow_redirects=False)

    assert r.status_code == 307
    assert r.headers["location"] == "https://signed.example/old1.tar.xz?m=GET&e=600"
    assert r.headers["cache-control"] == "no-store"
    assert "link" not in r.headers


def test_permanent_does_not_check_existence(blob_store, make_client):
    with make_client(blob_store) as client:
        r = client.get("/permanent/never-uploaded.tar.xz", follow_redirects=False)

    assert r.status_code == 307
    assert blob_store.ops("head") == []


def test_permanent_with_unserved_extension_is_400(blob_store, make_client):
    with make_client(blob_store) as client:
        r = client.get("/permanent/abc123.zip", follow_redirects=False)

    assert r.status_code == 400
    assert blob_store.presign_calls == []


def test_permanent_head(blob_store, make_client):
    with make_client(blob_store) as client:
        r = client.head("/permanent/abc123.tar.xz", follow_redirects=False)
    assert r.status_code == 307
    assert r.headers["location"].endswith("?m=HEAD&e=600")


# ─────────────────────────────────────────────────────────────
# Matching helpers
# ─────────────────────────────────────────────────────────────

def _snapshot():
    return ChannelSnapshot.build(
        {
            "nixos": ChannelConfig(latest="a"),
            "nixos.small": ChannelConfig(latest="b"),
            "installer": ChannelConfig(latest="c", file_extension=".iso"),
        }
    )


def test_match_prefers_longest_channel_name():
    name, cfg = match_channel(_snapshot(), "nixos.small.tar.xz")
    assert name == "nixos.small"
    assert cfg.latest == "b"


def test_match_exact_channel():
    name, _ = match_channel(_snapshot(), "nixos.tar.xz")
    assert name == "nixos"


def test_match_rejects_bare_channel_name():
    with pytest.raises(InvalidObjectName):
        match_channel(_snapshot(), "installer")


def test_match_unknown_channel():
    with pytest.raises(ChannelNotFound):
        match_channel(_snapshot(), "unstable.tar.xz")


def test_match_unknown_channel_extending_a_known_name():
    with pytest.raises(ChannelNotFound):
        match_channel(_snapshot(), "nixos.large.tar.xz")


def test_match_known_channel_with_unserved_suffix():
    with pytest.raises(InvalidObjectName):
        match_channel(_snapshot(), "nixos.small.zip")


@pytest.mark.parametrize("key", ["x.tar.xz", "dir/x.tar.xz", "y.iso"])
def test_validate_object_key_accepts_served_extensions(key):
    assert validate_object_key(_snapshot(), key) == key


@pytest.mark.parametrize("key", [".tar.xz", "x.zip", "/x.tar.xz", "a/../x.tar.xz", "x$.tar.xz"])
def test_validate_object_key_rejects(key):
    with pytest.raises(InvalidObjectName):
        validate_object_key(_snapshot(), key)


def test_untrusted_request_id_is_replaced(blob_store, make_client):
    with make_client(blob_store) as client:
        r = client.get("/healthz", headers={"X-Request-ID": "drop table;"})
    rid = r.headers["x-request-id"]
    assert rid != "drop table;"
    assert len(rid) == 36
