# tests/test_storage/test_s3_client.py

from urllib.parse import parse_qs, urlparse

import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from tarball_serve.core.config import Settings
from tarball_serve.core.exceptions import UnsupportedMethod
from tarball_serve.utils.aws import (
    S3Client,
    S3ObjectNotFound,
    S3PreconditionFailed,
    S3StorageError,
    is_safe_key,
)


# ─────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────

def _client(**kw) -> S3Client:
    return S3Client(
        "test-bucket",
        region_name="us-east-1",
        endpoint_url=kw.pop("endpoint_url", "http://minio.local:9000"),
        access_key_id="AKIDTESTTESTTEST",
        secret_access_key="test-secret",
        **kw,
    )


@pytest.fixture()
def s3():
    return _client()


# ─────────────────────────────────────────────────────────────
# Reads
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_missing_key_maps_to_not_found(s3):
    with Stubber(s3.client) as stub:
        stub.add_client_error(
            "get_object",
            service_error_code="NoSuchKey",
            http_status_code=404,
        )
        with pytest.raises(S3ObjectNotFound):
            await s3.get_bytes("ghost.json")


@pytest.mark.anyio
async def test_access_denied_is_a_storage_error_not_not_found(s3):
    with Stubber(s3.client) as stub:
        stub.add_client_error("get_object", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(S3StorageError) as ei:
            await s3.get_bytes("channels.json")
    assert not isinstance(ei.value, S3ObjectNotFound)


@pytest.mark.anyio
async def test_head_missing_returns_none(s3):
    with Stubber(s3.client) as stub:
        stub.add_client_error("head_object", service_error_code="404", http_status_code=404)
        assert await s3.head("x.tar.xz") is None


@pytest.mark.anyio
async def test_head_transient_error_raises(s3):
    with Stubber(s3.client) as stub:
        stub.add_client_error("head_object", service_error_code="SlowDown", http_status_code=503)
        with pytest.raises(S3StorageError):
            await s3.exists("x.tar.xz")


@pytest.mark.anyio
async def test_exists_true(s3):
    with Stubber(s3.client) as stub:
        stub.add_response("head_object", {"ContentLength": 3})
        assert await s3.exists("x.tar.xz") is True


# ─────────────────────────────────────────────────────────────
# Writes
# ─────────────────────────────────────────────────────────────

class RecordingClient:
    """Stands in for the boto3 client; remembers put_object kwargs."""

    def __init__(self, error=None):
        self.puts = []
        self.error = error

    def put_object(self, **kwargs):
        self.puts.append(kwargs)
        if self.error is not None:
            raise self.error


def _precondition_error():
    return ClientError({"Error": {"Code": "PreconditionFailed", "Message": "At least one of the pre-conditions you specified did not hold"}}, "PutObject")


@pytest.mark.anyio
async def test_conditional_put_sends_if_none_match():
    s3 = _client(conditional_writes=True)
    s3.client = RecordingClient()

    await s3.put_bytes("a.tar.xz", b"data", content_type="application/octet-stream", if_none_match=True)

    assert s3.client.puts == [
        {
            "Bucket": "test-bucket",
            "Key": "a.tar.xz",
            "Body": b"data",
            "ContentType": "application/octet-stream",
            "IfNoneMatch": "*",
        }
    ]


@pytest.mark.anyio
async def test_conditional_put_is_skipped_when_disabled(s3):
    s3.client = RecordingClient()
    await s3.put_bytes("a.tar.xz", b"data", content_type="application/octet-stream", if_none_match=True)
    assert "IfNoneMatch" not in s3.client.puts[0]


@pytest.mark.anyio
async def test_plain_put_never_sends_if_none_match():
    s3 = _client(conditional_writes=True)
    s3.client = RecordingClient()
    await s3.put_bytes("a.json", b"{}", content_type="application/json")
    assert "IfNoneMatch" not in s3.client.puts[0]


@pytest.mark.anyio
async def test_precondition_failed_is_distinct():
    s3 = _client(conditional_writes=True)
    s3.client = RecordingClient(error=_precondition_error())
    with pytest.raises(S3PreconditionFailed):
        await s3.put_bytes("a.tar.xz", b"data", content_type="application/octet-stream", if_none_match=True)


@pytest.mark.anyio
async def test_put_file_reads_the_file(s3, tmp_path):
    path = tmp_path / "b.tar.xz"
    path.write_bytes(b"payload")
    s3.client = RecordingClient()

    await s3.put_file("b.tar.xz", path, content_type="application/octet-stream")

    assert s3.client.puts[0]["Body"] == b"payload"
    assert s3.client.puts[0]["Key"] == "b.tar.xz"


@pytest.mark.anyio
async def test_put_file_missing_input(s3, tmp_path):
    with pytest.raises(S3StorageError):
        await s3.put_file("b.tar.xz", tmp_path / "absent.tar.xz", content_type="application/octet-stream")


# ─────────────────────────────────────────────────────────────
# Presigning (offline: signing needs credentials, not network)
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
@pytest.mark.parametrize("method", ["GET", "HEAD", "get"])
async def test_presign_path_style_with_fixed_ttl(s3, method):
    url = await s3.presign(method, "abc123.tar.xz")
    parsed = urlparse(url)

    assert parsed.netloc == "minio.local:9000"
    assert parsed.path == "/test-bucket/abc123.tar.xz"
    qs = parse_qs(parsed.query)
    assert qs["X-Amz-Expires"] == ["600"]
    assert "X-Amz-Signature" in qs


@pytest.mark.anyio
@pytest.mark.parametrize("method", ["POST", "PUT", "DELETE"])
async def test_presign_rejects_other_methods(s3, method):
    with pytest.raises(UnsupportedMethod) as ei:
        await s3.presign(method, "abc123.tar.xz")
    assert ei.value.status_code == 405


@pytest.mark.anyio
async def test_presign_rejects_traversal(s3):
    with pytest.raises(S3StorageError):
        await s3.presign("GET", "../secret.tar.xz")


# ─────────────────────────────────────────────────────────────
# Construction & keys
# ─────────────────────────────────────────────────────────────

def test_from_settings_uses_bucket_and_endpoint():
    settings = Settings(S3_BUCKET="channels-bucket", S3_ENDPOINT_URL="http://minio.local:9000/")
    s3 = S3Client.from_settings(settings)
    assert s3.bucket == "channels-bucket"
    assert s3.client.meta.endpoint_url == "http://minio.local:9000"


def test_empty_bucket_is_rejected():
    with pytest.raises(S3StorageError):
        S3Client("")


@pytest.mark.parametrize(
    "key,ok",
    [
        ("abc.tar.xz", True),
        ("dir/abc.tar.xz", True),
        ("/abc.tar.xz", False),
        ("a//b.tar.xz", False),
        ("../abc.tar.xz", False),
        ("abc?.tar.xz", False),
        ("", False),
    ],
)
def test_is_safe_key(key, ok):
    assert is_safe_key(key) is ok
