# tarball_serve/utils/aws.py
from __future__ import annotations

"""
🧊 tarball-serve • S3 Utilities
===============================

Thin async wrapper over boto3 used by:
- the config loader (small JSON reads)
- the gateway (presigned GET/HEAD redirects)
- the publish workflow (existence check, uploads, pointer writes)

🎯 Goals
--------
- Presigned GET/HEAD (SigV4) with a fixed TTL
- "Not found" reported distinctly from every other failure
- Explicit timeouts + bounded retries
- Key normalization (no leading slash, no `..`)
- Path-style addressing by default for MinIO compatibility
- Zero secret leakage in logs

🔗 Contract
-----------
- Class: `S3Client`; errors: `S3StorageError`, `S3ObjectNotFound`,
  `S3PreconditionFailed`
- Async methods: `get_bytes`, `put_bytes`, `put_file`, `head`, `exists`,
  `presign`
- `BlobStore` protocol: what the services depend on (tests pass fakes)

Implementation notes
--------------------
boto3 is synchronous. Every network call runs in a worker thread via
`asyncio.to_thread`, so request handlers and the refresher only suspend
while awaiting I/O and never block the event loop.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import boto3
import botocore.exceptions
from botocore.config import Config as BotoConfig

from tarball_serve.core.config import PRESIGN_TTL_SECONDS, Settings
from tarball_serve.core.exceptions import UnsupportedMethod

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────────────────────
# 🧱 Exceptions
# ─────────────────────────────────────────────────────────────────────────────


class S3StorageError(RuntimeError):
    """Raised when a storage operation fails (network, auth, policy, etc.)."""


class S3ObjectNotFound(S3StorageError):
    """The requested key does not exist in the bucket."""

    def __init__(self, key: str) -> None:
        super().__init__(f"No such key: {key}")
        self.key = key


class S3PreconditionFailed(S3StorageError):
    """A conditional write (`If-None-Match: *`) found an existing object."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Object already exists: {key}")
        self.key = key


_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_PRECONDITION_CODES = {"412", "PreconditionFailed", "ConditionalRequestConflict"}

# ─────────────────────────────────────────────────────────────────────────────
# 🧰 Key validation
# ─────────────────────────────────────────────────────────────────────────────

# Keep keys strict: readable + safe across tools, CDNs, and logs.
_KEY_ALLOWED_RE = re.compile(r"[A-Za-z0-9._\-/+=@() ]+")


def _normalize_key(key: str) -> str:
    """
    Normalize and validate S3 object keys.

    Steps
    -----
    1) Coerce to str, strip whitespace
    2) Remove leading '/'
    3) Collapse '//' runs
    4) Reject path traversal ('..') and disallowed characters

    Raises
    ------
    S3StorageError
        If key is empty or contains unsafe characters.
    """
    k = str(key or "").strip().lstrip("/")
    k = re.sub(r"/{2,}", "/", k)
    if not k:
        raise S3StorageError("Invalid storage key: empty")
    if ".." in k:
        raise S3StorageError("Invalid storage key: path traversal detected")
    if not _KEY_ALLOWED_RE.fullmatch(k):
        raise S3StorageError("Invalid storage key: contains forbidden characters")
    return k


def is_safe_key(key: str) -> bool:
    """True when `key` passes `_normalize_key` unchanged."""
    try:
        return _normalize_key(key) == key
    except S3StorageError:
        return False


def _error_code(exc: botocore.exceptions.ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _secret_value(v: Any) -> Optional[str]:
    """Return the underlying secret string without raising if not SecretStr."""
    if v is None:
        return None
    return v.get_secret_value() if hasattr(v, "get_secret_value") else str(v)


# ─────────────────────────────────────────────────────────────────────────────
# 🔌 Protocol the services depend on
# ─────────────────────────────────────────────────────────────────────────────


class BlobStore(Protocol):
    """Minimal async blob interface. `S3Client` implements it; tests use fakes."""

    async def get_bytes(self, key: str) -> bytes: ...

    async def put_bytes(self, key: str, data: bytes, *, content_type: str, if_none_match: bool = False) -> None: ...

    async def put_file(self, key: str, path: Path, *, content_type: str, if_none_match: bool = False) -> None: ...

    async def head(self, key: str) -> Optional[Dict[str, Any]]: ...

    async def exists(self, key: str) -> bool: ...

    async def presign(self, method: str, key: str, *, expires_in: int = PRESIGN_TTL_SECONDS) -> str: ...


# ─────────────────────────────────────────────────────────────────────────────
# 📦 S3 Client
# ─────────────────────────────────────────────────────────────────────────────


class S3Client:
    """
    High-level S3 wrapper with safe defaults.

    Parameters
    ----------
    bucket : str
        Bucket holding the channel configuration and the content objects.
    region_name : str | None
        Region to use for the client.
    endpoint_url : str | None
        Custom S3-compatible endpoint (e.g., MinIO/LocalStack).
    force_path_style : bool
        Use `https://endpoint/bucket/key` addressing (MinIO needs this).
    conditional_writes : bool
        Send `If-None-Match: *` on uploads that ask for it.

    Notes
    -----
    * Credentials: explicit keys when given, otherwise the standard AWS
      credential chain (env, profile, ECS/EC2 role, IRSA).
    * Retries/Timeouts: bounded retry policy (5 attempts) and short connect
      timeout help fail fast.
    """

    def __init__(
        self,
        bucket: str,
        *,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        force_path_style: bool = True,
        conditional_writes: bool = False,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        session_token: Optional[str] = None,
    ) -> None:
        if not bucket:
            raise S3StorageError("S3 bucket not configured")
        self.bucket = bucket
        self.region = region_name
        self.conditional_writes = bool(conditional_writes)

        cfg = BotoConfig(
            signature_version="s3v4",
            retries={"max_attempts": 5, "mode": "standard"},
            connect_timeout=3,
            read_timeout=30,
            s3={"addressing_style": "path" if force_path_style else "virtual"},
        )

        client_kwargs: Dict[str, Any] = {"config": cfg}
        if region_name:
            client_kwargs["region_name"] = region_name
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url
        if access_key_id and secret_access_key:
            client_kwargs["aws_access_key_id"] = access_key_id
            client_kwargs["aws_secret_access_key"] = secret_access_key
            if session_token:
                client_kwargs["aws_session_token"] = session_token

        try:
            self.client = boto3.client("s3", **client_kwargs)
        except Exception as e:  # pragma: no cover
            raise S3StorageError(f"Failed to create S3 client: {e}") from e

        # Safe, minimal repr (no secrets, no URLs)
        self._repr = f"S3Client(bucket={self.bucket}, region={self.region}, endpoint={'yes' if endpoint_url else 'no'})"

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3Client":
        return cls(
            settings.S3_BUCKET,
            region_name=settings.AWS_REGION,
            endpoint_url=settings.S3_ENDPOINT_URL,
            force_path_style=settings.S3_FORCE_PATH_STYLE,
            conditional_writes=settings.S3_CONDITIONAL_WRITES,
            access_key_id=settings.AWS_ACCESS_KEY_ID,
            secret_access_key=_secret_value(settings.AWS_SECRET_ACCESS_KEY),
            session_token=_secret_value(settings.AWS_SESSION_TOKEN),
        )

    # ────────────────────────────────────────────────────────────────────────
    # 📥 Reads
    # ────────────────────────────────────────────────────────────────────────

    def _get_bytes_sync(self, key: str) -> bytes:
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
            return resp["Body"].read()
        except botocore.exceptions.ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise S3ObjectNotFound(key) from e
            raise S3StorageError(f"Failed to read {key}: {e}") from e
        except botocore.exceptions.BotoCoreError as e:
            raise S3StorageError(f"Failed to read {key}: {e}") from e

    async def get_bytes(self, key: str) -> bytes:
        """
        Read a whole object into memory. Only meant for small files
        (channel configuration).

        Raises
        ------
        S3ObjectNotFound
            The key does not exist.
        S3StorageError
            Any other failure.
        """
        return await asyncio.to_thread(self._get_bytes_sync, _normalize_key(key))

    def _head_sync(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            resp = self.client.head_object(Bucket=self.bucket, Key=key)
            # boto3 returns a dict-like; cast to plain dict to detach from botocore model
            return dict(resp or {})
        except botocore.exceptions.ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise S3StorageError(f"Failed to check if object exists: {key}: {e}") from e
        except botocore.exceptions.BotoCoreError as e:
            raise S3StorageError(f"Failed to check if object exists: {key}: {e}") from e

    async def head(self, key: str) -> Optional[Dict[str, Any]]:
        """
        HEAD the object; metadata dict, or None when it does not exist.

        Transient errors raise `S3StorageError` instead of looking like a
        missing object, so a flaky network never passes for "free to upload".
        """
        return await asyncio.to_thread(self._head_sync, _normalize_key(key))

    async def exists(self, key: str) -> bool:
        """Boolean existence check using `HEAD`."""
        return await self.head(key) is not None

    # ────────────────────────────────────────────────────────────────────────
    # 📤 Writes
    # ────────────────────────────────────────────────────────────────────────

    def _put_sync(self, key: str, data: bytes, content_type: str, if_none_match: bool) -> None:
        args: Dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
        }
        if if_none_match and self.conditional_writes:
            args["IfNoneMatch"] = "*"
        try:
            self.client.put_object(**args)
        except botocore.exceptions.ClientError as e:
            if _error_code(e) in _PRECONDITION_CODES:
                raise S3PreconditionFailed(key) from e
            raise S3StorageError(f"Failed to upload object {key}: {e}") from e
        except botocore.exceptions.BotoCoreError as e:
            raise S3StorageError(f"Failed to upload object {key}: {e}") from e

    async def put_bytes(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str,
        if_none_match: bool = False,
    ) -> None:
        """
        Upload a small payload. S3 makes single-object writes atomic: readers
        see the old object or the new one, never a partial write.

        `if_none_match` only takes effect when the client was built with
        `conditional_writes=True`; a store that already has the key then
        answers 412 and `S3PreconditionFailed` is raised.
        """
        await asyncio.to_thread(self._put_sync, _normalize_key(key), data, content_type, if_none_match)

    async def put_file(
        self,
        key: str,
        path: Path,
        *,
        content_type: str,
        if_none_match: bool = False,
    ) -> None:
        """Upload a local file. The file is read fully into memory first."""
        k = _normalize_key(key)

        def _read_and_put() -> None:
            try:
                data = Path(path).read_bytes()
            except OSError as e:
                raise S3StorageError(f"Failed to read input file {path}: {e}") from e
            self._put_sync(k, data, content_type, if_none_match)

        await asyncio.to_thread(_read_and_put)

    # ────────────────────────────────────────────────────────────────────────
    # 🔐 Signed URL helpers
    # ────────────────────────────────────────────────────────────────────────

    def _presign_sync(self, client_method: str, key: str, expires_in: int) -> str:
        try:
            return self.client.generate_presigned_url(
                ClientMethod=client_method,
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=int(expires_in),
            )
        except Exception as e:
            raise S3StorageError(f"Failed to presign {client_method} for {key}: {e}") from e

    async def presign(self, method: str, key: str, *, expires_in: int = PRESIGN_TTL_SECONDS) -> str:
        """
        Generate a short-lived presigned URL for `GET` or `HEAD`.

        Raises
        ------
        UnsupportedMethod
            For any other HTTP method.
        S3StorageError
            On signing failure or invalid key.
        """
        m = method.upper()
        if m == "GET":
            client_method = "get_object"
        elif m == "HEAD":
            client_method = "head_object"
        else:
            raise UnsupportedMethod(method=m)
        return await asyncio.to_thread(self._presign_sync, client_method, _normalize_key(key), expires_in)

    def __repr__(self) -> str:  # pragma: no cover
        return self._repr


__all__ = [
    "BlobStore",
    "S3Client",
    "S3StorageError",
    "S3ObjectNotFound",
    "S3PreconditionFailed",
    "is_safe_key",
]
