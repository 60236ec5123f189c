# tarball_serve/core/exceptions.py
from __future__ import annotations

"""
tarball-serve • Application Exceptions
======================================
A small, consistent layer on top of FastAPI/Starlette's `HTTPException`.

Key ideas
---------
- One base `AppException` that carries `code`, `message`, `details`.
- Every request-facing error kind is a subclass that owns its HTTP status,
  so the status mapping lives in exactly one place: the class itself. The
  problem+json handlers in `tarball_serve.core.exception_handlers` render
  them at the response boundary.
- Errors that never reach a client (configuration loading, startup) are
  plain exceptions and are handled where they occur.

Usage
-----
    raise ChannelNotFound(channel="nixos-24.05")
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

__all__ = [
    "AppException",
    "InvalidObjectName",
    "AuthInvalid",
    "ChannelNotFound",
    "UnsupportedMethod",
    "UploadConflict",
    "PresignFailure",
    "UnknownError",
    "ConfigError",
    "ConfigFetchError",
    "ConfigParseError",
    "ChannelConfigError",
    "AuthConfigError",
    "PointerUpdateError",
    "RegistryNotLoaded",
]


# ──────────────────────────────────────────────────────────────
# 📦 Core: AppException
# ──────────────────────────────────────────────────────────────
class AppException(HTTPException):
    """Base application-level exception with optional metadata.

    Attributes
    -----------
    status_code : int
        HTTP status code; subclasses pin it.
    message : str
        Human-readable error message (serialized as `detail` as well).
    code : int
        Optional internal/typed error code. Defaults to `status_code`.
    details : Any
        Machine-readable details (e.g., the offending channel or key).
    """

    status_code_default: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
        details: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        status_code = status_code or self.status_code_default
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code: int = int(code or status_code)
        self.message: str = message
        self.details: Optional[Any] = details

    def __str__(self) -> str:
        return self.message


# ──────────────────────────────────────────────────────────────
# 🌐 Request-facing errors (status pinned per class)
# ──────────────────────────────────────────────────────────────
class InvalidObjectName(AppException):
    """Path or file name does not carry an accepted extension (400)."""

    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, *, name: str, reason: str = "unsupported file name") -> None:
        super().__init__(f"Invalid object name {name!r}: {reason}", details={"name": name})
        self.name = name


class AuthInvalid(AppException):
    """Missing, malformed, expired or badly signed token (401)."""

    status_code_default = status.HTTP_401_UNAUTHORIZED

    def __init__(self, *, reason: str) -> None:
        super().__init__(
            f"Invalid token: {reason}",
            headers={"WWW-Authenticate": 'Basic realm="tarball-serve"'},
        )
        self.reason = reason


class ChannelNotFound(AppException):
    """Unknown channel, or a channel with nothing published yet (404)."""

    status_code_default = status.HTTP_404_NOT_FOUND

    def __init__(self, *, channel: str) -> None:
        super().__init__(f"There is no such channel: {channel!r}", details={"channel": channel})
        self.channel = channel


class UnsupportedMethod(AppException):
    """Presigning was asked for a method other than GET/HEAD (405)."""

    status_code_default = status.HTTP_405_METHOD_NOT_ALLOWED

    def __init__(self, *, method: str) -> None:
        super().__init__(f"Unsupported HTTP method: {method}", headers={"Allow": "GET, HEAD"})
        self.method = method


class UploadConflict(AppException):
    """The object key already exists; artifacts are never overwritten (409)."""

    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, *, object_key: str) -> None:
        super().__init__(f"Refusing to overwrite key: {object_key}", details={"object_key": object_key})
        self.object_key = object_key


class PresignFailure(AppException):
    """The blob store could not sign a request for the object (500)."""

    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, *, object_key: str) -> None:
        super().__init__(f"Failed to presign request for object {object_key!r}")
        self.object_key = object_key


class UnknownError(AppException):
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "Unknown error") -> None:
        super().__init__(message)


# ──────────────────────────────────────────────────────────────
# ⚙️ Configuration / lifecycle errors (never rendered directly)
# ──────────────────────────────────────────────────────────────
class ConfigError(Exception):
    """The channels manifest could not be loaded; no snapshot was built."""


class ConfigFetchError(ConfigError):
    """Reading `channels.json` from the bucket failed."""


class ConfigParseError(ConfigError):
    """`channels.json` is not valid JSON or has the wrong shape."""


class ChannelConfigError(Exception):
    """A single `<channel>.json` is missing or invalid. Logged, never fatal."""

    def __init__(self, channel: str, reason: str) -> None:
        super().__init__(f"channel {channel!r}: {reason}")
        self.channel = channel
        self.reason = reason


class AuthConfigError(Exception):
    """A configured JWT public key could not be read or parsed."""


class PointerUpdateError(Exception):
    """The object was uploaded but the channel pointer could not be written."""

    def __init__(self, *, channel: str, object_key: str, cause: BaseException) -> None:
        super().__init__(
            f"Failed to update channel {channel!r}: {cause}. "
            f"This leaked the object {object_key!r}! Remove it manually, if this is an issue."
        )
        self.channel = channel
        self.object_key = object_key


class RegistryNotLoaded(RuntimeError):
    """The registry was read before the initial snapshot was installed."""
