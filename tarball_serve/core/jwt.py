# tarball_serve/core/jwt.py
from __future__ import annotations

"""
tarball-serve • JWT helpers
===========================
- `AuthMode`: auth is either `AuthDisabled` or `AuthEnabled(public_key)`,
  decided once at startup by `load_auth_mode()`
- Token extraction from the password field of HTTP Basic credentials
  (what Nix sends from `netrc`)
- RS256 verification with a mandatory `exp` claim; audience is not checked

Notes
-----
- A configured key path that cannot be read or parsed is a startup error
  (`AuthConfigError`). It is never treated as "auth disabled".
- Every per-request failure surfaces as `AuthInvalid` (401).
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from jose import ExpiredSignatureError, JWTError, jwk, jwt
from jose.exceptions import JWKError

from tarball_serve.core.exceptions import AuthConfigError, AuthInvalid

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "RS256"

# python-jose options: signature + exp are verified, exp must be present,
# audience is ignored.
_DECODE_OPTIONS: Dict[str, Any] = {
    "verify_aud": False,
    "verify_exp": True,
    "require_exp": True,
}


# ─────────────────────────────────────────────────────────────
# 🔧 Auth mode (resolved once at startup)
# ─────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class AuthDisabled:
    enabled: bool = False


@dataclass(frozen=True)
class AuthEnabled:
    public_key_pem: str
    enabled: bool = True

    def __repr__(self) -> str:  # keep key material out of logs
        return "AuthEnabled(public_key=<redacted>)"


AuthMode = Union[AuthDisabled, AuthEnabled]


def parse_public_key(pem: str) -> str:
    """Validate that `pem` is an RSA public key usable for RS256. Returns it unchanged."""
    try:
        jwk.construct(pem, JWT_ALGORITHM)
    except (JWKError, ValueError, TypeError) as e:
        raise AuthConfigError(f"Not a valid {JWT_ALGORITHM} public key: {e}") from e
    return pem


def load_auth_mode(public_key_path: Optional[Path]) -> AuthMode:
    """
    Decide whether requests need a token.

    - `None` → `AuthDisabled` (the explicit, and only, way to run open)
    - a path → read + parse the PEM, `AuthEnabled`; any failure raises
      `AuthConfigError` so startup aborts
    """
    if public_key_path is None:
        logger.warning("No JWT public key configured; authentication is DISABLED")
        return AuthDisabled()

    try:
        pem = Path(public_key_path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise AuthConfigError(f"Failed to read JWT public key {public_key_path}: {e}") from e

    mode = AuthEnabled(public_key_pem=parse_public_key(pem))
    logger.info("JWT authentication enabled (key: %s)", public_key_path)
    return mode


# ─────────────────────────────────────────────────────────────
# 📥 Extract the token from HTTP Basic credentials
# ─────────────────────────────────────────────────────────────
def get_basic_password(authorization: Optional[str]) -> str:
    """Return the password field of `Authorization: Basic base64(user:password)`."""
    if not authorization:
        raise AuthInvalid(reason="missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "basic":
        raise AuthInvalid(reason="invalid Authorization scheme")

    try:
        decoded = base64.b64decode(parts[1], validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise AuthInvalid(reason="malformed Basic credentials")

    _user, sep, password = decoded.partition(":")
    if not sep or not password:
        raise AuthInvalid(reason="missing token in Basic credentials")
    return password


# ─────────────────────────────────────────────────────────────
# 🔓 Verify
# ─────────────────────────────────────────────────────────────
def decode_token(token: str, public_key_pem: str) -> Dict[str, Any]:
    """Verify signature + `exp` and return the claims. Raises `AuthInvalid`."""
    try:
        return jwt.decode(token, public_key_pem, algorithms=[JWT_ALGORITHM], options=_DECODE_OPTIONS)
    except ExpiredSignatureError:
        logger.info("Token expired.")
        raise AuthInvalid(reason="token has expired")
    except JWTError as e:
        logger.warning("JWT decoding failed: %s", e)
        raise AuthInvalid(reason="token verification failed")


def verify_authorization(authorization: Optional[str], mode: AuthMode) -> Optional[Dict[str, Any]]:
    """
    Gate one request. Returns the claims when auth is on, None when it is off.

    Raises
    ------
    AuthInvalid
        Extraction, decoding or verification failed.
    """
    if not isinstance(mode, AuthEnabled):
        return None
    return decode_token(get_basic_password(authorization), mode.public_key_pem)


__all__ = [
    "AuthMode",
    "AuthDisabled",
    "AuthEnabled",
    "JWT_ALGORITHM",
    "load_auth_mode",
    "parse_public_key",
    "get_basic_password",
    "decode_token",
    "verify_authorization",
]
