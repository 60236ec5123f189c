# tests/conftest.py
"""
Global test bootstrap
- Pins a minimal environment BEFORE the package is imported
- Runs async tests on asyncio only
- Pulls in the shared fixtures (fake bucket, tokens, app)
"""

from __future__ import annotations

import os

import pytest

# ──────────────────────────────────────────────────────────────────────────────
# 🌱 Test env (set before importing the app so Settings() validates)
# ──────────────────────────────────────────────────────────────────────────────
os.environ.setdefault("S3_BUCKET", "test-bucket")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "AKIDTESTTESTTEST")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test-secret")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.pop("JWT_PUBLIC_KEY_PATH", None)


@pytest.fixture(scope="session", autouse=True)
def anyio_backend():
    return "asyncio"


# ──────────────────────────────────────────────────────────────────────────────
# 📦 Shared fixtures
# ──────────────────────────────────────────────────────────────────────────────
from tests.fixtures.app import *         # noqa: E402,F401,F403
from tests.fixtures.blob_store import *  # noqa: E402,F401,F403
from tests.fixtures.tokens import *      # noqa: E402,F401,F403
