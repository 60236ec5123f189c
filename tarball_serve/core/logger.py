# tarball_serve/core/logger.py
from __future__ import annotations

"""
tarball-serve • Logging (Loguru)
--------------------------------
- Pretty console logs by default; optional JSON logs via `LOG_JSON=1`
- Request correlation: supports `request_id` (from RequestIDMiddleware)
- Intercepts stdlib/uvicorn/fastapi/starlette/apscheduler logs into Loguru
- Optional file sink with rotation

Env
---
LOG_LEVEL=INFO|DEBUG|WARNING|ERROR (default: INFO)
LOG_JSON=1 (enable JSON logs; pretty logs otherwise)
LOG_TO_FILE=1 (write LOG_DIR/LOG_FILE with rotation; default: 0)
LOG_DIR=logs
LOG_FILE=tarball-serve.log
LOG_ROTATION=10 MB
APP_DEBUG=1 (enables backtrace/diagnose in console sink)
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv
from loguru import logger

load_dotenv()

_TRUTHY = {"1", "true", "yes"}

# Loggers whose records are routed into loguru.
_INTERCEPTED = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi", "starlette", "apscheduler", "tarball_serve")

_configured = False


# ─────────────────────────────────────────────────────────────
# 🧾 Formatters
# ─────────────────────────────────────────────────────────────
_PRETTY = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[origin]}</cyan> - <level>{message}</level> | rid={extra[request_id]}\n{exception}"
)


def _fmt_pretty(record):
    """Colorized single line; `rid` is the request id, `-` outside a request."""
    record["extra"].setdefault("request_id", "-")
    record["extra"]["origin"] = f"{record['name']}:{record['function']}:{record['line']}"
    return _PRETTY


def _fmt_json(record):
    """One JSON object per line; loguru `extra` keys are merged in."""
    extra = {k: v for k, v in record["extra"].items() if not k.startswith("_")}
    doc: Dict[str, Any] = {
        "time": record["time"].isoformat(),
        "level": record["level"].name,
        "service": "tarball-serve",
        "source": f"{record['name']}:{record['line']}",
        "msg": record["message"],
        "request_id": extra.pop("request_id", None),
        **extra,
    }
    if record["exception"] is not None:
        doc["exc_type"] = getattr(record["exception"].type, "__name__", None)
    record["extra"]["_json"] = json.dumps(doc, ensure_ascii=False, default=str)
    return "{extra[_json]}\n{exception}"


# ─────────────────────────────────────────────────────────────
# 🔁 Intercept stdlib logging → Loguru
# ─────────────────────────────────────────────────────────────
class InterceptHandler(logging.Handler):
    """Route standard logging records into Loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str | None = None) -> None:
    """
    Install the loguru sinks and the stdlib intercept. Idempotent.

    Called by the server and CLI entry points; importing this module has no
    side effects so tests keep pytest's own log capture.
    """
    global _configured
    if _configured:
        return

    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_json = os.getenv("LOG_JSON", "0").lower() in _TRUTHY
    app_debug = os.getenv("APP_DEBUG", "0").lower() in _TRUTHY
    log_to_file = os.getenv("LOG_TO_FILE", "0").lower() in _TRUTHY

    fmt = _fmt_json if log_json else _fmt_pretty

    logger.remove()
    logger.add(
        sys.stderr,
        level=log_level,
        format=fmt,
        enqueue=True,
        backtrace=app_debug,
        diagnose=app_debug,
    )

    if log_to_file:
        log_dir = Path(os.getenv("LOG_DIR", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_dir / os.getenv("LOG_FILE", "tarball-serve.log")),
            rotation=os.getenv("LOG_ROTATION", "10 MB"),
            level=log_level,
            format=fmt,
            enqueue=True,
            backtrace=False,
            diagnose=False,
        )

    for name in _INTERCEPTED:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.setLevel(log_level)
        std_logger.propagate = False

    _configured = True


__all__ = ["setup_logging", "InterceptHandler"]
