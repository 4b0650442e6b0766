"""
Structured logging for the ingest service.

structlog renders JSON lines to stderr and a rotating file. Plain stdlib
`logging.getLogger(__name__)` calls go through the same processor chain,
so the `extra={...}` fields modules attach become top-level JSON keys.

Every entry carries the request/correlation ids set by
CorrelationMiddleware and, while an ingestion run executes, the upload
session id. Storage credentials are masked before rendering.
"""
from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

import structlog

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
session_id_var: ContextVar[str | None] = ContextVar("session_id", default=None)

APP_VERSION = "0.4.0"
SERVICE_NAME = "genbi-ingest"

_startup_time: float = time.time()

# Field names whose values are never logged in clear
_SECRET_FIELDS = ("service_key", "authorization", "apikey", "api_key", "password", "token", "secret")
# Supabase keys are JWTs; mask them wherever they appear in a message
_JWT_PATTERN = re.compile(r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+")


def get_uptime_s() -> float:
    return time.time() - _startup_time


@contextmanager
def bind_upload_session(session_id: str) -> Iterator[None]:
    """Tag every log entry emitted inside the block with the upload session id."""
    token = session_id_var.set(session_id)
    try:
        yield
    finally:
        session_id_var.reset(token)


def _inject_context(logger_name: str, method_name: str, event_dict: dict) -> dict:
    event_dict["service"] = SERVICE_NAME
    event_dict["version"] = APP_VERSION
    for key, var in (
        ("request_id", request_id_var),
        ("correlation_id", correlation_id_var),
        ("session_id", session_id_var),
    ):
        value = var.get(None)
        if value:
            event_dict[key] = value
    return event_dict


def _mask_secrets(logger_name: str, method_name: str, event_dict: dict) -> dict:
    for key, value in list(event_dict.items()):
        if not isinstance(value, str):
            continue
        if any(s in key.lower() for s in _SECRET_FIELDS):
            event_dict[key] = "[REDACTED]"
        elif "eyJ" in value:
            event_dict[key] = _JWT_PATTERN.sub("[REDACTED_JWT]", value)
    return event_dict


def _lowercase_level(logger_name: str, method_name: str, event_dict: dict) -> dict:
    level = event_dict.get("level")
    if level:
        event_dict["level"] = level.lower()
    return event_dict


def setup_logging(
    log_dir: str = "logs",
    log_file: str = "genbi.jsonl",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    log_level: Optional[int] = None,
    debug: bool = False,
) -> None:
    """Install the JSON handlers on the root logger. Call once at startup."""
    if log_level is None:
        log_level = logging.DEBUG if debug else logging.INFO

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        _lowercase_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        _inject_context,
        _mask_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )

    handlers: list = []
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    handlers.append(console)

    # An unwritable log directory leaves stderr as the only sink
    try:
        os.makedirs(log_dir, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, log_file),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        sys.stderr.write(f"genbi: file logging disabled ({e})\n")
    else:
        rotating.setFormatter(formatter)
        handlers.append(rotating)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)
    for handler in handlers:
        root.addHandler(handler)

    # Per-request transport chatter from the storage client
    for noisy in ("httpcore", "httpx", "asyncio", "multipart"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
