"""
FastAPI exception handler for GenBIError.

Looks the code up in the registry and renders the user-safe body. The
internal detail and context only go to the log.
"""

import logging
from typing import Any, Dict

from fastapi import Request
from fastapi.responses import JSONResponse

from genbi.core.errors import GenBIError, RecordCreationError, ValidationError
from genbi.core.errors.registry import ErrorEntry, error_registry

logger = logging.getLogger(__name__)

_FALLBACK_BODY = {
    "title": "Internal error",
    "message": "An unexpected error occurred.",
    "retryable": False,
    "user_action_required": False,
    "remediation": [],
}


def _error_body(entry: ErrorEntry, exc: GenBIError) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "code": entry.code,
        "title": entry.title,
        "message": entry.safe_message,
        "retryable": entry.retryable,
        "user_action_required": entry.user_action_required,
        "remediation": entry.remediation,
    }
    # Rejection reason is safe to expose; the UI switches copy on it
    if isinstance(exc, ValidationError):
        body["reason"] = exc.reason
    return body


async def genbi_error_handler(request: Request, exc: GenBIError) -> JSONResponse:
    """Convert GenBIError into a structured JSON response."""
    entry = error_registry.get(exc.code)

    if entry is None:
        logger.error(
            "unregistered_error_code",
            extra={"error.code": exc.code, "error.message": exc.detail},
        )
        return JSONResponse(status_code=500, content={"error": {"code": exc.code, **_FALLBACK_BODY}})

    log_extra = {
        "error.code": exc.code,
        "error.kind": type(exc).__name__,
        "error.message": exc.detail,
        "error.retryable": entry.retryable,
        "http.path": request.url.path,
        **{f"error.ctx.{k}": v for k, v in exc.context.items()},
    }
    if isinstance(exc, RecordCreationError) and exc.requires_reconciliation:
        log_extra["error.requires_reconciliation"] = True

    _severity_to_log_fn(entry.severity)(entry.title, extra=log_extra)

    return JSONResponse(status_code=entry.http_status, content={"error": _error_body(entry, exc)})


def _severity_to_log_fn(severity: str):
    """Map registry severity to logger method."""
    return {
        "DEBUG": logger.debug,
        "INFO": logger.info,
        "WARN": logger.warning,
        "ERROR": logger.error,
        "CRITICAL": logger.critical,
    }.get(severity, logger.error)
