"""
Request correlation middleware.

Binds request_id and correlation_id into contextvars so every log line
emitted while handling a request (including the whole ingestion pipeline
for uploads) carries them. Both ids are echoed back as response headers.
"""
from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from genbi.core.structured_logging import correlation_id_var, request_id_var

logger = logging.getLogger(__name__)

# Health checks would drown the request log
_QUIET_PATHS = {"/api/health", "/"}


class CorrelationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        req_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        corr_id = request.headers.get("x-correlation-id") or req_id

        rid_token = request_id_var.set(req_id)
        cid_token = correlation_id_var.set(corr_id)
        start = time.perf_counter()
        status = None
        try:
            response = await call_next(request)
            status = response.status_code
        finally:
            if request.url.path not in _QUIET_PATHS:
                extra = {
                    "http.method": request.method,
                    "http.path": request.url.path,
                    "http.status_code": status,
                    "http.has_user_id": "x-user-id" in request.headers,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                }
                if request.method == "POST" and request.headers.get("content-length"):
                    extra["http.request_bytes"] = int(request.headers["content-length"])
                log = logger.warning if status is None or status >= 500 else logger.info
                log("request_completed", extra=extra)
            request_id_var.reset(rid_token)
            correlation_id_var.reset(cid_token)

        response.headers["x-request-id"] = req_id
        response.headers["x-correlation-id"] = corr_id
        return response
