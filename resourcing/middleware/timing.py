"""
Per-request id and access log.

Each API request gets ``g.request_id`` (the caller's ``X-Request-ID`` when
sent) which is echoed back together with ``X-Request-Duration-Ms``.
Requests slower than ``SLOW_REQUEST_MS`` log at WARNING, 5xx responses at
ERROR and everything else at DEBUG.  The health probe is not logged.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

_QUIET_PATHS = ("/api/v1/health",)


def init_request_timing(app: Flask):
    slow_ms = app.config.get("SLOW_REQUEST_MS", 1000)

    @app.before_request
    def _stamp_request():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _access_log(response):
        started = getattr(g, "request_started", None)
        if started is None:
            return response
        elapsed = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"
        if request.path.startswith(_QUIET_PATHS):
            return response

        if elapsed > slow_ms:
            level = logging.WARNING
        elif response.status_code >= 500:
            level = logging.ERROR
        else:
            level = logging.DEBUG
        logger.log(
            level, "%s %s -> %d", request.method, request.path, response.status_code,
            extra={"status": response.status_code, "duration_ms": round(elapsed, 1),
                   "endpoint": request.endpoint},
        )
        return response
