"""
NoteKeep Backend: Request Logging Middleware
=============================================

What:  One access-log line per request on the "notekeep.access" logger.
How:   Times the request, then logs method, path, status, duration, request
       ID and client IP. The level follows the status: 5xx ERROR, 4xx
       WARNING, everything else INFO.

Never logged: request bodies (they carry emails and one-time codes) and the
Authorization header. /health is skipped; load balancers poll it every few seconds.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from notekeep.middleware.request_id import request_id_var

logger = logging.getLogger("notekeep.access")

QUIET_PATHS = {"/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs method, path, status and duration for each request.

    Typical durations:
        GET /api/notes          10-50ms (one indexed query plus a count)
        POST /api/auth/login    300-1500ms (SMTP delivery dominates)
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        method = request.method
        path = request.url.path

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        rid = getattr(request.state, "request_id", "") or request_id_var.get("")
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
