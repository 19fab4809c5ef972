"""
NoteKeep Backend: Rate Limiting Middleware
===========================================

What:  Per-IP sliding window rate limiter with a stricter budget for the
       authentication endpoints.
How:   Keeps request timestamps per (bucket, IP) in memory; a request is
       refused with 429 once its bucket already holds the limit within the
       window.

Buckets:
    auth     /api/auth/*   settings.auth_rate_limit_requests per window
    general  everything    settings.rate_limit_requests per window

    The auth bucket is what bounds how often one client can request codes
    (each one sends an email) and how fast it can guess them; the per-code
    attempt counter in OTPVerifier bounds guesses against a single code.

Algorithm: Sliding Window Log
    1. Drop the bucket's timestamps older than now - window
    2. If the bucket still holds >= limit entries, reject with 429 and
       Retry-After = seconds until the oldest entry leaves the window
    3. Otherwise record now and pass the request on

The state lives in this process. With several uvicorn workers each worker
enforces its own limits.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from notekeep.config import settings
from notekeep.exceptions import RateLimitExceededError
from notekeep.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

AUTH_PREFIX = "/api/auth/"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding window rate limiter.

    Limits are read from settings on every request, so tests can lower them
    with monkeypatch without rebuilding the app.

    Excluded paths:
        /health, /docs, /openapi.json, /redoc
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}
    CLEANUP_EVERY = 1000

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self._requests: Dict[Tuple[str, str], List[float]] = defaultdict(list)
        self._seen = 0

    @staticmethod
    def bucket_for(path: str) -> Tuple[str, int]:
        """(bucket name, request limit) for a request path."""
        if path.startswith(AUTH_PREFIX):
            return "auth", settings.auth_rate_limit_requests
        return "general", settings.rate_limit_requests

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in self.EXCLUDED_PATHS:
            return await call_next(request)

        # Behind a proxy this is the proxy's address; run uvicorn with
        # --proxy-headers so it reflects X-Forwarded-For
        client_ip = request.client.host if request.client else "unknown"
        bucket, limit = self.bucket_for(path)
        key = (bucket, client_ip)

        now = time.time()
        window = settings.rate_limit_window
        window_start = now - window
        timestamps = [ts for ts in self._requests[key] if ts > window_start]
        self._requests[key] = timestamps

        if len(timestamps) >= limit:
            retry_after = int(timestamps[0] + window - now) + 1
            logger.warning(
                "Rate limit exceeded for IP %s on %s bucket: %d requests in %ds window",
                client_ip,
                bucket,
                len(timestamps),
                window,
            )
            exc = RateLimitExceededError(retry_after=retry_after, context={"bucket": bucket})
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "error": exc.error_code,
                    "message": exc.message,
                    "details": {"retry_after": retry_after},
                    "request_id": request_id_var.get(""),
                },
                headers={"Retry-After": str(retry_after)},
            )

        timestamps.append(now)

        self._seen += 1
        if self._seen % self.CLEANUP_EVERY == 0:
            self._cleanup_inactive(window_start)

        return await call_next(request)

    def _cleanup_inactive(self, window_start: float) -> None:
        """Drop (bucket, IP) entries with nothing left in the window."""
        inactive = [
            key for key, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for key in inactive:
            del self._requests[key]

        if inactive:
            logger.debug("Cleaned up %d inactive rate-limit entries", len(inactive))
