"""
NoteKeep Backend: Health Check Route
=====================================

What:  Liveness/readiness check for Docker and load balancers.
How:   Runs SELECT 1 against the database and reads the mail circuit
       breaker state (no SMTP connection is opened).

Status levels:
    healthy:    database reachable, mail circuit closed
    degraded:   database reachable, mail circuit open or half-open
                (sign-in codes cannot be sent, existing sessions still work)
    unhealthy:  database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Response, status
from sqlalchemy import text

from notekeep import __version__
from notekeep.database import engine
from notekeep.schemas.common import HealthResponse
from notekeep.services.email_service import CircuitBreaker, email_notifier

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    responses={503: {"description": "Database unreachable", "model": HealthResponse}},
)
async def health_check(response: Response) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    email_status = email_notifier.circuit_breaker.state
    if email_status != CircuitBreaker.CLOSED and overall == "healthy":
        overall = "degraded"

    if overall == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        email=email_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
