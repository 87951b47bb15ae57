"""
RequestGuard: Health Check Route
==================================

What:  Liveness/readiness check for load balancers and Docker health checks.
How:   Runs SELECT 1 through the application's session factory.
       healthy   → 200
       unhealthy → 503 (database unreachable; stop routing traffic here)

/health is exempt from the rate limiter pre-check and from access logging.
"""

import logging
import time

from fastapi import APIRouter, Request, Response
from sqlalchemy import text

from requestguard import __version__
from requestguard.schemas.health import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    responses={503: {"model": HealthResponse, "description": "Database unreachable"}},
)
async def health_check(request: Request, response: Response) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        async with request.app.state.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        response.status_code = 503
        logger.warning("Health check: database unreachable: %s", e)

    return HealthResponse(
        status=overall,
        version=request.app.version or __version__,
        database=db_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
