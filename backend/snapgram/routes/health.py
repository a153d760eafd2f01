"""
Snapgram Backend — Health Check Route
=======================================

What:  Liveness/readiness probe for load balancers and Docker.

Status levels:
    - healthy:   document store reachable, gateway circuit closed
    - degraded:  store reachable but the circuit is open or half-open
    - unhealthy: store unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from snapgram import __version__
from snapgram.database import engine
from snapgram.query.queries import query_client
from snapgram.schemas.api import HealthResponse
from snapgram.services.backend_gateway import backend_gateway
from snapgram.services.resilience import CircuitBreaker

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"description": "Document store unreachable", "model": HealthResponse}},
    summary="Service health check",
)
async def health_check():
    db_status = "connected"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: document store unreachable: %s", str(e))

    breaker_state = backend_gateway.circuit_breaker.state
    if breaker_state != CircuitBreaker.CLOSED and overall == "healthy":
        overall = "degraded"

    body = HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        circuit_breaker=breaker_state,
        cached_queries=len(query_client),
        uptime_seconds=round(time.time() - _start_time, 2),
    )
    if overall == "unhealthy":
        return JSONResponse(status_code=503, content=body.model_dump())
    return body
