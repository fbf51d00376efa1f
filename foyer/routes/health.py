"""
Foyer — Health Check Route
============================

What:  Liveness endpoint that also reports the configured pipeline stages
       and query cache counters.
Who:   Called by container health checks, load balancers and operators.
"""

import logging
import time

from fastapi import APIRouter, Request

from foyer import __version__
from foyer.pipeline import Phase
from foyer.schemas.post import HealthResponse, QueryCacheStats
from foyer.services.cache import query_cache

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(request: Request) -> HealthResponse:
    pipeline = request.app.state.pipeline
    return HealthResponse(
        status="healthy",
        version=__version__,
        stages={
            phase.value: [stage.name for stage in pipeline.stages(phase)]
            for phase in Phase
        },
        query_cache=QueryCacheStats(**query_cache.stats()),
        uptime_seconds=round(time.time() - _start_time, 2),
    )
