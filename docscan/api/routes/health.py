import redis
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from docscan.api.deps import get_services
from docscan.worker.startup import Services

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    redis: str
    scheduler: str
    active_jobs: int
    engine: str


@router.get("/health", response_model=HealthResponse)
async def health_check(services: Services = Depends(get_services)):
    """
    Check API, Redis and scheduler health.

    Redis is reported as ``disabled`` when the in-process store is used.
    """
    if services.redis_client is None:
        redis_status = "disabled"
    else:
        try:
            services.redis_client.ping()
            redis_status = "healthy"
        except redis.ConnectionError:
            redis_status = "unhealthy"

    scheduler = services.scheduler
    return HealthResponse(
        status="healthy" if redis_status != "unhealthy" else "degraded",
        redis=redis_status,
        scheduler="running" if scheduler.is_running else "stopped",
        active_jobs=scheduler.active_count,
        engine=f"{services.recognition.engine_name} ({'loaded' if services.recognition.is_loaded else 'idle'})",
    )
