from datetime import datetime, timezone

from fastapi import APIRouter, Request

from config import get_settings
from schemas.common import HealthResponse, HealthStatus
from services.health_checks import gather_health

router = APIRouter(prefix="/api/v1", tags=["health"])
settings = get_settings()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    services = await gather_health()
    overall = "healthy" if all(item.get("status") == "up" for item in services.values()) else "degraded"
    normalized = {name: HealthStatus(**value) for name, value in services.items()}

    dispatcher = getattr(request.app.state, "dispatcher", None)
    sessions = {}
    if dispatcher is not None:
        sessions = {**dispatcher.registry.get_stats(), **dispatcher.channel.get_stats()}

    return HealthResponse(
        status=overall,
        timestamp=datetime.now(timezone.utc),
        services=normalized,
        sessions=sessions,
        version=settings.stack_version,
    )
