"""Health check routes."""

from datetime import datetime, timezone

from dishka.integrations.fastapi import DishkaRoute, FromDishka
from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from plexdonate.config import Settings
from plexdonate.persistence.database import DatabaseHealth
from plexdonate.util.observability import SERVICE_VERSION

router = APIRouter(tags=["health"], route_class=DishkaRoute)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    timestamp: datetime
    version: str
    git_sha: str


@router.get("/health", response_model=HealthResponse)
async def health_check(
    response: Response,
    settings: FromDishka[Settings],
    database_health: FromDishka[DatabaseHealth],
) -> HealthResponse:
    """Report liveness and store connectivity.

    Returns:
        Health status; 503 when the store is unreachable
    """
    database_ok = await database_health.check()
    if not database_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if database_ok else "unhealthy",
        database="ok" if database_ok else "unreachable",
        timestamp=datetime.now(timezone.utc),
        version=SERVICE_VERSION,
        git_sha=settings.git_sha,
    )
