"""Health check endpoint: database and revocation registry reachability."""

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from nevis.api.deps import get_revocation_registry, get_settings
from nevis.core import check_db_connection
from nevis.core.config import Settings
from nevis.services.errors import StoreUnavailableError
from nevis.services.revocation import RevocationRegistry

router = APIRouter(tags=["health"])

# Looked up on every probe; never stored
_PROBE_KEY = "health-probe"


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    revocation_backend: str
    revocation: str


async def _registry_reachable(registry: RevocationRegistry) -> bool:
    try:
        await registry.is_revoked(_PROBE_KEY)
    except StoreUnavailableError:
        return False
    return True


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "A backing store is unreachable"},
    },
)
async def health_check(
    response: Response,
    registry: RevocationRegistry = Depends(get_revocation_registry),
    settings: Settings = Depends(get_settings),
) -> HealthResponse:
    """
    Health check endpoint.

    Returns 503 when the database or the revocation registry is unreachable,
    since logins and authenticated calls would fail either way.
    """
    db_healthy = await check_db_connection()
    registry_healthy = await _registry_reachable(registry)
    healthy = db_healthy and registry_healthy

    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if healthy else "unhealthy",
        version=settings.app_version,
        database="connected" if db_healthy else "disconnected",
        revocation_backend=settings.revocation_backend,
        revocation="available" if registry_healthy else "unavailable",
    )
