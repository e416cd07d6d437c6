from fastapi import APIRouter, Depends

from paperchat.api.deps import get_container
from paperchat.dependencies import ServiceContainer
from paperchat.models.responses import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    container: ServiceContainer = Depends(get_container),
) -> HealthResponse:
    settings = container.settings
    return HealthResponse(version=settings.app_version, service=settings.app_name)
