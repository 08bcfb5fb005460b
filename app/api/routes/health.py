from fastapi import APIRouter

from app.api.schemas.common import HealthRequest, HealthResponse
from app.api.server import HEALTH
from app.core.dependencies import Metadata, Server

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(server: Server, metadata: Metadata):
    """Liveness check; anonymous and not access-logged."""
    return await server.call(HEALTH, HealthRequest(), metadata)
