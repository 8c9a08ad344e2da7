"""Health check endpoint for monitoring service status."""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from lexidraft.dependencies import get_connection_registry
from lexidraft.managers.connection_registry import ConnectionRegistry

router = APIRouter()


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    status: str
    connections: int
    unique_users: int = Field(alias="uniqueUsers")


@router.get(
    "/health",
    response_model=HealthResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
    summary="Health check endpoint",
    tags=["health"],
)
async def health_check(
    registry: Annotated[ConnectionRegistry, Depends(get_connection_registry)],
) -> HealthResponse:
    """
    Report service status and realtime connection counts.

    Returns:
        HealthResponse: ``connections`` is the number of authenticated
            connections, ``uniqueUsers`` the number of distinct subjects.
    """
    count = registry.count()
    return HealthResponse(
        status="healthy",
        connections=count.connections,
        unique_users=count.unique_users,
    )
