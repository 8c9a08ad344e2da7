"""Prometheus metrics endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from lexidraft.dependencies import get_connection_registry
from lexidraft.managers.connection_registry import ConnectionRegistry
from lexidraft.utils.metrics import ws_registered_users

router = APIRouter()


@router.get(
    "/metrics",
    response_class=Response,
    summary="Prometheus metrics endpoint",
    tags=["metrics"],
)
async def metrics(
    registry: Annotated[ConnectionRegistry, Depends(get_connection_registry)],
) -> Response:
    """
    Expose Prometheus metrics for monitoring.

    The distinct-user gauge is read from the connection registry at scrape
    time; everything else is updated where it happens.
    """
    ws_registered_users.set(registry.count().unique_users)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
