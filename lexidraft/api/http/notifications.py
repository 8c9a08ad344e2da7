"""
HTTP producers for realtime pushes.

Lets other services of the platform push a notification to one user or a
system notice to everyone without holding a WebSocket themselves.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator

from lexidraft.dependencies import (
    authenticated_subject,
    get_delivery_router,
    require_roles,
)
from lexidraft.logging import logger
from lexidraft.managers.delivery_router import DeliveryRouter
from lexidraft.schemas.identity import SubjectIdentity
from lexidraft.services.notifications import (
    broadcast_message,
    check_notification_type,
    send_user_notification,
)

router = APIRouter(prefix="/api", tags=["notifications"])


class NotificationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int | str = Field(alias="userId")
    data: dict[str, Any]

    @field_validator("data")
    @classmethod
    def validate_type(cls, v: dict[str, Any]) -> dict[str, Any]:
        return check_notification_type(v)


class NotificationResponse(BaseModel):
    delivered: bool


class BroadcastRequest(BaseModel):
    data: Any


class BroadcastResponse(BaseModel):
    recipients: int


@router.post("/notifications", response_model=NotificationResponse)
async def push_notification(
    body: NotificationRequest,
    identity: Annotated[SubjectIdentity, Depends(authenticated_subject)],
    delivery: Annotated[DeliveryRouter, Depends(get_delivery_router)],
) -> NotificationResponse:
    """
    Push a ``notification`` event to every open connection of ``userId``.

    ``delivered`` is False when the user has no live connection; the
    caller keeps the stored notification for the next page load.
    """
    delivered = await send_user_notification(
        body.user_id, body.data, router=delivery
    )
    logger.debug(
        f"User {identity.subject} pushed notification to {body.user_id}: "
        f"delivered={delivered}"
    )
    return NotificationResponse(delivered=delivered)


@router.post("/broadcast", response_model=BroadcastResponse)
async def push_broadcast(
    body: BroadcastRequest,
    identity: Annotated[SubjectIdentity, Depends(require_roles("admin"))],
    delivery: Annotated[DeliveryRouter, Depends(get_delivery_router)],
) -> BroadcastResponse:
    recipients = await broadcast_message(body.data, router=delivery)
    logger.info(f"User {identity.subject} broadcast to {recipients} connection(s)")
    return BroadcastResponse(recipients=recipients)
