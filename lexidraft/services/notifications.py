"""
Realtime push helpers for server-side producers.

HTTP handlers and background jobs elsewhere in the platform call these to
push events to connected users. Delivery is best effort: when a user has
no live connection the call returns False and it is up to the caller to
persist the event for later retrieval.
"""

from typing import Any, Iterable

from lexidraft.logging import logger
from lexidraft.managers.connection_registry import SubjectId
from lexidraft.managers.delivery_router import DeliveryRouter, delivery_router
from lexidraft.schemas.messages import (
    BroadcastMessage,
    ChatMessageEvent,
    NotificationMessage,
    TypingIndicatorMessage,
)

# Notification types understood by the web client
NOTIFICATION_TYPES = {
    "CONTRACT_CREATED": "contract_created",
    "CONTRACT_UPDATED": "contract_updated",
    "CONTRACT_SIGNED": "contract_signed",
    "CONTRACT_EXPIRED": "contract_expired",
    "CONTRACT_ANALYSIS_COMPLETE": "contract_analysis_complete",
    "SUBSCRIPTION_CREATED": "subscription_created",
    "SUBSCRIPTION_EXPIRED": "subscription_expired",
    "PAYMENT_RECEIVED": "payment_received",
    "PAYMENT_FAILED": "payment_failed",
    "NEW_MESSAGE": "new_message",
    "CONSULTATION_SCHEDULED": "consultation_scheduled",
    "CONSULTATION_REMINDER": "consultation_reminder",
    "SYSTEM_ALERT": "system_alert",
}


def check_notification_type(data: dict[str, Any]) -> dict[str, Any]:
    """
    Reject notifications whose ``type`` the web client doesn't know.

    A missing ``type`` is allowed; the client shows those as generic
    notices.

    Raises:
        ValueError: If ``data["type"]`` is not one of NOTIFICATION_TYPES.
    """
    notification_type = data.get("type")
    if notification_type is not None and notification_type not in (
        NOTIFICATION_TYPES.values()
    ):
        raise ValueError(f"Unknown notification type: {notification_type}")
    return data


async def send_user_notification(
    user_id: SubjectId,
    data: dict[str, Any],
    router: DeliveryRouter = delivery_router,
) -> bool:
    """
    Push a ``notification`` to every device of ``user_id``.

    Returns:
        True if at least one open connection was written to.

    Raises:
        ValueError: If ``data["type"]`` is not a known notification type.
    """
    check_notification_type(data)
    delivered = await router.send_to_user(
        user_id, NotificationMessage(data={**data, "isRealtime": True})
    )
    if delivered:
        logger.info(f"Notification sent to user {user_id}")
    else:
        logger.info(f"User {user_id} not connected to WebSocket")
    return delivered


async def send_chat_message(
    user_ids: Iterable[SubjectId],
    data: dict[str, Any],
    router: DeliveryRouter = delivery_router,
) -> bool:
    """Push a ``chat_message`` to every device of each recipient."""
    return await router.send_to_users(user_ids, ChatMessageEvent(data=data))


async def send_typing_indicator(
    user_id: SubjectId,
    data: dict[str, Any],
    router: DeliveryRouter = delivery_router,
) -> bool:
    return await router.send_to_user(user_id, TypingIndicatorMessage(data=data))


async def broadcast_message(
    data: Any, router: DeliveryRouter = delivery_router
) -> int:
    """
    Push a ``broadcast`` to every connected user.

    Reserved for system-wide notices.

    Returns:
        Number of connections written to.
    """
    return await router.broadcast(BroadcastMessage(data=data))


def is_user_connected(
    user_id: SubjectId, router: DeliveryRouter = delivery_router
) -> bool:
    return router.registry.is_connected(user_id)


def get_connection_count(router: DeliveryRouter = delivery_router) -> int:
    return router.registry.count().connections


def get_unique_user_count(router: DeliveryRouter = delivery_router) -> int:
    return router.registry.count().unique_users
