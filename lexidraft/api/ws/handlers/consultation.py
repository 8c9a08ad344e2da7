"""
Consultation chat and call handlers.

These own the business meaning of the chat, typing and video-call frames a
client sends once authenticated. Each handler turns the inbound frame into
outbound events and hands them to the delivery router; persistence of chat
history belongs to the storage layer and is not done here.
"""

from lexidraft.api.ws.websocket import ConnectionContext
from lexidraft.logging import logger
from lexidraft.routing import message_router
from lexidraft.schemas.messages import (
    ChatMessagePayload,
    ChatSendMessage,
    JoinedMessage,
    JoinMessage,
    MessageSentMessage,
    NewMessageEvent,
    TypingIndicatorMessage,
    TypingMessage,
    VideoSignalEvent,
    VideoSignalMessage,
)


@message_router.register("join")
async def join_consultation_handler(
    context: ConnectionContext, message: JoinMessage
) -> JoinedMessage:
    """
    Add this connection to a consultation room.

    Chat messages sent with that ``consultationId`` reach every member.
    Membership ends when the connection closes.
    """
    context.rooms.join(
        message.consultation_id, context.subject, context.websocket
    )
    logger.info(
        f"User {context.subject} joined consultation room {message.consultation_id}"
    )
    return JoinedMessage(room_id=message.consultation_id)


@message_router.register("message")
async def chat_message_handler(
    context: ConnectionContext, message: ChatSendMessage
) -> MessageSentMessage:
    """
    Deliver a chat message to its room, its recipients and the sender's
    other devices.

    Request Data:
        {
            "type": "message",
            "consultationId": 7,
            "recipientIds": [42],
            "content": "Hello",
            "messageType": "text"
        }

    Other members of the ``consultationId`` room (see ``join``) and every
    connection of ``recipientIds`` receive ``newMessage``; a connection
    that is both gets it once. The sender receives ``message_sent`` with
    the generated message id and whether any other user was reached.
    """
    payload = ChatMessagePayload(
        sender_id=context.subject,
        consultation_id=message.consultation_id,
        content=message.content,
        type=message.message_type,
        file_url=message.file_url,
        file_name=message.file_name,
    )
    event = NewMessageEvent(message=payload)

    recipients = [
        str(r) for r in message.recipient_ids if str(r) != context.subject
    ]
    targets = context.delivery.connections_of(recipients)
    if message.consultation_id is not None:
        targets.extend(
            (subject, ws)
            for subject, ws in context.rooms.members(message.consultation_id)
            if subject != context.subject
        )
    delivered = await context.delivery.send_to_connections(targets, event)

    # Sync the sender's other devices; this connection gets message_sent
    await context.delivery.send_to_users(
        [context.subject], event, exclude=context.websocket
    )

    logger.info(
        f"Message {payload.id} from user {context.subject} "
        f"to {len(targets)} connection(s), delivered={delivered}"
    )
    return MessageSentMessage(message_id=payload.id, delivered=delivered)


@message_router.register("typing")
async def typing_indicator_handler(
    context: ConnectionContext, message: TypingMessage
) -> None:
    await context.delivery.send_to_user(
        message.recipient_id,
        TypingIndicatorMessage(
            data={
                "roomId": message.room_id,
                "userId": context.subject,
                "isTyping": message.is_typing,
            }
        ),
    )


@message_router.register("videoSignal")
async def video_signal_handler(
    context: ConnectionContext, message: VideoSignalMessage
) -> None:
    """Relay a WebRTC signaling payload; ``from`` is always the sender."""
    logger.debug(f"Video signal from {context.subject} to {message.to}")
    await context.delivery.send_to_user(
        message.to, VideoSignalEvent(from_=context.subject, signal=message.signal)
    )
