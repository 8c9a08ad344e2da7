from fastapi import APIRouter

from lexidraft.api.ws.handlers import load_handlers
from lexidraft.api.ws.websocket import AuthWebSocketEndpoint, ConnectionContext
from lexidraft.logging import logger
from lexidraft.routing import message_router
from lexidraft.schemas.messages import ErrorMessage, InboundMessage
from lexidraft.settings import app_settings

load_handlers()

router = APIRouter()


@router.websocket_route(app_settings.WS_PATH)
class Realtime(AuthWebSocketEndpoint):
    """
    Realtime endpoint for notifications, consultation chat and call
    signaling.

    Connection lifecycle and authentication come from
    ``AuthWebSocketEndpoint``; authenticated domain frames are routed by
    ``type`` through ``message_router``.
    """

    async def on_message(
        self, context: ConnectionContext, message: InboundMessage
    ) -> None:
        """
        Route an authenticated domain frame and reply to the sender.

        A failing handler is logged and answered with ``error``; the
        connection stays open.
        """
        try:
            reply = await message_router.handle_message(context, message)
        except Exception:
            logger.exception(
                f"Handler for {message.type} failed for user {context.subject}"
            )
            reply = ErrorMessage(message=f"Failed to process {message.type}")

        if reply is not None:
            await self.send_message(context.websocket, reply)
