import asyncio
import json
import uuid
from dataclasses import dataclass, field
from typing import Any

from starlette import status
from starlette.endpoints import WebSocketEndpoint
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from lexidraft.api.ws.constants import ConnectionState
from lexidraft.auth import CredentialVerifier, credential_verifier
from lexidraft.constants import (
    WS_AUTH_TIMEOUT_REASON,
    WS_CONNECTED_MESSAGE,
    WS_POLICY_VIOLATION_CODE,
)
from lexidraft.exceptions import MessageValidationError
from lexidraft.logging import clear_log_context, logger, set_log_context
from lexidraft.managers.connection_registry import (
    ConnectionRegistry,
    connection_registry,
)
from lexidraft.managers.delivery_router import DeliveryRouter, delivery_router
from lexidraft.managers.room_registry import RoomRegistry, room_registry
from lexidraft.schemas.identity import SubjectIdentity, VerificationFailure
from lexidraft.schemas.messages import (
    AuthenticateMessage,
    AuthErrorMessage,
    AuthSuccessMessage,
    ConnectedMessage,
    ErrorMessage,
    HeartbeatMessage,
    HeartbeatReply,
    InboundMessage,
    OutboundMessage,
    parse_inbound,
)
from lexidraft.settings import app_settings
from lexidraft.utils.metrics import (
    ws_auth_attempts_total,
    ws_connections_active,
    ws_connections_authenticated,
    ws_connections_total,
    ws_messages_invalid_total,
    ws_messages_received_total,
)


@dataclass
class ConnectionContext:
    """What domain handlers get to see about the connection they serve."""

    websocket: WebSocket
    connection_id: str
    identity: SubjectIdentity
    delivery: DeliveryRouter
    rooms: RoomRegistry = field(default_factory=RoomRegistry)

    @property
    def subject(self) -> str:
        return self.identity.subject


class AuthWebSocketEndpoint(WebSocketEndpoint):  # type: ignore[misc]
    """
    WebSocket endpoint with in-band authentication.

    One instance serves one connection and owns its lifecycle:

    - on connect the socket is accepted, greeted with ``connected`` and
      given ``WS_AUTH_TIMEOUT_SECONDS`` to authenticate before it is closed
      with 1008
    - ``authenticate`` frames are checked by the credential verifier; on
      success the connection is added to the registry, on failure an
      ``auth_error`` is sent and the client may retry
    - ``heartbeat``/``ping`` frames are answered in any state
    - other frames are only accepted once authenticated and are handed to
      ``on_message``
    - on close the connection is removed from the registry and from every
      consultation room it joined (idempotent)

    The registries, delivery router, verifier and timeout are read from
    ``app.state`` when the application provides them, so tests can run
    isolated instances.
    """

    encoding = None
    auth_timeout_seconds: float = app_settings.WS_AUTH_TIMEOUT_SECONDS

    def _from_app_state(self, name: str, default: Any) -> Any:
        app = self.scope.get("app")
        state = getattr(app, "state", None)
        return getattr(state, name, default) if state is not None else default

    async def dispatch(self) -> None:
        """
        Run the receive loop for one connection.

        Frames are handled one at a time, in arrival order. Whatever ends
        the loop, on_disconnect runs exactly once.
        """
        websocket = WebSocket(self.scope, receive=self.receive, send=self.send)
        await self.on_connect(websocket)

        close_code = status.WS_1000_NORMAL_CLOSURE

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.receive":
                    await self.on_receive(websocket, self.frame_text(message))
                elif message["type"] == "websocket.disconnect":
                    close_code = int(
                        message.get("code") or status.WS_1000_NORMAL_CLOSURE
                    )
                    break
        except WebSocketDisconnect as exc:
            # Peer vanished while we were replying
            close_code = exc.code
        except Exception as exc:
            close_code = status.WS_1011_INTERNAL_ERROR
            raise exc
        finally:
            await self.on_disconnect(websocket, close_code)

    @staticmethod
    def frame_text(message: dict[str, Any]) -> str:
        """Return the frame payload as text; binary frames must be UTF-8."""
        if message.get("text") is not None:
            return message["text"]
        raw = message.get("bytes") or b""
        return raw.decode("utf-8", errors="replace")

    async def on_connect(self, websocket: WebSocket) -> None:
        """
        Accept the connection and start the authentication grace period.
        """
        self.registry: ConnectionRegistry = self._from_app_state(
            "connection_registry", connection_registry
        )
        self.delivery: DeliveryRouter = self._from_app_state(
            "delivery_router", delivery_router
        )
        self.rooms: RoomRegistry = self._from_app_state(
            "room_registry", room_registry
        )
        self.verifier: CredentialVerifier = self._from_app_state(
            "credential_verifier", credential_verifier
        )
        timeout: float = self._from_app_state(
            "ws_auth_timeout_seconds", self.auth_timeout_seconds
        )

        self.state = ConnectionState.UNAUTHENTICATED
        self.identity: SubjectIdentity | None = None
        self.context: ConnectionContext | None = None
        self.connection_id = str(uuid.uuid4())
        self._auth_timer: asyncio.Task[None] | None = None

        await websocket.accept()

        set_log_context(connection_id=self.connection_id[:8])
        ws_connections_total.labels(status="accepted").inc()
        ws_connections_active.inc()
        logger.debug(
            f"Client connected to websocket (connection_id: {self.connection_id})"
        )

        await self.send_message(
            websocket, ConnectedMessage(message=WS_CONNECTED_MESSAGE)
        )

        if timeout and timeout > 0:
            self._auth_timer = asyncio.create_task(
                self._enforce_auth_deadline(websocket, timeout)
            )

    async def on_receive(self, websocket: WebSocket, data: str) -> None:
        """
        Parse one frame and route it according to the connection state.

        Malformed frames are logged and answered with ``error``; the state
        of the connection does not change.
        """
        if self.state is ConnectionState.CLOSED:
            return

        try:
            message = parse_inbound(json.loads(data))
        except (ValueError, MessageValidationError) as ex:
            ws_messages_invalid_total.inc()
            logger.debug(f"Dropped invalid message ({ex}): {data[:200]}")
            await self.send_message(
                websocket, ErrorMessage(message=f"Invalid message: {ex}")
            )
            return

        ws_messages_received_total.labels(type=message.type).inc()

        if isinstance(message, HeartbeatMessage):
            reply_type = "pong" if message.type == "ping" else "heartbeat"
            await self.send_message(
                websocket,
                HeartbeatReply(type=reply_type, timestamp=message.timestamp),
            )
            return

        if isinstance(message, AuthenticateMessage):
            await self.authenticate(websocket, message.token)
            return

        if self.state is not ConnectionState.AUTHENTICATED or self.context is None:
            await self.send_message(
                websocket, ErrorMessage(message="Not authenticated")
            )
            return

        await self.on_message(self.context, message)

    async def on_message(
        self, context: ConnectionContext, message: InboundMessage
    ) -> None:
        """Handle a domain message from an authenticated client."""
        logger.debug(f"No domain handling for {message.type}, dropping")

    async def authenticate(self, websocket: WebSocket, token: str | None) -> None:
        """
        Verify ``token`` and move the connection to AUTHENTICATED.

        A failed attempt leaves the connection unauthenticated so the client
        can retry until the grace period runs out.
        """
        if self.state is ConnectionState.AUTHENTICATED:
            await self.send_message(
                websocket,
                AuthErrorMessage(
                    message="Already authenticated",
                    reason="already_authenticated",
                ),
            )
            return

        result = self.verifier.verify(token)

        if isinstance(result, VerificationFailure):
            ws_auth_attempts_total.labels(result=result.reason).inc()
            logger.info(f"WebSocket authentication failed: {result.reason}")
            await self.send_message(
                websocket, AuthErrorMessage(reason=result.reason)
            )
            return

        self.identity = result
        self.state = ConnectionState.AUTHENTICATED
        self._cancel_auth_timer()
        self.context = ConnectionContext(
            websocket=websocket,
            connection_id=self.connection_id,
            identity=result,
            delivery=self.delivery,
            rooms=self.rooms,
        )
        self.registry.add(result.subject, websocket)

        ws_auth_attempts_total.labels(result="success").inc()
        ws_connections_authenticated.inc()
        set_log_context(user_id=result.subject)
        logger.info(f"User {result.subject} connected to WebSocket")

        await self.send_message(
            websocket, AuthSuccessMessage(user_id=result.subject, role=result.role)
        )

    async def on_disconnect(self, websocket: WebSocket, close_code: int) -> None:
        """Release the connection when the peer goes away."""
        subject = self.identity.subject if self.identity else None
        self.mark_closed(websocket)

        log_msg = (
            f"Client of user {subject} disconnected with code {close_code}"
            if subject is not None
            else f"Unauthenticated client disconnected with code {close_code}"
        )
        logger.debug(log_msg)
        clear_log_context()

    async def close(
        self,
        websocket: WebSocket,
        code: int = status.WS_1000_NORMAL_CLOSURE,
        reason: str | None = None,
    ) -> None:
        """Close the connection from the server side."""
        self.mark_closed(websocket)

        if websocket.application_state == WebSocketState.CONNECTED:
            try:
                await websocket.close(code=code, reason=reason)
            except RuntimeError as ex:
                logger.debug(f"Close of {self.connection_id} raced: {ex}")

    def mark_closed(self, websocket: WebSocket) -> None:
        """
        Move to CLOSED and drop the registry association.

        Safe to call any number of times; only the first call has effect.
        """
        if self.state is ConnectionState.CLOSED:
            return

        was_authenticated = self.state is ConnectionState.AUTHENTICATED
        self.state = ConnectionState.CLOSED
        self._cancel_auth_timer()

        if was_authenticated and self.identity is not None:
            self.registry.remove(self.identity.subject, websocket)
            self.rooms.leave_all(websocket)
            ws_connections_authenticated.dec()
            logger.info(f"User {self.identity.subject} disconnected from WebSocket")

        ws_connections_active.dec()

    async def send_message(
        self, websocket: WebSocket, message: OutboundMessage
    ) -> None:
        """Send a frame to this connection's own peer."""
        if websocket.application_state != WebSocketState.CONNECTED:
            return
        try:
            await websocket.send_json(message.to_wire())
        except RuntimeError as ex:
            logger.debug(f"Could not reply on {self.connection_id}: {ex}")

    def _cancel_auth_timer(self) -> None:
        timer = self._auth_timer
        self._auth_timer = None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _enforce_auth_deadline(
        self, websocket: WebSocket, timeout: float
    ) -> None:
        await asyncio.sleep(timeout)
        if self.state is not ConnectionState.UNAUTHENTICATED:
            return

        logger.info(
            f"Closing connection {self.connection_id}: not authenticated "
            f"within {timeout}s"
        )
        ws_connections_total.labels(status="auth_timeout").inc()
        try:
            await self.close(
                websocket,
                code=WS_POLICY_VIOLATION_CODE,
                reason=WS_AUTH_TIMEOUT_REASON,
            )
        except Exception as ex:
            # Nothing awaits this task, so its errors end here
            logger.warning(
                f"Failed to close unauthenticated connection "
                f"{self.connection_id}: {ex}"
            )
