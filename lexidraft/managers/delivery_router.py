import asyncio
from typing import Iterable

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from lexidraft.logging import logger
from lexidraft.managers.connection_registry import (
    ConnectionRegistry,
    SubjectId,
    connection_registry,
)
from lexidraft.schemas.messages import OutboundMessage
from lexidraft.utils.metrics import ws_messages_sent_total


def is_open(websocket: WebSocket) -> bool:
    """Whether both sides of the connection still consider it connected."""
    return (
        websocket.application_state == WebSocketState.CONNECTED
        and websocket.client_state == WebSocketState.CONNECTED
    )


class DeliveryRouter:
    """
    Pushes outbound messages to the live connections of one, several or
    all subjects.

    The router only reads the registry. Writes to different connections
    run concurrently and are isolated from each other: a failing or closed
    connection is logged and skipped, never raised to the producer.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    async def send_to_user(
        self, subject: SubjectId, message: OutboundMessage
    ) -> bool:
        """
        Send ``message`` to every open connection of ``subject``.

        Returns:
            True if a write was attempted on at least one open connection,
            False if the subject has no live connection.
        """
        connections = self.registry.get(subject)
        if not connections:
            logger.debug(f"User {subject} not connected to WebSocket")
            return False

        attempted, _ = await self._fan_out(
            [(str(subject), ws) for ws in connections], message
        )
        logger.debug(
            f"{message.type} sent to user {subject} on {attempted} connection(s)"
        )
        return attempted > 0

    async def send_to_users(
        self,
        subjects: Iterable[SubjectId],
        message: OutboundMessage,
        exclude: WebSocket | None = None,
    ) -> bool:
        """
        Send ``message`` to every open connection of each subject.

        Duplicate subjects are delivered to once. ``exclude`` skips one
        connection, typically the one the message originated from.

        Returns:
            True if delivered to at least one subject.
        """
        return await self.send_to_connections(
            self.connections_of(subjects), message, exclude=exclude
        )

    def connections_of(
        self, subjects: Iterable[SubjectId]
    ) -> list[tuple[str, WebSocket]]:
        """Registered (subject, connection) pairs of ``subjects``, deduplicated."""
        targets: list[tuple[str, WebSocket]] = []
        seen: set[str] = set()
        for subject in subjects:
            key = str(subject)
            if key in seen:
                continue
            seen.add(key)
            targets.extend((key, ws) for ws in self.registry.get(key))
        return targets

    async def send_to_connections(
        self,
        targets: Iterable[tuple[SubjectId, WebSocket]],
        message: OutboundMessage,
        exclude: WebSocket | None = None,
    ) -> bool:
        """
        Send ``message`` to an explicit set of (subject, connection) pairs,
        such as the members of a consultation room.

        A connection listed more than once is written to once.

        Returns:
            True if a write was attempted on at least one open connection.
        """
        unique: dict[WebSocket, str] = {}
        for subject, ws in targets:
            if ws is not exclude and ws not in unique:
                unique[ws] = str(subject)

        if not unique:
            return False

        attempted, _ = await self._fan_out(
            [(subject, ws) for ws, subject in unique.items()], message
        )
        return attempted > 0

    async def broadcast(self, message: OutboundMessage) -> int:
        """
        Send ``message`` to every open connection of every subject.

        Returns:
            Number of successful writes.
        """
        targets = self.registry.all_connections()
        if not targets:
            return 0

        _, delivered = await self._fan_out(targets, message)
        logger.info(f"Broadcast {message.type} delivered to {delivered} connection(s)")
        return delivered

    async def _fan_out(
        self,
        targets: list[tuple[str, WebSocket]],
        message: OutboundMessage,
    ) -> tuple[int, int]:
        """
        Write ``message`` to each open target concurrently.

        Returns:
            (attempted, delivered): writes attempted on open connections
            and writes that completed without error.
        """
        payload = message.to_wire()

        async def safe_send(subject: str, connection: WebSocket) -> bool:
            try:
                await connection.send_json(payload)
            except (WebSocketDisconnect, ConnectionError, RuntimeError) as e:
                # RuntimeError: websocket already closed by the ASGI server
                logger.warning(
                    f"Failed to send to connection {id(connection)} "
                    f"(subject: {subject}): {e}"
                )
                ws_messages_sent_total.labels(outcome="failed").inc()
                return False
            except Exception as e:
                logger.warning(
                    f"Unexpected error sending to connection {id(connection)} "
                    f"(subject: {subject}): {e}"
                )
                ws_messages_sent_total.labels(outcome="failed").inc()
                return False

            ws_messages_sent_total.labels(outcome="delivered").inc()
            return True

        open_targets = []
        for subject, connection in targets:
            if is_open(connection):
                open_targets.append((subject, connection))
            else:
                ws_messages_sent_total.labels(outcome="skipped").inc()

        if not open_targets:
            return 0, 0

        results = await asyncio.gather(
            *[safe_send(subject, conn) for subject, conn in open_targets]
        )
        return len(open_targets), sum(1 for ok in results if ok)


delivery_router = DeliveryRouter(connection_registry)
"""Process-wide router bound to the default connection registry."""
