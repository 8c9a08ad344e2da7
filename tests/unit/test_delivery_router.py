"""
Tests for the delivery router.

Covers per-user, multi-user and broadcast delivery, skipping of closed
connections and isolation of failing writes.
"""

import pytest
from starlette.websockets import WebSocketDisconnect

from lexidraft.schemas.messages import BroadcastMessage, NotificationMessage
from tests.mocks.websocket_mocks import (
    create_failing_websocket,
    create_mock_websocket,
)


@pytest.fixture
def notification():
    return NotificationMessage(data={"title": "Contract signed"})


class TestSendToUser:
    @pytest.mark.asyncio
    async def test_no_connections_returns_false(self, delivery, notification):
        assert await delivery.send_to_user("42", notification) is False

    @pytest.mark.asyncio
    async def test_writes_to_every_device(self, registry, delivery, notification):
        phone = create_mock_websocket()
        laptop = create_mock_websocket()
        registry.add("42", phone)
        registry.add("42", laptop)

        assert await delivery.send_to_user(42, notification) is True

        expected = {"type": "notification", "data": {"title": "Contract signed"}}
        phone.send_json.assert_awaited_once_with(expected)
        laptop.send_json.assert_awaited_once_with(expected)

    @pytest.mark.asyncio
    async def test_skips_closed_connection(self, registry, delivery, notification):
        closed = create_mock_websocket(open=False)
        registry.add("42", closed)

        assert await delivery.send_to_user("42", notification) is False
        closed.send_json.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_write_does_not_block_others(
        self, registry, delivery, notification
    ):
        broken = create_failing_websocket(RuntimeError("socket closed"))
        healthy = create_mock_websocket()
        registry.add("42", broken)
        registry.add("42", healthy)

        # Attempted on an open connection, so still reported as delivered
        assert await delivery.send_to_user("42", notification) is True
        healthy.send_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_router_does_not_mutate_registry(
        self, registry, delivery, notification
    ):
        broken = create_failing_websocket(WebSocketDisconnect(code=1006))
        registry.add("42", broken)

        await delivery.send_to_user("42", notification)

        assert registry.get("42") == {broken}


class TestSendToUsers:
    @pytest.mark.asyncio
    async def test_fan_out(self, registry, delivery, notification):
        ws1 = create_mock_websocket()
        ws2 = create_mock_websocket()
        registry.add("1", ws1)
        registry.add("2", ws2)

        assert await delivery.send_to_users(["1", "2", "3"], notification) is True
        ws1.send_json.assert_awaited_once()
        ws2.send_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_duplicate_subjects_delivered_once(
        self, registry, delivery, notification
    ):
        ws = create_mock_websocket()
        registry.add("1", ws)

        await delivery.send_to_users([1, "1", 1], notification)

        ws.send_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_nobody_connected(self, delivery, notification):
        assert await delivery.send_to_users(["1", "2"], notification) is False

    @pytest.mark.asyncio
    async def test_exclude_connection(self, registry, delivery, notification):
        origin = create_mock_websocket()
        other_device = create_mock_websocket()
        registry.add("1", origin)
        registry.add("1", other_device)

        assert (
            await delivery.send_to_users(["1"], notification, exclude=origin)
            is True
        )
        origin.send_json.assert_not_called()
        other_device.send_json.assert_awaited_once()


class TestSendToConnections:
    @pytest.mark.asyncio
    async def test_connection_listed_twice_written_once(
        self, delivery, notification
    ):
        member = create_mock_websocket()

        delivered = await delivery.send_to_connections(
            [("2", member), ("2", member)], notification
        )

        assert delivered is True
        member.send_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_only_excluded_or_closed_targets(self, delivery, notification):
        origin = create_mock_websocket()
        closed = create_mock_websocket(open=False)

        delivered = await delivery.send_to_connections(
            [("1", origin), ("2", closed)], notification, exclude=origin
        )

        assert delivered is False
        origin.send_json.assert_not_called()
        closed.send_json.assert_not_called()

    def test_connections_of(self, registry, delivery):
        phone = create_mock_websocket()
        registry.add("1", phone)

        assert delivery.connections_of([1, "1", 2]) == [("1", phone)]


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_no_connections(self, delivery):
        assert await delivery.broadcast(BroadcastMessage(data="maintenance")) == 0

    @pytest.mark.asyncio
    async def test_counts_open_connections(self, registry, delivery):
        sockets = [create_mock_websocket() for _ in range(3)]
        registry.add("1", sockets[0])
        registry.add("1", sockets[1])
        registry.add("2", sockets[2])
        registry.add("3", create_mock_websocket(open=False))

        recipients = await delivery.broadcast(BroadcastMessage(data="maintenance"))

        assert recipients == 3
        for ws in sockets:
            ws.send_json.assert_awaited_once_with(
                {"type": "broadcast", "data": "maintenance"}
            )

    @pytest.mark.asyncio
    async def test_failed_writes_not_counted(self, registry, delivery):
        registry.add("1", create_failing_websocket(ConnectionError("reset")))
        registry.add("2", create_failing_websocket(ValueError("unexpected")))
        registry.add("3", create_mock_websocket())

        assert await delivery.broadcast(BroadcastMessage(data={})) == 1
