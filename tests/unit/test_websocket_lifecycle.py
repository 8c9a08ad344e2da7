"""
Tests for the per-connection lifecycle handler.

The endpoint is driven directly with mock WebSockets so that every state
transition can be inspected.
"""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from lexidraft.api.ws.constants import ConnectionState
from lexidraft.api.ws.websocket import AuthWebSocketEndpoint
from lexidraft.constants import (
    WS_AUTH_TIMEOUT_REASON,
    WS_CONNECTED_MESSAGE,
    WS_POLICY_VIOLATION_CODE,
)
from tests.mocks.websocket_mocks import create_mock_websocket


def sent_messages(websocket):
    return [call.args[0] for call in websocket.send_json.await_args_list]


@pytest.fixture
def make_endpoint(registry, rooms, delivery, verifier):
    """
    Factory building an endpoint whose app state points at test objects.

    Returns:
        Callable: make_endpoint(timeout=0) -> AuthWebSocketEndpoint
    """

    def _make(timeout=0):
        state = SimpleNamespace(
            connection_registry=registry,
            room_registry=rooms,
            delivery_router=delivery,
            credential_verifier=verifier,
            ws_auth_timeout_seconds=timeout,
        )
        scope = {"type": "websocket", "app": SimpleNamespace(state=state)}
        return AuthWebSocketEndpoint(scope=scope, receive=None, send=None)  # type: ignore[arg-type]

    return _make


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_greets_unauthenticated(self, make_endpoint):
        endpoint = make_endpoint()
        ws = create_mock_websocket()

        await endpoint.on_connect(ws)

        ws.accept.assert_awaited_once()
        assert endpoint.state is ConnectionState.UNAUTHENTICATED
        assert sent_messages(ws) == [
            {"type": "connected", "message": WS_CONNECTED_MESSAGE}
        ]


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_success_registers_connection(
        self, make_endpoint, make_token, registry
    ):
        endpoint = make_endpoint()
        ws = create_mock_websocket()
        await endpoint.on_connect(ws)

        await endpoint.on_receive(
            ws, json.dumps({"type": "authenticate", "token": make_token(42)})
        )

        assert endpoint.state is ConnectionState.AUTHENTICATED
        assert registry.get(42) == {ws}
        assert sent_messages(ws)[-1]["type"] == "auth_success"
        assert sent_messages(ws)[-1]["userId"] == "42"

    @pytest.mark.asyncio
    async def test_failure_allows_retry(
        self, make_endpoint, make_token, registry, sign_claims, expired_claims
    ):
        endpoint = make_endpoint()
        ws = create_mock_websocket()
        await endpoint.on_connect(ws)

        await endpoint.on_receive(
            ws,
            json.dumps(
                {"type": "authenticate", "token": sign_claims(expired_claims)}
            ),
        )

        assert endpoint.state is ConnectionState.UNAUTHENTICATED
        assert registry.count().unique_users == 0
        assert sent_messages(ws)[-1] == {
            "type": "auth_error",
            "message": "Authentication failed",
            "reason": "token_expired",
        }
        ws.close.assert_not_called()

        await endpoint.on_receive(
            ws, json.dumps({"type": "authenticate", "token": make_token(42)})
        )

        assert endpoint.state is ConnectionState.AUTHENTICATED
        assert registry.get("42") == {ws}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "frame",
        [
            {"type": "authenticate"},
            {"type": "authenticate", "token": None},
            {"type": "authenticate", "token": 12345},
        ],
    )
    async def test_missing_token_answered_with_auth_error(
        self, make_endpoint, registry, frame
    ):
        endpoint = make_endpoint()
        ws = create_mock_websocket()
        await endpoint.on_connect(ws)

        await endpoint.on_receive(ws, json.dumps(frame))

        assert endpoint.state is ConnectionState.UNAUTHENTICATED
        assert registry.count().connections == 0
        assert sent_messages(ws)[-1] == {
            "type": "auth_error",
            "message": "Authentication failed",
            "reason": "missing_token",
        }

    @pytest.mark.asyncio
    async def test_second_authenticate_rejected(
        self, make_endpoint, make_token, registry
    ):
        endpoint = make_endpoint()
        ws = create_mock_websocket()
        await endpoint.on_connect(ws)
        await endpoint.authenticate(ws, make_token(42))

        await endpoint.authenticate(ws, make_token(7))

        assert endpoint.identity.subject == "42"
        assert registry.get("7") == set()
        assert sent_messages(ws)[-1]["reason"] == "already_authenticated"


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect_unregisters(self, make_endpoint, make_token, registry):
        endpoint = make_endpoint()
        ws = create_mock_websocket()
        await endpoint.on_connect(ws)
        await endpoint.authenticate(ws, make_token(42))

        await endpoint.on_disconnect(ws, 1000)

        assert endpoint.state is ConnectionState.CLOSED
        assert registry.get("42") == set()

    @pytest.mark.asyncio
    async def test_disconnect_leaves_rooms(self, make_endpoint, make_token, rooms):
        endpoint = make_endpoint()
        ws = create_mock_websocket()
        await endpoint.on_connect(ws)
        await endpoint.authenticate(ws, make_token(42))
        rooms.join(7, "42", ws)
        rooms.join(8, "42", ws)

        await endpoint.on_disconnect(ws, 1000)

        assert rooms.members(7) == []
        assert rooms.members(8) == []
        assert len(rooms) == 0

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_endpoint, make_token, registry):
        endpoint = make_endpoint()
        ws = create_mock_websocket()
        other_device = create_mock_websocket()
        registry.add("42", other_device)
        await endpoint.on_connect(ws)
        await endpoint.authenticate(ws, make_token(42))

        await endpoint.close(ws)
        await endpoint.on_disconnect(ws, 1000)
        endpoint.mark_closed(ws)

        assert registry.get("42") == {other_device}
        ws.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unauthenticated_disconnect(self, make_endpoint, registry):
        endpoint = make_endpoint()
        ws = create_mock_websocket()
        await endpoint.on_connect(ws)

        await endpoint.on_disconnect(ws, 1006)

        assert endpoint.state is ConnectionState.CLOSED
        assert registry.count().connections == 0

    @pytest.mark.asyncio
    async def test_messages_after_close_are_ignored(self, make_endpoint):
        endpoint = make_endpoint()
        ws = create_mock_websocket()
        await endpoint.on_connect(ws)
        endpoint.mark_closed(ws)
        ws.send_json.reset_mock()

        await endpoint.on_receive(ws, json.dumps({"type": "ping"}))

        ws.send_json.assert_not_called()


class TestAuthTimeout:
    @pytest.mark.asyncio
    async def test_unauthenticated_connection_closed_after_grace_period(
        self, make_endpoint
    ):
        endpoint = make_endpoint(timeout=0.05)
        ws = create_mock_websocket()
        await endpoint.on_connect(ws)

        await asyncio.sleep(0.2)

        ws.close.assert_awaited_once_with(
            code=WS_POLICY_VIOLATION_CODE, reason=WS_AUTH_TIMEOUT_REASON
        )
        assert endpoint.state is ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_close_failure_does_not_escape_timer(self, make_endpoint):
        endpoint = make_endpoint(timeout=0.05)
        ws = create_mock_websocket()
        ws.close = AsyncMock(side_effect=OSError("Broken pipe"))
        await endpoint.on_connect(ws)
        timer = endpoint._auth_timer

        await asyncio.sleep(0.2)

        assert timer.done()
        assert timer.exception() is None
        ws.close.assert_awaited_once()
        assert endpoint.state is ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_authenticating_cancels_timer(self, make_endpoint, make_token):
        endpoint = make_endpoint(timeout=0.05)
        ws = create_mock_websocket()
        await endpoint.on_connect(ws)
        await endpoint.authenticate(ws, make_token(42))

        await asyncio.sleep(0.2)

        ws.close.assert_not_called()
        assert endpoint.state is ConnectionState.AUTHENTICATED


class TestMessageHandling:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "message, reply",
        [
            ({"type": "heartbeat"}, {"type": "heartbeat"}),
            ({"type": "ping", "timestamp": 1700000000}, {"type": "pong", "timestamp": 1700000000}),
        ],
    )
    async def test_heartbeat_without_authentication(
        self, make_endpoint, message, reply
    ):
        endpoint = make_endpoint()
        ws = create_mock_websocket()
        await endpoint.on_connect(ws)

        await endpoint.on_receive(ws, json.dumps(message))

        assert sent_messages(ws)[-1] == reply
        assert endpoint.state is ConnectionState.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_domain_message_requires_authentication(self, make_endpoint):
        endpoint = make_endpoint()
        ws = create_mock_websocket()
        await endpoint.on_connect(ws)

        await endpoint.on_receive(
            ws, json.dumps({"type": "videoSignal", "to": 2, "signal": "x"})
        )

        assert sent_messages(ws)[-1] == {
            "type": "error",
            "message": "Not authenticated",
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "frame", ["not json", "[]", '{"no": "type"}', '{"type": "bogus"}']
    )
    async def test_malformed_frame_keeps_state(self, make_endpoint, frame):
        endpoint = make_endpoint()
        ws = create_mock_websocket()
        await endpoint.on_connect(ws)

        await endpoint.on_receive(ws, frame)

        assert sent_messages(ws)[-1]["type"] == "error"
        assert endpoint.state is ConnectionState.UNAUTHENTICATED
        ws.close.assert_not_called()
