"""
Pytest configuration and fixtures for testing.

Environment variables are set before any lexidraft module is imported,
since settings are read at import time.
"""

import os
import tempfile
import time

import pytest

os.environ.setdefault("JWT_SECRET", "test-secret-for-lexidraft-realtime")
os.environ.setdefault("LOG_LEVEL", "CRITICAL")
os.environ.setdefault(
    "LOG_FILE_PATH",
    os.path.join(tempfile.gettempdir(), "lexidraft_test_errors.log"),
)

TEST_SECRET = "unit-test-shared-secret-for-lexidraft-realtime"


@pytest.fixture
def verifier():
    """
    Provides a CredentialVerifier bound to a test-only secret.

    Returns:
        CredentialVerifier: verifier with zero leeway
    """
    from lexidraft.auth import CredentialVerifier

    return CredentialVerifier(TEST_SECRET)


@pytest.fixture
def make_token(verifier):
    """
    Factory signing access tokens with the test verifier.

    Returns:
        Callable: make_token(subject, role=None, expires_in=3600)
    """

    def _make(subject, role=None, expires_in=3600, token_type="access"):
        return verifier.issue(
            subject, role=role, expires_in=expires_in, token_type=token_type
        )

    return _make


@pytest.fixture
def sign_claims():
    """
    Factory signing arbitrary claims with the test secret.

    Returns:
        Callable: sign_claims(claims, secret=TEST_SECRET) -> str
    """
    from jwcrypto import jwk, jwt

    def _sign(claims, secret=TEST_SECRET):
        token = jwt.JWT(header={"alg": "HS256", "typ": "JWT"}, claims=claims)
        token.make_signed_token(jwk.JWK.from_password(secret))
        return token.serialize()

    return _sign


@pytest.fixture
def expired_claims():
    """Claims for subject 42 that expired an hour ago."""
    now = int(time.time())
    return {"sub": "42", "type": "access", "iat": now - 7200, "exp": now - 3600}


@pytest.fixture
def registry():
    """
    Provides a fresh, isolated ConnectionRegistry.

    Returns:
        ConnectionRegistry: empty registry
    """
    from lexidraft.managers.connection_registry import ConnectionRegistry

    return ConnectionRegistry()


@pytest.fixture
def rooms():
    """
    Provides a fresh, isolated RoomRegistry.

    Returns:
        RoomRegistry: no rooms
    """
    from lexidraft.managers.room_registry import RoomRegistry

    return RoomRegistry()


@pytest.fixture
def delivery(registry):
    """
    Provides a DeliveryRouter bound to the isolated registry.

    Returns:
        DeliveryRouter: router reading ``registry``
    """
    from lexidraft.managers.delivery_router import DeliveryRouter

    return DeliveryRouter(registry)


@pytest.fixture
def mock_websocket():
    """
    Provides an open mock WebSocket connection.

    Returns:
        MagicMock: Mocked WebSocket instance
    """
    from tests.mocks.websocket_mocks import create_mock_websocket

    return create_mock_websocket()


@pytest.fixture
def app(registry, rooms, verifier):
    """
    Create an application isolated from the process-wide registry.

    Returns:
        FastAPI: application wired to ``registry``, ``rooms`` and ``verifier``
    """
    from lexidraft import application

    return application(
        registry=registry,
        rooms=rooms,
        verifier=verifier,
        auth_timeout_seconds=5,
    )


@pytest.fixture
def client(app):
    """
    Create a test client that shares one event loop between HTTP requests
    and WebSocket sessions.

    Yields:
        TestClient: FastAPI test client instance.
    """
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client
