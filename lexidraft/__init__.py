# Uvicorn application factory <https://www.uvicorn.org/#application-factories>
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette import status

from lexidraft.auth import CredentialVerifier, credential_verifier
from lexidraft.logging import logger
from lexidraft.managers.connection_registry import (
    ConnectionRegistry,
    connection_registry,
)
from lexidraft.managers.delivery_router import DeliveryRouter, is_open
from lexidraft.managers.room_registry import RoomRegistry, room_registry
from lexidraft.middlewares.correlation_id import CorrelationIDMiddleware
from lexidraft.routing import collect_subrouters
from lexidraft.settings import app_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager for startup and shutdown.

    Shutdown closes every registered realtime connection with 1001 (going
    away) so clients reconnect to another instance, then empties the
    connection and room registries.
    """
    logger.info("Application startup: realtime delivery ready")

    yield  # Application runs here

    logger.info("Application shutdown: closing realtime connections")

    registry: ConnectionRegistry = app.state.connection_registry
    closed = 0
    for subject, websocket in registry.all_connections():
        if not is_open(websocket):
            continue
        try:
            await websocket.close(code=status.WS_1001_GOING_AWAY)
            closed += 1
        except RuntimeError as ex:
            logger.debug(f"Connection of user {subject} already closing: {ex}")
    registry.clear()
    app.state.room_registry.clear()

    logger.info(f"Closed {closed} realtime connection(s), shutdown complete")


def application(
    registry: ConnectionRegistry | None = None,
    rooms: RoomRegistry | None = None,
    verifier: CredentialVerifier | None = None,
    auth_timeout_seconds: float | None = None,
) -> FastAPI:
    """
    Initializes and configures the FastAPI application.

    The realtime objects are attached to ``app.state``:
    - ``connection_registry``: the registry of authenticated connections
      (defaults to the process-wide one used by producer helpers)
    - ``room_registry``: consultation room membership of those connections
    - ``delivery_router``: a router bound to the connection registry
    - ``credential_verifier``: verifies in-band and HTTP bearer tokens
    - ``ws_auth_timeout_seconds``: grace period before unauthenticated
      connections are closed

    Passing explicit instances gives tests an isolated application.
    Routers are collected from ``api/http`` and ``api/ws/consumers``;
    ``CorrelationIDMiddleware`` tags HTTP requests for logging.
    """
    app = FastAPI(
        title="LexiDraft realtime",
        description="Realtime notification and consultation chat delivery",
        version="1.0.0",
        lifespan=lifespan,
    )

    registry = registry if registry is not None else connection_registry
    app.state.connection_registry = registry
    app.state.room_registry = rooms if rooms is not None else room_registry
    app.state.delivery_router = DeliveryRouter(registry)
    app.state.credential_verifier = verifier or credential_verifier
    app.state.ws_auth_timeout_seconds = (
        auth_timeout_seconds
        if auth_timeout_seconds is not None
        else app_settings.WS_AUTH_TIMEOUT_SECONDS
    )

    app.include_router(collect_subrouters())

    app.add_middleware(CorrelationIDMiddleware)

    return app


app = application()  # Need for fastapi cli
