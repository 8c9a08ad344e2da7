import os
import pkgutil
from importlib import import_module
from typing import Any, Awaitable, Callable

from fastapi import APIRouter

from lexidraft.api.ws.websocket import ConnectionContext
from lexidraft.logging import logger
from lexidraft.schemas.messages import ErrorMessage, OutboundMessage

HandlerCallableType = Callable[
    [ConnectionContext, Any], Awaitable[OutboundMessage | None]
]


class MessageRouter:
    """
    Router for authenticated WebSocket domain messages.

    Maps the ``type`` tag of an inbound frame to the handler that owns its
    business meaning, with optional role requirements per type.
    """

    def __init__(self) -> None:
        self.handlers_registry: dict[str, HandlerCallableType] = {}
        self.permissions_registry: dict[str, list[str]] = {}

    def register(self, *message_types: str, roles: list[str] | None = None):  # type: ignore[no-untyped-def]
        """
        Decorator registering a handler for one or more message types.

        Registering the same function twice is a no-op (module reloads);
        registering a different function for a taken type raises.

        Args:
            *message_types: ``type`` tags the handler serves.
            roles: Roles the subject must have ALL of. None means any
                authenticated subject.
        """

        def decorator(func: HandlerCallableType) -> HandlerCallableType:
            for message_type in message_types:
                if message_type in self.handlers_registry:
                    if self.handlers_registry[message_type] != func:
                        raise ValueError(
                            f"Different handler already registered for message type {message_type}"
                        )
                    continue

                self.handlers_registry[message_type] = func
                if roles:
                    self.permissions_registry[message_type] = roles

                logger.info(
                    f"Register {func.__module__}.{func.__name__} for message type: {message_type}"
                    + (f" with roles: {roles}" if roles else "")
                )

            return func

        return decorator

    def get_permissions(self, message_type: str) -> list[str]:
        return self.permissions_registry.get(message_type, [])

    def has_handler(self, message_type: str) -> bool:
        return message_type in self.handlers_registry

    async def handle_message(
        self, context: ConnectionContext, message: Any
    ) -> OutboundMessage | None:
        """
        Dispatch ``message`` to its handler.

        Returns:
            The reply for the sender, if any. Missing handlers and missing
            roles produce an ``error`` reply.
        """
        if not self.has_handler(message.type):
            logger.debug(f"No handler registered for message type {message.type}")
            return ErrorMessage(message=f"Unsupported message type: {message.type}")

        required_roles = self.get_permissions(message.type)
        if required_roles and not all(
            context.identity.has_role(role) for role in required_roles
        ):
            logger.info(
                f"Permission denied for user {context.subject} on {message.type}. "
                f"Required roles: {required_roles}"
            )
            return ErrorMessage(message="Permission denied")

        return await self.handlers_registry[message.type](context, message)


message_router = MessageRouter()

# Track registered modules to avoid duplicate logging on reload
_registered_http_modules: set[str] = set()
_registered_ws_modules: set[str] = set()


def collect_subrouters() -> APIRouter:
    """
    Collects the HTTP and WebSocket routers of the application.

    Every module under ``api/http`` and ``api/ws/consumers`` must expose a
    ``router``; each is included into one main ``APIRouter``.
    """
    main_router: APIRouter = APIRouter()

    app_dir = os.path.dirname(__file__)
    app_name = os.path.basename(app_dir)

    for _, module, _ in pkgutil.iter_modules([f"{app_dir}/api/http"]):
        api = import_module(f".{module}", package=f"{app_name}.api.http")
        main_router.include_router(api.router)

        if module not in _registered_http_modules:
            logger.info(f'Register "{module}" api')
            _registered_http_modules.add(module)

    for _, module, _ in pkgutil.iter_modules([f"{app_dir}/api/ws/consumers"]):
        ws_consumer = import_module(
            f".{module}", package=f"{app_name}.api.ws.consumers"
        )
        main_router.include_router(ws_consumer.router)

        if module not in _registered_ws_modules:
            logger.info(f'Register "{module}" websocket consumer')
            _registered_ws_modules.add(module)

    return main_router
