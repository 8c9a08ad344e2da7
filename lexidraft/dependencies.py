"""
FastAPI dependencies shared by the HTTP producers.

The realtime objects live on ``app.state`` (see ``lexidraft.application``)
so that every request talks to the same registry as the WebSocket
endpoint.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security.utils import get_authorization_scheme_param

from lexidraft.auth import CredentialVerifier, credential_verifier
from lexidraft.exceptions import AuthenticationError
from lexidraft.logging import set_log_context
from lexidraft.managers.connection_registry import (
    ConnectionRegistry,
    connection_registry,
)
from lexidraft.managers.delivery_router import DeliveryRouter, delivery_router
from lexidraft.schemas.identity import SubjectIdentity


def get_connection_registry(request: Request) -> ConnectionRegistry:
    return getattr(request.app.state, "connection_registry", connection_registry)


def get_delivery_router(request: Request) -> DeliveryRouter:
    return getattr(request.app.state, "delivery_router", delivery_router)


def get_credential_verifier(request: Request) -> CredentialVerifier:
    return getattr(request.app.state, "credential_verifier", credential_verifier)


async def authenticated_subject(
    request: Request,
    verifier: Annotated[CredentialVerifier, Depends(get_credential_verifier)],
) -> SubjectIdentity:
    """
    Resolve the caller from the ``Authorization: Bearer`` header.

    Raises:
        HTTPException: 401 when the header is missing or the token is
            rejected.
    """
    scheme, token = get_authorization_scheme_param(
        request.headers.get("authorization", "")
    )
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        identity = verifier.decode(token)
    except AuthenticationError as ex:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=ex.reason,
            headers={"WWW-Authenticate": "Bearer"},
        )

    set_log_context(user_id=identity.subject)
    return identity


def require_roles(*roles: str):  # type: ignore[no-untyped-def]
    """
    Create a dependency that requires the caller to have ALL ``roles``.

    Example:
        ```python
        @router.post("/broadcast", dependencies=[Depends(require_roles("admin"))])
        async def broadcast(): ...
        ```

    Raises:
        HTTPException: 401 if not authenticated, 403 if a role is missing.
    """

    async def dependency(
        identity: Annotated[SubjectIdentity, Depends(authenticated_subject)],
    ) -> SubjectIdentity:
        if not all(identity.has_role(role) for role in roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required roles: {list(roles)}",
            )
        return identity

    return dependency
