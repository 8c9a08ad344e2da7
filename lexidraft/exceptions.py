"""
Custom exception classes for the application.

This module defines custom exceptions for better error handling and
more specific error reporting throughout the realtime layer.
"""


class AuthenticationError(Exception):
    """
    Authentication failed.

    Raised when a credential cannot be verified (malformed, expired,
    bad signature, missing claims).

    Attributes:
        reason: A machine-readable error code (e.g., 'token_expired')
        detail: Human-readable error details
    """

    def __init__(self, reason: str, detail: str) -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}")


class AuthorizationError(Exception):
    """
    Authorization failed.

    Raised when an authenticated subject lacks the role an operation needs.
    """

    pass


class MessageValidationError(Exception):
    """
    Inbound message could not be parsed.

    Raised when a WebSocket frame is not JSON, is not an object, or does
    not match any known message type.
    """

    pass
