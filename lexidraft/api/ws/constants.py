from enum import StrEnum


class ConnectionState(StrEnum):
    """
    Lifecycle state of a realtime connection.

    UNAUTHENTICATED -> AUTHENTICATED -> CLOSED, or UNAUTHENTICATED -> CLOSED.
    CLOSED is terminal.
    """

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"
