"""
Prometheus metrics definitions.

All metrics are re-exported here so callers can write:

    from lexidraft.utils.metrics import ws_connections_active
"""

from lexidraft.utils.metrics.websocket import (
    ws_auth_attempts_total,
    ws_connections_active,
    ws_connections_authenticated,
    ws_connections_total,
    ws_messages_invalid_total,
    ws_messages_received_total,
    ws_messages_sent_total,
    ws_registered_users,
)

__all__ = [
    "ws_auth_attempts_total",
    "ws_connections_active",
    "ws_connections_authenticated",
    "ws_connections_total",
    "ws_messages_invalid_total",
    "ws_messages_received_total",
    "ws_messages_sent_total",
    "ws_registered_users",
]
