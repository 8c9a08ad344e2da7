"""
Prometheus metrics for the realtime WebSocket layer.

Tracks connection lifecycle, authentication outcomes, inbound message
rates and per-connection delivery outcomes of the delivery router.
"""

from lexidraft.utils.metrics._helpers import (
    _get_or_create_counter,
    _get_or_create_gauge,
)

# Connection Metrics
ws_connections_active = _get_or_create_gauge(
    "ws_connections_active", "Number of open WebSocket connections"
)

ws_connections_authenticated = _get_or_create_gauge(
    "ws_connections_authenticated",
    "Number of authenticated WebSocket connections",
)

ws_registered_users = _get_or_create_gauge(
    "ws_registered_users",
    "Distinct users with at least one authenticated connection",
)

ws_connections_total = _get_or_create_counter(
    "ws_connections_total",
    "Total WebSocket connections",
    ["status"],  # accepted, auth_timeout
)

ws_auth_attempts_total = _get_or_create_counter(
    "ws_auth_attempts_total",
    "In-band WebSocket authentication attempts",
    ["result"],  # success, or the failure reason
)

# Message Metrics
ws_messages_received_total = _get_or_create_counter(
    "ws_messages_received_total",
    "Total WebSocket messages received",
    ["type"],
)

ws_messages_invalid_total = _get_or_create_counter(
    "ws_messages_invalid_total", "Inbound WebSocket messages dropped as invalid"
)

ws_messages_sent_total = _get_or_create_counter(
    "ws_messages_sent_total",
    "Outbound WebSocket writes by outcome",
    ["outcome"],  # delivered, failed, skipped
)

__all__ = [
    "ws_connections_active",
    "ws_connections_authenticated",
    "ws_connections_total",
    "ws_auth_attempts_total",
    "ws_messages_received_total",
    "ws_messages_invalid_total",
    "ws_messages_sent_total",
    "ws_registered_users",
]
