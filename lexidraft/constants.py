"""
Application-level constants for hardcoded protocol behaviour.

These values should NEVER be changed via environment variables. For
configurable values (secrets, timeouts, log levels) see
lexidraft/settings.py.
"""

# ============================================================================
# WebSocket Protocol Constants
# ============================================================================

# WebSocket close code for policy violations (RFC 6455 standard)
# Used when closing connections that never authenticated
WS_POLICY_VIOLATION_CODE = 1008

# Reason sent with the close frame when the authentication grace period ends
WS_AUTH_TIMEOUT_REASON = "Authentication timeout"

# Greeting sent on every raw connect, before authentication
WS_CONNECTED_MESSAGE = "Connected to LexiDraft WebSocket server"


# ============================================================================
# Logging
# ============================================================================

# Loki rejects log lines above this size
LOKI_MAX_LOG_SIZE_BYTES = 256 * 1024


# ============================================================================
# Credentials
# ============================================================================

# HS256 keys shorter than the hash output (256 bits) are refused by jwcrypto
JWT_MIN_SECRET_BYTES = 32
