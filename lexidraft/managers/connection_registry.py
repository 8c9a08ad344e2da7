import threading
from typing import NamedTuple

from starlette.websockets import WebSocket

from lexidraft.logging import logger

SubjectId = int | str


class RegistryCount(NamedTuple):
    connections: int
    unique_users: int


class ConnectionRegistry:
    """
    Registry of authenticated WebSocket connections, keyed by subject.

    A subject is present only while it has at least one live connection;
    empty entries are pruned as soon as the last connection is removed.
    Subject ids are normalised to ``str`` so ``42`` and ``"42"`` share an
    entry.

    All access goes through a single lock, so two connections of the same
    subject authenticating at once both end up registered even when the
    server runs handlers on several threads.
    """

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}
        self._total = 0
        self._lock = threading.Lock()

    @staticmethod
    def _key(subject: SubjectId) -> str:
        return str(subject)

    def add(self, subject: SubjectId, websocket: WebSocket) -> bool:
        """
        Associate ``websocket`` with ``subject``.

        Idempotent: adding the same pair twice keeps one association.

        Returns:
            True if a new association was created.
        """
        key = self._key(subject)
        with self._lock:
            connections = self._connections.setdefault(key, set())
            if websocket in connections:
                return False
            connections.add(websocket)
            self._total += 1

        logger.debug(
            f"websocket object ({id(websocket)}) registered for subject {key}"
        )
        return True

    def remove(self, subject: SubjectId, websocket: WebSocket) -> bool:
        """
        Drop the association between ``subject`` and ``websocket``.

        Removing a pair that isn't registered is a no-op.

        Returns:
            True if an association was removed.
        """
        key = self._key(subject)
        with self._lock:
            connections = self._connections.get(key)
            if connections is None or websocket not in connections:
                return False

            connections.discard(websocket)
            self._total -= 1
            if not connections:
                del self._connections[key]

        logger.debug(
            f"websocket object ({id(websocket)}) removed for subject {key}"
        )
        return True

    def get(self, subject: SubjectId) -> set[WebSocket]:
        """Return a snapshot of the subject's connections (empty if none)."""
        with self._lock:
            return set(self._connections.get(self._key(subject), ()))

    def is_connected(self, subject: SubjectId) -> bool:
        with self._lock:
            return self._key(subject) in self._connections

    def subjects(self) -> list[str]:
        with self._lock:
            return list(self._connections)

    def all_connections(self) -> list[tuple[str, WebSocket]]:
        """Snapshot of every registered (subject, connection) pair."""
        with self._lock:
            return [
                (subject, websocket)
                for subject, connections in self._connections.items()
                for websocket in connections
            ]

    def count(self) -> RegistryCount:
        with self._lock:
            return RegistryCount(
                connections=self._total, unique_users=len(self._connections)
            )

    def clear(self) -> None:
        with self._lock:
            self._connections.clear()
            self._total = 0

    def __contains__(self, subject: SubjectId) -> bool:
        return self.is_connected(subject)

    def __len__(self) -> int:
        return self.count().connections


connection_registry = ConnectionRegistry()
"""Process-wide registry used by the WebSocket endpoint and producers."""
