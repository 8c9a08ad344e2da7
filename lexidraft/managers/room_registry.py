import threading

from starlette.websockets import WebSocket

from lexidraft.logging import logger
from lexidraft.managers.connection_registry import SubjectId


class RoomRegistry:
    """
    Consultation room membership of authenticated connections.

    A connection joins rooms with ``join`` and leaves all of them when it
    closes. Rooms without members are pruned. Room ids are normalised to
    ``str`` like subject ids.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, dict[WebSocket, str]] = {}
        self._lock = threading.Lock()

    def join(
        self, room_id: SubjectId, subject: SubjectId, websocket: WebSocket
    ) -> bool:
        """
        Add ``websocket`` (owned by ``subject``) to ``room_id``.

        Returns:
            True if the connection was not yet a member.
        """
        key = str(room_id)
        with self._lock:
            members = self._rooms.setdefault(key, {})
            if websocket in members:
                return False
            members[websocket] = str(subject)

        logger.debug(f"websocket object ({id(websocket)}) joined room {key}")
        return True

    def leave(self, room_id: SubjectId, websocket: WebSocket) -> bool:
        key = str(room_id)
        with self._lock:
            members = self._rooms.get(key)
            if members is None or websocket not in members:
                return False
            del members[websocket]
            if not members:
                del self._rooms[key]
        return True

    def leave_all(self, websocket: WebSocket) -> list[str]:
        """
        Remove ``websocket`` from every room it joined.

        Returns:
            Ids of the rooms it left.
        """
        left = []
        with self._lock:
            for key in list(self._rooms):
                members = self._rooms[key]
                if websocket in members:
                    del members[websocket]
                    left.append(key)
                    if not members:
                        del self._rooms[key]
        return left

    def members(self, room_id: SubjectId) -> list[tuple[str, WebSocket]]:
        """Snapshot of the (subject, connection) pairs in ``room_id``."""
        with self._lock:
            return [
                (subject, websocket)
                for websocket, subject in self._rooms.get(
                    str(room_id), {}
                ).items()
            ]

    def rooms_of(self, websocket: WebSocket) -> set[str]:
        with self._lock:
            return {
                key for key, members in self._rooms.items() if websocket in members
            }

    def clear(self) -> None:
        with self._lock:
            self._rooms.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)


room_registry = RoomRegistry()
"""Process-wide room membership used by the WebSocket endpoint."""
