from typing import Dict, Set

from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionRegistry:
    """In-memory room membership for live connections.

    Two indexes are kept in step: connection_id -> rooms and
    room_id -> connections. A room exists only while it has at least one
    member; empty entries are pruned on every leave and disconnect.
    Nothing here is persisted, a restart drops all membership.
    """

    def __init__(self):
        self._connections: Dict[str, Set[str]] = {}
        self._rooms: Dict[str, Set[str]] = {}

    def on_connect(self, connection_id: str):
        if connection_id in self._connections:
            logger.debug(f"Connection {connection_id} already registered")
            return
        self._connections[connection_id] = set()
        logger.debug(f"Registered connection {connection_id} (connections: {len(self._connections)})")

    def on_disconnect(self, connection_id: str) -> Set[str]:
        """Remove the connection from every room it joined and forget it.

        Returns the rooms it was a member of. Calling it again for the same
        connection returns an empty set.
        """
        rooms = self._connections.pop(connection_id, None)
        if rooms is None:
            logger.debug(f"Connection {connection_id} not registered, nothing to clean up")
            return set()

        for room_id in rooms:
            self._discard_member(room_id, connection_id)
        logger.debug(f"Unregistered connection {connection_id}, left {len(rooms)} room(s)")
        return rooms

    def join(self, connection_id: str, room_id: str) -> bool:
        """Add the connection to the room. Returns False if it was already a member."""
        rooms = self._connections.setdefault(connection_id, set())
        if room_id in rooms:
            return False
        rooms.add(room_id)
        self._rooms.setdefault(room_id, set()).add(connection_id)
        logger.debug(f"Connection {connection_id} joined room {room_id} (members: {len(self._rooms[room_id])})")
        return True

    def leave(self, connection_id: str, room_id: str) -> bool:
        """Remove the connection from the room. Returns False if it was not a member."""
        rooms = self._connections.get(connection_id)
        if not rooms or room_id not in rooms:
            return False
        rooms.discard(room_id)
        self._discard_member(room_id, connection_id)
        logger.debug(f"Connection {connection_id} left room {room_id}")
        return True

    def _discard_member(self, room_id: str, connection_id: str):
        members = self._rooms.get(room_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room_id]
            logger.debug(f"Room {room_id} is empty, pruned")

    def members(self, room_id: str) -> Set[str]:
        return set(self._rooms.get(room_id, ()))

    def rooms_of(self, connection_id: str) -> Set[str]:
        return set(self._connections.get(connection_id, ()))

    def is_member(self, connection_id: str, room_id: str) -> bool:
        return connection_id in self._rooms.get(room_id, ())

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections
