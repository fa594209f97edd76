"""Room registry: known room names and per-connection room membership.

A connection is in exactly one room once it has joined; joining another room
leaves the previous one in the same step. Rooms are never removed and the
default room always exists.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_ROOM = "global"


@dataclass(frozen=True)
class RoomTransition:
    """Result of a join: the room left (if any) and the room entered."""
    previous: Optional[str]
    current: str

    @property
    def changed(self) -> bool:
        return self.previous != self.current


class RoomRegistry:
    """Tracks room names and which room each connection currently occupies."""

    def __init__(self, default_room: str = DEFAULT_ROOM) -> None:
        self.default_room = default_room
        # Insertion-ordered set of room names (dict keys keep order)
        self._rooms: Dict[str, None] = {default_room: None}
        # connection_id -> current room
        self._membership: Dict[str, str] = {}

    def normalize(self, room_name: Optional[str]) -> str:
        """Trim a requested room name, falling back to the default room."""
        if not isinstance(room_name, str):
            return self.default_room
        return room_name.strip() or self.default_room

    def join(self, connection_id: str, room_name: Optional[str]) -> RoomTransition:
        """Move a connection into ``room_name``, leaving its previous room."""
        name = self.normalize(room_name)
        self._rooms.setdefault(name, None)
        previous = self._membership.get(connection_id)
        self._membership[connection_id] = name
        if previous != name:
            logger.info(f"[Rooms] {connection_id} moved {previous or '-'} -> {name}")
        return RoomTransition(previous=previous, current=name)

    def leave(self, connection_id: str) -> Optional[str]:
        """Drop a connection's membership; returns the room it was in."""
        return self._membership.pop(connection_id, None)

    def current_room(self, connection_id: str) -> Optional[str]:
        return self._membership.get(connection_id)

    def members(self, room_name: str) -> List[str]:
        """Connection ids currently in ``room_name``."""
        return [cid for cid, room in self._membership.items() if room == room_name]

    def list_rooms(self) -> List[str]:
        """Known room names, default room first, then in creation order."""
        return list(self._rooms)
