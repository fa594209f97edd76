"""Typing aggregator: per-room set of users currently typing.

A username is listed in at most one room at a time, even when it has several
connections in different rooms: the room it last signalled from wins. The
entry stays while any of that username's connections is still typing there.

There is no server-side expiry. A client that stops signalling without
sending ``typing=false`` stays listed until it disconnects.
"""
from typing import Dict, List, Optional, Set


class TypingAggregator:
    """Ephemeral typing state keyed by username, tracked per connection."""

    def __init__(self) -> None:
        # username -> room it is shown typing in (insertion order = signal order)
        self._room_of: Dict[str, str] = {}
        # username -> connection ids currently signalling typing
        self._typers: Dict[str, Set[str]] = {}
        # connection_id -> username
        self._username_of: Dict[str, str] = {}

    def set_typing(self, connection_id: str, username: str, room: str, is_typing: bool) -> List[str]:
        """Record a typing signal.

        Returns:
            Rooms whose snapshot changed, in the order they should be
            re-broadcast. Empty when the signal changed nothing.
        """
        if not is_typing:
            changed = self.clear(connection_id)
            return [changed] if changed is not None else []

        previous = self._room_of.get(username)
        if previous == room:
            if connection_id in self._typers[username]:
                return []
            self._typers[username].add(connection_id)
            self._username_of[connection_id] = username
            return []

        changed: List[str] = []
        if previous is not None:
            self._drop_username(username)
            changed.append(previous)
        self._room_of[username] = room
        self._typers[username] = {connection_id}
        self._username_of[connection_id] = username
        changed.append(room)
        return changed

    def _drop_username(self, username: str) -> None:
        for cid in self._typers.pop(username, set()):
            self._username_of.pop(cid, None)
        self._room_of.pop(username, None)

    def clear(self, connection_id: str) -> Optional[str]:
        """Stop counting a connection as typing.

        Returns:
            The room whose snapshot changed, or None if the username is still
            typing through another connection (or was never listed).
        """
        username = self._username_of.pop(connection_id, None)
        if username is None:
            return None
        typers = self._typers.get(username, set())
        typers.discard(connection_id)
        if typers:
            return None
        room = self._room_of.get(username)
        self._drop_username(username)
        return room

    def snapshot(self, room: str) -> List[str]:
        """Usernames typing in ``room``, in signal order."""
        return [username for username, current in self._room_of.items() if current == room]
