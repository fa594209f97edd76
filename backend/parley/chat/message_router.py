"""Message router: the coordinating component of the chat core.

The router owns every piece of shared chat state and is the only way to
change it:
    - PresenceRegistry: connection -> identity
    - RoomRegistry: known rooms and connection -> current room
    - TypingAggregator: who is typing where
    - AnnotationMerger: read receipts and reactions

Connection lifecycle:
    connecting -> authenticating -> joined(room) -> joined(other room)* -> disconnected

Fan-out scopes:
    - Room messages and typing updates go to the members of one room
    - Presence, read and reaction events go to every connection

Ordering:
    Room messages are persisted and fanned out while holding a per-room lock,
    so members observe a room's messages in the order the router accepted
    them. Nothing is ordered across rooms or between room and private traffic.

Thread Safety:
    Registry mutations run on the event loop with no await between a mutation
    and the snapshot that is broadcast. NOT thread-safe.
"""
import asyncio
import logging
import time
from typing import Dict, List, NamedTuple, Optional

from fastapi import WebSocket

from parley.auth.schemas import Identity
from parley.errors import DuplicateBindingError, MalformedRequestError, PersistenceError
from parley.messages.base import MessageStore
from parley.messages.schemas import (
    Attachment,
    MessageDraft,
    PrivateMessage,
    PrivateMessageDraft,
    RoomMessageDraft,
    format_timestamp,
    stamp,
    utc_now_ms,
)

from .annotations import AnnotationMerger
from .manager import ConnectionManager, frame
from .presence import PresenceRegistry
from .rooms import DEFAULT_ROOM, RoomRegistry, RoomTransition
from .schemas import Ack, PresenceEvent
from .typing_indicator import TypingAggregator

logger = logging.getLogger(__name__)


class Departure(NamedTuple):
    """What a released connection leaves behind to announce."""
    connection_id: str
    identity: Optional[Identity]
    typing_room: Optional[str]


class MessageRouter:
    """Routes chat traffic between connections and the message store."""

    def __init__(
        self,
        store: MessageStore,
        connections: Optional[ConnectionManager] = None,
        default_room: str = DEFAULT_ROOM,
    ) -> None:
        self.store = store
        self.connections = connections or ConnectionManager()
        self.presence = PresenceRegistry()
        self.rooms = RoomRegistry(default_room)
        self.typing = TypingAggregator()
        self.annotations = AnnotationMerger(store, self.connections)
        self._room_locks: Dict[str, asyncio.Lock] = {}

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, websocket: WebSocket, identity: Identity) -> str:
        """Accept an authenticated WebSocket and place it in the default room.

        Returns:
            The connection id assigned to this WebSocket.
        """
        connection_id = await self.connections.accept(websocket)
        await self.attach(connection_id, identity)
        return connection_id

    async def attach(self, connection_id: str, identity: Identity) -> None:
        """Bind an identity to a registered connection and announce it."""
        try:
            newly_bound = self.presence.bind(connection_id, identity)
        except DuplicateBindingError:
            logger.warning(f"[Router] {connection_id} already bound; keeping first identity")
            newly_bound = False
        transition = self.rooms.join(connection_id, self.rooms.default_room)

        await self.connections.send(connection_id, frame("connected", {
            "connectionId": connection_id,
            "username": identity.username,
            "userId": identity.userId,
            "room": transition.current,
        }))

        if newly_bound:
            logger.info(f"{identity.username} joined the chat")
            await self._broadcast_roster()
            await self.connections.broadcast(frame(
                "user_joined",
                PresenceEvent(username=identity.username, connectionId=connection_id).model_dump(),
            ))
        await self._broadcast_rooms_list(transition.current)

    def release(self, connection_id: str) -> Departure:
        """Remove a connection from every registry without awaiting anything."""
        self.connections.detach(connection_id)
        identity = self.presence.unbind(connection_id)
        self.rooms.leave(connection_id)
        typing_room = self.typing.clear(connection_id)
        return Departure(connection_id, identity, typing_room)

    async def announce_departure(self, departure: Departure) -> None:
        """Tell the remaining connections that a connection went away."""
        connection_id, identity, typing_room = departure
        if identity is not None:
            logger.info(f"{identity.username} left the chat")
            await self.connections.broadcast(frame(
                "user_left",
                PresenceEvent(username=identity.username, connectionId=connection_id).model_dump(),
            ))
            await self._broadcast_roster()
        if typing_room is not None:
            await self._broadcast_typing(typing_room)

    async def disconnect(self, connection_id: str) -> Optional[Identity]:
        """Remove a connection from every registry, then announce it.

        All removals happen before the first await so that no concurrent
        event can observe a half-removed connection.
        """
        departure = self.release(connection_id)
        await self.announce_departure(departure)
        return departure.identity

    # =========================================================================
    # Rooms
    # =========================================================================

    async def join_room(self, connection_id: str, room_name: Optional[str]) -> RoomTransition:
        """Move a connection into a room and push the room list to that room."""
        transition = self.rooms.join(connection_id, room_name)
        typing_room = None
        if transition.changed and transition.previous is not None:
            typing_room = self.typing.clear(connection_id)

        if typing_room is not None:
            await self._broadcast_typing(typing_room)
        await self._broadcast_rooms_list(transition.current)
        return transition

    # =========================================================================
    # Messages
    # =========================================================================

    def _sender(self, connection_id: str) -> Identity:
        identity = self.presence.get(connection_id)
        if identity is None:
            raise MalformedRequestError(f"Connection {connection_id} is not authenticated")
        return identity

    def _room_lock(self, room: str) -> asyncio.Lock:
        lock = self._room_locks.get(room)
        if lock is None:
            lock = self._room_locks[room] = asyncio.Lock()
        return lock

    @staticmethod
    def _fallback_id() -> str:
        return str(int(time.time() * 1000))

    async def _persist(self, draft: MessageDraft):
        """Store a draft; on failure stamp it locally so delivery still happens."""
        try:
            return await self.store.append(draft)
        except PersistenceError as e:
            logger.error(f"Save message error: {e}")
            return stamp(draft, self._fallback_id(), utc_now_ms())

    async def send_to_room(
        self,
        connection_id: str,
        body: str,
        attachments: Optional[List[Attachment]] = None,
    ) -> Ack:
        """Persist a message and deliver it to the sender's current room.

        Returns:
            Ack carrying the assigned id and ISO-8601 timestamp.
        """
        identity = self._sender(connection_id)
        room = self.rooms.current_room(connection_id) or self.rooms.default_room
        draft = RoomMessageDraft(
            room=room,
            message=body,
            sender=identity.username,
            senderUserId=identity.userId,
            senderId=connection_id,
            attachments=list(attachments or []),
        )

        async with self._room_lock(room):
            message = await self._persist(draft)
            members = self.rooms.members(room)
            logger.info(f"[Router] Broadcasting message {message.id} to {len(members)} connections in {room}")
            await self.connections.broadcast(frame("receive_message", message.model_dump()), members)

        return Ack(ok=True, id=message.id, timestamp=format_timestamp(message.timestamp))

    def _resolve_recipient(self, to: Optional[str], to_username: Optional[str]):
        """Find live recipient connections: by connection id first, then by username."""
        if to and self.presence.is_bound(to):
            return [to], self.presence.get(to)
        if to_username:
            connection_ids = self.presence.connections_for(to_username)
            if connection_ids:
                return connection_ids, self.presence.get(connection_ids[0])
        return [], None

    async def send_private(
        self,
        connection_id: str,
        to: Optional[str],
        body: str,
        attachments: Optional[List[Attachment]] = None,
        to_username: Optional[str] = None,
    ) -> PrivateMessage:
        """Persist a private message, deliver it if the target is online, echo to sender.

        An offline target is not an error: the message is stored under the
        intended username and the echo confirms acceptance.
        """
        identity = self._sender(connection_id)
        recipient_ids, recipient = self._resolve_recipient(to, to_username)
        target_username = recipient.username if recipient else (to_username or None)
        if not target_username:
            raise MalformedRequestError("Private message needs a connected target or a username")

        draft = PrivateMessageDraft(
            message=body,
            sender=identity.username,
            senderUserId=identity.userId,
            senderId=connection_id,
            toUsername=target_username,
            toUserId=recipient.userId if recipient else None,
            toConnectionId=recipient_ids[0] if recipient_ids else None,
            attachments=list(attachments or []),
        )
        message = await self._persist(draft)

        outbound = frame("private_message", message.model_dump())
        deliver_to = [cid for cid in recipient_ids if cid != connection_id]
        if deliver_to:
            await self.connections.broadcast(outbound, deliver_to)
        else:
            logger.info(f"[Router] {target_username} is offline; private message {message.id} stored only")
        await self.connections.send(connection_id, outbound)
        return message

    # =========================================================================
    # Typing, read receipts, reactions
    # =========================================================================

    async def set_typing(self, connection_id: str, is_typing: bool) -> bool:
        """Update the sender's typing flag; re-broadcasts every room whose list changed."""
        identity = self.presence.get(connection_id)
        room = self.rooms.current_room(connection_id)
        if identity is None or room is None:
            return False
        changed_rooms = self.typing.set_typing(connection_id, identity.username, room, bool(is_typing))
        for changed in changed_rooms:
            await self._broadcast_typing(changed)
        return bool(changed_rooms)

    async def mark_read(self, connection_id: str, message_id: str) -> bool:
        identity = self.presence.get(connection_id)
        return await self.annotations.mark_read(message_id, identity.userId if identity else None)

    async def react(self, connection_id: str, message_id: str, reaction_type: str):
        identity = self.presence.get(connection_id)
        return await self.annotations.react(
            message_id, identity.userId if identity else None, reaction_type
        )

    # =========================================================================
    # Snapshots and broadcasts
    # =========================================================================

    def list_users(self) -> List[dict]:
        return [entry.model_dump() for entry in self.presence.list_active()]

    async def _broadcast_roster(self) -> None:
        await self.connections.broadcast(frame("user_list", self.list_users()))

    async def _broadcast_rooms_list(self, room: str) -> None:
        await self.connections.broadcast(
            frame("rooms_list", self.rooms.list_rooms()), self.rooms.members(room)
        )

    async def _broadcast_typing(self, room: str) -> None:
        await self.connections.broadcast(
            frame("typing_users", self.typing.snapshot(room)), self.rooms.members(room)
        )


# =============================================================================
# Process-wide instance
# =============================================================================

_message_router: Optional[MessageRouter] = None


def get_message_router() -> MessageRouter:
    """Return the process-wide router, building it around the configured store."""
    global _message_router
    if _message_router is None:
        from parley.config import get_config
        from parley.messages.service import get_message_store

        _message_router = MessageRouter(
            get_message_store(),
            default_room=get_config().rooms.default_room,
        )
    return _message_router


def set_message_router(router: Optional[MessageRouter]) -> None:
    """Install (or clear, with None) the process-wide router."""
    global _message_router
    _message_router = router
