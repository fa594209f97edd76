"""In-process fallback message store.

Used when no durable store is configured (or it cannot be opened). State lives
in process memory and is lost on restart.

Retention:
    - Room messages share one bounded sequence; once it exceeds the cap the
      oldest message is evicted.
    - Private messages are kept without a cap.

Known gap:
    Ids are the wall-clock time in milliseconds. Two messages appended within
    the same millisecond receive the same id; lookups then resolve to the most
    recent of them. Timestamps, by contrast, are strictly increasing, so
    pagination stays gap-free.
"""
import logging
import re
import time
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional

from parley.errors import MalformedRequestError, MessageNotFoundError

from .base import (
    DEFAULT_PAGE_SIZE,
    MAX_SEARCH_RESULTS,
    MessageStore,
    StoredMessage,
    clamp_limit,
    toggle_reaction,
)
from .schemas import (
    HistoryScope,
    MessageDraft,
    Reaction,
    RoomMessage,
    RoomMessageDraft,
    next_timestamp,
    stamp,
)

logger = logging.getLogger(__name__)

# Room history retained by the fallback store
DEFAULT_ROOM_HISTORY_CAP = 100


class InMemoryMessageStore(MessageStore):
    """Non-durable store with linear filtering over Python lists."""

    backend_name = "memory"

    def __init__(self, room_history_cap: int = DEFAULT_ROOM_HISTORY_CAP) -> None:
        self.room_history_cap = room_history_cap
        self._room_messages: Deque[StoredMessage] = deque()
        self._private_messages: List[StoredMessage] = []
        self._last_ts: Optional[datetime] = None

    @staticmethod
    def _wall_clock_id() -> str:
        return str(int(time.time() * 1000))

    async def append(self, draft: MessageDraft) -> StoredMessage:
        self._last_ts = next_timestamp(self._last_ts)
        message = stamp(draft, self._wall_clock_id(), self._last_ts)

        if isinstance(draft, RoomMessageDraft):
            self._room_messages.append(message)
            while len(self._room_messages) > self.room_history_cap:
                evicted = self._room_messages.popleft()
                logger.debug(f"[Store] Evicted message {evicted.id} from fallback history")
        else:
            self._private_messages.append(message)

        return message.model_copy(deep=True)

    def _all_messages(self) -> List[StoredMessage]:
        return sorted(
            list(self._room_messages) + self._private_messages,
            key=lambda m: m.timestamp,
        )

    async def page(
        self,
        scope: HistoryScope,
        before: Optional[datetime] = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> List[StoredMessage]:
        limit = clamp_limit(limit)
        matching = [m for m in self._all_messages() if scope.matches(m)]
        if before is not None:
            matching = [m for m in matching if m.timestamp < before]
        return [m.model_copy(deep=True) for m in matching[-limit:]]

    async def search(self, room: str, text: str) -> List[StoredMessage]:
        text = (text or "").strip()
        if not text:
            return []
        pattern = re.compile(re.escape(text), re.IGNORECASE)
        hits = [
            m for m in reversed(self._room_messages)
            if isinstance(m, RoomMessage)
            and m.room == room
            and (pattern.search(m.message) or pattern.search(m.sender))
        ]
        return [m.model_copy(deep=True) for m in hits[:MAX_SEARCH_RESULTS]]

    def _find(self, message_id: str) -> StoredMessage:
        if not self.is_valid_id(message_id):
            raise MalformedRequestError(f"Invalid message id: {message_id!r}")
        for message in reversed(self._all_messages()):
            if message.id == message_id:
                return message
        raise MessageNotFoundError(message_id)

    async def get(self, message_id: str) -> StoredMessage:
        return self._find(message_id).model_copy(deep=True)

    async def update_read_by(self, message_id: str, user_id: str) -> bool:
        message = self._find(message_id)
        if user_id in message.readBy:
            return False
        message.readBy = message.readBy + [user_id]
        return True

    async def update_reaction(
        self, message_id: str, user_id: str, reaction_type: str
    ) -> List[Reaction]:
        message = self._find(message_id)
        message.reactions = toggle_reaction(message.reactions, user_id, reaction_type)
        return [r.model_copy() for r in message.reactions]
