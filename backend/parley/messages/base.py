"""Abstract message store contract.

Two backends implement it with identical observable behaviour:
    - DuckDBMessageStore: durable, ids from a database sequence
    - InMemoryMessageStore: process-local fallback, lost on restart

The router and the HTTP layer only ever talk to this interface.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Union

from .schemas import HistoryScope, MessageDraft, PrivateMessage, Reaction, RoomMessage

# Default page size for message history pagination
DEFAULT_PAGE_SIZE = 50

# Maximum page size to prevent abuse
MAX_PAGE_SIZE = 100

# Search results are capped regardless of how many messages match
MAX_SEARCH_RESULTS = 50

StoredMessage = Union[RoomMessage, PrivateMessage]


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_PAGE_SIZE
    return max(1, min(int(limit), MAX_PAGE_SIZE))


class MessageStore(ABC):
    """Append-and-query storage for chat messages."""

    #: Human-readable backend name used in logs and /health.
    backend_name: str = "abstract"

    @abstractmethod
    async def append(self, draft: MessageDraft) -> StoredMessage:
        """Assign id and timestamp, persist, and return the stored message.

        Raises:
            PersistenceError: If the backend cannot store the message.
        """

    @abstractmethod
    async def page(
        self,
        scope: HistoryScope,
        before: Optional[datetime] = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> List[StoredMessage]:
        """Return up to ``limit`` messages strictly older than ``before``.

        Without ``before`` the most recent messages are returned. Results are
        oldest first.
        """

    @abstractmethod
    async def search(self, room: str, text: str) -> List[StoredMessage]:
        """Case-insensitive substring search over body and sender, newest first."""

    @abstractmethod
    async def get(self, message_id: str) -> StoredMessage:
        """Fetch one message.

        Raises:
            MalformedRequestError: If the id is not a valid message id.
            MessageNotFoundError: If no such message exists.
        """

    @abstractmethod
    async def update_read_by(self, message_id: str, user_id: str) -> bool:
        """Add ``user_id`` to the message's read-by set.

        Returns:
            True if the set changed, False if the user was already present.
        """

    @abstractmethod
    async def update_reaction(
        self, message_id: str, user_id: str, reaction_type: str
    ) -> List[Reaction]:
        """Toggle the (user_id, reaction_type) reaction and return the full list."""

    @staticmethod
    def is_valid_id(message_id: object) -> bool:
        """Message ids are non-empty ASCII decimal strings in both backends."""
        return isinstance(message_id, str) and message_id.isascii() and message_id.isdigit()

    def close(self) -> None:
        """Release backend resources."""


def toggle_reaction(
    reactions: List[Reaction], user_id: str, reaction_type: str
) -> List[Reaction]:
    """Remove the (user, type) entry if present, otherwise append it."""
    remaining = [
        r for r in reactions
        if not (r.userId == user_id and r.type == reaction_type)
    ]
    if len(remaining) == len(reactions):
        remaining.append(Reaction(type=reaction_type, userId=user_id))
    return remaining
