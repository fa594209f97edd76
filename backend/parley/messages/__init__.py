"""Message persistence: stored message schemas and the two store backends."""

from .base import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MAX_SEARCH_RESULTS, MessageStore
from .memory_store import InMemoryMessageStore
from .schemas import (
    Attachment,
    PrivateMessage,
    PrivateMessageDraft,
    PrivateScope,
    Reaction,
    RoomMessage,
    RoomMessageDraft,
    RoomScope,
)
from .service import create_message_store, get_message_store, set_message_store

__all__ = [
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "MAX_SEARCH_RESULTS",
    "MessageStore",
    "InMemoryMessageStore",
    "Attachment",
    "PrivateMessage",
    "PrivateMessageDraft",
    "PrivateScope",
    "Reaction",
    "RoomMessage",
    "RoomMessageDraft",
    "RoomScope",
    "create_message_store",
    "get_message_store",
    "set_message_store",
]
