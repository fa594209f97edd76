"""Real-time chat core: presence, rooms, typing, annotations and routing."""

from .message_router import MessageRouter, get_message_router, set_message_router

__all__ = [
    "MessageRouter",
    "get_message_router",
    "set_message_router",
]
