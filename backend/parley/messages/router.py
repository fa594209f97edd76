"""Message history HTTP endpoints.

Endpoints:
    GET /api/messages: Paginated room history (oldest first)
    GET /api/pm: Paginated private history between two usernames
    GET /api/search: Room search, newest first (max 50)

Cursor pagination:
    Clients pass the timestamp of the oldest message they already hold as
    ``before`` to fetch the next older page. Invalid cursors are ignored.
"""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from parley.config import get_config
from parley.errors import PersistenceError

from .base import DEFAULT_PAGE_SIZE
from .schemas import PrivateScope, RoomScope, parse_timestamp
from .service import get_message_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["messages"])

# Private history loads in smaller pages by default
DEFAULT_PM_PAGE_SIZE = 30


def _room_or_default(room: Optional[str]) -> str:
    default_room = get_config().rooms.default_room
    return (room or default_room).strip() or default_room


@router.get("/messages")
async def get_room_messages(
    room: Optional[str] = Query(None, description="Room name (defaults to the default room)"),
    before: Optional[str] = Query(None, description="ISO-8601 cursor; returns older messages"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, description="Page size, clamped to 100"),
) -> list:
    """Get a page of room history, oldest first.

    Example:
        GET /api/messages?room=dev&limit=50
        GET /api/messages?room=dev&before=2024-05-01T12:00:00.000Z
    """
    store = get_message_store()
    try:
        messages = await store.page(RoomScope(_room_or_default(room)), parse_timestamp(before), limit)
    except PersistenceError as e:
        logger.error(f"Fetch messages error: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch messages")
    return [m.model_dump() for m in messages]


@router.get("/pm")
async def get_private_messages(
    me: str = Query("", description="Requesting username"),
    peer: str = Query("", description="Other party's username"),
    before: Optional[str] = Query(None, description="ISO-8601 cursor; returns older messages"),
    limit: int = Query(DEFAULT_PM_PAGE_SIZE, ge=1, description="Page size, clamped to 100"),
) -> list:
    """Get a page of private history between ``me`` and ``peer``, oldest first."""
    me, peer = me.strip(), peer.strip()
    if not me or not peer:
        return []

    store = get_message_store()
    try:
        messages = await store.page(PrivateScope(me, peer), parse_timestamp(before), limit)
    except PersistenceError as e:
        logger.error(f"PM fetch error: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch private messages")
    return [m.model_dump() for m in messages]


@router.get("/search")
async def search_messages(
    room: Optional[str] = Query(None, description="Room to search"),
    q: str = Query("", description="Case-insensitive substring"),
) -> list:
    """Search a room's messages by body or sender, newest first."""
    query = q.strip()
    if not query:
        return []

    store = get_message_store()
    try:
        messages = await store.search(_room_or_default(room), query)
    except PersistenceError as e:
        logger.error(f"Search error: {e}")
        raise HTTPException(status_code=500, detail="Failed to search messages")
    return [m.model_dump() for m in messages]
