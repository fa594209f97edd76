"""Read receipts and reactions merged onto stored messages.

Both updates are idempotent set operations on the store. Results are
republished to every connection, not just the message's room.
"""
import logging
from typing import List, Optional

from parley.errors import MalformedRequestError, PersistenceError
from parley.messages.base import MessageStore
from parley.messages.schemas import Reaction

from .manager import ConnectionManager, frame

logger = logging.getLogger(__name__)


class AnnotationMerger:
    """Applies read/reaction updates and broadcasts the merged state."""

    def __init__(self, store: MessageStore, connections: ConnectionManager) -> None:
        self.store = store
        self.connections = connections

    async def mark_read(self, message_id: str, reader_user_id: Optional[str]) -> bool:
        """Record that ``reader_user_id`` read a message.

        Broadcasts ``message_read`` only when the read-by set actually changed,
        so repeated reads produce no traffic.

        Returns:
            True if a broadcast was sent.
        """
        if not reader_user_id:
            return False
        if not self.store.is_valid_id(message_id):
            logger.debug(f"[Annotations] Ignoring read for malformed id {message_id!r}")
            return False

        try:
            changed = await self.store.update_read_by(message_id, reader_user_id)
        except MalformedRequestError as e:
            logger.debug(f"[Annotations] Ignoring read: {e}")
            return False
        except PersistenceError as e:
            logger.error(f"Read receipt error: {e}")
            return False

        if changed:
            await self.connections.broadcast(
                frame("message_read", {"messageId": message_id, "userId": reader_user_id})
            )
        return changed

    async def react(
        self, message_id: str, user_id: Optional[str], reaction_type: str
    ) -> Optional[List[Reaction]]:
        """Toggle a reaction and broadcast the message's full reaction list.

        Two rapid toggles from the same user may land in either order; the
        final state is whatever the last one produced.

        Returns:
            The resulting reactions, or None if the request was ignored.
        """
        if not user_id or not reaction_type:
            return None
        if not self.store.is_valid_id(message_id):
            logger.debug(f"[Annotations] Ignoring reaction for malformed id {message_id!r}")
            return None

        try:
            reactions = await self.store.update_reaction(message_id, user_id, reaction_type)
        except MalformedRequestError as e:
            logger.debug(f"[Annotations] Ignoring reaction: {e}")
            return None
        except PersistenceError as e:
            logger.error(f"Reaction error: {e}")
            return None

        await self.connections.broadcast(frame("message_reaction", {
            "messageId": message_id,
            "reactions": [r.model_dump() for r in reactions],
        }))
        return reactions
