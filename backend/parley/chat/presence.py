"""Presence registry: which identities are connected, on which connections.

Thread Safety:
    Mutations are plain dict operations executed on the event loop without an
    intervening await, so each bind/unbind is atomic with respect to every
    other coroutine. NOT safe for use from multiple threads.
"""
import logging
from typing import Dict, List, Optional

from parley.auth.schemas import Identity
from parley.errors import DuplicateBindingError

from .schemas import RosterEntry

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Maps live connection ids to their bound identity."""

    def __init__(self) -> None:
        # connection_id -> Identity (insertion order = connect order)
        self._bindings: Dict[str, Identity] = {}

    def bind(self, connection_id: str, identity: Identity) -> bool:
        """Bind an identity to a connection.

        Returns:
            True for a new binding, False when the same identity was already
            bound (idempotent re-bind).

        Raises:
            DuplicateBindingError: If the connection is bound to another identity.
        """
        existing = self._bindings.get(connection_id)
        if existing is not None:
            if existing == identity:
                return False
            raise DuplicateBindingError(connection_id)
        self._bindings[connection_id] = identity
        logger.info(f"[Presence] {identity.username} bound to {connection_id}")
        return True

    def unbind(self, connection_id: str) -> Optional[Identity]:
        """Remove a binding and return the prior identity, or None if unbound."""
        identity = self._bindings.pop(connection_id, None)
        if identity is not None:
            logger.info(f"[Presence] {identity.username} unbound from {connection_id}")
        return identity

    def get(self, connection_id: str) -> Optional[Identity]:
        return self._bindings.get(connection_id)

    def is_bound(self, connection_id: str) -> bool:
        return connection_id in self._bindings

    def connections_for(self, username: str) -> List[str]:
        """All live connection ids bound to ``username``."""
        return [cid for cid, ident in self._bindings.items() if ident.username == username]

    def list_active(self) -> List[RosterEntry]:
        """Snapshot of the roster in connect order."""
        return [
            RosterEntry(username=ident.username, connectionId=cid, userId=ident.userId)
            for cid, ident in self._bindings.items()
        ]

    def __len__(self) -> int:
        return len(self._bindings)
