"""WebSocket connection manager: the transport side of fan-out.

This module owns the live WebSocket objects, keyed by connection id, and knows
how to deliver a frame to one connection, to a chosen set, or to everyone.
It holds no chat state; rooms, presence and typing live in the MessageRouter.

Thread Safety:
    All methods run on the single server event loop; none may be called
    from another thread.

Delivery:
    - A fan-out sends to every target at once via asyncio.gather()
    - Connections whose send fails are detached so later broadcasts skip them;
      their own receive loop performs the full disconnect
    - Each send is bounded by a timeout, so a stalled client delays a room
      fan-out by at most that long before it is detached
    - Keepalive pings are left to uvicorn
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)

# A stalled client cannot hold up a room fan-out for longer than this
SEND_TIMEOUT_SECONDS = 5.0


def frame(event: str, data: Any, ack_id: Optional[str] = None) -> dict:
    """Build an outbound protocol frame."""
    message = {"type": event, "data": data}
    if ack_id is not None:
        message["ackId"] = ack_id
    return message


class ConnectionManager:
    """Tracks live WebSockets and delivers frames to them concurrently."""

    def __init__(self, send_timeout: float = SEND_TIMEOUT_SECONDS) -> None:
        """Initialize an empty connection table.

        Args:
            send_timeout: Seconds one frame may take before the socket is
                treated as dead and detached.
        """
        self.send_timeout = send_timeout
        # connection_id -> WebSocket
        self.active_connections: Dict[str, WebSocket] = {}

    async def accept(self, websocket: WebSocket) -> str:
        """Accept a WebSocket and assign it a fresh connection id."""
        await websocket.accept()
        return self.register(websocket)

    def register(self, websocket: WebSocket, connection_id: Optional[str] = None) -> str:
        """Track an already-accepted WebSocket under a connection id."""
        connection_id = connection_id or uuid.uuid4().hex
        self.active_connections[connection_id] = websocket
        return connection_id

    def detach(self, connection_id: str) -> Optional[WebSocket]:
        """Stop delivering to a connection."""
        return self.active_connections.pop(connection_id, None)

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self.active_connections

    def connection_ids(self) -> List[str]:
        return list(self.active_connections)

    async def send(self, connection_id: str, message: dict) -> bool:
        """Send one frame to one connection; False if it is gone or the send failed."""
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            return False
        ok = await self._safe_send(websocket, message)
        if not ok:
            self._cleanup_connections([connection_id])
        return ok

    async def broadcast(
        self, message: dict, connection_ids: Optional[Iterable[str]] = None
    ) -> None:
        """Send a frame to the given connections (or to all) concurrently.

        Uses asyncio.gather() so one slow client does not serialize delivery
        to the others.

        Args:
            message: JSON-serializable frame.
            connection_ids: Target connections; None means every connection.
        """
        if connection_ids is None:
            targets = list(self.active_connections.items())
        else:
            targets = [
                (cid, self.active_connections[cid])
                for cid in connection_ids
                if cid in self.active_connections
            ]
        if not targets:
            return

        results = await asyncio.gather(
            *[self._safe_send(ws, message) for _, ws in targets],
            return_exceptions=True
        )

        failed = [
            cid for (cid, _), success in zip(targets, results)
            if success is not True
        ]
        self._cleanup_connections(failed)

    async def _safe_send(self, connection: WebSocket, message: dict) -> bool:
        """Send one frame; returns False instead of raising when the socket is dead."""
        try:
            await asyncio.wait_for(connection.send_json(message), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"[WS] Send timed out after {self.send_timeout}s; detaching")
            return False
        except Exception as e:
            logger.debug(f"[WS] Send failed: {e}")
            return False

    def _cleanup_connections(self, failed_connections: List[str]) -> None:
        for cid in failed_connections:
            if self.active_connections.pop(cid, None) is not None:
                logger.debug(f"Detached dead connection {cid}")
