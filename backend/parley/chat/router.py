"""Chat router providing the WebSocket endpoint and the roster endpoint.

This module provides:
    - WebSocket /ws/chat: Real-time chat messaging
    - GET /api/users: Current roster

Authentication:
    The client presents a signed token as ``?token=...`` or as an
    ``Authorization: Bearer`` header. Invalid or missing tokens close the
    socket with code 1008 before it is accepted; the server does not retry.

Protocol Frames (client -> server):
    - join_room: data = room name
    - send_message: data = {message, attachments[]}, acked with {ok, id, timestamp}
    - private_message: data = {to, toUsername, message, attachments[]}
    - typing: data = true/false
    - read_message: data = {messageId}
    - react_message: data = {messageId, type}

Protocol Frames (server -> client):
    connected, receive_message, private_message, user_list, user_joined,
    user_left, typing_users, rooms_list, message_read, message_reaction,
    ack, error
"""
import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from parley.auth.service import TokenVerifier, extract_token
from parley.errors import AuthRejectedError, ParleyError

from .manager import frame
from .message_router import MessageRouter, get_message_router
from .schemas import (
    Envelope,
    MessageRefInput,
    PrivateMessageInput,
    ReactInput,
    SendMessageInput,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/users")
async def list_users() -> list:
    """Get the roster of connected users.

    Returns:
        List of {username, connectionId, userId} in connect order.
    """
    return get_message_router().list_users()


async def _reply_error(hub: MessageRouter, connection_id: str, error: str, ack_id: Any = None) -> None:
    await hub.connections.send(connection_id, frame("error", {"error": error}))
    if ack_id is not None:
        await hub.connections.send(connection_id, frame("ack", {"ok": False, "error": error}, ack_id))


def _as_flag(data: Any) -> bool:
    """Typing flag from the wire; the strings "false" and "0" mean off."""
    if isinstance(data, str):
        return data.strip().lower() in ("true", "1", "yes", "on")
    return bool(data)


async def handle_frame(hub: MessageRouter, connection_id: str, envelope: Envelope) -> None:
    """Dispatch one inbound frame to the router."""
    event = envelope.type
    data = envelope.data

    # --- Handle JOIN_ROOM ---
    if event == "join_room":
        await hub.join_room(connection_id, data if isinstance(data, str) else None)
        return

    # --- Handle SEND_MESSAGE (room broadcast with delivery ack) ---
    if event == "send_message":
        payload = SendMessageInput.model_validate(data or {})
        ack = await hub.send_to_room(connection_id, payload.message, payload.attachments)
        if envelope.ackId is not None:
            await hub.connections.send(connection_id, frame("ack", ack.model_dump(), envelope.ackId))
        return

    # --- Handle PRIVATE_MESSAGE ---
    if event == "private_message":
        payload = PrivateMessageInput.model_validate(data or {})
        await hub.send_private(
            connection_id,
            payload.to,
            payload.message,
            payload.attachments,
            to_username=payload.toUsername,
        )
        return

    # --- Handle TYPING indicator ---
    if event == "typing":
        await hub.set_typing(connection_id, _as_flag(data))
        return

    # --- Handle READ receipt (malformed requests are dropped silently) ---
    if event == "read_message":
        try:
            payload = MessageRefInput.model_validate(data or {})
        except ValidationError:
            logger.debug(f"[WS] Ignoring malformed read_message from {connection_id}")
            return
        await hub.mark_read(connection_id, payload.messageId)
        return

    # --- Handle REACTION toggle (malformed requests are dropped silently) ---
    if event == "react_message":
        try:
            payload = ReactInput.model_validate(data or {})
        except ValidationError:
            logger.debug(f"[WS] Ignoring malformed react_message from {connection_id}")
            return
        await hub.react(connection_id, payload.messageId, payload.type)
        return

    await _reply_error(hub, connection_id, f"Unknown event type: {event}", envelope.ackId)


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time chat.

    Protocol Flow:
        1. Client connects with a token -> rejected with 1008 if invalid
        2. Server sends: {type: "connected", data: {connectionId, username, userId, room}}
        3. Everyone receives user_list + user_joined; the default room receives rooms_list
        4. Client frames are dispatched until the socket closes
        5. On disconnect -> user_left + user_list to everyone, typing_users to the room
    """
    try:
        identity = TokenVerifier.from_settings().verify(extract_token(websocket))
    except AuthRejectedError as e:
        logger.warning(f"[WS] Rejecting connection: {e.message}")
        await websocket.close(code=1008)  # 1008 = Policy Violation
        return

    hub = get_message_router()
    connection_id = await hub.connect(websocket, identity)
    logger.info(f"[WS] Connection {connection_id} accepted for {identity.username}")

    try:
        # Main message loop
        while True:
            raw = await websocket.receive_text()
            try:
                envelope = Envelope.model_validate(json.loads(raw))
            except (json.JSONDecodeError, ValidationError):
                await _reply_error(hub, connection_id, "Invalid frame: expected {type, data}")
                continue

            logger.debug("[WS] %s received: type=%s", connection_id, envelope.type)
            try:
                await handle_frame(hub, connection_id, envelope)
            except ValidationError as e:
                await _reply_error(
                    hub, connection_id, f"Invalid {envelope.type} payload: {e.errors()[0]['msg']}",
                    envelope.ackId,
                )
            except ParleyError as e:
                logger.info(f"[WS] {envelope.type} from {connection_id} rejected: {e.message}")
                await _reply_error(hub, connection_id, e.message, envelope.ackId)

    except WebSocketDisconnect:
        logger.info(f"[WS] Connection {connection_id} closed")
    finally:
        departure = hub.release(connection_id)
        # The announcement must finish even when this task is being cancelled
        await asyncio.shield(hub.announce_departure(departure))
