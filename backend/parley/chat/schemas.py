"""Pydantic schemas for the chat WebSocket protocol.

Frames in both directions share one envelope::

    {"type": "<event>", "data": <payload>, "ackId": "<optional>"}

Inbound payload models validate what clients send; outbound payloads are
plain dicts built from the models below.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from parley.messages.schemas import Attachment


class Envelope(BaseModel):
    """One WebSocket frame."""
    type: str = Field(..., description="Event name")
    data: Any = Field(default=None, description="Event payload")
    ackId: Optional[str] = Field(default=None, description="Client reference echoed in the ack")


class RosterEntry(BaseModel):
    """One connected identity as shown in the user list."""
    username: str
    connectionId: str
    userId: Optional[str] = None


class PresenceEvent(BaseModel):
    """Payload of user_joined / user_left."""
    username: str
    connectionId: str


class Ack(BaseModel):
    """Delivery acknowledgment returned to the sender of a room message."""
    ok: bool = True
    id: str
    timestamp: str


class SendMessageInput(BaseModel):
    message: str = Field(..., description="Body text")
    attachments: List[Attachment] = Field(default_factory=list)


class PrivateMessageInput(BaseModel):
    to: Optional[str] = Field(default=None, description="Recipient connection ID")
    toUsername: Optional[str] = Field(default=None, description="Recipient username")
    message: str = Field(..., description="Body text")
    attachments: List[Attachment] = Field(default_factory=list)


class MessageRefInput(BaseModel):
    messageId: str


class ReactInput(BaseModel):
    messageId: str
    type: str = Field(..., min_length=1)
