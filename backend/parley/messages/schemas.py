"""Pydantic schemas for stored chat messages.

A message is a tagged variant discriminated on ``kind``:
    - RoomMessage: broadcast to every connection in ``room``
    - PrivateMessage: delivered to one recipient (``toUsername``)

Drafts carry what the router knows before persistence; the store stamps the
id and timestamp and returns the stored form. ``readBy`` and ``reactions`` are
the only fields that change after creation.

Timestamps are UTC with millisecond precision and are rendered as ISO-8601
strings with a trailing ``Z`` (``2024-05-01T12:00:00.123Z``).
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Annotated, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    TypeAdapter,
    field_serializer,
    field_validator,
)


# =============================================================================
# Timestamp helpers
# =============================================================================


def utc_now_ms() -> datetime:
    """Current UTC time truncated to whole milliseconds."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def next_timestamp(last: Optional[datetime]) -> datetime:
    """Return a millisecond timestamp strictly later than ``last``."""
    ts = utc_now_ms()
    if last is not None and ts <= last:
        ts = last + timedelta(milliseconds=1)
    return ts


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 cursor; returns None for empty or unparseable input."""
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# =============================================================================
# Annotation models
# =============================================================================


class Attachment(BaseModel):
    """Opaque attachment metadata; only the structural shape is checked."""
    url: str = Field(..., description="Where the uploaded file can be fetched")
    name: Optional[str] = Field(default=None, description="Original filename")
    mimetype: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("mimetype", "type"),
        description="Declared MIME type",
    )
    size: Optional[int] = Field(default=None, description="Size in bytes")


class Reaction(BaseModel):
    """One reaction entry; at most one per (userId, type) on a message."""
    type: str = Field(..., description="Reaction type, e.g. 'like'")
    userId: str = Field(..., description="User ID of the reacting user")


# =============================================================================
# Drafts
# =============================================================================


class _MessageFields(BaseModel):
    message: str = Field(..., description="Body text")
    sender: str = Field(..., description="Sender username")
    senderUserId: Optional[str] = Field(default=None, description="Sender user ID")
    senderId: Optional[str] = Field(default=None, description="Sender connection ID")
    attachments: List[Attachment] = Field(default_factory=list)


class RoomMessageDraft(_MessageFields):
    kind: Literal["room"] = "room"
    room: str = Field(..., description="Room this message is broadcast to")


class PrivateMessageDraft(_MessageFields):
    kind: Literal["private"] = "private"
    toUsername: Optional[str] = Field(default=None, description="Intended recipient")
    toUserId: Optional[str] = Field(default=None, description="Recipient user ID if known")
    toConnectionId: Optional[str] = Field(
        default=None, description="Recipient connection at send time, if online"
    )


MessageDraft = Union[RoomMessageDraft, PrivateMessageDraft]


# =============================================================================
# Stored messages
# =============================================================================


class _Stamped(BaseModel):
    id: str = Field(..., description="Store-assigned message ID")
    timestamp: datetime = Field(..., description="Creation instant (UTC)")
    readBy: List[str] = Field(default_factory=list, description="User IDs that read it")
    reactions: List[Reaction] = Field(default_factory=list)

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_serializer("timestamp")
    def _serialize_timestamp(self, value: datetime) -> str:
        return format_timestamp(value)


class RoomMessage(RoomMessageDraft, _Stamped):
    isPrivate: Literal[False] = False


class PrivateMessage(PrivateMessageDraft, _Stamped):
    isPrivate: Literal[True] = True


Message = Annotated[Union[RoomMessage, PrivateMessage], Field(discriminator="kind")]

MESSAGE_ADAPTER: TypeAdapter = TypeAdapter(Message)


def stamp(draft: MessageDraft, message_id: str, timestamp: datetime) -> Union[RoomMessage, PrivateMessage]:
    """Turn a draft into its stored form."""
    fields = draft.model_dump()
    fields.update(id=message_id, timestamp=timestamp)
    if isinstance(draft, RoomMessageDraft):
        return RoomMessage(**fields)
    return PrivateMessage(**fields)


# =============================================================================
# History scopes
# =============================================================================


@dataclass(frozen=True)
class RoomScope:
    """All broadcast messages of one room."""
    room: str

    def matches(self, message) -> bool:
        return isinstance(message, RoomMessage) and message.room == self.room


@dataclass(frozen=True)
class PrivateScope:
    """Private messages exchanged between two usernames, in either direction."""
    user_a: str
    user_b: str

    def matches(self, message) -> bool:
        if not isinstance(message, PrivateMessage):
            return False
        return (
            (message.sender == self.user_a and message.toUsername == self.user_b)
            or (message.sender == self.user_b and message.toUsername == self.user_a)
        )


HistoryScope = Union[RoomScope, PrivateScope]
