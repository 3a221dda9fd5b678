"""Pydantic schemas for direct messages.

These schemas are used by:
    - MessageStore implementations (in-memory and DuckDB)
    - DeliveryCoordinator: validates inbound socket payloads
    - REST endpoints under /conversation, /unread and /messages
    - The client-side ChatView

Field names are camelCase because the records travel unchanged to the
browser client.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple
from urllib.parse import quote, unquote

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


CONVERSATION_ROOM_PREFIX = "conv:"


def conversation_room_id(participant_a: str, participant_b: str) -> str:
    """Deterministic room id for the unordered pair {a, b}.

    Both participants derive the same id regardless of argument order.
    Each id is percent-encoded, so ids containing ``:`` or ``-`` cannot
    collide: ``("a-b", "c")`` and ``("a", "b-c")`` give different rooms.
    """
    first, second = sorted((participant_a, participant_b))
    return f"{CONVERSATION_ROOM_PREFIX}{quote(first, safe='')}:{quote(second, safe='')}"


def conversation_participants(room_id: str) -> Optional[Tuple[str, str]]:
    """Inverse of conversation_room_id. None if room_id is not a conversation room."""
    if not room_id.startswith(CONVERSATION_ROOM_PREFIX):
        return None
    parts = room_id[len(CONVERSATION_ROOM_PREFIX):].split(":")
    if len(parts) != 2 or not all(parts):
        return None
    first, second = unquote(parts[0]), unquote(parts[1])
    if conversation_room_id(first, second) != room_id:
        return None
    return first, second


class Message(BaseModel):
    """A persisted direct message.

    Attributes:
        id: Unique message identifier (server-assigned UUID).
        senderId: Participant who sent the message.
        receiverId: Participant the message is addressed to.
        content: Message text (never empty).
        read: Whether the receiver has read the message. Only ever goes
            from False to True.
        createdAt: When the message was persisted (UTC).
    """
    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique message ID"
    )
    senderId: str = Field(..., description="Participant ID of the sender")
    receiverId: str = Field(..., description="Participant ID of the receiver")
    content: str = Field(..., description="Message content")
    read: bool = Field(default=False, description="Read by the receiver")
    createdAt: datetime = Field(
        default_factory=utc_now,
        description="Persistence time (UTC)"
    )

    def involves(self, participant_id: str) -> bool:
        return participant_id in (self.senderId, self.receiverId)

    def counterpart_of(self, participant_id: str) -> str:
        return self.receiverId if self.senderId == participant_id else self.senderId


class SendMessageInput(BaseModel):
    """Payload of a ``send_message`` socket event.

    ``clientRef`` is an optional client-chosen token echoed back on the
    ``message_sent`` ack or the ``send_failed`` NACK.
    """
    senderId: str = Field(..., description="Participant ID of the sender")
    receiverId: str = Field(..., description="Participant ID of the receiver")
    content: str = Field(..., description="Message content")
    clientRef: Optional[str] = Field(default=None, description="Client correlation token")


class ReadMessagesInput(BaseModel):
    """Payload of a ``read_messages`` socket event."""
    userId: str = Field(..., description="Participant who read the messages")
    contactId: str = Field(..., description="Participant whose messages were read")


class MessagesReadEvent(BaseModel):
    """Bulk read receipt pushed to the other party."""
    byUserId: str
    forUserId: str


class UnreadCount(BaseModel):
    count: int


class ContactUnreadCount(BaseModel):
    userId: str
    count: int


class ConversationSummary(BaseModel):
    """One row of the message-center contact list."""
    participantId: str = Field(..., description="The other participant")
    lastMessage: Message = Field(..., description="Most recent message either way")
    unreadCount: int = Field(default=0, description="Unread messages from participantId")
