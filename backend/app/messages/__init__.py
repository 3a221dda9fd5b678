"""Direct-message storage module: schemas, errors and MessageStore backends."""

from .errors import (
    MessagingError,
    NotFoundError,
    PermissionDenied,
    StorageUnavailable,
    ValidationError,
)
from .schemas import (
    ConversationSummary,
    Message,
    conversation_participants,
    conversation_room_id,
)
from .store import DuckDBMessageStore, InMemoryMessageStore, MessageStore, create_store

__all__ = [
    "ConversationSummary",
    "DuckDBMessageStore",
    "InMemoryMessageStore",
    "Message",
    "MessageStore",
    "MessagingError",
    "NotFoundError",
    "PermissionDenied",
    "StorageUnavailable",
    "ValidationError",
    "conversation_participants",
    "conversation_room_id",
    "create_store",
]
