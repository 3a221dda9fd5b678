"""Message storage backends.

``MessageStore`` is the single storage capability the delivery coordinator
and the REST layer talk to. Two interchangeable implementations exist:

    - InMemoryMessageStore: dict-backed, for tests and local development.
    - DuckDBMessageStore: embedded DuckDB file, for production.

The backend is chosen once at startup by ``create_store()`` from the
``storage`` config section; nothing downstream branches on backend type.

Ordering:
    Conversations are ordered by insertion sequence, not by ``createdAt``.
    Two messages persisted within the same clock tick keep the order in
    which they were appended.

Thread Safety:
    Both stores are designed for a single asyncio event loop. Every
    operation is synchronous and runs to completion before the next one
    starts, so no locking is needed.
"""
import logging
from abc import ABC, abstractmethod
from datetime import timezone
from typing import Dict, List, Optional

import duckdb

from app.config import StorageSettings

from .errors import NotFoundError, StorageUnavailable, ValidationError
from .schemas import ConversationSummary, Message

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTENT_LENGTH = 5000


class MessageStore(ABC):
    """Abstract durable CRUD over the Message entity."""

    def __init__(self, max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH) -> None:
        self.max_content_length = max_content_length

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Short backend identifier (used for logging and /health)."""

    @abstractmethod
    def append(self, sender_id: str, receiver_id: str, content: str) -> Message:
        """Validate and persist a new unread message.

        Raises:
            ValidationError: Empty content, content over the length limit,
                missing identifiers, or sender == receiver.
            StorageUnavailable: The backend could not persist the record.
        """

    @abstractmethod
    def get(self, message_id: str) -> Message:
        """Fetch one message. Raises NotFoundError if it does not exist."""

    @abstractmethod
    def list_conversation(self, participant_a: str, participant_b: str) -> List[Message]:
        """All messages between a and b (either direction), oldest first."""

    @abstractmethod
    def mark_read(self, message_id: str) -> Message:
        """Set read=True. Idempotent. Raises NotFoundError for unknown ids."""

    @abstractmethod
    def mark_conversation_read(self, reader_id: str, other_party_id: str) -> List[Message]:
        """Flip every unread other_party -> reader message; return the flipped records."""

    @abstractmethod
    def count_unread_for(self, participant_id: str) -> int:
        """Unread messages addressed to participant_id across all conversations."""

    @abstractmethod
    def unread_counts_by_sender(self, participant_id: str) -> Dict[str, int]:
        """Unread messages addressed to participant_id, grouped by sender."""

    @abstractmethod
    def _messages_involving(self, participant_id: str) -> List[Message]:
        """Every message sent or received by participant_id, oldest first."""

    def close(self) -> None:
        """Release backend resources."""

    def list_conversation_summaries(self, participant_id: str) -> List[ConversationSummary]:
        """One summary per counterpart, most recently active first."""
        latest: Dict[str, Message] = {}
        unread: Dict[str, int] = {}
        for message in self._messages_involving(participant_id):
            other = message.counterpart_of(participant_id)
            # Later messages overwrite earlier ones; re-inserting moves the key to the end
            latest.pop(other, None)
            latest[other] = message
            if message.receiverId == participant_id and not message.read:
                unread[other] = unread.get(other, 0) + 1

        return [
            ConversationSummary(
                participantId=other,
                lastMessage=message,
                unreadCount=unread.get(other, 0),
            )
            for other, message in reversed(latest.items())
        ]

    def _validate_new_message(self, sender_id: str, receiver_id: str, content: str) -> None:
        if not sender_id or not receiver_id:
            raise ValidationError("senderId and receiverId are required")
        if sender_id == receiver_id:
            raise ValidationError("Cannot send a message to yourself")
        if not content or not content.strip():
            raise ValidationError("Message content cannot be empty")
        if len(content) > self.max_content_length:
            raise ValidationError(
                f"Message content exceeds {self.max_content_length} characters"
            )


# =============================================================================
# In-memory backend
# =============================================================================


class InMemoryMessageStore(MessageStore):
    """Dict-backed store. Insertion order of the dict is the creation order."""

    backend_name = "memory"

    def __init__(self, max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH) -> None:
        super().__init__(max_content_length)
        self._messages: Dict[str, Message] = {}

    def append(self, sender_id: str, receiver_id: str, content: str) -> Message:
        self._validate_new_message(sender_id, receiver_id, content)
        message = Message(senderId=sender_id, receiverId=receiver_id, content=content)
        self._messages[message.id] = message
        return message

    def get(self, message_id: str) -> Message:
        message = self._messages.get(message_id)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")
        return message

    def list_conversation(self, participant_a: str, participant_b: str) -> List[Message]:
        pair = {participant_a, participant_b}
        return [
            m for m in self._messages.values()
            if {m.senderId, m.receiverId} == pair
        ]

    def mark_read(self, message_id: str) -> Message:
        message = self.get(message_id)
        if message.read:
            return message
        updated = message.model_copy(update={"read": True})
        self._messages[message_id] = updated
        return updated

    def mark_conversation_read(self, reader_id: str, other_party_id: str) -> List[Message]:
        unread_ids = [
            m.id for m in self._messages.values()
            if m.senderId == other_party_id and m.receiverId == reader_id and not m.read
        ]
        return [self.mark_read(message_id) for message_id in unread_ids]

    def count_unread_for(self, participant_id: str) -> int:
        return sum(
            1 for m in self._messages.values()
            if m.receiverId == participant_id and not m.read
        )

    def unread_counts_by_sender(self, participant_id: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for m in self._messages.values():
            if m.receiverId == participant_id and not m.read:
                counts[m.senderId] = counts.get(m.senderId, 0) + 1
        return counts

    def _messages_involving(self, participant_id: str) -> List[Message]:
        return [m for m in self._messages.values() if m.involves(participant_id)]

    def close(self) -> None:
        self._messages.clear()


# =============================================================================
# DuckDB backend
# =============================================================================

_CREATE_SEQUENCE = "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    id          VARCHAR PRIMARY KEY,
    seq         BIGINT NOT NULL DEFAULT nextval('messages_seq'),
    sender_id   VARCHAR NOT NULL,
    receiver_id VARCHAR NOT NULL,
    content     VARCHAR NOT NULL,
    is_read     BOOLEAN NOT NULL DEFAULT FALSE,
    created_at  TIMESTAMP NOT NULL
)
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_messages_pair ON messages(sender_id, receiver_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_receiver ON messages(receiver_id)",
)

_COLUMNS = "id, sender_id, receiver_id, content, is_read, created_at"


class DuckDBMessageStore(MessageStore):
    """DuckDB-backed store.

    Timestamps are stored as naive UTC ``TIMESTAMP`` values and re-tagged
    as UTC when read back. Any DuckDB error is surfaced as
    StorageUnavailable so callers never see driver exceptions.

    Usage:
        store = DuckDBMessageStore(db_path="messages.duckdb")
        message = store.append("founder-1", "investor-7", "Hello")
        history = store.list_conversation("investor-7", "founder-1")
    """

    backend_name = "duckdb"

    def __init__(
        self,
        db_path: str = "messages.duckdb",
        max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
    ) -> None:
        super().__init__(max_content_length)
        self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()
        logger.info("[Store] DuckDB message store ready at %s", self._db_path)

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self._db_path)
            except duckdb.Error as e:
                raise StorageUnavailable(f"Cannot open message store: {e}") from e
        return self._connection

    def _execute(self, sql: str, params: Optional[list] = None) -> duckdb.DuckDBPyConnection:
        try:
            return self._get_connection().execute(sql, params or [])
        except duckdb.Error as e:
            logger.error("[Store] DuckDB error: %s", e)
            raise StorageUnavailable(f"Message store unavailable: {e}") from e

    def _initialize_db(self) -> None:
        self._execute(_CREATE_SEQUENCE)
        self._execute(_CREATE_TABLE)
        for statement in _INDEXES:
            self._execute(statement)

    @staticmethod
    def _row_to_message(row) -> Message:
        created_at = row[5]
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return Message(
            id=row[0],
            senderId=row[1],
            receiverId=row[2],
            content=row[3],
            read=row[4],
            createdAt=created_at,
        )

    def append(self, sender_id: str, receiver_id: str, content: str) -> Message:
        self._validate_new_message(sender_id, receiver_id, content)
        message = Message(senderId=sender_id, receiverId=receiver_id, content=content)
        self._execute(
            """
            INSERT INTO messages (id, sender_id, receiver_id, content, is_read, created_at)
            VALUES (?, ?, ?, ?, FALSE, ?)
            """,
            [
                message.id,
                message.senderId,
                message.receiverId,
                message.content,
                message.createdAt.astimezone(timezone.utc).replace(tzinfo=None),
            ],
        )
        return message

    def get(self, message_id: str) -> Message:
        row = self._execute(
            f"SELECT {_COLUMNS} FROM messages WHERE id = ?", [message_id]
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Message {message_id} not found")
        return self._row_to_message(row)

    def list_conversation(self, participant_a: str, participant_b: str) -> List[Message]:
        rows = self._execute(
            f"""
            SELECT {_COLUMNS} FROM messages
            WHERE (sender_id = ? AND receiver_id = ?)
               OR (sender_id = ? AND receiver_id = ?)
            ORDER BY seq ASC
            """,
            [participant_a, participant_b, participant_b, participant_a],
        ).fetchall()
        return [self._row_to_message(r) for r in rows]

    def mark_read(self, message_id: str) -> Message:
        message = self.get(message_id)
        if message.read:
            return message
        self._execute("UPDATE messages SET is_read = TRUE WHERE id = ?", [message_id])
        return message.model_copy(update={"read": True})

    def mark_conversation_read(self, reader_id: str, other_party_id: str) -> List[Message]:
        rows = self._execute(
            f"""
            SELECT {_COLUMNS} FROM messages
            WHERE sender_id = ? AND receiver_id = ? AND is_read = FALSE
            ORDER BY seq ASC
            """,
            [other_party_id, reader_id],
        ).fetchall()
        if not rows:
            return []
        self._execute(
            """
            UPDATE messages SET is_read = TRUE
            WHERE sender_id = ? AND receiver_id = ? AND is_read = FALSE
            """,
            [other_party_id, reader_id],
        )
        return [
            self._row_to_message(r).model_copy(update={"read": True})
            for r in rows
        ]

    def count_unread_for(self, participant_id: str) -> int:
        row = self._execute(
            "SELECT COUNT(*) FROM messages WHERE receiver_id = ? AND is_read = FALSE",
            [participant_id],
        ).fetchone()
        return int(row[0])

    def unread_counts_by_sender(self, participant_id: str) -> Dict[str, int]:
        rows = self._execute(
            """
            SELECT sender_id, COUNT(*) FROM messages
            WHERE receiver_id = ? AND is_read = FALSE
            GROUP BY sender_id
            ORDER BY sender_id
            """,
            [participant_id],
        ).fetchall()
        return {sender: int(count) for sender, count in rows}

    def _messages_involving(self, participant_id: str) -> List[Message]:
        rows = self._execute(
            f"""
            SELECT {_COLUMNS} FROM messages
            WHERE sender_id = ? OR receiver_id = ?
            ORDER BY seq ASC
            """,
            [participant_id, participant_id],
        ).fetchall()
        return [self._row_to_message(r) for r in rows]

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None


def create_store(
    settings: StorageSettings,
    max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
) -> MessageStore:
    """Build the MessageStore selected by the ``storage`` config section."""
    if settings.backend == "duckdb":
        return DuckDBMessageStore(
            db_path=settings.db_path,
            max_content_length=max_content_length,
        )
    logger.info("[Store] Using in-memory message store (messages are lost on restart)")
    return InMemoryMessageStore(max_content_length=max_content_length)
