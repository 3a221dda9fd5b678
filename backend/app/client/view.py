"""Client-side state for one open conversation.

ChatView mirrors what the browser chat pane keeps: an ordered list of the
messages exchanged with one contact, seeded once from the history endpoint
and then advanced by live socket events. It performs no I/O; ChatSession
feeds it frames and sends whatever it asks for.

Reconciliation rules:
    - message_sent / receive_message for this conversation are appended
      once (deduplicated by message id)
    - receive_message for another conversation only bumps ``notifications``
    - messages_read {byUserId: contact, forUserId: self} flips every
      locally-held self -> contact message to read
    - send_failed moves the matching pending send (by clientRef) to ``failed``
"""
import uuid
from typing import Dict, Iterable, List, Optional, Union

from app.messages.schemas import Message, conversation_room_id


class ChatView:
    """Ordered local view of the conversation between ``self_id`` and ``contact_id``."""

    def __init__(self, self_id: str, contact_id: str) -> None:
        self.self_id = self_id
        self.contact_id = contact_id
        self.messages: List[Message] = []
        self.pending: Dict[str, str] = {}  # clientRef -> content
        self.failed: Dict[str, str] = {}   # clientRef -> reason
        self.notifications = 0
        self._seen_ids: set = set()
        self._receipt_due = False

    @property
    def room_id(self) -> str:
        return conversation_room_id(self.self_id, self.contact_id)

    def seed(self, history: Iterable[Union[Message, dict]]) -> None:
        """Replace local state with a freshly fetched history."""
        self.messages = []
        self._seen_ids = set()
        for item in history:
            self._append(item if isinstance(item, Message) else Message.model_validate(item))
        self._receipt_due = self.unread_incoming > 0

    def compose(self, content: str) -> Optional[dict]:
        """Build a ``send_message`` payload and track it as pending.

        Returns None for blank input, matching the chat box which ignores it.
        """
        text = content.strip()
        if not text:
            return None
        client_ref = str(uuid.uuid4())
        self.pending[client_ref] = text
        return {
            "senderId": self.self_id,
            "receiverId": self.contact_id,
            "content": text,
            "clientRef": client_ref,
        }

    def apply(self, event: str, data) -> bool:
        """Apply one server event. Returns True if the visible view changed."""
        if event in ("message_sent", "receive_message"):
            return self._apply_message(event, data)
        if event == "messages_read":
            return self._apply_bulk_read(data)
        if event == "message_read":
            return self._apply_single_read(data)
        if event == "send_failed":
            client_ref = data.get("clientRef")
            if client_ref in self.pending:
                self.pending.pop(client_ref)
                self.failed[client_ref] = data.get("reason", "")
            return False
        return False

    def _apply_message(self, event: str, data: dict) -> bool:
        message = Message.model_validate(data)
        if {message.senderId, message.receiverId} != {self.self_id, self.contact_id}:
            if event == "receive_message":
                self.notifications += 1
            return False

        if event == "message_sent":
            self.pending.pop(data.get("clientRef"), None)
        appended = self._append(message)
        if appended and message.receiverId == self.self_id and not message.read:
            self._receipt_due = True
        return appended

    def _apply_bulk_read(self, data: dict) -> bool:
        if data.get("byUserId") != self.contact_id or data.get("forUserId") != self.self_id:
            return False
        changed = False
        for index, message in enumerate(self.messages):
            if message.senderId == self.self_id and not message.read:
                self.messages[index] = message.model_copy(update={"read": True})
                changed = True
        return changed

    def _apply_single_read(self, data: dict) -> bool:
        for index, message in enumerate(self.messages):
            if message.id == data.get("messageId") and not message.read:
                self.messages[index] = message.model_copy(update={"read": True})
                return True
        return False

    def _append(self, message: Message) -> bool:
        if message.id in self._seen_ids:
            return False
        self._seen_ids.add(message.id)
        self.messages.append(message)
        return True

    @property
    def unread_incoming(self) -> int:
        return sum(
            1 for m in self.messages
            if m.receiverId == self.self_id and not m.read
        )

    def needs_read_receipt(self) -> bool:
        return self._receipt_due

    def read_receipt_payload(self) -> dict:
        """Payload for ``read_messages``; also marks incoming messages read locally."""
        self._receipt_due = False
        self.messages = [
            m.model_copy(update={"read": True}) if m.receiverId == self.self_id else m
            for m in self.messages
        ]
        return {"userId": self.self_id, "contactId": self.contact_id}
