"""Delivery coordinator: persist, then fan out.

Per-message state machine:

    Submitted -> Persisted -> Delivered(sender) -> Delivered(receiver, if online)

``send_message`` writes through the MessageStore first and only then pushes
the stored record to rooms, on the same await path. Nothing is ever
broadcast for a message that failed validation or could not be persisted;
the originating connection gets a ``send_failed`` frame instead.

Because persistence is synchronous and fan-out follows immediately, a live
receiver sees messages of one conversation in the order they were stored.

Usage:
    coordinator = get_coordinator()
    await coordinator.send_message(websocket, {"senderId": ..., ...})
"""
import logging
from typing import List, Optional

from fastapi import WebSocket
from pydantic import ValidationError as PydanticValidationError

from app.config import get_config
from app.messages.errors import MessagingError, PermissionDenied, ValidationError
from app.messages.schemas import (
    Message,
    MessagesReadEvent,
    ReadMessagesInput,
    SendMessageInput,
)
from app.messages.store import MessageStore, create_store

from .manager import ConnectionManager, manager

logger = logging.getLogger(__name__)

# Server -> client event names
MESSAGE_SENT = "message_sent"
RECEIVE_MESSAGE = "receive_message"
SEND_FAILED = "send_failed"
MESSAGES_READ = "messages_read"
MESSAGE_READ = "message_read"
ERROR = "error"


def _payload_error(exc: PydanticValidationError) -> ValidationError:
    fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
    return ValidationError(f"Invalid payload: {fields}")


class DeliveryCoordinator:
    """Owns the only two write paths into the message store.

    Attributes:
        store: The MessageStore selected at startup.
        registry: The ConnectionManager used for fan-out.
    """

    def __init__(self, store: MessageStore, registry: ConnectionManager) -> None:
        self.store = store
        self.registry = registry

    async def send_message(self, websocket: WebSocket, data: dict) -> Optional[Message]:
        """Handle a ``send_message`` event from ``websocket``.

        Returns:
            The persisted Message, or None if the send was rejected. A
            rejection is reported to the originating connection as
            ``send_failed {reason, code, clientRef}``.
        """
        client_ref = data.get("clientRef") if isinstance(data, dict) else None
        try:
            request = self._parse_send(websocket, data)
            message = self.store.append(request.senderId, request.receiverId, request.content)
        except MessagingError as e:
            logger.info(f"[Delivery] send_message rejected ({e.code}): {e.message}")
            await self.registry.send_to(websocket, SEND_FAILED, {
                "reason": e.message,
                "code": e.code,
                "clientRef": client_ref,
            })
            return None

        record = message.model_dump(mode="json")
        ack = {**record, "clientRef": client_ref} if client_ref else record

        # Sender's own rooms first: the originating tab and any other open tabs
        await self.registry.deliver(message.senderId, MESSAGE_SENT, ack)
        delivered = await self.registry.deliver(message.receiverId, RECEIVE_MESSAGE, record)
        logger.info(
            f"[Delivery] {message.id} {message.senderId} -> {message.receiverId} "
            f"persisted, delivered live to {delivered} receiver connection(s)"
        )
        return message

    def _parse_send(self, websocket: WebSocket, data: dict) -> SendMessageInput:
        try:
            request = SendMessageInput.model_validate(data)
        except PydanticValidationError as e:
            raise _payload_error(e) from e

        owner = self.registry.owner_of(websocket)
        if owner is not None and owner != request.senderId:
            raise ValidationError("senderId does not match the connected participant")
        return request

    async def read_messages(self, websocket: WebSocket, data: dict) -> List[Message]:
        """Handle a ``read_messages`` event: bulk read plus one receipt.

        Marks every unread contactId -> userId message as read, then pushes
        a single ``messages_read {byUserId, forUserId}`` to contactId's room.

        Returns:
            The messages that flipped from unread to read.
        """
        try:
            request = self._parse_read(websocket, data)
            flipped = self.store.mark_conversation_read(request.userId, request.contactId)
        except MessagingError as e:
            logger.info(f"[Delivery] read_messages rejected ({e.code}): {e.message}")
            await self.registry.send_to(websocket, ERROR, e.to_dict())
            return []

        receipt = MessagesReadEvent(byUserId=request.userId, forUserId=request.contactId)
        await self.registry.deliver(request.contactId, MESSAGES_READ, receipt.model_dump())
        logger.info(
            f"[Delivery] {request.userId} read {len(flipped)} message(s) from {request.contactId}"
        )
        return flipped

    def _parse_read(self, websocket: WebSocket, data: dict) -> ReadMessagesInput:
        try:
            request = ReadMessagesInput.model_validate(data)
        except PydanticValidationError as e:
            raise _payload_error(e) from e

        owner = self.registry.owner_of(websocket)
        if owner is not None and owner != request.userId:
            raise ValidationError("userId does not match the connected participant")
        return request

    async def mark_one_read(self, reader_id: str, message_id: str) -> Message:
        """Mark a single message read on behalf of its receiver (REST path).

        Raises:
            NotFoundError: Unknown message id.
            PermissionDenied: reader_id is not the message's receiver.
            StorageUnavailable: The store could not be reached.
        """
        message = self.store.get(message_id)
        if message.receiverId != reader_id:
            raise PermissionDenied("Only the receiver can mark a message as read")
        if message.read:
            return message

        updated = self.store.mark_read(message_id)
        await self.registry.deliver(message.senderId, MESSAGE_READ, {
            "messageId": message_id,
            "byUserId": reader_id,
        })
        return updated


_coordinator: Optional[DeliveryCoordinator] = None


def get_coordinator() -> DeliveryCoordinator:
    """Get the global coordinator, building it from config on first use."""
    global _coordinator
    if _coordinator is None:
        config = get_config()
        store = create_store(config.storage, config.messaging.max_content_length)
        _coordinator = DeliveryCoordinator(store, manager)
    return _coordinator


def set_coordinator(coordinator: Optional[DeliveryCoordinator]) -> None:
    """Set (or clear, with None) the global coordinator instance."""
    global _coordinator
    _coordinator = coordinator
