"""Direct-message REST endpoints.

The chat client uses these to seed history and badge counts; live updates
travel over the WebSocket.

Endpoints:
    GET /conversation/{other_participant_id}: Ordered history with one participant
    GET /conversations: One summary per counterpart (message-center list)
    GET /unread/count: Unread messages for the caller across all conversations
    GET /unread/by-contact: Unread messages for the caller, grouped by sender
    PUT /messages/{message_id}/read: Mark one message read (receiver only)

Caller identity:
    Authentication happens upstream. The gateway forwards the verified
    participant id in the ``X-User-Id`` header; requests without it get 401.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse

from app.chat.coordinator import get_coordinator

from .errors import MessagingError, NotFoundError, PermissionDenied, StorageUnavailable
from .schemas import ContactUnreadCount, ConversationSummary, Message, UnreadCount

logger = logging.getLogger(__name__)

router = APIRouter(tags=["messages"])

_STATUS_CODES = {
    NotFoundError: 404,
    PermissionDenied: 403,
    StorageUnavailable: 503,
}


def _error_response(exc: MessagingError) -> JSONResponse:
    status_code = _STATUS_CODES.get(type(exc), 400)
    return JSONResponse(exc.to_dict(), status_code=status_code)


async def caller_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Resolve the authenticated participant from the gateway header."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id


@router.get("/conversation/{other_participant_id}", response_model=List[Message])
async def get_conversation(
    other_participant_id: str,
    user_id: str = Depends(caller_id),
):
    """Get every message between the caller and another participant.

    Args:
        other_participant_id: The other side of the conversation.

    Returns:
        Messages in creation order (oldest first). Empty list if none.
    """
    try:
        return get_coordinator().store.list_conversation(user_id, other_participant_id)
    except MessagingError as e:
        logger.error(f"[messages] History fetch failed for {user_id}: {e.message}")
        return _error_response(e)


@router.get("/conversations", response_model=List[ConversationSummary])
async def get_conversations(user_id: str = Depends(caller_id)):
    """List the caller's conversations, most recently active first."""
    try:
        return get_coordinator().store.list_conversation_summaries(user_id)
    except MessagingError as e:
        logger.error(f"[messages] Summary fetch failed for {user_id}: {e.message}")
        return _error_response(e)


@router.get("/unread/count", response_model=UnreadCount)
async def get_unread_count(user_id: str = Depends(caller_id)):
    """Count unread messages addressed to the caller across all conversations."""
    try:
        return UnreadCount(count=get_coordinator().store.count_unread_for(user_id))
    except MessagingError as e:
        return _error_response(e)


@router.get("/unread/by-contact", response_model=List[ContactUnreadCount])
async def get_unread_by_contact(user_id: str = Depends(caller_id)):
    """Unread counts for the caller, one entry per sender with unread messages."""
    try:
        counts = get_coordinator().store.unread_counts_by_sender(user_id)
    except MessagingError as e:
        return _error_response(e)
    return [ContactUnreadCount(userId=sender, count=count) for sender, count in counts.items()]


@router.put("/messages/{message_id}/read", response_model=Message)
async def mark_message_read(message_id: str, user_id: str = Depends(caller_id)):
    """Mark a single message as read.

    Only the receiver of the message may mark it. Marking an already-read
    message succeeds and returns it unchanged.

    Returns:
        The updated message; 404 if it does not exist, 403 if the caller is
        not its receiver, 503 if storage is unavailable.
    """
    try:
        message = await get_coordinator().mark_one_read(user_id, message_id)
    except MessagingError as e:
        logger.info(f"[messages] mark read declined for {message_id} ({e.code})")
        return _error_response(e)

    logger.info(f"[messages] {user_id} marked {message_id} read")
    return message
