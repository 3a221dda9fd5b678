"""Chat router providing the direct-messaging WebSocket endpoint.

This module provides:
    - WebSocket /ws/chat?userId=<participantId>: real-time direct messages

Every frame, in both directions, is a JSON object ``{"event": ..., "data": ...}``.

Protocol Message Types (client -> server):
    - join: Subscribe this connection to a room (own id or a conversation
      room id that includes the caller; anything else gets an error)
    - leave: Unsubscribe this connection from a room
    - send_message: {senderId, receiverId, content, clientRef?}
    - read_messages: {userId, contactId}

Protocol Message Types (server -> client):
    - connected: {userId, rooms} right after the connection is accepted
    - message_sent: Full persisted message, to every sender connection
    - receive_message: Full persisted message, to every receiver connection
    - send_failed: {reason, code, clientRef} to the originating connection only
    - messages_read: {byUserId, forUserId} to the other party
    - message_read: {messageId, byUserId} when a single message is read via REST
    - error: {error, code} for malformed frames or unknown events
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.config import get_config
from app.messages.schemas import conversation_participants

from .coordinator import ERROR, get_coordinator
from .manager import manager

logger = logging.getLogger(__name__)

router = APIRouter()


async def _send_error(websocket: WebSocket, error: str, code: str = "bad_request") -> None:
    await manager.send_to(websocket, ERROR, {"error": error, "code": code})


def _may_join(user_id: str, room_id: str) -> bool:
    """A connection may join its owner's room or a conversation room it is part of."""
    if room_id == user_id:
        return True
    pair = conversation_participants(room_id)
    return pair is not None and user_id in pair and pair[0] != pair[1]


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    userId: Optional[str] = Query(None, description="Participant ID of the connecting user")
) -> None:
    """WebSocket endpoint for real-time direct messages.

    Protocol Flow:
        1. Client connects with ?userId=... -> joined to its personal room
           -> Server sends: {event: "connected", data: {userId, rooms}}
        2. Client sends: {event: "join", data: "<roomId>"} (optional)
        3. Client sends: {event: "send_message", data: {...}}
           -> Sender rooms get "message_sent", receiver rooms get "receive_message"
           -> On rejection the sender connection gets "send_failed"
        4. Client sends: {event: "read_messages", data: {userId, contactId}}
           -> contactId's rooms get one "messages_read"
        5. On disconnect the connection leaves every room

    Args:
        websocket: The WebSocket connection.
        userId: Participant identifier supplied by the authenticated client.
    """
    if not userId or conversation_participants(userId) is not None:
        logger.warning(f"[WS] Connection with invalid userId {userId!r} rejected")
        await websocket.close(code=1008)  # 1008 = Policy Violation
        return

    max_connections = get_config().messaging.max_connections_per_participant
    if max_connections > 0 and manager.connection_count(userId) >= max_connections:
        logger.warning(
            f"[WS] {userId} already has {max_connections} connections. "
            "Rejecting new connection."
        )
        await websocket.close(code=1008)
        return

    coordinator = get_coordinator()
    rooms = await manager.connect(websocket, userId)

    try:
        await manager.send_to(websocket, "connected", {"userId": userId, "rooms": rooms})

        # Main message loop
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            if manager.owner_of(websocket) is None:
                # Dropped by the registry after a failed send; already closed
                logger.info(f"[WS] {userId} connection was dropped, ending session")
                break

            raw = message.get("text")
            if raw is None:
                await _send_error(websocket, "Binary frames are not supported")
                continue
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await _send_error(websocket, "Frame is not valid JSON")
                continue
            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                await _send_error(websocket, "Frame must be an object with an 'event' field")
                continue

            event = frame["event"]
            data = frame.get("data")
            logger.debug("[WS] %s sent event=%s", userId, event)

            # --- Handle JOIN / LEAVE (room subscription) ---
            if event in ("join", "leave"):
                if not isinstance(data, str) or not data:
                    await _send_error(websocket, f"'{event}' requires a non-empty room id")
                    continue
                if event == "join":
                    if not _may_join(userId, data):
                        logger.warning(f"[WS] {userId} denied join of room {data}")
                        await _send_error(websocket, f"Not allowed to join room {data}", "forbidden")
                        continue
                    manager.join(data, websocket)
                    logger.info(f"[WS] {userId} joined room {data}")
                else:
                    manager.leave_room(data, websocket)
                    logger.info(f"[WS] {userId} left room {data}")
                continue

            # --- Handle SEND_MESSAGE (persist + fan out) ---
            if event == "send_message":
                await coordinator.send_message(websocket, data)
                continue

            # --- Handle READ_MESSAGES (bulk read receipt) ---
            if event == "read_messages":
                await coordinator.read_messages(websocket, data)
                continue

            await _send_error(websocket, f"Unknown event: {event}")

    except WebSocketDisconnect:
        logger.info(f"[WS] {userId} disconnected")
    finally:
        manager.leave(websocket)
