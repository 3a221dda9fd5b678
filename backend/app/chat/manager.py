"""WebSocket connection registry and room manager for direct messaging.

This module tracks which live WebSocket connections belong to which
participant and lets the delivery coordinator address "every connection of
participant X" (or every connection subscribed to a conversation room) as a
single fan-out target.

Key features:
    - Every connection is joined to its owner's personal room on connect
      (room id == participant id)
    - Multiple connections per participant (several open tabs)
    - Extra rooms via explicit join (e.g. a derived conversation room)
    - Idempotent join: a connection is never listed twice in a room
    - Concurrent delivery with asyncio.gather()
    - Per-connection send timeout so a slow client cannot stall the others
    - Automatic dead connection cleanup

Delivery is best-effort: when a room has no connections the payload is
dropped. The message store is the only durable record; offline participants
fetch history when they reconnect.

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Seconds a single send may take before the connection is treated as dead
DEFAULT_SEND_TIMEOUT = 5.0


def event_frame(event: str, payload: Any) -> dict:
    """Wire format of every server -> client frame."""
    return {"event": event, "data": payload}


# =============================================================================
# Connection Manager
# =============================================================================


class ConnectionManager:
    """Registry of live connections grouped into rooms.

    This class maintains:
    - room_id -> connections subscribed to the room
    - connection -> owning participant id
    - connection -> rooms it joined (for O(rooms) cleanup on disconnect)

    Note:
        This is a singleton-style global instance. All WebSocket handlers
        share the same ConnectionManager to maintain consistent state.
        Swap it for a distributed presence store when running more than one
        server process.
    """

    def __init__(self, send_timeout: float = DEFAULT_SEND_TIMEOUT) -> None:
        """Initialize empty connection manager."""
        self.send_timeout = send_timeout

        # room_id -> list of active WebSocket connections
        self.rooms: Dict[str, List[WebSocket]] = {}

        # websocket -> participant id that owns it
        self.connection_owner: Dict[WebSocket, str] = {}

        # websocket -> room ids it joined
        self.connection_rooms: Dict[WebSocket, List[str]] = {}

    async def connect(self, websocket: WebSocket, participant_id: str) -> List[str]:
        """Accept a WebSocket connection and join it to the owner's personal room.

        Args:
            websocket: The WebSocket connection to accept.
            participant_id: Identifier supplied at connect time.

        Returns:
            The rooms the connection is now subscribed to.
        """
        await websocket.accept()
        self.register(websocket, participant_id)
        return self.rooms_of(websocket)

    def register(self, websocket: WebSocket, participant_id: str) -> None:
        """Record ownership of an already-accepted connection."""
        self.connection_owner[websocket] = participant_id
        self.join(participant_id, websocket)
        logger.info(
            f"[Registry] {participant_id} connected "
            f"({self.connection_count(participant_id)} open connections)"
        )

    def join(self, room_id: str, websocket: WebSocket) -> bool:
        """Subscribe a connection to a room.

        Joining a room the connection is already in is a no-op, so a
        repeated join never causes duplicate delivery.

        Returns:
            True if the connection was added, False if it was already there.
        """
        connections = self.rooms.setdefault(room_id, [])
        if websocket in connections:
            return False
        connections.append(websocket)
        self.connection_rooms.setdefault(websocket, []).append(room_id)
        logger.debug(f"[Registry] Connection joined room {room_id}")
        return True

    def leave_room(self, room_id: str, websocket: WebSocket) -> bool:
        """Unsubscribe a connection from a single room.

        Returns:
            True if the connection was in the room.
        """
        connections = self.rooms.get(room_id)
        if not connections or websocket not in connections:
            return False
        connections.remove(websocket)
        if not connections:
            del self.rooms[room_id]
        joined = self.connection_rooms.get(websocket)
        if joined and room_id in joined:
            joined.remove(room_id)
        return True

    def leave(self, websocket: WebSocket) -> Optional[str]:
        """Remove a connection from every room it belongs to.

        Invoked on disconnect. Unknown connections are ignored.

        Returns:
            The participant id that owned the connection, or None.
        """
        for room_id in list(self.connection_rooms.get(websocket, [])):
            self.leave_room(room_id, websocket)
        self.connection_rooms.pop(websocket, None)
        owner = self.connection_owner.pop(websocket, None)
        if owner is not None:
            logger.info(
                f"[Registry] {owner} disconnected "
                f"({self.connection_count(owner)} connections left)"
            )
        return owner

    async def deliver(self, room_id: str, event: str, payload: Any) -> int:
        """Push ``payload`` under ``event`` to every connection in a room concurrently.

        A room without connections is the normal offline case: nothing is
        sent and nothing is queued.

        Args:
            room_id: Participant id or any joined room id.
            event: Event name placed in the frame.
            payload: JSON-serializable event data.

        Returns:
            Number of connections the frame was delivered to.
        """
        connections = list(self.rooms.get(room_id, []))
        if not connections:
            logger.debug(f"[Registry] No live connections in room {room_id}; {event} dropped")
            return 0

        frame = event_frame(event, payload)
        results = await asyncio.gather(
            *[self._safe_send(conn, frame) for conn in connections],
            return_exceptions=True
        )

        # Remove failed connections
        failed_connections = [
            conn for conn, success in zip(connections, results)
            if success is not True
        ]
        await self._cleanup_connections(failed_connections)
        return len(connections) - len(failed_connections)

    async def send_to(self, websocket: WebSocket, event: str, payload: Any) -> bool:
        """Send a frame to exactly one connection (acks and NACKs)."""
        success = await self._safe_send(websocket, event_frame(event, payload))
        if not success:
            await self._cleanup_connections([websocket])
        return success

    async def _safe_send(self, connection: WebSocket, frame: dict) -> bool:
        """Send a frame to a WebSocket connection with error handling.

        Returns:
            True if successful, False if the connection failed or timed out.
        """
        try:
            await asyncio.wait_for(connection.send_json(frame), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"[Registry] Send timed out after {self.send_timeout}s")
            return False
        except Exception as e:
            logger.debug(f"[Registry] Failed to send to connection: {e}")
            return False

    async def _cleanup_connections(self, failed_connections: List[WebSocket]) -> None:
        """Drop dead connections from every room and close them with 1011
        so the client knows to reconnect."""
        for conn in failed_connections:
            owner = self.leave(conn)
            try:
                await asyncio.wait_for(conn.close(code=1011), timeout=self.send_timeout)
            except Exception as e:
                logger.debug(f"[Registry] Close of dead connection failed: {e}")
            logger.info(f"[Registry] Dropped unresponsive connection of {owner}")

    def owner_of(self, websocket: WebSocket) -> Optional[str]:
        return self.connection_owner.get(websocket)

    def rooms_of(self, websocket: WebSocket) -> List[str]:
        return list(self.connection_rooms.get(websocket, []))

    def connection_count(self, room_id: str) -> int:
        """Get the number of active connections in a room."""
        return len(self.rooms.get(room_id, []))

    def is_online(self, participant_id: str) -> bool:
        return self.connection_count(participant_id) > 0

    def clear(self) -> None:
        """Forget every connection (used on shutdown and between tests)."""
        self.rooms.clear()
        self.connection_owner.clear()
        self.connection_rooms.clear()


# Global singleton instance used by all WebSocket handlers
manager = ConnectionManager()
