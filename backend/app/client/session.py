"""Network driver for a ChatView.

ChatSession connects a ChatView to a running messaging server: history over
HTTP (httpx), live events over the WebSocket (websockets).

Opening a conversation:
    1. Connect the socket and join the conversation room
    2. Fetch history and seed the view (duplicates from the overlap are
       dropped by message id)
    3. Emit read_messages if the history holds unread incoming messages

Live events sent while the socket was down are lost, so ``reconnect()``
repeats the whole open sequence rather than just re-dialing.

Usage:
    async with httpx.AsyncClient(base_url="http://localhost:8000") as http:
        session = ChatSession("http://localhost:8000", "founder-1", "investor-7", http)
        await session.open()
        await session.send("Thanks for the intro!")
        await session.pump()
"""
import json
import logging
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlencode

import httpx
import websockets

from .view import ChatView

logger = logging.getLogger(__name__)


def _ws_url(base_url: str, user_id: str) -> str:
    if base_url.startswith("https://"):
        base_url = "wss://" + base_url[len("https://"):]
    elif base_url.startswith("http://"):
        base_url = "ws://" + base_url[len("http://"):]
    return f"{base_url.rstrip('/')}/ws/chat?{urlencode({'userId': user_id})}"


class ChatSession:
    """One participant's live session for one conversation."""

    def __init__(
        self,
        base_url: str,
        self_id: str,
        contact_id: str,
        http: httpx.AsyncClient,
        connect: Callable[[str], Awaitable[Any]] = websockets.connect,
    ) -> None:
        self.base_url = base_url
        self.view = ChatView(self_id, contact_id)
        self._http = http
        self._connect = connect
        self._ws = None

    async def open(self) -> None:
        """Connect, join the conversation room and seed history."""
        self._ws = await self._connect(_ws_url(self.base_url, self.view.self_id))
        frame = json.loads(await self._ws.recv())
        if frame.get("event") != "connected":
            raise RuntimeError(f"Unexpected first frame: {frame.get('event')}")
        await self._emit("join", self.view.room_id)

        history = await self.fetch_history()
        self.view.seed(history)
        logger.info(
            "[Client] %s opened conversation with %s (%d messages)",
            self.view.self_id, self.view.contact_id, len(history),
        )
        await self._send_receipt_if_due()

    async def fetch_history(self) -> list:
        resp = await self._http.get(
            f"/conversation/{self.view.contact_id}",
            headers={"X-User-Id": self.view.self_id},
        )
        resp.raise_for_status()
        return resp.json()

    async def send(self, content: str) -> Optional[dict]:
        """Send a message. Returns the payload sent, or None for blank input."""
        payload = self.view.compose(content)
        if payload is not None:
            await self._emit("send_message", payload)
        return payload

    async def handle_frame(self, raw: str) -> bool:
        """Apply one raw server frame to the view."""
        frame = json.loads(raw)
        event, data = frame.get("event"), frame.get("data")
        if event == "error":
            logger.warning("[Client] Server error: %s", data)
            return False
        changed = self.view.apply(event, data)
        await self._send_receipt_if_due()
        return changed

    async def pump(self) -> None:
        """Process frames until the socket closes."""
        async for raw in self._ws:
            await self.handle_frame(raw)

    async def reconnect(self) -> None:
        """Re-dial and re-fetch history to cover the disconnect window."""
        await self.close()
        await self.open()

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def _send_receipt_if_due(self) -> None:
        if self.view.needs_read_receipt():
            await self._emit("read_messages", self.view.read_receipt_payload())

    async def _emit(self, event: str, data: Any) -> None:
        await self._ws.send(json.dumps({"event": event, "data": data}))
