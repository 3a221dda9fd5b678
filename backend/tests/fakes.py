"""Test doubles shared by the messaging tests."""
import asyncio


class FakeWebSocket:
    """Stand-in for a FastAPI WebSocket that records every frame sent to it."""

    def __init__(self, name: str = "ws", fail: bool = False, delay: float = 0.0) -> None:
        self.name = name
        self.fail = fail
        self.delay = delay
        self.sent = []
        self.accepted = False
        self.close_code = None

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError(f"{self.name} is gone")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.close_code = code

    def events(self):
        return [frame["event"] for frame in self.sent]

    def __repr__(self) -> str:
        return f"FakeWebSocket({self.name})"
