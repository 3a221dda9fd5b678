"""Manual smoke test against a running server.

    cd backend && python -m app.main
    python chat_demo.py founder-1 investor-7
"""
import asyncio
import logging
import sys

import httpx

from app.client.session import ChatSession

BASE_URL = "http://localhost:8000"


async def demo(self_id, contact_id):
    async with httpx.AsyncClient(base_url=BASE_URL) as http:
        session = ChatSession(BASE_URL, self_id, contact_id, http)
        await session.open()
        print(f"History: {[m.content for m in session.view.messages]}")

        await session.send(f"Hello from {self_id}!")

        # Ctrl-C to stop
        try:
            await session.pump()
        finally:
            print(f"Conversation: {[m.content for m in session.view.messages]}")
            await session.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    args = sys.argv[1:]
    asyncio.run(demo(
        args[0] if len(args) > 0 else "founder-1",
        args[1] if len(args) > 1 else "investor-7",
    ))
