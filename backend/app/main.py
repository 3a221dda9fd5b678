"""LaunchBlocks Messaging Backend Application.

This is the main entry point for the direct-messaging service of the
LaunchBlocks founder/investor marketplace.

Modules:
    - chat: WebSocket connection registry, rooms and delivery coordinator
    - messages: Message store backends (in-memory, DuckDB) and REST endpoints
    - client: Chat view state machine and network session used by Python clients
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.chat.coordinator import DeliveryCoordinator, get_coordinator, set_coordinator
from app.chat.manager import manager
from app.chat.router import router as chat_router
from app.config import get_config
from app.messages.router import router as messages_router
from app.messages.store import create_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "httpx",
    "httpcore",
    "websockets",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in launchblocks.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    manager.send_timeout = config.messaging.send_timeout_seconds
    store = create_store(config.storage, config.messaging.max_content_length)
    set_coordinator(DeliveryCoordinator(store, manager))
    logger.info(f"Message store ready: backend={store.backend_name}")

    yield  # Application runs here

    # Shutdown
    manager.clear()
    store.close()
    set_coordinator(None)
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="LaunchBlocks Messaging API",
    description="Real-time direct messaging between founders and investors",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)
app.include_router(messages_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object with the active storage backend.
    """
    return {"status": "ok", "storage": get_coordinator().store.backend_name}


if __name__ == "__main__":
    import uvicorn

    server = get_config().server
    uvicorn.run("app.main:app", host=server.host, port=server.port)
