"""Chat relay backend application.

This is the main entry point for the relay service. It keeps track of who
is connected over WebSockets, drops connections that stop answering
heartbeats, and relays chat messages (with inline attachments) between
users while broadcasting presence to everyone online.

Modules:
    - realtime: WebSocket relay, registry, heartbeat, presence, routing
    - messages: DuckDB message store and history endpoint
    - auth: session cookie validation
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from chatrelay.config import get_config
from chatrelay.messages.router import router as messages_router
from chatrelay.messages.service import MessageStore
from chatrelay.realtime.hub import get_hub, set_hub
from chatrelay.realtime.router import router as realtime_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "uvicorn.access",
    "websockets",
    "websockets.server",
    "httpx",
    "httpcore",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    hub = get_hub()
    logger.info(
        "Relay ready: heartbeat every %sms (timeout %sms), uploads in %s, %d stored messages",
        config.heartbeat.interval_ms,
        config.heartbeat.death_timeout_ms,
        hub.ingestor.upload_dir,
        hub.store.count(),
    )

    yield  # Application runs here

    # Shutdown
    hub.shutdown()
    set_hub(None)
    MessageStore.reset_instance()
    logger.info("Application shutdown complete")


_config = get_config()
Path(_config.uploads.directory).mkdir(parents=True, exist_ok=True)

# Create FastAPI application with metadata
app = FastAPI(
    title="Chat Relay API",
    description="Presence tracking and message relay over WebSockets",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_config.server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(realtime_router)
app.include_router(messages_router)

# Stored attachments, served back by generated filename
app.mount(
    _config.uploads.url_prefix,
    StaticFiles(directory=_config.uploads.directory, check_dir=False),
    name="uploads",
)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


def run() -> None:
    """Run the relay under uvicorn using the configured host and port."""
    import uvicorn

    uvicorn.run(
        "chatrelay.main:app",
        host=_config.server.host,
        port=_config.server.port,
        reload=_config.server.reload,
        log_level=_config.logging.level,
    )


if __name__ == "__main__":
    run()
