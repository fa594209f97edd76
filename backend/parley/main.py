"""Parley Backend Application.

This is the main entry point for the Parley chat service.

Modules:
    - chat: WebSocket chat core (presence, rooms, typing, routing)
    - messages: Message store (DuckDB or in-memory fallback) and history API
    - files: Attachment uploads
    - auth: Token verification for connections
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from parley import __version__
from parley.chat.message_router import get_message_router, set_message_router
from parley.chat.router import router as chat_router
from parley.config import get_config
from parley.files.router import router as files_router
from parley.files.service import reset_upload_store
from parley.messages.router import router as messages_router
from parley.messages.service import get_message_store, set_message_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# uvicorn.access logs every history poll; websockets logs every frame at debug.
for _noisy in ("uvicorn.access", "websockets", "duckdb"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.server.log_level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.server.log_level.upper())

    store = get_message_store()
    get_message_router()
    logger.info(f"Chat core ready (store={store.backend_name}, default_room={config.rooms.default_room})")

    yield  # Application runs here

    # Shutdown
    store.close()
    set_message_router(None)
    set_message_store(None)
    reset_upload_store()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Parley API",
    description="Real-time multi-room chat backend",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)
app.include_router(messages_router)
app.include_router(files_router)


@app.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "Parley chat server is running"


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object with the active message store backend.
    """
    return {"status": "ok", "store": get_message_store().backend_name}
