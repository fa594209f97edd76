"""Message store selection and process-wide access.

The backend is chosen once at startup: the DuckDB store when persistence is
enabled and the database opens, otherwise the in-memory fallback.
"""
import logging
from typing import Optional

from parley.config import AppSettings, get_config
from parley.errors import PersistenceError

from .base import MessageStore
from .memory_store import InMemoryMessageStore

logger = logging.getLogger(__name__)

_store: Optional[MessageStore] = None


def create_message_store(settings: Optional[AppSettings] = None) -> MessageStore:
    """Build the configured message store, falling back to memory on failure."""
    settings = settings or get_config()
    fallback_cap = settings.rooms.fallback_history_cap

    if not settings.rooms.enable_persistence:
        logger.warning("Persistence disabled; messages are kept in memory only.")
        return InMemoryMessageStore(room_history_cap=fallback_cap)

    # Imported lazily so the fallback path never touches the DuckDB driver.
    from .duckdb_store import DuckDBMessageStore

    try:
        store = DuckDBMessageStore(settings.storage.database_path)
    except PersistenceError as e:
        logger.error(f"Message database unavailable, using in-memory fallback: {e}")
        return InMemoryMessageStore(room_history_cap=fallback_cap)

    logger.info("Message store ready: duckdb path=%s", settings.storage.database_path)
    return store


def get_message_store() -> MessageStore:
    """Return the process-wide store, creating it from config on first use."""
    global _store
    if _store is None:
        _store = create_message_store()
    return _store


def set_message_store(store: Optional[MessageStore]) -> None:
    """Install (or clear, with None) the process-wide store."""
    global _store
    _store = store
