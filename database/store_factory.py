"""
Store Factory — Create the right conversation store backend from configuration.

Configuration in settings.yaml:
    database:
      # Conversation store backend — where runtime state lives
      #   "memory"   — In-memory dicts (development, testing)
      #   "file"     — JSON files on disk (small deployments, demos)
      store_backend: "memory"

      # For file backend: directory path
      store_file_dir: "./data"

Usage:
    from database.store_factory import create_store, get_store
    store = create_store(config)     # Create from config dict
    store = get_store()              # Get singleton instance
"""
from __future__ import annotations

import structlog
from typing import Optional

from database.store_base import BaseConversationStore

logger = structlog.get_logger()

_instance: Optional[BaseConversationStore] = None


def create_store(config: dict = None) -> BaseConversationStore:
    """
    Factory: create the appropriate conversation store backend.

    Args:
        config: dict with keys:
            store_backend: "memory" | "file"  (default: "memory")
            store_file_dir: str (for file backend, default: "./data")
            flush_interval_s: float (for file backend, default: 0 = flush on write)
    """
    global _instance
    if _instance is not None:
        return _instance

    config = config or {}
    backend = config.get("store_backend", "memory")

    if backend == "file":
        from database.store_file import FileConversationStore
        data_dir = config.get("store_file_dir", "./data")
        _instance = FileConversationStore(
            data_dir=data_dir,
            flush_interval_s=config.get("flush_interval_s", 0),
        )
        logger.info("store_created", backend="file", data_dir=data_dir)

    else:  # "memory" or default
        if backend != "memory":
            logger.warning("unknown_store_backend", backend=backend, fallback="memory")
        from database.store_memory import InMemoryConversationStore
        _instance = InMemoryConversationStore()
        logger.info("store_created", backend="memory")

    return _instance


def get_store() -> BaseConversationStore:
    """Return the singleton store instance, creating a memory store if none exists."""
    global _instance
    if _instance is None:
        _instance = create_store()
    return _instance


def reset_store() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
