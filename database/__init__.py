"""
Database layer — Conversation Store port and its backends.

Backends:
  - In-memory (dict-based, for development/testing)
  - File (JSON files on disk, for small deployments)

Quick start:
  from database import create_store, get_store
  store = create_store({"store_backend": "memory"})
  agent = await store.get_agent("tenant-1", "agent-1")
"""
from database.store_base import BaseConversationStore
from database.store_memory import InMemoryConversationStore
from database.store_file import FileConversationStore
from database.store_factory import create_store, get_store, reset_store

__all__ = [
    # Store interface
    "BaseConversationStore",
    # Store backends
    "InMemoryConversationStore", "FileConversationStore",
    # Factory
    "create_store", "get_store", "reset_store",
]
