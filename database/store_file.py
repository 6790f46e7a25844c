"""
FileConversationStore — JSON file-backed store with persistence across restarts.

Data layout:
  {data_dir}/
    agents.json
    conversations.json

Features:
  - Survives process restarts (unlike InMemoryConversationStore)
  - No external dependencies (no database server)
  - Flush on every mutation, or batched with flush_interval_s > 0
  - Single-process only (no concurrent write safety across processes)

Best for: small deployments, demos, edge devices, air-gapped environments.
"""
from __future__ import annotations

import asyncio
import json
import structlog
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from database.store_memory import InMemoryConversationStore
from models.schemas import Agent, Conversation

logger = structlog.get_logger()

_COLLECTIONS = ["agents", "conversations"]


class FileConversationStore(InMemoryConversationStore):
    """
    Extends InMemoryConversationStore with JSON file persistence.

    On init: loads all data from JSON files into memory.
    On every write: flushes the changed collection to disk.
    """

    def __init__(self, data_dir: str = "./data", flush_interval_s: float = 0):
        super().__init__()
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._flush_interval = flush_interval_s
        self._dirty: set[str] = set()
        self._flush_task: Optional[asyncio.Task] = None
        self._load_all()
        logger.info("file_store_initialized", data_dir=str(self._data_dir))

    # ── Load / Save ───────────────────────────────────────

    def _file_path(self, collection: str) -> Path:
        return self._data_dir / f"{collection}.json"

    def _load_all(self):
        """Load all collections from disk."""
        for collection in _COLLECTIONS:
            path = self._file_path(collection)
            if not path.exists():
                continue
            try:
                with open(path, "r") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("file_store_load_error", collection=collection, error=str(e))
                continue
            if not isinstance(data, dict):
                logger.warning("file_store_bad_format", collection=collection)
                continue
            if collection == "agents":
                self._agents = data
            else:
                self._conversations = data
            logger.debug("file_store_loaded", collection=collection, records=len(data))

    def _get_collection_data(self, collection: str) -> dict[str, Any]:
        return self._agents if collection == "agents" else self._conversations

    def _flush_collection(self, collection: str):
        """Write a single collection to disk."""
        path = self._file_path(collection)
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(self._get_collection_data(collection), f, indent=2, default=str)
        tmp_path.replace(path)

    def _mark_dirty(self, *collections: str):
        if self._flush_interval <= 0:
            for c in collections:
                self._flush_collection(c)
        else:
            self._dirty.update(collections)
            if self._flush_task is None or self._flush_task.done():
                self._flush_task = asyncio.get_running_loop().create_task(self._deferred_flush())

    async def _deferred_flush(self):
        """Batch flush after interval."""
        await asyncio.sleep(self._flush_interval)
        dirty = self._dirty.copy()
        self._dirty.clear()
        for c in dirty:
            self._flush_collection(c)

    def flush_all(self):
        """Force flush all collections to disk."""
        for c in _COLLECTIONS:
            self._flush_collection(c)
        logger.info("file_store_flushed_all")

    # ── Override write methods to trigger persistence ──────

    async def create_agent(self, agent: Agent) -> Agent:
        result = await super().create_agent(agent)
        self._mark_dirty("agents")
        return result

    async def update_agent(self, agent: Agent) -> Agent:
        result = await super().update_agent(agent)
        self._mark_dirty("agents")
        return result

    async def record_agent_execution(
        self, tenant_id: str, agent_id: str, success: bool, response_time_ms: float,
    ) -> Optional[Agent]:
        result = await super().record_agent_execution(tenant_id, agent_id, success, response_time_ms)
        if result is not None:
            self._mark_dirty("agents")
        return result

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        result = await super().create_conversation(conversation)
        self._mark_dirty("conversations")
        return result

    async def update_conversation(self, conversation: Conversation) -> Conversation:
        result = await super().update_conversation(conversation)
        self._mark_dirty("conversations")
        return result

    async def cleanup_expired(self, now: datetime = None) -> int:
        count = await super().cleanup_expired(now)
        if count:
            self._mark_dirty("conversations")
        return count
