"""
Abstract Conversation Store — Interface for all storage backends.

Implementations:
  - InMemoryConversationStore (dict-based, single-process, no persistence)
  - FileConversationStore     (JSON files on disk, single-process, durable)

Stores hand out copies: mutating a returned Agent or Conversation has no
effect until it is written back with update_*(). Agent stats are the one
exception to whole-record writes, see record_agent_execution().
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from models.schemas import Agent, Conversation, ConversationStatus


class BaseConversationStore(ABC):
    """Interface that all conversation store backends must implement."""

    # ── Agents ────────────────────────────────────────────────

    @abstractmethod
    async def create_agent(self, agent: Agent) -> Agent:
        ...

    @abstractmethod
    async def get_agent(self, tenant_id: str, agent_id: str) -> Optional[Agent]:
        ...

    @abstractmethod
    async def update_agent(self, agent: Agent) -> Agent:
        ...

    @abstractmethod
    async def list_agents(self, tenant_id: str, active_only: bool = False) -> list[Agent]:
        ...

    @abstractmethod
    async def find_agents_by_channel(self, tenant_id: str, channel_type: str) -> list[Agent]:
        """Active agents of the tenant that serve `channel_type`."""
        ...

    @abstractmethod
    async def record_agent_execution(
        self, tenant_id: str, agent_id: str, success: bool, response_time_ms: float,
    ) -> Optional[Agent]:
        """Atomically fold one action execution into the agent's stats."""
        ...

    # ── Conversations ─────────────────────────────────────────

    @abstractmethod
    async def create_conversation(self, conversation: Conversation) -> Conversation:
        """
        Persist a new conversation. Raises ConversationConflictError when a live
        open conversation already exists for the same (tenant, user, channel).
        """
        ...

    @abstractmethod
    async def get_conversation(self, tenant_id: str, conversation_id: str) -> Optional[Conversation]:
        ...

    @abstractmethod
    async def find_active_conversation(
        self, tenant_id: str, user_id: str, channel_id: str,
    ) -> Optional[Conversation]:
        """The open, unexpired conversation for the key, if any."""
        ...

    @abstractmethod
    async def update_conversation(self, conversation: Conversation) -> Conversation:
        ...

    @abstractmethod
    async def list_conversations(
        self,
        tenant_id: str,
        status: ConversationStatus = None,
        agent_id: str = None,
        limit: int = 50,
    ) -> list[Conversation]:
        ...

    @abstractmethod
    async def cleanup_expired(self, now: datetime = None) -> int:
        """Mark open conversations past expires_at as expired. Returns the count."""
        ...

    # ── Stats ─────────────────────────────────────────────────

    @abstractmethod
    async def get_conversation_stats(self, tenant_id: str, agent_id: str = None) -> dict[str, Any]:
        ...
