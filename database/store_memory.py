"""
InMemoryConversationStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database, no Redis)
  - Full interface compatibility with BaseConversationStore
  - Records kept as JSON-ready dicts, so callers always get fresh copies
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import asyncio
import structlog
from collections import Counter
from datetime import datetime
from typing import Any, Optional

from core.errors import ConversationConflictError
from database.store_base import BaseConversationStore
from models.schemas import (
    OPEN_STATUSES, Agent, Conversation, ConversationStatus, utcnow,
)

logger = structlog.get_logger()

_OPEN_VALUES = {s.value for s in OPEN_STATUSES}


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class InMemoryConversationStore(BaseConversationStore):
    """
    Full-featured in-memory store.
    Agents are keyed by "tenant_id:agent_id", conversations by id.
    """

    def __init__(self):
        self._agents: dict[str, dict] = {}              # "tenant:agent_id" → agent dict
        self._conversations: dict[str, dict] = {}       # id → conversation dict
        self._stats_lock = asyncio.Lock()
        logger.info("inmemory_store_initialized")

    @staticmethod
    def _agent_key(tenant_id: str, agent_id: str) -> str:
        return f"{tenant_id}:{agent_id}"

    # ── Agents ────────────────────────────────────────────

    async def create_agent(self, agent: Agent) -> Agent:
        self._agents[self._agent_key(agent.tenant_id, agent.id)] = agent.model_dump(mode="json")
        logger.info("agent_created", agent_id=agent.id, tenant_id=agent.tenant_id)
        return agent.model_copy(deep=True)

    async def get_agent(self, tenant_id: str, agent_id: str) -> Optional[Agent]:
        data = self._agents.get(self._agent_key(tenant_id, agent_id))
        return Agent.model_validate(data) if data else None

    async def update_agent(self, agent: Agent) -> Agent:
        agent.updated_at = utcnow()
        self._agents[self._agent_key(agent.tenant_id, agent.id)] = agent.model_dump(mode="json")
        return agent.model_copy(deep=True)

    async def list_agents(self, tenant_id: str, active_only: bool = False) -> list[Agent]:
        agents = [
            Agent.model_validate(a) for a in self._agents.values()
            if a["tenant_id"] == tenant_id
        ]
        if active_only:
            agents = [a for a in agents if a.is_active]
        return agents

    async def find_agents_by_channel(self, tenant_id: str, channel_type: str) -> list[Agent]:
        agents = await self.list_agents(tenant_id, active_only=True)
        return [a for a in agents if a.supports_channel(channel_type)]

    async def record_agent_execution(
        self, tenant_id: str, agent_id: str, success: bool, response_time_ms: float,
    ) -> Optional[Agent]:
        async with self._stats_lock:
            agent = await self.get_agent(tenant_id, agent_id)
            if agent is None:
                logger.warning("agent_stats_target_missing", agent_id=agent_id, tenant_id=tenant_id)
                return None
            agent.apply_execution(success, response_time_ms)
            self._agents[self._agent_key(tenant_id, agent_id)] = agent.model_dump(mode="json")
            return agent

    # ── Conversations ─────────────────────────────────────

    def _open_for_key(self, tenant_id: str, user_id: str, channel_id: str) -> list[dict]:
        return [
            c for c in self._conversations.values()
            if c["tenant_id"] == tenant_id
            and c["user_id"] == user_id
            and c["channel_id"] == channel_id
            and c["status"] in _OPEN_VALUES
        ]

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        now = utcnow()
        for existing in self._open_for_key(*conversation.key):
            if _parse_ts(existing["expires_at"]) > now:
                raise ConversationConflictError(conversation.key, existing["id"])
            existing["status"] = ConversationStatus.EXPIRED.value
            existing["updated_at"] = now.isoformat()
            logger.info("conversation_expired_on_replace", conversation_id=existing["id"])

        self._conversations[conversation.id] = conversation.model_dump(mode="json")
        logger.info("conversation_created",
                    conversation_id=conversation.id,
                    agent_id=conversation.agent_id,
                    channel_type=conversation.channel_type)
        return conversation.model_copy(deep=True)

    async def get_conversation(self, tenant_id: str, conversation_id: str) -> Optional[Conversation]:
        data = self._conversations.get(conversation_id)
        if not data or data["tenant_id"] != tenant_id:
            return None
        return Conversation.model_validate(data)

    async def find_active_conversation(
        self, tenant_id: str, user_id: str, channel_id: str,
    ) -> Optional[Conversation]:
        now = utcnow()
        live = [
            c for c in self._open_for_key(tenant_id, user_id, channel_id)
            if _parse_ts(c["expires_at"]) > now
        ]
        if not live:
            return None
        live.sort(key=lambda c: c.get("last_message_at", ""), reverse=True)
        return Conversation.model_validate(live[0])

    async def update_conversation(self, conversation: Conversation) -> Conversation:
        conversation.updated_at = utcnow()
        self._conversations[conversation.id] = conversation.model_dump(mode="json")
        return conversation.model_copy(deep=True)

    async def list_conversations(
        self,
        tenant_id: str,
        status: ConversationStatus = None,
        agent_id: str = None,
        limit: int = 50,
    ) -> list[Conversation]:
        convs = [c for c in self._conversations.values() if c["tenant_id"] == tenant_id]
        if status:
            convs = [c for c in convs if c["status"] == ConversationStatus(status).value]
        if agent_id:
            convs = [c for c in convs if c["agent_id"] == agent_id]
        convs.sort(key=lambda c: c.get("updated_at", ""), reverse=True)
        return [Conversation.model_validate(c) for c in convs[:limit]]

    async def cleanup_expired(self, now: datetime = None) -> int:
        now = now or utcnow()
        expired = 0
        for conv in self._conversations.values():
            if conv["status"] in _OPEN_VALUES and _parse_ts(conv["expires_at"]) <= now:
                conv["status"] = ConversationStatus.EXPIRED.value
                conv["updated_at"] = now.isoformat()
                expired += 1
        if expired:
            logger.info("conversations_expired", count=expired)
        return expired

    # ── Stats ─────────────────────────────────────────────

    async def get_conversation_stats(self, tenant_id: str, agent_id: str = None) -> dict[str, Any]:
        convs = [
            c for c in self._conversations.values()
            if c["tenant_id"] == tenant_id and (agent_id is None or c["agent_id"] == agent_id)
        ]
        by_status = Counter(c["status"] for c in convs)
        turns = [len(c.get("conversation_history") or []) for c in convs]
        return {
            "total": len(convs),
            "open": sum(by_status[s] for s in _OPEN_VALUES),
            "by_status": dict(by_status),
            "average_messages": (sum(turns) / len(turns)) if turns else 0.0,
        }

    # ── Stats (for debugging) ─────────────────────────────

    def stats(self) -> dict[str, int]:
        return {
            "agents": len(self._agents),
            "conversations": len(self._conversations),
        }
