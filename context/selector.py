"""Agent Selector — picks the agent that serves an inbound channel."""
from __future__ import annotations

import structlog
from typing import Optional

from database.store_base import BaseConversationStore
from models.schemas import Agent

logger = structlog.get_logger()


class AgentSelector:
    """
    Highest priority wins among the tenant's active agents for the channel.
    Ties go to the smallest agent id so the choice is stable across calls.
    """

    def __init__(self, store: BaseConversationStore):
        self.store = store

    async def select_agent(self, channel_type: str, tenant_id: str) -> Optional[Agent]:
        agents = await self.store.find_agents_by_channel(tenant_id, channel_type)
        eligible = [a for a in agents if a.is_active and a.supports_channel(channel_type)]
        if not eligible:
            logger.info("no_agent_for_channel", tenant_id=tenant_id, channel_type=channel_type)
            return None

        eligible.sort(key=lambda a: (-a.priority, a.id))
        chosen = eligible[0]
        logger.debug("agent_selected",
                     agent_id=chosen.id,
                     priority=chosen.priority,
                     candidates=len(eligible))
        return chosen
