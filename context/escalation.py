"""
Escalation Guard — decides when a conversation must go to a human.

Pure predicates over agent config and conversation state. The engine
evaluates should_escalate() before any step handler runs, so a keyword
interrupts the dialogue at any point.
"""
from __future__ import annotations

from models.schemas import Agent, Conversation


def should_escalate(agent: Agent, raw_text: str) -> bool:
    """Case-insensitive substring match against the agent's escalation keywords."""
    if not raw_text:
        return False
    text = raw_text.lower()
    return any(
        kw.strip().lower() in text
        for kw in agent.conversation_config.escalation_keywords
        if kw and kw.strip()
    )


def exceeds_max_turns(agent: Agent, conversation: Conversation) -> bool:
    """True once the user has taken more turns than the agent allows (0 = unlimited)."""
    max_turns = agent.conversation_config.max_turns
    if max_turns <= 0:
        return False
    return conversation.user_turn_count > max_turns
