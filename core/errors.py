"""
Error hierarchy for the agent engine.

Step handlers raise these only for programmer-error conditions; the
engine's process_message boundary converts every exception into a
terminal user-facing reply.
"""
from __future__ import annotations


class AgentEngineError(Exception):
    """Base exception for all engine operations."""

    def __init__(self, message: str, retryable: bool = False):
        self.retryable = retryable
        super().__init__(message)


class AgentNotFoundError(AgentEngineError):
    def __init__(self, agent_id: str = ""):
        self.agent_id = agent_id
        super().__init__(f"Agent not found: {agent_id}")


class ConversationNotFoundError(AgentEngineError):
    def __init__(self, conversation_id: str = ""):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class ConversationConflictError(AgentEngineError):
    """An open conversation already exists for the (tenant, user, channel) key."""

    def __init__(self, key: tuple[str, str, str], existing_id: str = ""):
        self.key = key
        self.existing_id = existing_id
        super().__init__(f"Open conversation {existing_id} already exists for {key}", retryable=True)


class InvalidStepTransitionError(AgentEngineError):
    def __init__(self, from_step: str, to_step: str):
        self.from_step = from_step
        self.to_step = to_step
        super().__init__(f"Invalid step transition {from_step} → {to_step}")


class ActionNotReadyError(AgentEngineError):
    """Execution attempted without an intended action or with params missing."""


class IntentAnalysisError(AgentEngineError):
    def __init__(self, message: str):
        super().__init__(message, retryable=True)


class ActionExecutionError(AgentEngineError):
    def __init__(self, message: str, action_type: str = "", retryable: bool = False):
        self.action_type = action_type
        super().__init__(message, retryable=retryable)
