"""
Core data models for the conversational agent engine.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


DEFAULT_CONVERSATION_TTL = timedelta(hours=24)
STUCK_THRESHOLD = 5
ATTEMPT_COUNT_KEY = "_attempt_count"


def _default_expiry() -> datetime:
    return utcnow() + DEFAULT_CONVERSATION_TTL


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class ChannelType(str, Enum):
    CHAT = "chat"
    EMAIL = "email"
    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"
    SMS = "sms"


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    WAITING_INPUT = "waiting_input"
    WAITING_CONFIRMATION = "waiting_confirmation"
    COMPLETED = "completed"
    ESCALATED = "escalated"
    EXPIRED = "expired"


OPEN_STATUSES = frozenset({
    ConversationStatus.ACTIVE,
    ConversationStatus.WAITING_INPUT,
    ConversationStatus.WAITING_CONFIRMATION,
})
TERMINAL_STATUSES = frozenset({
    ConversationStatus.COMPLETED,
    ConversationStatus.ESCALATED,
    ConversationStatus.EXPIRED,
})


class ConversationStep(str, Enum):
    GREETING = "greeting"
    UNDERSTANDING_INTENT = "understanding_intent"
    COLLECTING_PARAMETERS = "collecting_parameters"
    CONFIRMATION = "confirmation"
    EXECUTING_ACTION = "executing_action"


class MessageRole(str, Enum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class ReplyChoice(str, Enum):
    CONFIRM = "confirm"
    CANCEL = "cancel"
    EDIT = "edit"
    UNKNOWN = "unknown"


def _value(v: Any) -> Any:
    return v.value if isinstance(v, Enum) else v


# ──────────────────────────────────────────────────────────────
#  Agent — a configured persona that runs conversations
# ──────────────────────────────────────────────────────────────

class AgentPersonality(BaseModel):
    tone: str = "professional"
    language: str = "pt-BR"
    greeting: str = "Olá! Sou seu assistente virtual."
    fallback_message: str = "Desculpe, não entendi sua solicitação."


class ConversationConfig(BaseModel):
    use_menus: bool = True
    max_turns: int = 20                       # 0 disables the limit
    require_confirmation: bool = True
    escalation_keywords: list[str] = []


class AIConfig(BaseModel):
    """Model hints for analyzers; the engine never reads them."""
    model: str = ""
    temperature: float = 0.7
    extraction_prompt: str = ""


class AgentStats(BaseModel):
    conversations_handled: int = 0
    actions_executed: int = 0
    success_rate: float = 0.0                 # 0..1
    average_response_time: float = 0.0       # milliseconds


class Agent(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    name: str
    description: str = ""
    personality: AgentPersonality = Field(default_factory=AgentPersonality)
    channels: list[str] = []                  # channel types this agent may serve
    enabled_actions: list[str] = []           # ordered; this is the menu order
    conversation_config: ConversationConfig = Field(default_factory=ConversationConfig)
    ai_config: AIConfig = Field(default_factory=AIConfig)
    is_active: bool = True
    priority: int = 1
    stats: AgentStats = Field(default_factory=AgentStats)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def display_language(self) -> str:
        return self.personality.language

    def supports_channel(self, channel_type: str) -> bool:
        wanted = str(_value(channel_type)).lower()
        return any(str(_value(c)).lower() == wanted for c in self.channels)

    def apply_execution(self, success: bool, response_time_ms: float) -> AgentStats:
        """Fold one action execution into the running stats."""
        stats = self.stats
        stats.conversations_handled += 1
        if success:
            stats.actions_executed += 1
        n = stats.conversations_handled
        stats.success_rate = stats.actions_executed / n
        stats.average_response_time += (response_time_ms - stats.average_response_time) / n
        self.updated_at = utcnow()
        return stats


# ──────────────────────────────────────────────────────────────
#  Conversation — dialogue state for one (tenant, user, channel)
# ──────────────────────────────────────────────────────────────

class ConversationMessage(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = {}             # menu_options, selected_option, extracted, asked_param


class Conversation(BaseModel):
    id: str = Field(default_factory=lambda: f"conv_{uuid.uuid4().hex[:16]}")
    tenant_id: str
    agent_id: str
    user_id: str
    channel_id: str
    channel_type: str
    status: ConversationStatus = ConversationStatus.ACTIVE
    current_step: ConversationStep = ConversationStep.GREETING
    intended_action: Optional[str] = None
    action_params: dict[str, Any] = {}
    conversation_history: list[ConversationMessage] = []
    context: dict[str, Any] = {}
    last_message_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(default_factory=_default_expiry)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.tenant_id, self.user_id, self.channel_id)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def is_expired(self, now: datetime = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    # ── History ───────────────────────────────────────────────

    def add_message(
        self,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] = None,
        ttl: timedelta = DEFAULT_CONVERSATION_TTL,
    ) -> ConversationMessage:
        message = ConversationMessage(role=role, content=content, metadata=metadata or {})
        self.conversation_history.append(message)
        self.last_message_at = message.timestamp
        self.updated_at = message.timestamp
        if self.is_open:
            self.expires_at = message.timestamp + ttl
        return message

    def _last_by_role(self, role: MessageRole) -> Optional[ConversationMessage]:
        return next((m for m in reversed(self.conversation_history) if m.role == role), None)

    @property
    def last_user_message(self) -> Optional[ConversationMessage]:
        return self._last_by_role(MessageRole.USER)

    @property
    def last_agent_message(self) -> Optional[ConversationMessage]:
        return self._last_by_role(MessageRole.AGENT)

    @property
    def user_turn_count(self) -> int:
        return sum(1 for m in self.conversation_history if m.role == MessageRole.USER)

    # ── Action parameters ─────────────────────────────────────

    def set_intended_action(self, action_type: str) -> None:
        self.intended_action = action_type

    def public_params(self) -> dict[str, Any]:
        """Action params without reserved bookkeeping keys."""
        return {k: v for k, v in self.action_params.items() if not k.startswith("_")}

    def merge_params(self, values: dict[str, Any] = None, inferred: dict[str, Any] = None) -> None:
        """
        Enrich action_params. Explicit values win over what is stored,
        but never by blanking a key; inferred defaults only fill gaps.
        """
        merged = dict(self.action_params)
        for key, value in (inferred or {}).items():
            if _is_empty(merged.get(key)) and not _is_empty(value):
                merged[key] = value
        for key, value in (values or {}).items():
            if not _is_empty(value):
                merged[key] = value
        self.action_params = merged

    def clear_params(self) -> None:
        self.action_params = {}

    def get_missing_params(self, required: list[str]) -> list[str]:
        return [p for p in required if _is_empty(self.action_params.get(p))]

    @property
    def attempt_count(self) -> int:
        return int(self.action_params.get(ATTEMPT_COUNT_KEY, 0))

    def increment_attempts(self) -> int:
        self.action_params = {**self.action_params, ATTEMPT_COUNT_KEY: self.attempt_count + 1}
        return self.attempt_count

    def is_stuck(self, threshold: int = STUCK_THRESHOLD) -> bool:
        return self.attempt_count >= threshold

    # ── Step / status ─────────────────────────────────────────

    def update_step(self, step: ConversationStep) -> None:
        self.current_step = step
        self.updated_at = utcnow()

    def update_status(self, status: ConversationStatus) -> None:
        self.status = status
        self.updated_at = utcnow()
        if status in TERMINAL_STATUSES and self.completed_at is None:
            self.completed_at = self.updated_at


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple, set)):
        return not value
    return False


# ──────────────────────────────────────────────────────────────
#  Inbound / outbound payloads
# ──────────────────────────────────────────────────────────────

class MessageContext(BaseModel):
    """One inbound message as handed over by a channel adapter."""
    tenant_id: str
    user_id: str
    channel_id: str
    channel_type: str
    content: str
    metadata: dict[str, Any] = {}

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.tenant_id, self.user_id, self.channel_id)


class MenuOption(BaseModel):
    id: str
    text: str
    value: Any = None


class ConversationResponse(BaseModel):
    message: str
    requires_input: bool = False
    menu_options: list[MenuOption] = []
    action_executed: bool = False
    escalated: bool = False
    conversation_complete: bool = False
    conversation_id: Optional[str] = None
    current_step: Optional[ConversationStep] = None


# ──────────────────────────────────────────────────────────────
#  Port payloads — intent analysis and action execution
# ──────────────────────────────────────────────────────────────

class IntentAnalysis(BaseModel):
    """Analyzer output. Only `intent` is consumed by the engine."""
    model_config = ConfigDict(extra="allow")

    intent: Optional[str] = None
    confidence: float = 0.0


class ActionRequest(BaseModel):
    id: str = Field(default_factory=lambda: f"action_{uuid.uuid4().hex[:16]}")
    type: str
    params: dict[str, Any] = {}
    config: dict[str, Any] = {}
    priority: int = 1


class ExecutionContext(BaseModel):
    tenant_id: str
    message_data: dict[str, Any] = {}
    rule_id: str = ""
    rule_name: str = ""


class ActionResult(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    data: dict[str, Any] = {}
