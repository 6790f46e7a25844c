"""Shared test fixtures for the conversational agent engine."""
import pytest
import pytest_asyncio
from typing import Any, Optional

from config.settings import EngineConfig
from core.engine import ConversationalAgentEngine
from core.ports import ActionExecutor, IntentAnalyzer
from database.store_memory import InMemoryConversationStore
from models.schemas import (
    ActionRequest, ActionResult, Agent, AgentPersonality, ConversationConfig,
    ExecutionContext, IntentAnalysis, MessageContext,
)


TENANT = "tenant-1"


class FakeIntentAnalyzer(IntentAnalyzer):
    """Maps phrases to intents; the first phrase contained in the message wins."""

    def __init__(self, intents: dict[str, str] = None, error: Exception = None):
        self.intents = intents or {}
        self.error = error
        self.payloads: list[dict[str, Any]] = []

    async def analyze(self, payload: dict[str, Any]) -> IntentAnalysis:
        self.payloads.append(payload)
        if self.error:
            raise self.error
        content = payload["content"].lower()
        for phrase, intent in self.intents.items():
            if phrase in content:
                return IntentAnalysis(intent=intent, confidence=0.9)
        return IntentAnalysis(intent=None, confidence=0.0)


class FakeActionExecutor(ActionExecutor):
    def __init__(self, result: ActionResult = None, error: Exception = None):
        self.result = result or ActionResult(success=True, message="Ticket #123 criado.")
        self.error = error
        self.calls: list[tuple[ActionRequest, ExecutionContext]] = []

    async def execute(self, request: ActionRequest, context: ExecutionContext) -> ActionResult:
        self.calls.append((request, context))
        if self.error:
            raise self.error
        return self.result


def make_agent(**overrides) -> Agent:
    data = dict(
        id="agent-support",
        tenant_id=TENANT,
        name="Assistente de Suporte",
        channels=["chat", "whatsapp", "email"],
        enabled_actions=["create_ticket", "send_notification", "create_schedule"],
        priority=5,
        personality=AgentPersonality(
            language="pt-BR",
            greeting="Olá! Sou o assistente virtual.",
            fallback_message="Desculpe, não entendi.",
        ),
        conversation_config=ConversationConfig(
            use_menus=True,
            max_turns=20,
            require_confirmation=True,
            escalation_keywords=["atendente", "humano"],
        ),
    )
    data.update(overrides)
    return Agent(**data)


def make_message(content: str, user_id: str = "user-1", channel_type: str = "chat",
                 channel_id: Optional[str] = None, **metadata) -> MessageContext:
    return MessageContext(
        tenant_id=TENANT,
        user_id=user_id,
        channel_id=channel_id or f"{channel_type}-{user_id}",
        channel_type=channel_type,
        content=content,
        metadata=metadata,
    )


@pytest.fixture
def agent() -> Agent:
    return make_agent()


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest_asyncio.fixture
async def seeded_store(store, agent) -> InMemoryConversationStore:
    await store.create_agent(agent)
    return store


@pytest.fixture
def analyzer() -> FakeIntentAnalyzer:
    return FakeIntentAnalyzer({
        "problema": "create_ticket",
        "ticket": "create_ticket",
        "notifica": "send_notification",
        "agendar": "create_schedule",
    })


@pytest.fixture
def executor() -> FakeActionExecutor:
    return FakeActionExecutor()


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(
        conversation_ttl_hours=24,
        stuck_threshold=5,
        escalate_when_stuck=True,
        enforce_max_turns=True,
        default_language="pt",
    )


@pytest.fixture
def engine(seeded_store, analyzer, executor, engine_config) -> ConversationalAgentEngine:
    return ConversationalAgentEngine(
        store=seeded_store,
        intent_analyzer=analyzer,
        action_executor=executor,
        config=engine_config,
    )
