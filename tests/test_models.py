"""Tests for data models: agent stats, conversation params, history and status."""
from datetime import timedelta

import pytest
from models.schemas import (
    ATTEMPT_COUNT_KEY, Agent, Conversation, ConversationStatus, ConversationStep,
    MessageContext, MessageRole, utcnow,
)


def new_conversation(**overrides) -> Conversation:
    data = dict(tenant_id="t1", agent_id="a1", user_id="u1", channel_id="c1", channel_type="chat")
    data.update(overrides)
    return Conversation(**data)


class TestAgent:
    def test_supports_channel_case_insensitive(self):
        agent = Agent(tenant_id="t1", name="A", channels=["WhatsApp", "email"])
        assert agent.supports_channel("whatsapp")
        assert agent.supports_channel("EMAIL")
        assert not agent.supports_channel("sms")

    def test_apply_execution_running_stats(self):
        agent = Agent(tenant_id="t1", name="A")
        agent.apply_execution(True, 100.0)
        agent.apply_execution(False, 300.0)

        assert agent.stats.conversations_handled == 2
        assert agent.stats.actions_executed == 1
        assert agent.stats.success_rate == pytest.approx(0.5)
        assert agent.stats.average_response_time == pytest.approx(200.0)

    def test_defaults(self):
        agent = Agent(tenant_id="t1", name="A")
        assert agent.is_active
        assert agent.priority == 1
        assert agent.display_language == "pt-BR"
        assert agent.conversation_config.require_confirmation is True


class TestConversationParams:
    def test_values_override_but_never_blank(self):
        conv = new_conversation(action_params={"title": "Old", "priority": "high"})
        conv.merge_params(values={"title": "New", "priority": "", "description": None})

        assert conv.action_params == {"title": "New", "priority": "high"}

    def test_inferred_only_fill_gaps(self):
        conv = new_conversation(action_params={"priority": "high"})
        conv.merge_params(inferred={"priority": "medium", "category": "general"})

        assert conv.action_params == {"priority": "high", "category": "general"}

    def test_missing_params_treats_blank_as_missing(self):
        conv = new_conversation(action_params={"email": "a@b.co", "subject": "  ", "tags": []})
        assert conv.get_missing_params(["email", "subject", "tags", "message"]) == [
            "subject", "tags", "message",
        ]

    def test_attempts_live_in_params_but_stay_private(self):
        conv = new_conversation(action_params={"email": "a@b.co"})
        conv.increment_attempts()
        conv.increment_attempts()

        assert conv.attempt_count == 2
        assert conv.action_params[ATTEMPT_COUNT_KEY] == 2
        assert conv.public_params() == {"email": "a@b.co"}
        assert not conv.is_stuck()

    def test_is_stuck_at_threshold(self):
        conv = new_conversation()
        for _ in range(5):
            conv.increment_attempts()
        assert conv.is_stuck()
        assert conv.is_stuck(threshold=5)
        assert not conv.is_stuck(threshold=6)

    def test_clear_params_resets_attempts(self):
        conv = new_conversation(action_params={"title": "x"})
        conv.increment_attempts()
        conv.clear_params()
        assert conv.action_params == {}
        assert conv.attempt_count == 0


class TestConversationHistory:
    def test_add_message_updates_timestamps_and_expiry(self):
        conv = new_conversation()
        msg = conv.add_message(MessageRole.USER, "oi", ttl=timedelta(hours=1))

        assert conv.last_message_at == msg.timestamp
        assert conv.expires_at == msg.timestamp + timedelta(hours=1)
        assert conv.last_user_message is msg
        assert conv.last_agent_message is None

    def test_closed_conversation_expiry_is_not_refreshed(self):
        conv = new_conversation(status=ConversationStatus.COMPLETED)
        before = conv.expires_at
        conv.add_message(MessageRole.AGENT, "tchau", ttl=timedelta(days=30))
        assert conv.expires_at == before

    def test_user_turn_count(self):
        conv = new_conversation()
        conv.add_message(MessageRole.USER, "a")
        conv.add_message(MessageRole.AGENT, "b")
        conv.add_message(MessageRole.USER, "c")
        assert conv.user_turn_count == 2
        assert conv.last_user_message.content == "c"
        assert conv.last_agent_message.content == "b"

    def test_is_expired(self):
        conv = new_conversation(expires_at=utcnow() - timedelta(seconds=1))
        assert conv.is_expired()
        assert not new_conversation().is_expired()


class TestConversationStatus:
    def test_defaults(self):
        conv = new_conversation()
        assert conv.id.startswith("conv_")
        assert conv.status == ConversationStatus.ACTIVE
        assert conv.current_step == ConversationStep.GREETING
        assert conv.is_open

    def test_terminal_status_stamps_completed_at(self):
        conv = new_conversation()
        conv.update_status(ConversationStatus.WAITING_INPUT)
        assert conv.completed_at is None

        conv.update_status(ConversationStatus.ESCALATED)
        assert conv.completed_at is not None
        assert not conv.is_open

    def test_key_matches_message_context(self):
        conv = new_conversation()
        ctx = MessageContext(tenant_id="t1", user_id="u1", channel_id="c1", channel_type="chat", content="x")
        assert conv.key == ctx.key

    def test_json_round_trip_keeps_enums(self):
        conv = new_conversation()
        conv.add_message(MessageRole.USER, "oi", {"selected_option": "1"})
        restored = Conversation.model_validate(conv.model_dump(mode="json"))

        assert restored.conversation_history[0].role == MessageRole.USER
        assert restored.conversation_history[0].metadata == {"selected_option": "1"}
        assert restored.expires_at == conv.expires_at
