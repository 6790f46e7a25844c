"""
Conversational Agent Engine — drives one conversation turn at a time.

For every inbound message:
  1. Serialize on (tenant, user, channel)
  2. Select the agent for the channel
  3. Escalation guard (keywords win over everything else)
  4. Load the open conversation or start a new one
  5. Record the user turn, enforce max turns
  6. Dispatch on current_step:
       greeting → understanding_intent → collecting_parameters
                → confirmation → executing_action
  7. Record the agent turn, derive status, persist

process_message() never raises: any failure is logged and turned into
the locale's internal-error reply.
"""
from __future__ import annotations

import time
import structlog
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from config.settings import EngineConfig, get_settings
from context.escalation import exceeds_max_turns, should_escalate
from context.extraction import ParameterExtractor
from context.locale import LocalePack, LocaleRegistry, ReplyClassifier
from context.locks import KeyedLock
from context.selector import AgentSelector
from context.state_machine import FALLBACK_STEP, StepGraph
from core.errors import (
    AgentNotFoundError, ConversationConflictError, ConversationNotFoundError,
)
from core.ports import ActionExecutor, IntentAnalyzer
from database.store_base import BaseConversationStore
from models.schemas import (
    ActionRequest, ActionResult, Agent, Conversation, ConversationResponse,
    ConversationStatus, ConversationStep, ExecutionContext, MenuOption,
    MessageContext, MessageRole, ReplyChoice, utcnow,
)

logger = structlog.get_logger()

# Inbound metadata forwarded to the executor as request config
PASSTHROUGH_METADATA_KEYS = ("ticket_id", "message_id", "thread_id")


@dataclass
class Turn:
    """Everything a step handler needs for the message being processed."""
    agent: Agent
    conversation: Conversation
    context: MessageContext
    pack: LocalePack
    started: float


@dataclass
class StepReply:
    message: str
    menu_options: list[MenuOption] = field(default_factory=list)
    asked_param: Optional[str] = None
    action_executed: bool = False
    escalated: bool = False
    conversation_complete: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


class ConversationalAgentEngine:
    """
    Runs the step machine for agent-led conversations.

    Collaborators are injected; only store, analyzer and executor are
    mandatory, the rest default to the built-in registries.
    """

    def __init__(
        self,
        store: BaseConversationStore,
        intent_analyzer: IntentAnalyzer,
        action_executor: ActionExecutor,
        extractor: ParameterExtractor = None,
        locales: LocaleRegistry = None,
        steps: StepGraph = None,
        locks: KeyedLock = None,
        config: EngineConfig = None,
    ):
        self.store = store
        self.analyzer = intent_analyzer
        self.executor = action_executor
        self.config = config or get_settings().engine
        self.extractor = extractor or ParameterExtractor()
        self.locales = locales or LocaleRegistry(default_language=self.config.default_language)
        self.steps = steps or StepGraph(self.extractor.required_params)
        self.locks = locks or KeyedLock()
        self.selector = AgentSelector(store)
        self.ttl = timedelta(hours=self.config.conversation_ttl_hours)

        self._handlers = {
            ConversationStep.GREETING: self._handle_greeting,
            ConversationStep.UNDERSTANDING_INTENT: self._handle_understanding_intent,
            ConversationStep.COLLECTING_PARAMETERS: self._handle_collecting_parameters,
            ConversationStep.CONFIRMATION: self._handle_confirmation,
        }

    # ──────────────────────────────────────────────────────────────
    #  Entry point
    # ──────────────────────────────────────────────────────────────

    async def process_message(self, context: MessageContext) -> ConversationResponse:
        started = time.monotonic()
        agent: Optional[Agent] = None
        try:
            async with self.locks.acquire(context.key):
                agent = await self.selector.select_agent(context.channel_type, context.tenant_id)
                if agent is None:
                    pack = self.locales.get(None)
                    return ConversationResponse(message=pack.text("no_agent"), conversation_complete=True)
                return await self._process(agent, context, started)
        except Exception as e:
            logger.exception("process_message_failed",
                             tenant_id=context.tenant_id,
                             user_id=context.user_id,
                             channel_type=context.channel_type,
                             error=str(e))
            pack = self.locales.get(agent.display_language if agent else None)
            return ConversationResponse(message=pack.text("internal_error"), conversation_complete=True)

    async def _process(self, agent: Agent, context: MessageContext, started: float) -> ConversationResponse:
        pack = self.locales.get(agent.display_language)

        if should_escalate(agent, context.content):
            return await self._escalate_by_keyword(agent, context, pack)

        conversation = await self._load_or_create(agent, context)
        conversation.add_message(MessageRole.USER, context.content, dict(context.metadata), ttl=self.ttl)
        turn = Turn(agent=agent, conversation=conversation, context=context, pack=pack, started=started)

        if self.config.enforce_max_turns and exceeds_max_turns(agent, conversation):
            conversation.update_status(ConversationStatus.ESCALATED)
            logger.info("conversation_escalated", reason="max_turns",
                        conversation_id=conversation.id,
                        user_turns=conversation.user_turn_count)
            reply = StepReply(message=pack.text("escalation_max_turns"),
                              escalated=True, conversation_complete=True)
        else:
            handler = self._handlers.get(conversation.current_step, self._handle_fallback)
            reply = await handler(turn)

        return await self._finish(turn, reply)

    # ──────────────────────────────────────────────────────────────
    #  Conversation lifecycle
    # ──────────────────────────────────────────────────────────────

    async def _load_or_create(self, agent: Agent, context: MessageContext) -> Conversation:
        conversation = await self.store.find_active_conversation(*context.key)
        if conversation is not None:
            return conversation

        conversation = Conversation(
            tenant_id=context.tenant_id,
            agent_id=agent.id,
            user_id=context.user_id,
            channel_id=context.channel_id,
            channel_type=context.channel_type,
            expires_at=utcnow() + self.ttl,
        )
        try:
            return await self.store.create_conversation(conversation)
        except ConversationConflictError as e:
            # Another writer opened one between our lookup and insert
            logger.warning("conversation_create_conflict", existing_id=e.existing_id)
            existing = await self.store.find_active_conversation(*context.key)
            if existing is None:
                raise
            return existing

    async def _escalate_by_keyword(
        self, agent: Agent, context: MessageContext, pack: LocalePack,
    ) -> ConversationResponse:
        message = pack.text("escalation")
        conversation = None
        if self.config.mark_escalated_on_keyword:
            conversation = await self.store.find_active_conversation(*context.key)
        if conversation is not None:
            conversation.add_message(MessageRole.USER, context.content, dict(context.metadata), ttl=self.ttl)
            conversation.update_status(ConversationStatus.ESCALATED)
            conversation.add_message(MessageRole.AGENT, message, {"escalated": True})
            await self.store.update_conversation(conversation)

        logger.info("conversation_escalated", reason="keyword",
                    agent_id=agent.id,
                    conversation_id=conversation.id if conversation else None)
        return ConversationResponse(
            message=message,
            escalated=True,
            conversation_complete=True,
            conversation_id=conversation.id if conversation else None,
            current_step=conversation.current_step if conversation else None,
        )

    async def _finish(self, turn: Turn, reply: StepReply) -> ConversationResponse:
        conversation = turn.conversation

        metadata = dict(reply.metadata)
        if reply.menu_options:
            metadata["menu_options"] = [o.model_dump() for o in reply.menu_options]
        if reply.asked_param:
            metadata["asked_param"] = reply.asked_param
        conversation.add_message(MessageRole.AGENT, reply.message, metadata, ttl=self.ttl)

        if conversation.is_open:
            if conversation.current_step == ConversationStep.CONFIRMATION:
                conversation.update_status(ConversationStatus.WAITING_CONFIRMATION)
            else:
                conversation.update_status(ConversationStatus.WAITING_INPUT)

        await self.store.update_conversation(conversation)

        complete = reply.conversation_complete or not conversation.is_open
        return ConversationResponse(
            message=reply.message,
            requires_input=not complete,
            menu_options=reply.menu_options,
            action_executed=reply.action_executed,
            escalated=reply.escalated,
            conversation_complete=complete,
            conversation_id=conversation.id,
            current_step=conversation.current_step,
        )

    # ──────────────────────────────────────────────────────────────
    #  Step handlers
    # ──────────────────────────────────────────────────────────────

    async def _handle_greeting(self, turn: Turn) -> StepReply:
        action = await self._detect_action(turn)
        if action:
            return await self._start_action(turn, action, extract_from=turn.context.content)

        self.steps.advance(turn.conversation, ConversationStep.UNDERSTANDING_INTENT)
        return StepReply(
            message=turn.pack.text("greeting_menu", greeting=turn.agent.personality.greeting),
            menu_options=self._menu(turn),
        )

    async def _handle_understanding_intent(self, turn: Turn) -> StepReply:
        text = turn.context.content.strip()

        if text.isdigit():
            index = int(text) - 1
            if 0 <= index < len(turn.agent.enabled_actions):
                action = turn.agent.enabled_actions[index]
                turn.conversation.last_user_message.metadata["selected_option"] = text
                return await self._start_action(turn, action)
        else:
            action = await self._detect_action(turn)
            if action:
                return await self._start_action(turn, action, extract_from=turn.context.content)

        self.steps.advance(turn.conversation, ConversationStep.UNDERSTANDING_INTENT)
        return StepReply(
            message=turn.pack.text("fallback_menu", fallback=turn.agent.personality.fallback_message),
            menu_options=self._menu(turn),
        )

    async def _handle_collecting_parameters(self, turn: Turn) -> StepReply:
        conversation = turn.conversation
        action = conversation.intended_action
        if not action:
            self.steps.advance(conversation, ConversationStep.UNDERSTANDING_INTENT)
            return StepReply(
                message=turn.pack.text("fallback_menu", fallback=turn.agent.personality.fallback_message),
                menu_options=self._menu(turn),
            )

        required = self.extractor.required_params(action)
        missing_before = conversation.get_missing_params(required)
        self._extract_into(conversation, action, turn.context.content)
        self._apply_direct_answer(conversation, action, missing_before, turn.context.content)

        missing = conversation.get_missing_params(required)
        if not missing:
            return await self._to_confirmation(turn)

        attempts = conversation.increment_attempts()
        if self.config.escalate_when_stuck and conversation.is_stuck(self.config.stuck_threshold):
            conversation.update_status(ConversationStatus.ESCALATED)
            logger.info("conversation_escalated", reason="stuck",
                        conversation_id=conversation.id,
                        attempts=attempts,
                        missing=missing)
            return StepReply(message=turn.pack.text("escalation_stuck"),
                             escalated=True, conversation_complete=True)

        self.steps.advance(conversation, ConversationStep.COLLECTING_PARAMETERS)
        return StepReply(message=turn.pack.question_for(missing[0]), asked_param=missing[0])

    async def _handle_confirmation(self, turn: Turn) -> StepReply:
        conversation = turn.conversation
        choice = ReplyClassifier(turn.pack).classify(turn.context.content)
        logger.debug("confirmation_reply", conversation_id=conversation.id, choice=choice.value)

        if choice == ReplyChoice.CONFIRM:
            return await self._execute_action(turn)

        if choice == ReplyChoice.CANCEL:
            conversation.update_status(ConversationStatus.COMPLETED)
            logger.info("action_cancelled", conversation_id=conversation.id,
                        action_type=conversation.intended_action)
            return StepReply(message=turn.pack.text("cancelled"), conversation_complete=True)

        if choice == ReplyChoice.EDIT:
            conversation.clear_params()
            self.steps.advance(conversation, ConversationStep.COLLECTING_PARAMETERS)
            missing = conversation.get_missing_params(
                self.extractor.required_params(conversation.intended_action)
            )
            restart = turn.pack.text("restart")
            if not missing:
                return StepReply(message=restart)
            return StepReply(
                message=f"{restart}\n\n{turn.pack.question_for(missing[0])}",
                asked_param=missing[0],
            )

        self.steps.advance(conversation, ConversationStep.CONFIRMATION)
        return StepReply(message=turn.pack.text("confirm_reask"), menu_options=self._confirmation_menu(turn))

    async def _execute_action(self, turn: Turn) -> StepReply:
        agent, conversation, context, pack = turn.agent, turn.conversation, turn.context, turn.pack

        self.steps.advance(conversation, ConversationStep.EXECUTING_ACTION)
        # Persist the step first; the action runs at most once
        await self.store.update_conversation(conversation)

        config: dict[str, Any] = {"agent_id": agent.id}
        for key in PASSTHROUGH_METADATA_KEYS:
            if key in context.metadata:
                config[key] = context.metadata[key]

        request = ActionRequest(
            type=conversation.intended_action,
            params=conversation.public_params(),
            config=config,
            priority=1,
        )
        execution_context = ExecutionContext(
            tenant_id=context.tenant_id,
            message_data={
                "content": context.content,
                "sender": context.user_id,
                "channel": context.channel_type,
                "timestamp": utcnow().isoformat(),
                "metadata": dict(context.metadata),
            },
            rule_id=agent.id,
            rule_name=agent.name,
        )

        raised = False
        try:
            result = await self.executor.execute(request, execution_context)
        except Exception as e:
            logger.error("action_execution_failed",
                         action_id=request.id,
                         action_type=request.type,
                         conversation_id=conversation.id,
                         error=str(e))
            result = ActionResult(success=False, error=str(e))
            raised = True

        elapsed_ms = (time.monotonic() - turn.started) * 1000
        await self.store.record_agent_execution(context.tenant_id, agent.id, result.success, elapsed_ms)

        conversation.context["last_action"] = {
            "id": request.id,
            "type": request.type,
            "success": result.success,
            "error": result.error,
        }
        conversation.update_status(ConversationStatus.COMPLETED)
        logger.info("action_executed",
                    action_id=request.id,
                    action_type=request.type,
                    conversation_id=conversation.id,
                    success=result.success,
                    duration_ms=round(elapsed_ms, 1))

        if result.success:
            return StepReply(
                message=result.message or pack.text("action_success"),
                action_executed=True,
                conversation_complete=True,
                metadata={"action_id": request.id},
            )
        if raised:
            message = pack.text("action_error")
        else:
            message = pack.text("action_failure", error=result.error or pack.text("unknown_error"))
        return StepReply(message=message, conversation_complete=True, metadata={"action_id": request.id})

    async def _handle_fallback(self, turn: Turn) -> StepReply:
        logger.warning("unknown_step_reset",
                       conversation_id=turn.conversation.id,
                       step=str(turn.conversation.current_step))
        turn.conversation.update_step(FALLBACK_STEP)
        return StepReply(
            message=turn.pack.text("fallback_restart", fallback=turn.agent.personality.fallback_message),
            menu_options=self._menu(turn),
        )

    # ──────────────────────────────────────────────────────────────
    #  Helpers
    # ──────────────────────────────────────────────────────────────

    async def _detect_action(self, turn: Turn) -> Optional[str]:
        payload = {
            "content": turn.context.content,
            "sender": turn.context.user_id,
            "channel": turn.context.channel_type,
            "timestamp": utcnow().isoformat(),
        }
        analysis = await self.analyzer.analyze(payload)
        return self._match_action(turn.agent, analysis.intent)

    @staticmethod
    def _match_action(agent: Agent, intent: Optional[str]) -> Optional[str]:
        """First enabled action the intent label names (substring, either direction)."""
        if not intent:
            return None
        label = intent.strip().lower()
        if not label:
            return None
        for action in agent.enabled_actions:
            candidate = action.lower()
            if label in candidate or candidate in label:
                return action
        return None

    async def _start_action(self, turn: Turn, action: str, extract_from: str = None) -> StepReply:
        conversation = turn.conversation
        conversation.set_intended_action(action)
        self.steps.advance(conversation, ConversationStep.COLLECTING_PARAMETERS)
        logger.info("intent_identified", conversation_id=conversation.id, action_type=action)

        if extract_from is not None:
            self._extract_into(conversation, action, extract_from)

        opening = turn.pack.text("intent_opening", action=turn.pack.action_name(action))
        missing = conversation.get_missing_params(self.extractor.required_params(action))
        if not missing:
            return await self._to_confirmation(turn, prefix=opening)
        return StepReply(
            message=f"{opening}\n\n{turn.pack.question_for(missing[0])}",
            asked_param=missing[0],
        )

    def _extract_into(self, conversation: Conversation, action: str, text: str) -> None:
        result = self.extractor.extract(action, text)
        if result:
            values, inferred = dict(result.values), dict(result.inferred)
            for key in self.extractor.fill_only_params(action):
                if key in values:
                    inferred[key] = values.pop(key)
            conversation.merge_params(values, inferred)
            conversation.last_user_message.metadata["extracted"] = result.as_dict()

    def _apply_direct_answer(
        self, conversation: Conversation, action: str, missing_before: list[str], text: str,
    ) -> None:
        """
        A reply that fills none of the missing params is taken as the answer
        to the question we last asked, unless that param needs a pattern match.
        """
        last_agent = conversation.last_agent_message
        asked = last_agent.metadata.get("asked_param") if last_agent else None
        if not asked or asked not in missing_before:
            return
        if not self.extractor.accepts_direct_answer(action, asked):
            return
        still_missing = conversation.get_missing_params(missing_before)
        if len(still_missing) < len(missing_before) or asked not in still_missing:
            return
        answer = text.strip()
        if answer:
            conversation.merge_params({asked: answer})

    async def _to_confirmation(self, turn: Turn, prefix: str = None) -> StepReply:
        if not turn.agent.conversation_config.require_confirmation:
            return await self._execute_action(turn)

        self.steps.advance(turn.conversation, ConversationStep.CONFIRMATION)
        summary = self._confirmation_summary(turn)
        return StepReply(
            message=f"{prefix}\n\n{summary}" if prefix else summary,
            menu_options=self._confirmation_menu(turn),
        )

    def _confirmation_summary(self, turn: Turn) -> str:
        pack = turn.pack
        lines = [
            pack.text("confirmation_header"),
            "",
            pack.text("confirmation_action", action=pack.action_name(turn.conversation.intended_action)),
        ]
        for key, value in turn.conversation.public_params().items():
            if isinstance(value, (list, tuple)):
                value = ", ".join(str(v) for v in value)
            lines.append(f"**{key}:** {value}")
        lines += ["", pack.text("confirmation_footer")]
        return "\n".join(lines)

    @staticmethod
    def _menu(turn: Turn) -> list[MenuOption]:
        if not turn.agent.conversation_config.use_menus:
            return []
        return [
            MenuOption(id=str(i), text=turn.pack.action_name(action), value=action)
            for i, action in enumerate(turn.agent.enabled_actions, start=1)
        ]

    @staticmethod
    def _confirmation_menu(turn: Turn) -> list[MenuOption]:
        if not turn.agent.conversation_config.use_menus:
            return []
        pack = turn.pack
        return [
            MenuOption(id="1", text=pack.text("option_confirm"), value=ReplyChoice.CONFIRM.value),
            MenuOption(id="2", text=pack.text("option_cancel"), value=ReplyChoice.CANCEL.value),
            MenuOption(id="3", text=pack.text("option_edit"), value=ReplyChoice.EDIT.value),
        ]

    # ──────────────────────────────────────────────────────────────
    #  Lookups and maintenance
    # ──────────────────────────────────────────────────────────────

    async def get_agent(self, tenant_id: str, agent_id: str) -> Agent:
        agent = await self.store.get_agent(tenant_id, agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    async def get_conversation(self, tenant_id: str, conversation_id: str) -> Conversation:
        conversation = await self.store.get_conversation(tenant_id, conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def expire_conversations(self) -> int:
        return await self.store.cleanup_expired(utcnow())
