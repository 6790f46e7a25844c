"""
Step graph — the allowed moves of a conversation's current_step.

    greeting ──────────────┬──────────────▶ collecting_parameters ◀──┐
        │                  │                   │  ▲   │   (loop)     │ edit
        ▼                  │                   │  │   ▼              │
    understanding_intent ──┘                   │  └ confirmation ────┘
        (loop)                                 │        │ confirm
                                               ▼        ▼
                                          executing_action  (terminal)

collecting_parameters → executing_action is taken only when the agent has
require_confirmation switched off. Any step may fall back to
understanding_intent.

The graph is enforced, not advisory: StepGraph.advance() raises on any
other move, and entering executing_action requires an intended action with
every required parameter present.
"""
from __future__ import annotations

import structlog
from typing import Callable, Optional

from core.errors import ActionNotReadyError, InvalidStepTransitionError
from models.schemas import Conversation, ConversationStep

logger = structlog.get_logger()

S = ConversationStep

STEP_TRANSITIONS: dict[ConversationStep, frozenset[ConversationStep]] = {
    S.GREETING: frozenset({S.COLLECTING_PARAMETERS, S.UNDERSTANDING_INTENT}),
    S.UNDERSTANDING_INTENT: frozenset({S.COLLECTING_PARAMETERS, S.UNDERSTANDING_INTENT}),
    S.COLLECTING_PARAMETERS: frozenset({
        S.CONFIRMATION, S.COLLECTING_PARAMETERS, S.UNDERSTANDING_INTENT, S.EXECUTING_ACTION,
    }),
    S.CONFIRMATION: frozenset({S.EXECUTING_ACTION, S.COLLECTING_PARAMETERS, S.CONFIRMATION}),
    S.EXECUTING_ACTION: frozenset(),
}

INITIAL_STEP = S.GREETING
FALLBACK_STEP = S.UNDERSTANDING_INTENT


class StepGraph:
    """Validates and applies step transitions on a conversation."""

    def __init__(self, required_params: Callable[[str], list[str]] = None):
        self._required_params = required_params or (lambda action_type: [])

    @staticmethod
    def can_transition(from_step: ConversationStep, to_step: ConversationStep) -> bool:
        if to_step == FALLBACK_STEP:
            return from_step != S.EXECUTING_ACTION
        return to_step in STEP_TRANSITIONS.get(from_step, frozenset())

    @staticmethod
    def reachable_from(step: ConversationStep) -> frozenset[ConversationStep]:
        """Every step reachable (transitively) from `step`, including itself."""
        seen = {step}
        frontier = [step]
        while frontier:
            current = frontier.pop()
            nxt = set(STEP_TRANSITIONS.get(current, frozenset()))
            if current != S.EXECUTING_ACTION:
                nxt.add(FALLBACK_STEP)
            for s in nxt - seen:
                seen.add(s)
                frontier.append(s)
        return frozenset(seen)

    def advance(self, conversation: Conversation, to_step: ConversationStep) -> Optional[ConversationStep]:
        """Move the conversation to `to_step`. Returns the previous step."""
        from_step = conversation.current_step
        if not self.can_transition(from_step, to_step):
            logger.error("invalid_step_transition",
                         conversation_id=conversation.id,
                         transition=f"{from_step.value} → {to_step.value}")
            raise InvalidStepTransitionError(from_step.value, to_step.value)

        if to_step == S.EXECUTING_ACTION:
            self.ensure_ready(conversation)

        conversation.update_step(to_step)
        if from_step != to_step:
            logger.info("step_transition",
                        conversation_id=conversation.id,
                        transition=f"{from_step.value} → {to_step.value}")
        return from_step

    def ensure_ready(self, conversation: Conversation) -> None:
        if not conversation.intended_action:
            raise ActionNotReadyError("No intended action found for execution")
        missing = conversation.get_missing_params(self._required_params(conversation.intended_action))
        if missing:
            raise ActionNotReadyError(
                f"Action '{conversation.intended_action}' is missing parameters: {', '.join(missing)}"
            )
