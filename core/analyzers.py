"""
Intent analyzers — adapters for the IntentAnalyzer port.

  KeywordIntentAnalyzer  trigger-phrase matching per action type, no I/O
  LLMIntentAnalyzer      asks Claude or OpenAI for a JSON intent label and
                         falls back to keywords when the LLM is unavailable
"""
from __future__ import annotations

import json
import structlog
from typing import Any, Optional

from config.settings import LLMConfig, Settings, get_settings
from context.extraction import contains_term
from core.ports import IntentAnalyzer
from models.schemas import IntentAnalysis

logger = structlog.get_logger()


DEFAULT_TRIGGER_KEYWORDS: dict[str, list[str]] = {
    "create_ticket": [
        "criar ticket", "novo ticket", "abrir chamado", "abrir ticket", "problema", "suporte",
        "erro", "defeito", "open ticket", "new ticket", "problem", "support", "issue",
    ],
    "send_notification": [
        "enviar notificação", "enviar notificacao", "notificar", "avisar", "enviar email",
        "mandar email", "send notification", "notify", "send email",
    ],
    "create_schedule": [
        "agendar", "marcar horário", "marcar horario", "agendamento", "visita técnica",
        "visita tecnica", "schedule", "appointment", "book",
    ],
    "forward_message": ["encaminhar", "forward"],
    "add_tags": ["adicionar tag", "etiquetar", "add tag"],
    "assign_agent": ["atribuir", "assign"],
}


class KeywordIntentAnalyzer(IntentAnalyzer):
    """
    Scores each action type by how many of its trigger phrases occur in the
    message; the best score wins. No match → intent None.
    """

    def __init__(self, keywords: dict[str, list[str]] = None):
        self.keywords = keywords if keywords is not None else DEFAULT_TRIGGER_KEYWORDS

    def classify(self, content: str) -> IntentAnalysis:
        text = (content or "").lower()
        scores: dict[str, int] = {}
        for intent, phrases in self.keywords.items():
            hits = sum(1 for p in phrases if contains_term(text, p.lower()))
            if hits:
                scores[intent] = hits
        if not scores:
            return IntentAnalysis(intent=None, confidence=0.0)
        best = max(scores, key=lambda k: scores[k])
        confidence = min(1.0, 0.5 + 0.25 * scores[best])
        return IntentAnalysis(intent=best, confidence=confidence, all_scores=scores)

    async def analyze(self, payload: dict[str, Any]) -> IntentAnalysis:
        return self.classify(payload.get("content", ""))


class LLMIntentAnalyzer(IntentAnalyzer):
    """
    Intent detection through Claude or OpenAI.
    The candidate labels are the known action types; the model must answer
    with JSON {"intent": ..., "confidence": ..., "sentiment": ...}.
    """

    def __init__(
        self,
        config: LLMConfig = None,
        action_types: list[str] = None,
        fallback: Optional[KeywordIntentAnalyzer] = None,
    ):
        self.config = config or get_settings().llm
        self.action_types = action_types or list(DEFAULT_TRIGGER_KEYWORDS.keys())
        self.fallback = fallback or KeywordIntentAnalyzer()
        self._client = None
        self._provider = self.config.provider

    @property
    def is_openai(self) -> bool:
        return self._provider == "openai"

    async def _get_client(self):
        if self._client is None:
            try:
                if self.is_openai:
                    from openai import AsyncOpenAI
                    self._client = AsyncOpenAI(api_key=self.config.api_key)
                else:
                    import anthropic
                    self._client = anthropic.AsyncAnthropic(api_key=self.config.api_key)
                logger.info("llm_client_initialized", provider=self._provider, model=self.config.model)
            except Exception as e:
                logger.error("llm_client_init_failed", provider=self._provider, error=str(e))
                self._client = None
        return self._client

    async def _call_llm(self, system: str, user: str) -> str:
        """Unified LLM call that handles both Anthropic and OpenAI APIs."""
        client = await self._get_client()
        if not client:
            return ""

        if self.is_openai:
            response = await client.chat.completions.create(
                model=self.config.model,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )
            return response.choices[0].message.content
        response = await client.messages.create(
            model=self.config.model,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            system=system,
            messages=[{"role": "user", "content": user}],
        )
        return response.content[0].text

    def _system_prompt(self) -> str:
        labels = " | ".join(self.action_types)
        return (
            "Classify what the user of a customer-service chat wants to do.\n"
            f"Valid intents: {labels} | none\n"
            "Return ONLY a JSON object with keys: intent, confidence (0-1), "
            "sentiment (positive | neutral | negative)."
        )

    @staticmethod
    def _parse(raw: str) -> dict[str, Any]:
        text = raw.strip()
        if text.startswith("```"):
            text = text.split("```")[1].strip()
            if text.startswith("json"):
                text = text[4:].strip()
        return json.loads(text)

    async def analyze(self, payload: dict[str, Any]) -> IntentAnalysis:
        content = payload.get("content", "")
        try:
            raw = await self._call_llm(
                self._system_prompt(),
                f"Channel: {payload.get('channel', '')}\nMessage: {content}",
            )
        except Exception as e:
            logger.error("intent_detection_failed", error=str(e))
            raw = ""

        if not raw:
            return await self.fallback.analyze(payload)

        try:
            data = self._parse(raw)
        except (json.JSONDecodeError, IndexError) as e:
            logger.warning("intent_response_unparseable", error=str(e))
            return await self.fallback.analyze(payload)

        intent = data.get("intent")
        if not intent or intent == "none":
            data["intent"] = None
        return IntentAnalysis.model_validate(data)


def create_intent_analyzer(settings: Settings = None) -> IntentAnalyzer:
    """Factory function to create the configured intent analyzer."""
    settings = settings or get_settings()
    # Unset env placeholders stay as literal "${VAR}"
    has_key = bool(settings.llm.api_key) and not settings.llm.api_key.startswith("${")
    if settings.intent_analyzer == "llm" and has_key:
        return LLMIntentAnalyzer(settings.llm)
    if settings.intent_analyzer == "llm":
        logger.warning("using_keyword_analyzer", reason="llm selected but no api_key configured")
    return KeywordIntentAnalyzer()
