"""
Locale packs — user-facing texts and reply vocabularies per language.

Each agent talks in agent.personality.language. Everything language-bound
(menu labels, questions, confirm/cancel/edit vocabulary) lives in a
LocalePack, so adding a language means registering one more pack:

    registry = LocaleRegistry(default_language="pt")
    registry.register(LocalePack(language="es", ...))
    pack = registry.get("es-AR")        # → "es" pack
    ReplyClassifier(pack).classify("sí")   # → ReplyChoice.CONFIRM
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass, field

from context.extraction import contains_any
from models.schemas import ReplyChoice

logger = structlog.get_logger()


@dataclass
class LocalePack:
    language: str
    confirm_words: tuple[str, ...] = ()
    cancel_words: tuple[str, ...] = ()
    edit_words: tuple[str, ...] = ()
    texts: dict[str, str] = field(default_factory=dict)
    action_names: dict[str, str] = field(default_factory=dict)
    param_questions: dict[str, str] = field(default_factory=dict)

    def text(self, key: str, **kwargs) -> str:
        template = self.texts.get(key, key)
        return template.format(**kwargs) if kwargs else template

    def action_name(self, action_type: str) -> str:
        return self.action_names.get(action_type, action_type.replace("_", " "))

    def question_for(self, param: str) -> str:
        if param in self.param_questions:
            return self.param_questions[param]
        return self.text("param_question_default", param=param)


class ReplyClassifier:
    """
    Classifies a reply to the confirmation prompt.

    Numeric shortcuts 1/2/3 map to confirm/cancel/edit. Otherwise words are
    checked cancel → edit → confirm, so "não, pode cancelar" is a cancel even
    though "pode" alone would confirm.
    """

    SHORTCUTS = {"1": ReplyChoice.CONFIRM, "2": ReplyChoice.CANCEL, "3": ReplyChoice.EDIT}

    def __init__(self, pack: LocalePack):
        self.pack = pack

    def classify(self, text: str) -> ReplyChoice:
        reply = (text or "").strip().lower()
        if not reply:
            return ReplyChoice.UNKNOWN
        if reply in self.SHORTCUTS:
            return self.SHORTCUTS[reply]
        if contains_any(reply, self.pack.cancel_words):
            return ReplyChoice.CANCEL
        if contains_any(reply, self.pack.edit_words):
            return ReplyChoice.EDIT
        if contains_any(reply, self.pack.confirm_words):
            return ReplyChoice.CONFIRM
        return ReplyChoice.UNKNOWN


# ──────────────────────────────────────────────────────────────
#  Built-in packs
# ──────────────────────────────────────────────────────────────

PORTUGUESE = LocalePack(
    language="pt",
    confirm_words=("sim", "confirmar", "confirmo", "confirma", "pode", "ok", "certo",
                   "isso", "claro", "prosseguir", "pode seguir"),
    cancel_words=("não", "nao", "cancelar", "cancela", "cancelo", "desistir", "parar"),
    edit_words=("alterar", "editar", "mudar", "corrigir", "modificar"),
    texts={
        "no_agent": "Desculpe, não temos agentes disponíveis para este canal no momento.",
        "escalation": ("Entendo que você precisa falar com um atendente humano. "
                       "Vou transferir sua solicitação para nossa equipe de suporte."),
        "escalation_stuck": ("Parece que não estou conseguindo entender as informações. "
                             "Vou transferir você para um atendente humano."),
        "escalation_max_turns": ("Esta conversa ficou longa demais para o atendimento automático. "
                                 "Vou transferir você para um atendente humano."),
        "internal_error": "Desculpe, ocorreu um erro interno. Tente novamente em alguns instantes.",
        "greeting_menu": "{greeting}\n\nComo posso ajudar você hoje?",
        "fallback_menu": "{fallback}\n\nEscolha uma das opções abaixo ou descreva como posso ajudar:",
        "fallback_restart": "{fallback}\n\nVamos começar novamente. Como posso ajudar você?",
        "intent_opening": ("Perfeito! Vou ajudar você com: {action}. "
                           "Preciso de algumas informações para prosseguir."),
        "param_question_default": "Por favor, forneça o valor para: {param}",
        "confirmation_header": "Confirme se entendi corretamente:",
        "confirmation_action": "**Ação:** {action}",
        "confirmation_footer": "Posso prosseguir com esta ação?",
        "confirm_reask": "Por favor, confirme com 'Sim' ou 'Não', ou escolha uma das opções:",
        "option_confirm": "Sim, confirmar",
        "option_cancel": "Não, cancelar",
        "option_edit": "Alterar informações",
        "cancelled": "Operação cancelada. Posso ajudar com mais alguma coisa?",
        "restart": "Vamos recomeçar.",
        "action_success": "Ação executada com sucesso! Posso ajudar com mais alguma coisa?",
        "action_failure": "Ocorreu um erro ao executar a ação: {error}. Posso tentar novamente?",
        "action_error": "Desculpe, ocorreu um erro ao executar a ação. Posso ajudar com outra coisa?",
        "unknown_error": "Erro desconhecido",
    },
    action_names={
        "send_notification": "Enviar notificação",
        "create_ticket": "Criar ticket",
        "create_schedule": "Agendar atendimento",
        "send_auto_reply": "Resposta automática",
        "forward_message": "Encaminhar mensagem",
        "assign_agent": "Atribuir agente",
        "add_tags": "Adicionar tags",
        "escalate": "Escalar atendimento",
    },
    param_questions={
        "title": "Qual o título do ticket?",
        "description": "Descreva detalhadamente o problema ou solicitação:",
        "email": "Para qual email devo enviar a notificação?",
        "subject": "Qual o assunto da notificação?",
        "message": "Qual mensagem você gostaria de enviar?",
        "date": "Qual a data desejada? (formato: DD/MM/AAAA)",
        "time": "Qual o horário desejado? (formato: HH:MM)",
        "forward_to": "Para qual email ou agente devo encaminhar?",
        "agent_id": "Qual agente deve ser responsável por esta solicitação?",
        "tags": "Quais tags devo adicionar? (separadas por vírgula)",
    },
)

ENGLISH = LocalePack(
    language="en",
    confirm_words=("yes", "y", "confirm", "sure", "ok", "okay", "proceed", "go ahead", "correct"),
    cancel_words=("no", "nope", "cancel", "stop", "abort"),
    edit_words=("edit", "change", "modify", "fix", "update"),
    texts={
        "no_agent": "Sorry, no agents are available for this channel right now.",
        "escalation": ("I understand you need to talk to a human agent. "
                       "I'm transferring your request to our support team."),
        "escalation_stuck": ("It seems I can't get the information I need. "
                             "I'm transferring you to a human agent."),
        "escalation_max_turns": ("This conversation is too long for automated handling. "
                                 "I'm transferring you to a human agent."),
        "internal_error": "Sorry, an internal error occurred. Please try again in a moment.",
        "greeting_menu": "{greeting}\n\nHow can I help you today?",
        "fallback_menu": "{fallback}\n\nPick one of the options below or tell me how I can help:",
        "fallback_restart": "{fallback}\n\nLet's start over. How can I help you?",
        "intent_opening": "Great! I'll help you with: {action}. I need a few details to continue.",
        "param_question_default": "Please provide a value for: {param}",
        "confirmation_header": "Please confirm I got this right:",
        "confirmation_action": "**Action:** {action}",
        "confirmation_footer": "Shall I go ahead?",
        "confirm_reask": "Please answer 'Yes' or 'No', or pick one of the options:",
        "option_confirm": "Yes, confirm",
        "option_cancel": "No, cancel",
        "option_edit": "Change details",
        "cancelled": "Operation cancelled. Anything else I can help with?",
        "restart": "Let's start over.",
        "action_success": "Done! Anything else I can help with?",
        "action_failure": "The action failed: {error}. Shall I try again?",
        "action_error": "Sorry, something went wrong while running the action. Anything else I can help with?",
        "unknown_error": "Unknown error",
    },
    action_names={
        "send_notification": "Send notification",
        "create_ticket": "Create ticket",
        "create_schedule": "Schedule appointment",
        "send_auto_reply": "Auto reply",
        "forward_message": "Forward message",
        "assign_agent": "Assign agent",
        "add_tags": "Add tags",
        "escalate": "Escalate",
    },
    param_questions={
        "title": "What is the ticket title?",
        "description": "Please describe the problem or request in detail:",
        "email": "Which email address should receive the notification?",
        "subject": "What is the notification subject?",
        "message": "What message would you like to send?",
        "date": "Which date works for you? (format: DD/MM/YYYY)",
        "time": "What time works for you? (format: HH:MM)",
        "forward_to": "Which email or agent should I forward it to?",
        "agent_id": "Which agent should own this request?",
        "tags": "Which tags should I add? (comma separated)",
    },
)


class LocaleRegistry:
    """Language code → LocalePack, with region and default fallbacks."""

    def __init__(self, default_language: str = "pt", packs: list[LocalePack] = None):
        self._packs: dict[str, LocalePack] = {}
        self.default_language = default_language
        for pack in packs if packs is not None else [PORTUGUESE, ENGLISH]:
            self.register(pack)

    def register(self, pack: LocalePack):
        self._packs[self._normalize(pack.language)] = pack
        logger.debug("locale_registered", language=pack.language)

    @staticmethod
    def _normalize(language: str) -> str:
        return (language or "").strip().lower().replace("_", "-")

    def languages(self) -> list[str]:
        return list(self._packs.keys())

    def get(self, language: str = None) -> LocalePack:
        code = self._normalize(language)
        if code in self._packs:
            return self._packs[code]
        base = code.split("-")[0]
        if base in self._packs:
            return self._packs[base]
        default = self._normalize(self.default_language)
        if default in self._packs:
            return self._packs[default]
        if default.split("-")[0] in self._packs:
            return self._packs[default.split("-")[0]]
        raise KeyError(f"No locale pack for '{language}' and no default '{self.default_language}'")

    def classifier(self, language: str = None) -> ReplyClassifier:
        return ReplyClassifier(self.get(language))
