"""
Parameter Extractor — pulls structured action parameters out of free text.

Extraction is heuristic (regex / keyword) and specific to each action type.
Strategies live in a registry keyed by action type so new actions plug in
without touching the engine:

    extractor = ParameterExtractor()
    extractor.register("open_order", extract_order, required=["order_id"])
    result = extractor.extract("open_order", "pedido 1234")

A strategy returns an ExtractionResult with two tiers:
  values   — facts stated in the text; they may overwrite stored params
  inferred — defaults guessed from the absence of a signal (e.g. priority
             "medium"); they only fill params that are still empty

Each registration may also declare:
  validated — params that only a pattern match may fill (email, date, ...);
              a bare reply to their question is never taken as the value
  fill_only — params set once and then kept (a ticket description is not
              replaced by every later message that mentions a problem)
"""
from __future__ import annotations

import re
import structlog
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

logger = structlog.get_logger()

MIN_FREE_TEXT_LENGTH = 3
FREE_TEXT_KEY = "details"


@dataclass
class ExtractionResult:
    values: dict[str, Any] = field(default_factory=dict)
    inferred: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {**self.inferred, **self.values}

    def __bool__(self):
        return bool(self.values or self.inferred)


ExtractionFn = Callable[[str], ExtractionResult]


@dataclass
class ActionDefinition:
    action_type: str
    extract: ExtractionFn
    required: list[str] = field(default_factory=list)
    validated: list[str] = field(default_factory=list)
    fill_only: list[str] = field(default_factory=list)


# ──────────────────────────────────────────────────────────────
#  Vocabulary & patterns
# ──────────────────────────────────────────────────────────────

PROBLEM_TERMS = (
    "problema", "problemas", "erro", "erros", "falha", "defeito", "bug",
    "não funciona", "nao funciona", "parou de funcionar", "quebrado", "travando",
    "problem", "error", "issue", "broken", "not working", "failure", "crash",
)
URGENT_TERMS = (
    "urgente", "urgência", "urgencia", "crítico", "critico", "crítica", "critica",
    "emergência", "emergencia", "imediatamente",
    "urgent", "critical", "emergency", "asap",
)
LOW_TERMS = (
    "sem pressa", "quando puder", "não é urgente", "nao e urgente", "baixa prioridade",
    "no rush", "low priority", "not urgent", "whenever",
)
CATEGORY_TERMS: dict[str, tuple[str, ...]] = {
    "technical": (
        "sistema", "software", "servidor", "rede", "internet", "computador",
        "aplicativo", "app", "login", "site", "impressora",
        "system", "server", "network", "computer", "website", "printer",
    ),
    "financial": (
        "fatura", "boleto", "pagamento", "cobrança", "cobranca", "financeiro",
        "nota fiscal", "reembolso",
        "invoice", "payment", "billing", "charge", "refund",
    ),
    "access": (
        "acesso", "senha", "permissão", "permissao", "bloqueado",
        "access", "password", "permission", "locked",
    ),
}

EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)*\.[A-Za-z]{2,}")
DATE_RE = re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b")
TIME_RE = re.compile(r"\b(?:[01]?\d|2[0-3]):[0-5]\d\b")

_MESSAGE_MARKERS = ("mensagem", "message")
_SUBJECT_MARKERS = ("assunto", "subject", "sobre", "about")
_TITLE_MARKERS = ("título", "titulo", "title")


def contains_term(text: str, term: str) -> bool:
    """Whole-word (or whole-phrase) containment, case-insensitive."""
    return re.search(rf"(?<!\w){re.escape(term)}(?!\w)", text, re.IGNORECASE) is not None


def contains_any(text: str, terms: Iterable[str]) -> bool:
    return any(contains_term(text, t) for t in terms)


def extract_marker(text: str, markers: Iterable[str], stop_markers: Iterable[str] = ()) -> Optional[str]:
    """Value after an explicit `marker:` prefix, up to end of line or the next stop marker."""
    names = "|".join(re.escape(m) for m in markers)
    pattern = rf"(?<!\w)(?:{names})\s*:\s*(.+)"
    match = re.search(pattern, text, re.IGNORECASE)
    if not match:
        return None
    value = match.group(1).split("\n")[0]
    for stop in stop_markers:
        cut = re.search(rf"(?<!\w){re.escape(stop)}\s*:", value, re.IGNORECASE)
        if cut:
            value = value[:cut.start()]
    value = value.strip().rstrip(",;")
    return value or None


# ──────────────────────────────────────────────────────────────
#  Built-in strategies
# ──────────────────────────────────────────────────────────────

def extract_ticket(text: str) -> ExtractionResult:
    result = ExtractionResult()
    clean = text.strip()

    title = extract_marker(clean, _TITLE_MARKERS)
    if title:
        result.values["title"] = title

    if contains_any(clean, PROBLEM_TERMS):
        result.values["description"] = clean

    # Low-effort phrases first: "não é urgente" contains "urgente"
    if contains_any(clean, LOW_TERMS):
        result.values["priority"] = "low"
    elif contains_any(clean, URGENT_TERMS):
        result.values["priority"] = "high"
    else:
        result.inferred["priority"] = "medium"

    for category, terms in CATEGORY_TERMS.items():
        if contains_any(clean, terms):
            result.values["category"] = category
            break
    else:
        result.inferred["category"] = "general"

    return result


def extract_notification(text: str) -> ExtractionResult:
    result = ExtractionResult()
    email = EMAIL_RE.search(text)
    if email:
        result.values["email"] = email.group(0)

    subject = extract_marker(text, _SUBJECT_MARKERS, stop_markers=_MESSAGE_MARKERS)
    if subject:
        result.values["subject"] = subject

    body = extract_marker(text, _MESSAGE_MARKERS)
    if body:
        result.values["message"] = body
    return result


def extract_schedule(text: str) -> ExtractionResult:
    result = ExtractionResult()
    date = DATE_RE.search(text)
    if date:
        result.values["date"] = date.group(0)
    time = TIME_RE.search(text)
    if time:
        result.values["time"] = time.group(0)
    return result


def extract_tags(text: str) -> ExtractionResult:
    result = ExtractionResult()
    raw = extract_marker(text, ("tags",))
    if raw is None and ("," in text or ";" in text):
        raw = text
    if raw:
        tags = [t.strip() for t in re.split(r"[,;]", raw) if t.strip()]
        if tags:
            result.values["tags"] = tags
    return result


def extract_message_body(text: str) -> ExtractionResult:
    result = ExtractionResult()
    body = extract_marker(text, _MESSAGE_MARKERS)
    if body:
        result.values["message"] = body
    return result


def extract_forward_target(text: str) -> ExtractionResult:
    result = ExtractionResult()
    email = EMAIL_RE.search(text)
    if email:
        result.values["forward_to"] = email.group(0)
    return result


def extract_nothing(text: str) -> ExtractionResult:
    return ExtractionResult()


def extract_free_text(text: str) -> ExtractionResult:
    """Fallback for unregistered action types."""
    clean = text.strip()
    if len(clean) >= MIN_FREE_TEXT_LENGTH:
        return ExtractionResult(values={FREE_TEXT_KEY: clean})
    return ExtractionResult()


# ──────────────────────────────────────────────────────────────
#  Registry
# ──────────────────────────────────────────────────────────────

class ParameterExtractor:
    """Registry of extraction strategies and required-parameter lists per action type."""

    def __init__(self, register_defaults: bool = True):
        self._definitions: dict[str, ActionDefinition] = {}
        self._aliases: dict[str, str] = {}
        if register_defaults:
            self._register_defaults()

    def _register_defaults(self):
        self.register("create_ticket", extract_ticket, required=["title", "description"],
                      fill_only=["description"])
        self.register("send_notification", extract_notification,
                      required=["email", "subject", "message"], validated=["email"])
        self.register("create_schedule", extract_schedule, required=["date", "time"],
                      validated=["date", "time"])
        self.alias("schedule", "create_schedule")
        self.register("add_tags", extract_tags, required=["tags"], validated=["tags"])
        self.register("send_auto_reply", extract_message_body, required=["message"])
        self.register("forward_message", extract_forward_target, required=["forward_to"],
                      validated=["forward_to"])
        self.register("assign_agent", extract_nothing, required=["agent_id"])

    def register(
        self,
        action_type: str,
        fn: ExtractionFn,
        required: list[str] = None,
        validated: list[str] = None,
        fill_only: list[str] = None,
    ):
        self._definitions[action_type] = ActionDefinition(
            action_type=action_type,
            extract=fn,
            required=list(required or []),
            validated=list(validated or []),
            fill_only=list(fill_only or []),
        )
        logger.debug("extraction_strategy_registered",
                     action_type=action_type,
                     required=required or [])

    def alias(self, alias: str, action_type: str):
        if action_type not in self._definitions:
            raise KeyError(f"Cannot alias unknown action type '{action_type}'")
        self._aliases[alias] = action_type

    def _resolve(self, action_type: str) -> Optional[ActionDefinition]:
        name = self._aliases.get(action_type, action_type)
        return self._definitions.get(name)

    def is_registered(self, action_type: str) -> bool:
        return self._resolve(action_type) is not None

    def registered_types(self) -> list[str]:
        return list(self._definitions.keys())

    def required_params(self, action_type: str) -> list[str]:
        definition = self._resolve(action_type)
        return list(definition.required) if definition else []

    def accepts_direct_answer(self, action_type: str, param: str) -> bool:
        """Whether a bare reply may be stored as `param` without a pattern match."""
        definition = self._resolve(action_type)
        return definition is None or param not in definition.validated

    def fill_only_params(self, action_type: str) -> list[str]:
        definition = self._resolve(action_type)
        return list(definition.fill_only) if definition else []

    def extract(self, action_type: str, raw_text: str) -> ExtractionResult:
        if not raw_text:
            return ExtractionResult()
        definition = self._resolve(action_type)
        fn = definition.extract if definition else extract_free_text
        result = fn(raw_text)
        logger.debug("parameters_extracted",
                     action_type=action_type,
                     values=list(result.values.keys()),
                     inferred=list(result.inferred.keys()))
        return result
