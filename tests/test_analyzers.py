"""Tests for the keyword and LLM intent analyzers."""
from unittest.mock import AsyncMock, patch

import pytest

from config.settings import LLMConfig, Settings
from core.analyzers import (
    KeywordIntentAnalyzer, LLMIntentAnalyzer, create_intent_analyzer,
)


class TestKeywordIntentAnalyzer:
    @pytest.fixture
    def analyzer(self):
        return KeywordIntentAnalyzer()

    def test_ticket_phrases(self, analyzer):
        result = analyzer.classify("quero abrir chamado")
        assert result.intent == "create_ticket"
        assert result.confidence > 0.5

    def test_best_score_wins(self, analyzer):
        result = analyzer.classify("preciso agendar uma visita técnica")
        assert result.intent == "create_schedule"
        assert result.all_scores["create_schedule"] == 2

    def test_no_match(self, analyzer):
        result = analyzer.classify("olá, tudo bem?")
        assert result.intent is None
        assert result.confidence == 0.0

    def test_phrases_match_whole_words(self, analyzer):
        # "erro" must not fire inside "aterro"
        assert analyzer.classify("aterro sanitário").intent is None

    def test_custom_keywords(self):
        analyzer = KeywordIntentAnalyzer({"refund": ["reembolso"]})
        assert analyzer.classify("quero meu reembolso").intent == "refund"

    @pytest.mark.asyncio
    async def test_analyze_reads_content(self, analyzer):
        result = await analyzer.analyze({"content": "enviar notificação", "channel": "chat"})
        assert result.intent == "send_notification"


@pytest.mark.asyncio
class TestLLMIntentAnalyzer:

    @pytest.fixture
    def analyzer(self):
        return LLMIntentAnalyzer(LLMConfig(provider="anthropic", api_key="test-key"))

    async def test_parses_json_answer(self, analyzer):
        raw = '{"intent": "create_ticket", "confidence": 0.82, "sentiment": "negative"}'
        with patch.object(analyzer, "_call_llm", AsyncMock(return_value=raw)):
            result = await analyzer.analyze({"content": "meu sistema caiu"})

        assert result.intent == "create_ticket"
        assert result.confidence == pytest.approx(0.82)
        assert result.sentiment == "negative"

    async def test_strips_code_fences(self, analyzer):
        raw = '```json\n{"intent": "create_schedule", "confidence": 0.7}\n```'
        with patch.object(analyzer, "_call_llm", AsyncMock(return_value=raw)):
            result = await analyzer.analyze({"content": "marcar visita"})

        assert result.intent == "create_schedule"

    async def test_none_label_means_no_intent(self, analyzer):
        with patch.object(analyzer, "_call_llm", AsyncMock(return_value='{"intent": "none"}')):
            result = await analyzer.analyze({"content": "oi"})
        assert result.intent is None

    async def test_unparseable_answer_falls_back_to_keywords(self, analyzer):
        with patch.object(analyzer, "_call_llm", AsyncMock(return_value="I think it's a ticket")):
            result = await analyzer.analyze({"content": "abrir chamado"})
        assert result.intent == "create_ticket"

    async def test_llm_error_falls_back_to_keywords(self, analyzer):
        with patch.object(analyzer, "_call_llm", AsyncMock(side_effect=RuntimeError("rate limited"))):
            result = await analyzer.analyze({"content": "agendar visita"})
        assert result.intent == "create_schedule"

    async def test_no_client_returns_empty_answer(self, analyzer):
        with patch.object(analyzer, "_get_client", AsyncMock(return_value=None)):
            assert await analyzer._call_llm("system", "user") == ""
            result = await analyzer.analyze({"content": "abrir chamado"})
        assert result.intent == "create_ticket"

    async def test_prompt_lists_action_types(self):
        analyzer = LLMIntentAnalyzer(LLMConfig(api_key="k"), action_types=["create_ticket", "refund"])
        prompt = analyzer._system_prompt()
        assert "create_ticket | refund | none" in prompt


class TestCreateIntentAnalyzer:
    def test_default_is_keyword(self):
        assert isinstance(create_intent_analyzer(Settings()), KeywordIntentAnalyzer)

    def test_llm_with_key(self):
        settings = Settings(intent_analyzer="llm", llm=LLMConfig(provider="openai", api_key="sk-test"))
        analyzer = create_intent_analyzer(settings)
        assert isinstance(analyzer, LLMIntentAnalyzer)
        assert analyzer.is_openai

    def test_llm_without_key_falls_back(self):
        settings = Settings(intent_analyzer="llm", llm=LLMConfig(api_key=""))
        assert isinstance(create_intent_analyzer(settings), KeywordIntentAnalyzer)

    def test_unresolved_placeholder_is_not_a_key(self):
        settings = Settings(intent_analyzer="llm", llm=LLMConfig(api_key="${LLM_API_KEY}"))
        assert isinstance(create_intent_analyzer(settings), KeywordIntentAnalyzer)
