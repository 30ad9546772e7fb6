"""
Tests for crisiswatch.sentiment -- sentiment/emotion analyzer.

Covers: polarity thresholds, emotion escalation, crisis history boost,
confidence cap, dict model output, and failure handling.
"""

from __future__ import annotations

import pytest

from conftest import FakeSentimentModel
from crisiswatch.models import ConversationContext, EmotionScores, RiskLevel, SentimentResult
from crisiswatch.sentiment import SentimentAnalyzer


def _make_context(flags: int = 0) -> ConversationContext:
    return ConversationContext(user_id="user_1", session_id="session_1", recent_crisis_flags=flags)


def _evaluate(sentiment: float, emotions: EmotionScores | None = None, flags: int = 0):
    analyzer = SentimentAnalyzer(FakeSentimentModel())
    return analyzer.evaluate(SentimentResult(sentiment=sentiment, emotions=emotions), _make_context(flags))


# ---------------------------------------------------------------------------
# 1. Polarity thresholds
# ---------------------------------------------------------------------------

class TestPolarity:
    def test_neutral_is_low(self):
        result = _evaluate(0.2)
        assert result.level == RiskLevel.LOW
        assert result.confidence == 0.6
        assert result.triggers == ()

    def test_severe_negative_is_high(self):
        result = _evaluate(-0.85)
        assert result.level == RiskLevel.HIGH
        assert result.confidence == 0.8
        assert "severe_negative_sentiment" in result.triggers

    def test_moderate_negative_is_medium(self):
        result = _evaluate(-0.7)
        assert result.level == RiskLevel.MEDIUM
        assert result.confidence == 0.7
        assert "moderate_negative_sentiment" in result.triggers

    def test_boundary_is_exclusive(self):
        assert _evaluate(-0.8).level == RiskLevel.MEDIUM
        assert _evaluate(-0.6).level == RiskLevel.LOW


# ---------------------------------------------------------------------------
# 2. Emotions
# ---------------------------------------------------------------------------

class TestEmotions:
    def test_extreme_sadness_raises_to_high(self):
        result = _evaluate(0.0, EmotionScores(sadness=0.9))
        assert result.level == RiskLevel.HIGH
        assert "extreme_negative_emotions" in result.triggers

    def test_extreme_fear_raises_to_high(self):
        assert _evaluate(-0.7, EmotionScores(fear=0.85)).level == RiskLevel.HIGH

    def test_anger_and_disgust_raise_to_medium(self):
        result = _evaluate(0.0, EmotionScores(anger=0.75, disgust=0.75))
        assert result.level == RiskLevel.MEDIUM
        assert "combined_negative_emotions" in result.triggers

    def test_anger_alone_does_not_escalate(self):
        assert _evaluate(0.0, EmotionScores(anger=0.9)).level == RiskLevel.LOW

    def test_emotions_never_lower_level(self):
        """Combined anger/disgust (medium floor) keeps a severe result at HIGH."""
        result = _evaluate(-0.9, EmotionScores(anger=0.8, disgust=0.8))
        assert result.level == RiskLevel.HIGH


# ---------------------------------------------------------------------------
# 3. Crisis history
# ---------------------------------------------------------------------------

class TestCrisisHistory:
    def test_more_than_two_flags_boosts_confidence(self):
        result = _evaluate(-0.7, flags=3)
        assert result.confidence == pytest.approx(0.8)
        assert "recent_crisis_history" in result.triggers

    def test_two_flags_do_not_boost(self):
        assert "recent_crisis_history" not in _evaluate(-0.7, flags=2).triggers

    def test_confidence_capped(self):
        assert _evaluate(-0.9, flags=10).confidence <= 0.95


# ---------------------------------------------------------------------------
# 4. Model calls and failures
# ---------------------------------------------------------------------------

class TestAnalyze:
    @pytest.mark.asyncio
    async def test_calls_model_with_message(self):
        model = FakeSentimentModel(SentimentResult(sentiment=-0.9))
        result = await SentimentAnalyzer(model).analyze("I feel awful", _make_context())
        assert model.calls == ["I feel awful"]
        assert result.level == RiskLevel.HIGH
        assert result.source == "sentiment_analysis"

    @pytest.mark.asyncio
    async def test_accepts_dict_output(self):
        model = FakeSentimentModel({"sentiment": -0.7, "emotions": {"fear": 0.2}})
        result = await SentimentAnalyzer(model).analyze("meh", _make_context())
        assert result.level == RiskLevel.MEDIUM

    @pytest.mark.asyncio
    async def test_model_error_returns_failed(self):
        model = FakeSentimentModel(error=ConnectionError("timeout"))
        result = await SentimentAnalyzer(model).analyze("hi", _make_context())
        assert result.level == RiskLevel.LOW
        assert result.confidence == 0.1
        assert result.triggers == ("sentiment_analysis_failed",)

    @pytest.mark.asyncio
    async def test_malformed_output_returns_failed(self):
        model = FakeSentimentModel({"sentiment": "very sad"})
        result = await SentimentAnalyzer(model).analyze("hi", _make_context())
        assert result.triggers == ("sentiment_analysis_failed",)
