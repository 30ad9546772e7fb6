"""
Sentiment/Emotion Analyzer -- wraps the external sentiment model.

The model returns a polarity score in [-1, 1] and optional emotion
intensities.  Strong negative polarity or extreme fear/sadness raise the
level; a recent history of crisis flags raises confidence.  Any model
failure degrades to a low-confidence ``sentiment_analysis_failed`` result.
"""

from __future__ import annotations

import logging

from crisiswatch.collaborators import SentimentModel
from crisiswatch.config import DEFAULT_POLICY, DetectionPolicy
from crisiswatch.models import (
    AnalyzerSource,
    ConversationContext,
    RiskAssessment,
    RiskLevel,
    SentimentResult,
)

logger = logging.getLogger(__name__)


class SentimentAnalyzer:
    source = AnalyzerSource.SENTIMENT.value
    failure_trigger = "sentiment_analysis_failed"

    def __init__(
        self,
        model: SentimentModel,
        policy: DetectionPolicy = DEFAULT_POLICY,
    ) -> None:
        self._model = model
        self._policy = policy

    async def analyze(self, message: str, context: ConversationContext) -> RiskAssessment:
        """Run the sentiment model on ``message`` and map the result to a risk level.

        Never raises: model errors and malformed model output return
        ``failed()``.
        """
        try:
            raw = await self._model.analyze_sentiment(message)
            result = raw if isinstance(raw, SentimentResult) else SentimentResult.model_validate(raw)
        except Exception as e:
            logger.error(
                "SENTIMENT_ANALYSIS_FAILED",
                extra={"user_id": context.user_id, "error": str(e)},
            )
            return self.failed("Could not analyze sentiment")

        return self.evaluate(result, context)

    def evaluate(self, result: SentimentResult, context: ConversationContext) -> RiskAssessment:
        """Map a sentiment model result to a ``RiskAssessment``."""
        settings = self._policy.sentiment
        level = RiskLevel.LOW
        confidence = settings.baseline_confidence
        triggers: list[str] = []

        if result.sentiment < settings.severe_sentiment:
            level = RiskLevel.HIGH
            confidence = settings.severe_confidence
            triggers.append("severe_negative_sentiment")
        elif result.sentiment < settings.moderate_sentiment:
            level = RiskLevel.MEDIUM
            confidence = settings.moderate_confidence
            triggers.append("moderate_negative_sentiment")

        emotions = result.emotions
        if emotions is not None:
            if emotions.fear > settings.extreme_emotion or emotions.sadness > settings.extreme_emotion:
                level = level.at_least(RiskLevel.HIGH)
                triggers.append("extreme_negative_emotions")
            if emotions.anger > settings.combined_emotion and emotions.disgust > settings.combined_emotion:
                level = level.at_least(RiskLevel.MEDIUM)
                triggers.append("combined_negative_emotions")

        if context.recent_crisis_flags > settings.crisis_history_flags:
            confidence += settings.crisis_history_boost
            triggers.append("recent_crisis_history")

        return RiskAssessment(
            level=level,
            confidence=min(confidence, settings.confidence_cap),
            triggers=tuple(triggers),
            source=self.source,
            reasoning=(
                f"Sentiment score: {result.sentiment:.2f}, "
                f"emotions indicate {level.value} risk"
            ),
        )

    def failed(self, reasoning: str) -> RiskAssessment:
        return RiskAssessment.failed(self.source, self.failure_trigger, reasoning)
