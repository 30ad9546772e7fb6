"""
Behavioral Pattern Analyzer -- risk from recent mood, activity and sleep.

Reads the user's trailing mood samples, conversation cadence and known
risk factors from storage and derives a risk signal from their averages
and trend.  This is the weakest evidence the pipeline has, so its
confidence ceiling (0.9 by default) sits below the other analyzers'.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from crisiswatch.collaborators import Storage
from crisiswatch.config import DEFAULT_POLICY, DetectionPolicy
from crisiswatch.models import AnalyzerSource, BehavioralPattern, RiskAssessment, RiskLevel

logger = logging.getLogger(__name__)


def calculate_trend(values: list[float]) -> float:
    """Mean of successive differences; 0.0 for fewer than two samples."""
    if len(values) < 2:
        return 0.0
    return sum(b - a for a, b in zip(values, values[1:])) / (len(values) - 1)


def _mean(values: list[float]) -> float:
    return sum(values) / len(values)


class BehavioralAnalyzer:
    source = AnalyzerSource.BEHAVIORAL.value
    failure_trigger = "pattern_analysis_failed"

    def __init__(
        self,
        storage: Storage,
        policy: DetectionPolicy = DEFAULT_POLICY,
    ) -> None:
        self._storage = storage
        self._policy = policy

    async def load_pattern(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> BehavioralPattern:
        """Read a fresh ``BehavioralPattern`` for ``user_id`` from storage."""
        settings = self._policy.behavioral
        now = now or datetime.now(timezone.utc)

        entries = await self._storage.get_mood_entries(
            user_id, now - timedelta(days=settings.mood_lookback_days)
        )
        sessions = await self._storage.count_recent_sessions(
            user_id, now - timedelta(days=settings.frequency_lookback_days)
        )
        risk_factors = await self._storage.get_risk_factors(user_id)

        entries = sorted(entries, key=lambda e: e.recorded_at)
        return BehavioralPattern(
            user_id=user_id,
            recent_mood_scores=[e.mood_score for e in entries if e.mood_score is not None],
            conversation_frequency=sessions,
            sleep_quality=[e.sleep_quality for e in entries if e.sleep_quality is not None],
            risk_factors=list(risk_factors),
        )

    async def analyze(
        self,
        user_id: str,
        pattern: Optional[BehavioralPattern] = None,
    ) -> RiskAssessment:
        """Assess behavioral risk for ``user_id``.

        Loads the pattern unless one is supplied.  Never raises: any read
        error returns ``failed()``.
        """
        try:
            if pattern is None:
                pattern = await self.load_pattern(user_id)
        except Exception as e:
            logger.error(
                "BEHAVIORAL_PATTERN_ANALYSIS_FAILED",
                extra={"user_id": user_id, "error": str(e)},
            )
            return self.failed("Could not analyze behavioral patterns")

        return self.evaluate(pattern)

    def evaluate(self, pattern: BehavioralPattern) -> RiskAssessment:
        """Map a ``BehavioralPattern`` to a ``RiskAssessment``."""
        settings = self._policy.behavioral
        level = RiskLevel.LOW
        confidence = settings.baseline_confidence
        triggers: list[str] = []

        if pattern.recent_mood_scores:
            avg_mood = _mean(pattern.recent_mood_scores)
            trend = calculate_trend(pattern.recent_mood_scores)
            if avg_mood < settings.declining_avg_mood and trend < settings.declining_trend:
                level = RiskLevel.HIGH
                confidence = settings.declining_confidence
                triggers.append("declining_mood_trajectory")
            elif avg_mood < settings.low_avg_mood:
                level = RiskLevel.MEDIUM
                confidence = settings.low_mood_confidence
                triggers.append("low_mood_pattern")

        if pattern.conversation_frequency > settings.help_seeking_frequency:
            # more help-seeking, not necessarily more risk
            confidence += settings.help_seeking_boost
            triggers.append("increased_help_seeking")
        elif pattern.conversation_frequency == 0:
            level = level.at_least(RiskLevel.MEDIUM)
            triggers.append("social_withdrawal")

        if pattern.sleep_quality and _mean(pattern.sleep_quality) < settings.poor_sleep_quality:
            level = level.at_least(RiskLevel.MEDIUM)
            triggers.append("severe_sleep_disruption")

        present = [f for f in settings.high_risk_factors if f in pattern.risk_factors]
        if present:
            confidence += settings.risk_factor_boost * len(present)
            triggers.extend(present)

        return RiskAssessment(
            level=level,
            confidence=min(confidence, settings.confidence_cap),
            triggers=tuple(triggers),
            source=self.source,
            reasoning=(
                f"Pattern analysis indicates {level.value} risk based on "
                f"{len(pattern.recent_mood_scores)} mood samples, "
                f"{pattern.conversation_frequency} sessions this week and "
                f"{len(present)} known risk factors"
            ),
        )

    def failed(self, reasoning: str) -> RiskAssessment:
        return RiskAssessment.failed(self.source, self.failure_trigger, reasoning)
