"""
Tests for crisiswatch.behavioral -- behavioral pattern analyzer.

Covers: trend calculation, mood rules, help-seeking and withdrawal,
sleep disruption, risk factors, confidence cap, storage loading order,
and read failures.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import FlakyStore, seed_user
from crisiswatch.behavioral import BehavioralAnalyzer, calculate_trend
from crisiswatch.memory_store import InMemoryStore
from crisiswatch.models import BehavioralPattern, MoodEntry, RiskLevel


def _make_pattern(
    moods: list[float] | None = None,
    frequency: int = 3,
    sleep: list[float] | None = None,
    risk_factors: list[str] | None = None,
) -> BehavioralPattern:
    return BehavioralPattern(
        user_id="user_1",
        recent_mood_scores=moods or [],
        conversation_frequency=frequency,
        sleep_quality=sleep or [],
        risk_factors=risk_factors or [],
    )


def _evaluate(**kwargs):
    return BehavioralAnalyzer(InMemoryStore()).evaluate(_make_pattern(**kwargs))


# ---------------------------------------------------------------------------
# 1. Trend
# ---------------------------------------------------------------------------

class TestCalculateTrend:
    def test_declining_series(self):
        assert calculate_trend([5, 4, 3, 2]) == pytest.approx(-1.0)

    def test_improving_series(self):
        assert calculate_trend([2, 4]) == pytest.approx(2.0)

    def test_fewer_than_two_samples(self):
        assert calculate_trend([]) == 0.0
        assert calculate_trend([4]) == 0.0


# ---------------------------------------------------------------------------
# 2. Mood rules
# ---------------------------------------------------------------------------

class TestMoodRules:
    def test_no_data_is_baseline_low(self):
        result = _evaluate()
        assert result.level == RiskLevel.LOW
        assert result.confidence == 0.6
        assert result.triggers == ()

    def test_low_and_declining_is_high(self):
        result = _evaluate(moods=[4, 3, 2, 1])
        assert result.level == RiskLevel.HIGH
        assert result.confidence == 0.85
        assert "declining_mood_trajectory" in result.triggers

    def test_low_but_stable_is_medium(self):
        result = _evaluate(moods=[3, 3.5, 3, 3.5])
        assert result.level == RiskLevel.MEDIUM
        assert result.confidence == 0.7
        assert "low_mood_pattern" in result.triggers

    def test_healthy_mood_is_low(self):
        assert _evaluate(moods=[7, 6, 7, 8]).level == RiskLevel.LOW


# ---------------------------------------------------------------------------
# 3. Activity and sleep
# ---------------------------------------------------------------------------

class TestActivityAndSleep:
    def test_zero_conversations_is_at_least_medium(self):
        result = _evaluate(frequency=0)
        assert result.level >= RiskLevel.MEDIUM
        assert "social_withdrawal" in result.triggers

    def test_withdrawal_does_not_lower_high(self):
        result = _evaluate(moods=[4, 3, 2, 1], frequency=0)
        assert result.level == RiskLevel.HIGH
        assert "social_withdrawal" in result.triggers

    def test_frequent_help_seeking_boosts_confidence(self):
        result = _evaluate(frequency=11)
        assert result.level == RiskLevel.LOW
        assert result.confidence == pytest.approx(0.7)
        assert "increased_help_seeking" in result.triggers

    def test_ten_sessions_is_not_help_seeking(self):
        assert "increased_help_seeking" not in _evaluate(frequency=10).triggers

    def test_poor_sleep_raises_to_medium(self):
        result = _evaluate(sleep=[2, 2, 3])
        assert result.level == RiskLevel.MEDIUM
        assert "severe_sleep_disruption" in result.triggers


# ---------------------------------------------------------------------------
# 4. Risk factors and caps
# ---------------------------------------------------------------------------

class TestRiskFactors:
    def test_known_factors_add_confidence(self):
        result = _evaluate(risk_factors=["previous_attempts", "recent_loss", "likes_cats"])
        assert result.confidence == pytest.approx(0.8)
        assert "previous_attempts" in result.triggers
        assert "recent_loss" in result.triggers
        assert "likes_cats" not in result.triggers

    def test_confidence_never_exceeds_090(self):
        result = _evaluate(
            moods=[4, 3, 2, 1],
            frequency=20,
            risk_factors=["previous_attempts", "substance_abuse", "social_isolation", "recent_loss"],
        )
        assert result.confidence == pytest.approx(0.9)


# ---------------------------------------------------------------------------
# 5. Loading from storage
# ---------------------------------------------------------------------------

class TestLoadPattern:
    @pytest.mark.asyncio
    async def test_mood_scores_are_chronological(self):
        store = InMemoryStore()
        now = datetime.now(timezone.utc)
        # stored newest first
        for days_ago, mood in [(1, 2), (3, 4), (5, 6)]:
            store.add_mood_entry(MoodEntry(
                user_id="user_1", mood_score=mood, recorded_at=now - timedelta(days=days_ago),
            ))
        pattern = await BehavioralAnalyzer(store).load_pattern("user_1", now=now)
        assert pattern.recent_mood_scores == [6, 4, 2]
        assert calculate_trend(pattern.recent_mood_scores) < 0

    @pytest.mark.asyncio
    async def test_lookback_windows_applied(self):
        store = InMemoryStore()
        now = datetime.now(timezone.utc)
        store.add_mood_entry(MoodEntry(user_id="user_1", mood_score=1, recorded_at=now - timedelta(days=20)))
        store.add_mood_entry(MoodEntry(user_id="user_1", mood_score=5, recorded_at=now - timedelta(days=2)))
        pattern = await BehavioralAnalyzer(store).load_pattern("user_1", now=now)
        assert pattern.recent_mood_scores == [5]

    @pytest.mark.asyncio
    async def test_missing_values_dropped_zero_kept(self):
        store = InMemoryStore()
        now = datetime.now(timezone.utc)
        store.add_mood_entry(MoodEntry(user_id="user_1", mood_score=None, sleep_quality=0,
                                       recorded_at=now - timedelta(days=1)))
        pattern = await BehavioralAnalyzer(store).load_pattern("user_1", now=now)
        assert pattern.recent_mood_scores == []
        assert pattern.sleep_quality == [0]

    @pytest.mark.asyncio
    async def test_risk_factors_read_from_storage(self):
        store = InMemoryStore()
        seed_user(store)
        store.set_risk_factors("user_1", ["substance_abuse"])
        result = await BehavioralAnalyzer(store).analyze("user_1")
        assert "substance_abuse" in result.triggers

    @pytest.mark.asyncio
    async def test_user_without_sessions_is_withdrawn(self):
        result = await BehavioralAnalyzer(InMemoryStore()).analyze("nobody")
        assert result.level >= RiskLevel.MEDIUM
        assert "social_withdrawal" in result.triggers

    @pytest.mark.asyncio
    async def test_read_failure_returns_failed(self):
        store = FlakyStore({"get_mood_entries"})
        result = await BehavioralAnalyzer(store).analyze("user_1")
        assert result.level == RiskLevel.LOW
        assert result.confidence == 0.1
        assert result.triggers == ("pattern_analysis_failed",)

    @pytest.mark.asyncio
    async def test_supplied_pattern_skips_storage(self):
        store = FlakyStore({"get_mood_entries"})
        result = await BehavioralAnalyzer(store).analyze("user_1", pattern=_make_pattern(frequency=0))
        assert "social_withdrawal" in result.triggers
