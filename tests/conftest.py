"""
Shared test doubles for the crisiswatch test suite.

The collaborators are hand-written async fakes: each records its calls and
can be told to fail (raise) or stall (sleep past the analyzer timeout).
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from crisiswatch.audit import AuditLog
from crisiswatch.config import DEFAULT_POLICY, AnalyzerTimeouts, DetectionPolicy
from crisiswatch.detector import CrisisDetector
from crisiswatch.memory_store import InMemoryFollowUpQueue, InMemoryStore
from crisiswatch.models import (
    CrisisAssessment,
    EmotionScores,
    MoodEntry,
    RiskLevel,
    SentimentResult,
    Session,
)


class FakeSentimentModel:
    def __init__(
        self,
        result: SentimentResult | dict | None = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        self.result = result if result is not None else SentimentResult(sentiment=0.1)
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    async def analyze_sentiment(self, text: str):
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class FakeGenerativeModel:
    def __init__(
        self,
        reply: str | None = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        self.reply = reply if reply is not None else ai_reply("low", 0.6)
        self.error = error
        self.delay = delay
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


class RecordingNotifications:
    def __init__(self, fail_resources: bool = False, fail_alerts: bool = False) -> None:
        self.fail_resources = fail_resources
        self.fail_alerts = fail_alerts
        self.resources_sent: list[tuple[str, RiskLevel]] = []
        self.alerts: list[CrisisAssessment] = []

    async def send_crisis_resources(self, user_id: str, risk_level: RiskLevel) -> None:
        if self.fail_resources:
            raise ConnectionError("notification gateway unavailable")
        self.resources_sent.append((user_id, risk_level))

    async def alert_professionals(self, assessment: CrisisAssessment) -> None:
        if self.fail_alerts:
            raise ConnectionError("pager service unavailable")
        self.alerts.append(assessment)


class RecordingEmergency:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.contacted: list[str] = []

    async def contact_emergency_services(self, user_id: str) -> None:
        if self.fail:
            raise ConnectionError("emergency dispatch unavailable")
        self.contacted.append(user_id)


class FailingFollowUpQueue(InMemoryFollowUpQueue):
    async def schedule_follow_up(self, task) -> None:
        raise ConnectionError("job queue unavailable")


class FlakyStore(InMemoryStore):
    """InMemoryStore whose named methods raise ``ConnectionError``."""

    def __init__(self, failing: set[str]) -> None:
        super().__init__()
        self.failing = failing

    def _check(self, name: str) -> None:
        if name in self.failing:
            raise ConnectionError(f"{name}: database unavailable")

    async def get_recent_messages(self, session_id, limit):
        self._check("get_recent_messages")
        return await super().get_recent_messages(session_id, limit)

    async def get_mood_entries(self, user_id, since):
        self._check("get_mood_entries")
        return await super().get_mood_entries(user_id, since)

    async def insert_crisis_assessment(self, record):
        self._check("insert_crisis_assessment")
        await super().insert_crisis_assessment(record)

    async def insert_crisis_event(self, record):
        self._check("insert_crisis_event")
        await super().insert_crisis_event(record)


def ai_reply(level: str, confidence: float | None, indicators: list[str] | None = None) -> str:
    payload = {
        "riskLevel": level,
        "indicators": indicators or [],
        "reasoning": f"model judged {level} risk",
    }
    if confidence is not None:
        payload["confidence"] = confidence
    return "Here is my assessment:\n```json\n" + json.dumps(payload) + "\n```"


def seed_user(
    store: InMemoryStore,
    user_id: str = "user_1",
    session_id: str = "session_1",
    sessions_this_week: int = 3,
    mood_scores: list[float] | None = None,
    sleep_scores: list[float] | None = None,
) -> None:
    """Give ``user_id`` a current session, recent sessions and mood history."""
    now = datetime.now(timezone.utc)
    store.add_session(Session(id=session_id, user_id=user_id, started_at=now, mood_before=6))
    for i in range(1, sessions_this_week):
        store.add_session(Session(
            id=f"{session_id}_prev_{i}",
            user_id=user_id,
            started_at=now - timedelta(days=i),
        ))
    moods = mood_scores if mood_scores is not None else [6, 7, 6, 7]
    sleeps = sleep_scores if sleep_scores is not None else [7] * len(moods)
    for i, (mood, sleep) in enumerate(zip(moods, sleeps)):
        store.add_mood_entry(MoodEntry(
            user_id=user_id,
            mood_score=mood,
            sleep_quality=sleep,
            recorded_at=now - timedelta(days=len(moods) - i),
        ))


FAST_TIMEOUTS = AnalyzerTimeouts(keyword=0.5, sentiment=0.2, behavioral=0.5, ai=0.2)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def follow_ups() -> InMemoryFollowUpQueue:
    return InMemoryFollowUpQueue()


@pytest.fixture
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture
def emergency() -> RecordingEmergency:
    return RecordingEmergency()


@pytest.fixture
def audit_log() -> AuditLog:
    return AuditLog()


@pytest.fixture
def fast_policy() -> DetectionPolicy:
    return DEFAULT_POLICY.model_copy(update={"timeouts": FAST_TIMEOUTS})


@pytest.fixture
def make_detector(store, follow_ups, notifications, emergency, audit_log, fast_policy):
    """Factory for a ``CrisisDetector`` wired to the shared fakes."""

    def _make(
        sentiment: FakeSentimentModel | None = None,
        ai: FakeGenerativeModel | None = None,
        storage: InMemoryStore | None = None,
        policy: DetectionPolicy | None = None,
    ) -> CrisisDetector:
        return CrisisDetector(
            storage=storage if storage is not None else store,
            sentiment_model=sentiment or FakeSentimentModel(),
            generative_model=ai or FakeGenerativeModel(),
            notifications=notifications,
            emergency=emergency,
            scheduler=follow_ups,
            audit_log=audit_log,
            policy=policy or fast_policy,
        )

    return _make


def distressed_sentiment() -> SentimentResult:
    return SentimentResult(
        sentiment=-0.9,
        emotions=EmotionScores(fear=0.4, sadness=0.9, anger=0.1, disgust=0.1),
    )
