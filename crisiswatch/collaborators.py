"""
Collaborator contracts consumed by the detection pipeline.

Persistence, the sentiment model, the generative model, notification,
emergency contact and follow-up scheduling are implemented outside this
package.  The pipeline only depends on the async interfaces below, and
every component receives its collaborators through its constructor so
tests and deployments can substitute their own.

``AuditSink`` is synchronous: an audit write is a local append
(``crisiswatch.audit.AuditLog`` is the default implementation).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from crisiswatch.audit import AuditEntry
from crisiswatch.models import (
    CrisisAssessment,
    CrisisEvent,
    FollowUpTask,
    Message,
    MoodEntry,
    RiskLevel,
    SentimentResult,
    Session,
)


@runtime_checkable
class Storage(Protocol):
    async def get_recent_messages(self, session_id: str, limit: int) -> list[Message]: ...

    async def get_session(self, session_id: str) -> Optional[Session]: ...

    async def count_recent_crisis_events(self, user_id: str, since: datetime) -> int: ...

    async def get_mood_entries(self, user_id: str, since: datetime) -> list[MoodEntry]: ...

    async def count_recent_sessions(self, user_id: str, since: datetime) -> int: ...

    async def get_risk_factors(self, user_id: str) -> list[str]:
        """Known risk-factor tags for the user (empty when no profile source exists)."""
        ...

    async def insert_crisis_assessment(self, record: CrisisAssessment) -> None: ...

    async def insert_crisis_event(self, record: CrisisEvent) -> None: ...

    async def update_crisis_event(self, record: CrisisEvent) -> None: ...


@runtime_checkable
class SentimentModel(Protocol):
    async def analyze_sentiment(self, text: str) -> SentimentResult: ...


@runtime_checkable
class GenerativeModel(Protocol):
    async def complete(self, prompt: str) -> str:
        """Return the raw completion text for ``prompt``."""
        ...


@runtime_checkable
class NotificationService(Protocol):
    async def send_crisis_resources(self, user_id: str, risk_level: RiskLevel) -> None: ...

    async def alert_professionals(self, assessment: CrisisAssessment) -> None: ...


@runtime_checkable
class EmergencyService(Protocol):
    async def contact_emergency_services(self, user_id: str) -> None: ...


@runtime_checkable
class FollowUpScheduler(Protocol):
    async def schedule_follow_up(self, task: FollowUpTask) -> None:
        """Enqueue ``task``; delivery and retries are the scheduler's job."""
        ...


@runtime_checkable
class AuditSink(Protocol):
    def append(self, entry: AuditEntry) -> AuditEntry: ...
