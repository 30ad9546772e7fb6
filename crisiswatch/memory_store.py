"""
In-memory implementations of the storage and follow-up collaborators.

Used by the synthetic scenario and the test suite.  Not for production:
nothing is persisted and there is no locking beyond the event loop's
single thread.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from crisiswatch.models import (
    CrisisAssessment,
    CrisisEvent,
    FollowUpTask,
    Message,
    MoodEntry,
    Session,
)


class InMemoryStore:
    """Dict-and-list backed ``Storage``."""

    def __init__(self) -> None:
        self.messages: list[Message] = []
        self.sessions: dict[str, Session] = {}
        self.mood_entries: list[MoodEntry] = []
        self.risk_factors: dict[str, list[str]] = {}
        self.assessments: dict[str, CrisisAssessment] = {}
        self.crisis_events: dict[str, CrisisEvent] = {}

    # -- seeding helpers --

    def add_session(self, session: Session) -> Session:
        self.sessions[session.id] = session
        return session

    def add_message(self, message: Message) -> Message:
        self.messages.append(message)
        return message

    def add_mood_entry(self, entry: MoodEntry) -> MoodEntry:
        self.mood_entries.append(entry)
        return entry

    def set_risk_factors(self, user_id: str, factors: list[str]) -> None:
        self.risk_factors[user_id] = list(factors)

    # -- Storage --

    async def get_recent_messages(self, session_id: str, limit: int) -> list[Message]:
        in_session = [m for m in self.messages if m.session_id == session_id]
        in_session.sort(key=lambda m: m.created_at, reverse=True)
        return in_session[:limit]

    async def get_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    async def count_recent_crisis_events(self, user_id: str, since: datetime) -> int:
        return sum(
            1 for e in self.crisis_events.values()
            if e.user_id == user_id and e.created_at >= since
        )

    async def get_mood_entries(self, user_id: str, since: datetime) -> list[MoodEntry]:
        return [
            e for e in self.mood_entries
            if e.user_id == user_id and e.recorded_at >= since
        ]

    async def count_recent_sessions(self, user_id: str, since: datetime) -> int:
        return sum(
            1 for s in self.sessions.values()
            if s.user_id == user_id and s.started_at >= since
        )

    async def get_risk_factors(self, user_id: str) -> list[str]:
        return list(self.risk_factors.get(user_id, []))

    async def insert_crisis_assessment(self, record: CrisisAssessment) -> None:
        if record.id in self.assessments:
            raise ValueError(f"Crisis assessment {record.id} already exists.")
        self.assessments[record.id] = record.model_copy(deep=True)

    async def insert_crisis_event(self, record: CrisisEvent) -> None:
        if record.id in self.crisis_events:
            raise ValueError(f"Crisis event {record.id} already exists.")
        self.crisis_events[record.id] = record.model_copy(deep=True)

    async def update_crisis_event(self, record: CrisisEvent) -> None:
        if record.id not in self.crisis_events:
            raise KeyError(f"Crisis event {record.id} not found.")
        self.crisis_events[record.id] = record.model_copy(deep=True)


class InMemoryFollowUpQueue:
    """``FollowUpScheduler`` that keeps enqueued tasks in a list."""

    def __init__(self) -> None:
        self.tasks: list[FollowUpTask] = []

    async def schedule_follow_up(self, task: FollowUpTask) -> None:
        self.tasks.append(task)

    def due(self, now: datetime) -> list[FollowUpTask]:
        return [t for t in self.tasks if t.due_at <= now]
