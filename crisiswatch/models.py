"""
Core data models for the crisis detection pipeline.

``RiskLevel`` is an explicitly ordered enum: every comparison between
levels goes through its numeric ``severity``, never through the string
values.  Analyzer and fusion outputs (``RiskAssessment``,
``OverallRiskAssessment``) are frozen; persisted records
(``CrisisAssessment``, ``CrisisEvent``) mirror the storage rows.

DISCLAIMER: These structures carry workflow routing signals.  They do not
represent clinical assessments or diagnoses.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RiskLevel(str, enum.Enum):
    """Ordered risk levels: ``LOW < MEDIUM < HIGH < CRITICAL``.

    Ordering operators compare ``severity`` (1-4).  Use ``at_least()`` or
    ``RiskLevel.most_severe()`` to escalate a level instead of comparing
    string values.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        """Numeric severity used for ordering and weighted fusion."""
        return _SEVERITY[self]

    @classmethod
    def from_severity(cls, severity: int) -> "RiskLevel":
        for level, value in _SEVERITY.items():
            if value == severity:
                return level
        raise ValueError(f"No risk level with severity {severity}")

    @classmethod
    def most_severe(cls, *levels: "RiskLevel") -> "RiskLevel":
        """Return the most severe of the given levels (LOW if none)."""
        return max(levels, key=lambda level: level.severity, default=cls.LOW)

    def at_least(self, floor: "RiskLevel") -> "RiskLevel":
        """Escalate to ``floor`` if this level is less severe."""
        return floor if floor.severity > self.severity else self

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.severity < other.severity

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.severity <= other.severity

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.severity > other.severity

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.severity >= other.severity


_SEVERITY = {
    RiskLevel.LOW: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.HIGH: 3,
    RiskLevel.CRITICAL: 4,
}


class AnalyzerSource(str, enum.Enum):
    """Identifiers of the four analyzers, used as fusion weight keys."""

    KEYWORD = "keyword_analysis"
    SENTIMENT = "sentiment_analysis"
    BEHAVIORAL = "behavioral_analysis"
    AI = "ai_analysis"


class InterventionType(str, enum.Enum):
    """Most significant intervention performed for a crisis event."""

    RESOURCE_PROVISION = "resource_provision"
    PROFESSIONAL_ALERT = "professional_alert"
    EMERGENCY_CONTACT = "emergency_contact"
    CRISIS_CHAT = "crisis_chat"


# ---------------------------------------------------------------------------
# Analyzer outputs
# ---------------------------------------------------------------------------

class RiskAssessment(BaseModel):
    """Output of a single analyzer.  Immutable once returned."""

    model_config = ConfigDict(frozen=True)

    level: RiskLevel
    confidence: float = Field(..., ge=0.0, le=1.0)
    triggers: tuple[str, ...] = Field(
        default=(),
        description="Tags explaining the level (matched phrases, signal names).",
    )
    source: str = Field(..., description="Analyzer identifier, e.g. 'keyword_analysis'.")
    reasoning: str = ""

    @classmethod
    def failed(cls, source: str, trigger: str, reasoning: str) -> "RiskAssessment":
        """Low-confidence result used when an analyzer cannot produce a signal."""
        return cls(
            level=RiskLevel.LOW,
            confidence=0.1,
            triggers=(trigger,),
            source=source,
            reasoning=reasoning,
        )


class OverallRiskAssessment(RiskAssessment):
    """Fused result over all analyzer outputs."""

    actions: tuple[str, ...] = ()
    urgency: int = Field(
        ...,
        ge=0,
        description="Seconds until the intervention deadline (0 = immediate).",
    )


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------

class CrisisAssessment(BaseModel):
    """Write-once record of one message analysis."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    message_id: Optional[str] = None
    session_id: Optional[str] = None
    risk_level: RiskLevel
    confidence: float = Field(..., ge=0.0, le=1.0)
    triggers: list[str] = Field(default_factory=list)
    recommended_actions: list[str] = Field(default_factory=list)
    time_to_intervention: Optional[int] = Field(
        default=None,
        description="Seconds until intervention deadline; unset for fallback assessments.",
    )
    assessment: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)
    fallback: bool = Field(
        default=False,
        description="True when produced by the conservative fallback after a pipeline error.",
    )


class CrisisEvent(BaseModel):
    """Intervention record created when risk reaches HIGH or CRITICAL.

    Owned by the intervention orchestrator, which records the protocol
    outcome once and the resolution once.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    message_id: Optional[str] = None
    session_id: Optional[str] = None
    assessment_id: Optional[str] = None
    risk_level: RiskLevel
    trigger_keywords: list[str] = Field(default_factory=list)
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    intervention_triggered: bool = False
    intervention_type: Optional[InterventionType] = None
    resources_provided: list[str] = Field(default_factory=list)
    professional_notified: bool = False
    emergency_services_contacted: bool = False
    resolved_at: Optional[datetime] = None
    resolution_notes: str = ""
    follow_up_required: bool = False
    detected_by: str = "ai_system"
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class CrisisResource(BaseModel):
    """A crisis resource offered to users (hotline, text line, chat).

    ``min_level`` is the lowest risk level at which the resource is
    offered.
    """

    name: str = Field(..., min_length=1)
    resource_type: str = Field(
        default="phone",
        description="'phone', 'text', 'chat' or 'web'.",
    )
    contact: str = Field(default="", description="Phone number, short code or URL.")
    min_level: RiskLevel = RiskLevel.HIGH


class FollowUpTask(BaseModel):
    """A follow-up check enqueued after a crisis protocol.

    Delivery and retries belong to the scheduler collaborator;
    ``max_attempts`` is the retry budget handed to it.
    """

    task_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    assessment_id: str
    crisis_event_id: Optional[str] = None
    risk_level: RiskLevel
    due_at: datetime
    max_attempts: int = Field(default=3, ge=1)
    reason: str = ""


# ---------------------------------------------------------------------------
# Read models (owned by storage)
# ---------------------------------------------------------------------------

class Message(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str
    user_id: Optional[str] = None
    role: str = "user"
    content: str = ""
    created_at: datetime = Field(default_factory=_utcnow)


class Session(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    started_at: datetime = Field(default_factory=_utcnow)
    mood_before: Optional[float] = None


class MoodEntry(BaseModel):
    """A self-reported mood sample (1-10 scales)."""

    user_id: str
    mood_score: Optional[float] = Field(default=None, ge=0, le=10)
    sleep_quality: Optional[float] = Field(default=None, ge=0, le=10)
    recorded_at: datetime = Field(default_factory=_utcnow)


class EmotionScores(BaseModel):
    fear: float = Field(default=0.0, ge=0.0, le=1.0)
    sadness: float = Field(default=0.0, ge=0.0, le=1.0)
    anger: float = Field(default=0.0, ge=0.0, le=1.0)
    disgust: float = Field(default=0.0, ge=0.0, le=1.0)


class SentimentResult(BaseModel):
    """Output of the external sentiment/emotion model."""

    sentiment: float = Field(..., ge=-1.0, le=1.0)
    emotions: Optional[EmotionScores] = None


class ConversationContext(BaseModel):
    """Situational context for one analysis.  Built fresh per message."""

    user_id: str
    session_id: str
    message_history: list[Message] = Field(default_factory=list)
    current_mood: Optional[float] = None
    recent_crisis_flags: int = Field(default=0, ge=0)


class BehavioralPattern(BaseModel):
    """Recent behavioral signals for one user.  Built fresh per message.

    ``recent_mood_scores`` is chronological (oldest first) so that a
    negative trend means mood is getting worse.
    """

    user_id: str
    recent_mood_scores: list[float] = Field(default_factory=list)
    conversation_frequency: int = Field(default=0, ge=0)
    sleep_quality: list[float] = Field(default_factory=list)
    risk_factors: list[str] = Field(default_factory=list)
