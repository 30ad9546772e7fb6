"""
Crisis Detector -- the message-level entry point of the pipeline.

For every user message:

    1. Load a fresh ``ConversationContext`` from storage.
    2. Run the lexical, sentiment, behavioral and AI analyzers concurrently.
       Each branch has its own time budget; an error or timeout turns into
       that analyzer's low-confidence failure result.
    3. Fuse the four results into one level, confidence, action list and
       urgency.
    4. Record and audit the ``CrisisAssessment``, then hand it to the
       intervention orchestrator.

``analyze_message`` never raises.  If anything outside the per-analyzer
guards fails (context retrieval, fusion, record construction) it returns
a conservative MEDIUM fallback flagged for manual review.

DISCLAIMER: Assessments are routing signals for human follow-up.  They are
not clinical determinations.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Optional

from pydantic import BaseModel, Field

from crisiswatch.ai_analyzer import AIAnalyzer
from crisiswatch.audit import AuditEntry, AuditEventType, AuditLog, AuditSeverity
from crisiswatch.behavioral import BehavioralAnalyzer
from crisiswatch.collaborators import (
    AuditSink,
    EmergencyService,
    FollowUpScheduler,
    GenerativeModel,
    NotificationService,
    SentimentModel,
    Storage,
)
from crisiswatch.config import DEFAULT_POLICY, DetectionPolicy
from crisiswatch.fusion import fuse_risk_assessments
from crisiswatch.intervention import InterventionOrchestrator, InterventionResult
from crisiswatch.lexical import KeywordAnalyzer
from crisiswatch.models import (
    ConversationContext,
    CrisisAssessment,
    OverallRiskAssessment,
    RiskAssessment,
    RiskLevel,
)
from crisiswatch.sentiment import SentimentAnalyzer

logger = logging.getLogger(__name__)


FALLBACK_TRIGGER = "analysis_error"
FALLBACK_ACTIONS = ("manual_review", "provide_resources")


class DetectionReport(BaseModel):
    """Everything one ``analyze_message_detailed`` call produced."""

    assessment: CrisisAssessment
    analyzer_results: list[RiskAssessment] = Field(default_factory=list)
    overall: Optional[OverallRiskAssessment] = None
    intervention: Optional[InterventionResult] = None
    processing_ms: float = 0.0

    @property
    def failed_analyzers(self) -> list[str]:
        return [r.source for r in self.analyzer_results if _is_failure(r)]


def _is_failure(result: RiskAssessment) -> bool:
    return any(t.endswith("_failed") for t in result.triggers)


class CrisisDetector:
    """Analyze user messages for crisis risk and trigger the protocol.

    All collaborators are injected; the detector holds no per-request
    state, so one instance can serve concurrent calls.
    """

    def __init__(
        self,
        storage: Storage,
        sentiment_model: SentimentModel,
        generative_model: GenerativeModel,
        notifications: NotificationService,
        emergency: EmergencyService,
        scheduler: FollowUpScheduler,
        audit_log: Optional[AuditSink] = None,
        policy: DetectionPolicy = DEFAULT_POLICY,
    ) -> None:
        self._storage = storage
        self._policy = policy
        self.audit_log = audit_log if audit_log is not None else AuditLog()

        self.keyword = KeywordAnalyzer(policy)
        self.sentiment = SentimentAnalyzer(sentiment_model, policy)
        self.behavioral = BehavioralAnalyzer(storage, policy)
        self.ai = AIAnalyzer(generative_model, policy)
        self.orchestrator = InterventionOrchestrator(
            storage=storage,
            notifications=notifications,
            emergency=emergency,
            scheduler=scheduler,
            audit_log=self.audit_log,
            policy=policy,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def analyze_message(
        self,
        message: str,
        user_id: str,
        session_id: str,
        message_id: Optional[str] = None,
    ) -> CrisisAssessment:
        """Assess ``message`` and run the intervention protocol.

        Args:
            message: The user's message text.
            user_id: Author of the message.
            session_id: Conversation session the message belongs to.
            message_id: Stored message id, if the caller has one.

        Returns:
            The persisted ``CrisisAssessment``, or a conservative fallback
            assessment if the pipeline itself failed.  Never raises.
        """
        report = await self.analyze_message_detailed(message, user_id, session_id, message_id)
        return report.assessment

    async def analyze_message_detailed(
        self,
        message: str,
        user_id: str,
        session_id: str,
        message_id: Optional[str] = None,
    ) -> DetectionReport:
        """Like ``analyze_message`` but also returns the intermediate results."""
        started = time.perf_counter()
        try:
            report = await self._analyze(message, user_id, session_id, message_id)
        except Exception as e:
            logger.error(
                "CRISIS_ANALYSIS_FAILED",
                extra={"user_id": user_id, "session_id": session_id, "error": str(e)},
            )
            report = DetectionReport(
                assessment=self._fallback_assessment(user_id, session_id, message_id, e),
            )
        report.processing_ms = (time.perf_counter() - started) * 1000
        return report

    async def get_conversation_context(self, user_id: str, session_id: str) -> ConversationContext:
        """Load recent messages, session mood and recent crisis count."""
        since = datetime.now(timezone.utc) - timedelta(days=self._policy.crisis_flag_lookback_days)
        messages, session, crisis_count = await asyncio.gather(
            self._storage.get_recent_messages(session_id, self._policy.context_message_limit),
            self._storage.get_session(session_id),
            self._storage.count_recent_crisis_events(user_id, since),
        )
        return ConversationContext(
            user_id=user_id,
            session_id=session_id,
            message_history=list(messages),
            current_mood=session.mood_before if session is not None else None,
            recent_crisis_flags=crisis_count,
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _analyze(
        self,
        message: str,
        user_id: str,
        session_id: str,
        message_id: Optional[str],
    ) -> DetectionReport:
        started = time.perf_counter()
        context = await self.get_conversation_context(user_id, session_id)

        timeouts = self._policy.timeouts
        results = list(await asyncio.gather(
            self._guarded(self.keyword, self.keyword.analyze(message, context), timeouts.keyword, user_id),
            self._guarded(self.sentiment, self.sentiment.analyze(message, context), timeouts.sentiment, user_id),
            self._guarded(self.behavioral, self.behavioral.analyze(user_id), timeouts.behavioral, user_id),
            self._guarded(self.ai, self.ai.analyze(message, context), timeouts.ai, user_id),
        ))

        overall = fuse_risk_assessments(results, self._policy)
        assessment = CrisisAssessment(
            user_id=user_id,
            message_id=message_id,
            session_id=session_id,
            risk_level=overall.level,
            confidence=overall.confidence,
            triggers=list(overall.triggers),
            recommended_actions=list(overall.actions),
            time_to_intervention=overall.urgency,
            assessment=overall.reasoning,
        )

        processing_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "CRISIS_ANALYSIS_COMPLETED",
            extra={
                "assessment_id": assessment.id,
                "user_id": user_id,
                "risk_level": assessment.risk_level.value,
                "confidence": assessment.confidence,
                "trigger_count": len(assessment.triggers),
                "processing_ms": round(processing_ms, 1),
            },
        )
        self._audit_assessment(assessment, results)

        intervention = None
        try:
            intervention = await self.orchestrator.execute(assessment)
        except Exception as e:
            logger.error(
                "CRISIS_PROTOCOL_FAILED",
                extra={"assessment_id": assessment.id, "user_id": user_id, "error": str(e)},
            )

        return DetectionReport(
            assessment=assessment,
            analyzer_results=results,
            overall=overall,
            intervention=intervention,
        )

    async def _guarded(
        self,
        analyzer,
        coro: Awaitable[RiskAssessment],
        timeout: float,
        user_id: str,
    ) -> RiskAssessment:
        """Await one analyzer branch; any error or timeout yields its failure result."""
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "ANALYZER_TIMED_OUT",
                extra={"analyzer": analyzer.source, "user_id": user_id, "timeout_s": timeout},
            )
            return analyzer.failed(f"Analysis timed out after {timeout:g}s")
        except Exception as e:
            logger.error(
                "ANALYZER_FAILED",
                extra={"analyzer": analyzer.source, "user_id": user_id, "error": str(e)},
            )
            return analyzer.failed("Analysis failed")

    # ------------------------------------------------------------------
    # Audit and fallback
    # ------------------------------------------------------------------

    def _audit_assessment(self, assessment: CrisisAssessment, results: list[RiskAssessment]) -> None:
        severity = (
            AuditSeverity.CRITICAL
            if assessment.risk_level >= RiskLevel.HIGH
            else AuditSeverity.INFO
        )
        self._emit_audit(AuditEntry(
            user_id=assessment.user_id,
            event_type=AuditEventType.CRISIS_ASSESSED,
            severity=severity,
            target_entity=assessment.id,
            metadata={
                "risk_level": assessment.risk_level.value,
                "confidence": assessment.confidence,
                "triggers": assessment.triggers,
                "time_to_intervention": assessment.time_to_intervention,
            },
        ))
        for result in results:
            if _is_failure(result):
                self._emit_audit(AuditEntry(
                    user_id=assessment.user_id,
                    event_type=AuditEventType.ANALYZER_FAILED,
                    severity=AuditSeverity.WARNING,
                    target_entity=assessment.id,
                    metadata={"analyzer": result.source, "reasoning": result.reasoning},
                ))

    def _fallback_assessment(
        self,
        user_id: str,
        session_id: str,
        message_id: Optional[str],
        error: Exception,
    ) -> CrisisAssessment:
        assessment = CrisisAssessment(
            user_id=user_id,
            message_id=message_id,
            session_id=session_id,
            risk_level=RiskLevel.MEDIUM,
            confidence=0.1,
            triggers=[FALLBACK_TRIGGER],
            recommended_actions=list(FALLBACK_ACTIONS),
            assessment="Error in crisis analysis - defaulting to manual review",
            fallback=True,
        )
        self._emit_audit(AuditEntry(
            user_id=user_id,
            event_type=AuditEventType.ASSESSMENT_FALLBACK,
            severity=AuditSeverity.ERROR,
            target_entity=assessment.id,
            metadata={"error": str(error)},
        ))
        return assessment

    def _emit_audit(self, entry: AuditEntry) -> None:
        try:
            self.audit_log.append(entry)
        except Exception as e:
            logger.error(
                "AUDIT_WRITE_FAILED",
                extra={"event_type": entry.event_type.value, "error": str(e)},
            )
