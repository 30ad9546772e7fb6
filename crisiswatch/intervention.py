"""
Intervention Orchestrator -- graduated crisis protocol with per-stage isolation.

Given a persisted-to-be ``CrisisAssessment``, the orchestrator runs these
stages in order:

    store_assessment -> create_crisis_event -> provide_resources
        -> notify_professionals -> contact_emergency_services
        -> schedule_follow_up -> record_outcome

``store_assessment`` always runs.  The remaining stages run only when the
assessment reaches the protocol level (HIGH by default); individual stages
are further gated (professionals for CRITICAL or very confident results,
emergency services for imminent-danger triggers).

**Fault isolation:**  every stage runs inside its own guard.  A failing
stage is logged, audited as ``INTERVENTION_STAGE_FAILED`` and recorded as
``failed`` in the ``InterventionResult``; the following stages still run.
Stages run sequentially so that side effects (notifications, emergency
contact) keep their audit order and are never duplicated.

**Crisis event lifecycle:**  the ``CrisisEvent`` is inserted at
``create_crisis_event``, its protocol outcome is written once at
``record_outcome``, and ``resolve_event()`` records resolution once.

DISCLAIMER: The orchestrator hands work to notification and emergency
collaborators.  Operational crisis response is their responsibility and
that of the professionals they reach.
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from crisiswatch.audit import AuditEntry, AuditEventType, AuditSeverity
from crisiswatch.collaborators import (
    AuditSink,
    EmergencyService,
    FollowUpScheduler,
    NotificationService,
    Storage,
)
from crisiswatch.config import DEFAULT_POLICY, DetectionPolicy
from crisiswatch.fusion import base_actions
from crisiswatch.models import (
    CrisisAssessment,
    CrisisEvent,
    FollowUpTask,
    InterventionType,
    RiskLevel,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stage bookkeeping
# ---------------------------------------------------------------------------

class InterventionStage(str, enum.Enum):
    STORE_ASSESSMENT = "store_assessment"
    CREATE_CRISIS_EVENT = "create_crisis_event"
    PROVIDE_RESOURCES = "provide_resources"
    NOTIFY_PROFESSIONALS = "notify_professionals"
    CONTACT_EMERGENCY_SERVICES = "contact_emergency_services"
    SCHEDULE_FOLLOW_UP = "schedule_follow_up"
    RECORD_OUTCOME = "record_outcome"


class StageStatus(str, enum.Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class StageOutcome(BaseModel):
    stage: InterventionStage
    status: StageStatus
    detail: str = ""
    error: Optional[str] = None


class InterventionResult(BaseModel):
    """What the protocol did for one assessment, stage by stage."""

    assessment_id: str
    protocol_triggered: bool = False
    crisis_event: Optional[CrisisEvent] = None
    follow_up: Optional[FollowUpTask] = None
    outcomes: list[StageOutcome] = Field(default_factory=list)

    def outcome(self, stage: InterventionStage) -> Optional[StageOutcome]:
        for outcome in self.outcomes:
            if outcome.stage == stage:
                return outcome
        return None

    def status_of(self, stage: InterventionStage) -> Optional[StageStatus]:
        outcome = self.outcome(stage)
        return outcome.status if outcome else None

    @property
    def failed_stages(self) -> list[InterventionStage]:
        return [o.stage for o in self.outcomes if o.status == StageStatus.FAILED]


class InvalidTransitionError(Exception):
    """Raised when a crisis event lifecycle change is not permitted."""
    pass


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class InterventionOrchestrator:
    """Runs the crisis protocol for fused assessments.

    Stateless between calls: all per-assessment state lives in the
    ``InterventionResult`` being built.
    """

    def __init__(
        self,
        storage: Storage,
        notifications: NotificationService,
        emergency: EmergencyService,
        scheduler: FollowUpScheduler,
        audit_log: AuditSink,
        policy: DetectionPolicy = DEFAULT_POLICY,
    ) -> None:
        self._storage = storage
        self._notifications = notifications
        self._emergency = emergency
        self._scheduler = scheduler
        self._audit_log = audit_log
        self._policy = policy

    # -- policy helpers --

    def base_actions(self, level: RiskLevel) -> list[str]:
        return base_actions(level, self._policy)

    def requires_protocol(self, assessment: CrisisAssessment) -> bool:
        return assessment.risk_level >= self._policy.intervention.protocol_min_level

    def requires_professional_alert(self, assessment: CrisisAssessment) -> bool:
        settings = self._policy.intervention
        return (
            assessment.risk_level == RiskLevel.CRITICAL
            or assessment.confidence > settings.professional_alert_confidence
        )

    def imminent_danger_triggers(self, triggers: list[str]) -> list[str]:
        """Triggers that name an explicit plan or method."""
        keywords = {k.lower() for k in self._policy.intervention.imminent_danger_keywords}
        return [t for t in triggers if t.lower() in keywords]

    def resources_for(self, level: RiskLevel) -> list[str]:
        """Names of the configured crisis resources offered at ``level``."""
        return [
            r.name for r in self._policy.intervention.crisis_resources
            if level >= r.min_level
        ]

    # -- protocol --

    async def execute(self, assessment: CrisisAssessment) -> InterventionResult:
        """Run the protocol for ``assessment``.  Never raises."""
        result = InterventionResult(assessment_id=assessment.id)

        await self._run_stage(
            result, assessment, InterventionStage.STORE_ASSESSMENT,
            lambda: self._store_assessment(assessment),
        )

        if not self.requires_protocol(assessment):
            for stage in list(InterventionStage)[1:]:
                result.outcomes.append(StageOutcome(
                    stage=stage,
                    status=StageStatus.SKIPPED,
                    detail=f"Risk level {assessment.risk_level.value} below protocol threshold",
                ))
            return result

        result.protocol_triggered = True
        logger.warning(
            "CRISIS_PROTOCOL_TRIGGERED",
            extra={
                "assessment_id": assessment.id,
                "user_id": assessment.user_id,
                "risk_level": assessment.risk_level.value,
                "confidence": assessment.confidence,
            },
        )

        event = CrisisEvent(
            user_id=assessment.user_id,
            message_id=assessment.message_id,
            session_id=assessment.session_id,
            assessment_id=assessment.id,
            risk_level=assessment.risk_level,
            trigger_keywords=list(assessment.triggers),
            confidence_score=assessment.confidence,
            intervention_triggered=True,
        )
        result.crisis_event = event
        event_stored = await self._run_stage(
            result, assessment, InterventionStage.CREATE_CRISIS_EVENT,
            lambda: self._create_crisis_event(event),
        )

        resources_sent = await self._run_stage(
            result, assessment, InterventionStage.PROVIDE_RESOURCES,
            lambda: self._provide_resources(assessment, event),
        )

        if self.requires_professional_alert(assessment):
            await self._run_stage(
                result, assessment, InterventionStage.NOTIFY_PROFESSIONALS,
                lambda: self._notify_professionals(assessment, event),
            )
        else:
            self._skip(result, InterventionStage.NOTIFY_PROFESSIONALS,
                       "Not critical and confidence below alert threshold")

        danger = self.imminent_danger_triggers(assessment.triggers)
        if danger:
            await self._run_stage(
                result, assessment, InterventionStage.CONTACT_EMERGENCY_SERVICES,
                lambda: self._contact_emergency_services(assessment, event, danger),
            )
        else:
            self._skip(result, InterventionStage.CONTACT_EMERGENCY_SERVICES,
                       "No imminent danger triggers")

        await self._run_stage(
            result, assessment, InterventionStage.SCHEDULE_FOLLOW_UP,
            lambda: self._schedule_follow_up(assessment, event, result),
        )

        await self._run_stage(
            result, assessment, InterventionStage.RECORD_OUTCOME,
            lambda: self._record_outcome(event, event_stored, resources_sent),
        )

        if result.failed_stages:
            logger.error(
                "CRISIS_PROTOCOL_INCOMPLETE",
                extra={
                    "assessment_id": assessment.id,
                    "failed_stages": [s.value for s in result.failed_stages],
                },
            )
        return result

    async def _run_stage(
        self,
        result: InterventionResult,
        assessment: CrisisAssessment,
        stage: InterventionStage,
        action: Callable[[], Awaitable[str]],
    ) -> bool:
        """Run one stage in isolation; record its outcome.  Returns success."""
        try:
            detail = await action()
        except Exception as e:
            logger.error(
                "INTERVENTION_STAGE_FAILED",
                extra={
                    "assessment_id": assessment.id,
                    "user_id": assessment.user_id,
                    "stage": stage.value,
                    "error": str(e),
                },
            )
            self._emit_audit(
                AuditEventType.INTERVENTION_STAGE_FAILED,
                assessment.user_id,
                assessment.id,
                severity=AuditSeverity.ERROR,
                metadata={"stage": stage.value, "error": str(e)},
            )
            result.outcomes.append(StageOutcome(
                stage=stage, status=StageStatus.FAILED, error=str(e),
            ))
            return False

        result.outcomes.append(StageOutcome(
            stage=stage, status=StageStatus.COMPLETED, detail=detail,
        ))
        return True

    def _skip(self, result: InterventionResult, stage: InterventionStage, reason: str) -> None:
        result.outcomes.append(StageOutcome(stage=stage, status=StageStatus.SKIPPED, detail=reason))

    def _emit_audit(
        self,
        event_type: AuditEventType,
        user_id: str,
        target: str,
        severity: AuditSeverity = AuditSeverity.WARNING,
        metadata: dict | None = None,
    ) -> None:
        try:
            self._audit_log.append(AuditEntry(
                user_id=user_id,
                event_type=event_type,
                severity=severity,
                target_entity=target,
                metadata=metadata or {},
            ))
        except Exception as e:
            logger.error(
                "AUDIT_WRITE_FAILED",
                extra={"event_type": event_type.value, "target": target, "error": str(e)},
            )

    # -- stages --

    async def _store_assessment(self, assessment: CrisisAssessment) -> str:
        await self._storage.insert_crisis_assessment(assessment)
        return "Assessment stored"

    async def _create_crisis_event(self, event: CrisisEvent) -> str:
        await self._storage.insert_crisis_event(event)
        self._emit_audit(
            AuditEventType.CRISIS_EVENT_CREATED,
            event.user_id,
            event.id,
            metadata={
                "assessment_id": event.assessment_id,
                "risk_level": event.risk_level.value,
                "triggers": event.trigger_keywords,
            },
        )
        return f"Crisis event {event.id} created"

    async def _provide_resources(self, assessment: CrisisAssessment, event: CrisisEvent) -> str:
        await self._notifications.send_crisis_resources(assessment.user_id, assessment.risk_level)
        event.resources_provided = self.resources_for(assessment.risk_level)
        self._emit_audit(
            AuditEventType.CRISIS_RESOURCES_PROVIDED,
            assessment.user_id,
            event.id,
            metadata={"resources": event.resources_provided},
        )
        return f"Provided {len(event.resources_provided)} crisis resources"

    async def _notify_professionals(self, assessment: CrisisAssessment, event: CrisisEvent) -> str:
        await self._notifications.alert_professionals(assessment)
        event.professional_notified = True
        self._emit_audit(
            AuditEventType.PROFESSIONALS_ALERTED,
            assessment.user_id,
            event.id,
            severity=AuditSeverity.CRITICAL,
            metadata={
                "risk_level": assessment.risk_level.value,
                "confidence": assessment.confidence,
            },
        )
        return "Professionals alerted"

    async def _contact_emergency_services(
        self,
        assessment: CrisisAssessment,
        event: CrisisEvent,
        danger: list[str],
    ) -> str:
        await self._emergency.contact_emergency_services(assessment.user_id)
        event.emergency_services_contacted = True
        self._emit_audit(
            AuditEventType.EMERGENCY_SERVICES_CONTACTED,
            assessment.user_id,
            event.id,
            severity=AuditSeverity.CRITICAL,
            metadata={"imminent_danger_triggers": danger},
        )
        return f"Emergency services contacted ({', '.join(danger)})"

    async def _schedule_follow_up(
        self,
        assessment: CrisisAssessment,
        event: CrisisEvent,
        result: InterventionResult,
    ) -> str:
        settings = self._policy.intervention
        event.follow_up_required = True
        task = FollowUpTask(
            user_id=assessment.user_id,
            assessment_id=assessment.id,
            crisis_event_id=event.id,
            risk_level=assessment.risk_level,
            due_at=datetime.now(timezone.utc) + timedelta(hours=settings.follow_up_hours),
            max_attempts=settings.follow_up_max_attempts,
            reason=f"{assessment.risk_level.value} risk crisis protocol follow-up",
        )
        await self._scheduler.schedule_follow_up(task)
        result.follow_up = task
        self._emit_audit(
            AuditEventType.FOLLOW_UP_SCHEDULED,
            assessment.user_id,
            event.id,
            severity=AuditSeverity.INFO,
            metadata={"task_id": task.task_id, "due_at": task.due_at.isoformat()},
        )
        return f"Follow-up due {task.due_at.isoformat()}"

    async def _record_outcome(self, event: CrisisEvent, event_stored: bool, resources_sent: bool) -> str:
        event.intervention_type = _intervention_type(event, resources_sent)
        event.updated_at = datetime.now(timezone.utc)
        if event_stored:
            await self._storage.update_crisis_event(event)
            return "Protocol outcome recorded"
        # the initial insert failed; try once more with the complete record
        await self._storage.insert_crisis_event(event)
        return "Crisis event stored with protocol outcome"

    # -- lifecycle --

    async def resolve_event(self, event: CrisisEvent, notes: str, actor_id: str = "SYSTEM") -> CrisisEvent:
        """Record the resolution of a crisis event.

        Args:
            event: The event to resolve.
            notes: Mandatory resolution notes.
            actor_id: Who resolved the event.

        Returns:
            The updated event.

        Raises:
            InvalidTransitionError: If the event is already resolved.
            ValueError: If ``notes`` is blank.
        """
        if event.resolved_at is not None:
            raise InvalidTransitionError(
                f"Crisis event {event.id} was already resolved at {event.resolved_at.isoformat()}."
            )
        if not notes.strip():
            raise ValueError(
                "Resolution notes are mandatory. Cannot resolve a crisis event "
                "without documenting the resolution."
            )

        now = datetime.now(timezone.utc)
        changes = {"resolved_at": now, "resolution_notes": notes, "updated_at": now}
        await self._storage.update_crisis_event(event.model_copy(update=changes))
        # apply to the caller's event only after storage accepted the update
        for field, value in changes.items():
            setattr(event, field, value)

        self._audit_log.append(AuditEntry(
            user_id=event.user_id,
            actor_id=actor_id,
            event_type=AuditEventType.CRISIS_EVENT_RESOLVED,
            target_entity=event.id,
            metadata={"resolution_notes": notes},
        ))
        return event


def _intervention_type(event: CrisisEvent, resources_sent: bool) -> Optional[InterventionType]:
    if event.emergency_services_contacted:
        return InterventionType.EMERGENCY_CONTACT
    if event.professional_notified:
        return InterventionType.PROFESSIONAL_ALERT
    if resources_sent:
        return InterventionType.RESOURCE_PROVISION
    return None
