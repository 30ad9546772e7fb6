"""
Synthetic Scenario: Crisis Detection Walkthrough
================================================

This script runs the crisiswatch pipeline end to end against entirely
synthetic data.  The sentiment and generative models are scripted
stand-ins, storage is in memory, and notifications are printed instead of
sent.

Steps demonstrated:
  1. Load the detection policy from YAML
  2. Seed a synthetic user with sessions and mood history
  3. Analyze an everyday message (no protocol)
  4. Analyze a message with explicit intent (full crisis protocol)
  5. Resolve the crisis event
  6. Export the audit log for compliance review

DISCLAIMER: This is a synthetic demonstration.  Assessments are workflow
routing signals and require review by qualified professionals.

Usage:
    python -m examples.synthetic_scenario
    # or: python examples/synthetic_scenario.py
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from crisiswatch.config import DEFAULT_POLICY, load_policy_from_yaml
from crisiswatch.detector import CrisisDetector
from crisiswatch.memory_store import InMemoryFollowUpQueue, InMemoryStore
from crisiswatch.models import CrisisAssessment, EmotionScores, MoodEntry, RiskLevel, SentimentResult, Session


class ScriptedSentimentModel:
    """Scores a message by counting a handful of negative words."""

    NEGATIVE = ("end it all", "hopeless", "can't", "stressed", "alone")

    async def analyze_sentiment(self, text: str) -> SentimentResult:
        hits = sum(word in text.lower() for word in self.NEGATIVE)
        sentiment = max(-1.0, 0.3 - 0.45 * hits)
        return SentimentResult(
            sentiment=sentiment,
            emotions=EmotionScores(sadness=min(1.0, 0.3 * hits + 0.2), fear=0.1 * hits),
        )


class ScriptedGenerativeModel:
    """Returns a canned JSON judgment keyed on the message text."""

    async def complete(self, prompt: str) -> str:
        if "end it all" in prompt:
            judgment = {"riskLevel": "critical", "confidence": 0.92,
                        "indicators": ["explicit_intent"], "reasoning": "Explicit statement of intent."}
        else:
            judgment = {"riskLevel": "low", "confidence": 0.7,
                        "indicators": [], "reasoning": "Everyday stress without risk indicators."}
        return "```json\n" + json.dumps(judgment) + "\n```"


class PrintingNotifications:
    async def send_crisis_resources(self, user_id: str, risk_level: RiskLevel) -> None:
        print(f"  [notify] crisis resources sent to {user_id} ({risk_level.value})")

    async def alert_professionals(self, assessment: CrisisAssessment) -> None:
        print(f"  [notify] on-call professionals alerted for assessment {assessment.id}")


class PrintingEmergency:
    async def contact_emergency_services(self, user_id: str) -> None:
        print(f"  [emergency] emergency services contacted for {user_id}")


def _banner(text: str) -> None:
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print(f"{'=' * 60}\n")


def _show(assessment: CrisisAssessment) -> None:
    print(f"  Risk level: {assessment.risk_level.value}")
    print(f"  Confidence: {assessment.confidence:.2f}")
    print(f"  Triggers: {assessment.triggers}")
    print(f"  Recommended actions: {assessment.recommended_actions}")
    print(f"  Time to intervention: {assessment.time_to_intervention}s")


async def main() -> None:
    _banner("crisiswatch Synthetic Scenario")
    print("DISCLAIMER: All data in this demo is entirely synthetic.\n")

    # ------------------------------------------------------------------
    # Step 1: Load detection policy
    # ------------------------------------------------------------------
    _banner("Step 1: Load Detection Policy")

    sample_yaml = Path(__file__).parent / "detection_policy.yaml"
    if sample_yaml.exists():
        policy = load_policy_from_yaml(sample_yaml)
        print(f"Loaded policy from {sample_yaml.name}")
    else:
        policy = DEFAULT_POLICY
        print("Using built-in default policy")
    print(f"  Escalation override confidence: {policy.fusion.escalation_confidence}")
    print(f"  Protocol starts at: {policy.intervention.protocol_min_level.value}")

    # ------------------------------------------------------------------
    # Step 2: Seed synthetic user
    # ------------------------------------------------------------------
    _banner("Step 2: Seed Synthetic User")

    store = InMemoryStore()
    follow_ups = InMemoryFollowUpQueue()
    now = datetime.now(timezone.utc)
    user_id, session_id = "synthetic_user_a", "session_today"

    store.add_session(Session(id=session_id, user_id=user_id, started_at=now, mood_before=4))
    store.add_session(Session(user_id=user_id, started_at=now - timedelta(days=3)))
    for days_ago, mood, sleep in [(6, 6, 7), (4, 5, 6), (2, 4, 5), (1, 3, 4)]:
        store.add_mood_entry(MoodEntry(
            user_id=user_id, mood_score=mood, sleep_quality=sleep,
            recorded_at=now - timedelta(days=days_ago),
        ))
    print(f"User {user_id}: 2 sessions this week, 4 mood entries (declining)")

    detector = CrisisDetector(
        storage=store,
        sentiment_model=ScriptedSentimentModel(),
        generative_model=ScriptedGenerativeModel(),
        notifications=PrintingNotifications(),
        emergency=PrintingEmergency(),
        scheduler=follow_ups,
        policy=policy,
    )

    # ------------------------------------------------------------------
    # Step 3: Everyday message
    # ------------------------------------------------------------------
    _banner("Step 3: Everyday Message")

    assessment = await detector.analyze_message("feeling a bit stressed today", user_id, session_id)
    _show(assessment)
    print(f"  Crisis events: {len(store.crisis_events)}")

    # ------------------------------------------------------------------
    # Step 4: Explicit intent
    # ------------------------------------------------------------------
    _banner("Step 4: Explicit Intent (Crisis Protocol)")

    report = await detector.analyze_message_detailed("I want to end it all", user_id, session_id)
    _show(report.assessment)
    print(f"  Processing time: {report.processing_ms:.1f} ms")
    for outcome in report.intervention.outcomes:
        print(f"  stage {outcome.stage.value:<28} {outcome.status.value:<9} {outcome.detail or outcome.error or ''}")
    for task in follow_ups.tasks:
        print(f"  Follow-up {task.task_id} due {task.due_at.isoformat()}")

    # ------------------------------------------------------------------
    # Step 5: Resolve the crisis event
    # ------------------------------------------------------------------
    _banner("Step 5: Resolve Crisis Event")

    event = report.intervention.crisis_event
    event = await detector.orchestrator.resolve_event(
        event, "Counselor completed safety check; safety plan in place.", actor_id="counselor_synthetic",
    )
    print(f"  Resolved at: {event.resolved_at.isoformat()}")
    print(f"  Intervention type: {event.intervention_type.value}")

    # ------------------------------------------------------------------
    # Step 6: Export audit log
    # ------------------------------------------------------------------
    _banner("Step 6: Export Audit Log")

    valid, broken_at = detector.audit_log.verify_chain()
    print(f"Audit chain valid: {valid}")
    export = detector.audit_log.export_for_review(user_id=user_id)
    print(f"Entries exported: {export['export_metadata']['entry_count']}")
    for entry in export["entries"]:
        print(f"  {entry['timestamp']}  {entry['event_type']:<30} {entry['severity']}")

    _banner("Scenario Complete")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    asyncio.run(main())
