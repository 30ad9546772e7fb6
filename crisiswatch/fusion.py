"""
Risk Fusion Engine -- combine analyzer outputs into one decision.

Weighted scoring::

    weighted = sum(severity_i * weight_i * confidence_i) / sum(weight_i)

mapped back to a level by ascending thresholds.  Deterministic lexical
matching carries the largest weight and behavioral inference the smallest.

**Escalation override:**  a single analyzer reporting CRITICAL with
confidence above ``fusion.escalation_confidence`` forces the result to
CRITICAL, so one confident critical signal is never diluted by the others.

Fusion is a pure function of its inputs.  With no inputs at all it returns
a conservative MEDIUM result instead of raising, since a missed crisis is
the failure mode that must not happen.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from crisiswatch.config import DEFAULT_POLICY, DetectionPolicy
from crisiswatch.models import OverallRiskAssessment, RiskAssessment, RiskLevel


def weighted_risk(
    assessments: Sequence[RiskAssessment],
    policy: DetectionPolicy = DEFAULT_POLICY,
) -> float:
    """Confidence-weighted mean severity of ``assessments``."""
    fusion = policy.fusion
    total_weight = 0.0
    weighted_sum = 0.0
    for assessment in assessments:
        weight = fusion.weight_for(assessment.source)
        weighted_sum += assessment.level.severity * weight * assessment.confidence
        total_weight += weight
    return weighted_sum / total_weight if total_weight else 0.0


def level_for_score(score: float, policy: DetectionPolicy = DEFAULT_POLICY) -> RiskLevel:
    fusion = policy.fusion
    if score >= fusion.critical_threshold:
        return RiskLevel.CRITICAL
    if score >= fusion.high_threshold:
        return RiskLevel.HIGH
    if score >= fusion.medium_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def escalation_override(
    assessments: Iterable[RiskAssessment],
    policy: DetectionPolicy = DEFAULT_POLICY,
) -> RiskAssessment | None:
    """First analyzer result that forces the fused level to CRITICAL, if any."""
    threshold = policy.fusion.escalation_confidence
    for assessment in assessments:
        if assessment.level == RiskLevel.CRITICAL and assessment.confidence > threshold:
            return assessment
    return None


def base_actions(level: RiskLevel, policy: DetectionPolicy = DEFAULT_POLICY) -> list[str]:
    """Recommended-action table entry for ``level`` (a fresh list)."""
    return list(policy.intervention.recommended_actions[level])


def recommended_actions(
    level: RiskLevel,
    triggers: Iterable[str],
    policy: DetectionPolicy = DEFAULT_POLICY,
) -> list[str]:
    """Base actions for ``level`` plus trigger-specific additions."""
    actions = base_actions(level, policy)
    triggers = list(triggers)
    for fragment, action in policy.intervention.trigger_actions.items():
        if action not in actions and any(fragment in t for t in triggers):
            actions.append(action)
    return actions


def urgency_for(level: RiskLevel, policy: DetectionPolicy = DEFAULT_POLICY) -> int:
    """Seconds until the intervention deadline for ``level``."""
    return policy.intervention.urgency_seconds[level]


def fuse_risk_assessments(
    assessments: Sequence[RiskAssessment],
    policy: DetectionPolicy = DEFAULT_POLICY,
) -> OverallRiskAssessment:
    """Fuse analyzer results into an ``OverallRiskAssessment``.

    Args:
        assessments: One result per analyzer (order does not affect the
            level; it only orders triggers and reasoning).
        policy: Detection policy supplying weights and thresholds.

    Returns:
        The fused assessment.  Never raises for an empty sequence.
    """
    if not assessments:
        return _conservative_default(policy)

    level = level_for_score(weighted_risk(assessments, policy), policy)
    if escalation_override(assessments, policy) is not None:
        level = RiskLevel.CRITICAL

    mean_confidence = sum(a.confidence for a in assessments) / len(assessments)
    triggers = tuple(dict.fromkeys(t for a in assessments for t in a.triggers))

    return OverallRiskAssessment(
        level=level,
        confidence=min(mean_confidence, policy.fusion.confidence_cap),
        triggers=triggers,
        source="fusion",
        reasoning="; ".join(f"{a.source}: {a.reasoning}" for a in assessments),
        actions=tuple(recommended_actions(level, triggers, policy)),
        urgency=urgency_for(level, policy),
    )


def _conservative_default(policy: DetectionPolicy) -> OverallRiskAssessment:
    level = RiskLevel.MEDIUM
    triggers = ("no_analyzer_results",)
    return OverallRiskAssessment(
        level=level,
        confidence=0.1,
        triggers=triggers,
        source="fusion",
        reasoning="No analyzer results available; defaulting to conservative assessment",
        actions=tuple(recommended_actions(level, triggers, policy)),
        urgency=urgency_for(level, policy),
    )
