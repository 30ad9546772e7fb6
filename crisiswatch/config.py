"""
Detection Policy -- Calibration and Configuration for crisiswatch.

Every threshold, weight and keyword list used by the analyzers, the fusion
engine and the intervention orchestrator lives in a validated
``DetectionPolicy`` object.  The constants are calibration choices, so a
deployment tunes them here (or in a YAML file) instead of editing code.

``DEFAULT_POLICY`` carries the calibration the pipeline ships with.
``load_policy_from_yaml()`` builds a policy from a YAML document whose
top-level ``policy`` mapping may override any subset of fields.

DISCLAIMER: These values configure workflow routing.  They are not
clinical cut-offs.
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from crisiswatch.models import AnalyzerSource, CrisisResource, RiskLevel


# ---------------------------------------------------------------------------
# Lexical analyzer
# ---------------------------------------------------------------------------

class KeywordTiers(BaseModel):
    """Three disjoint phrase tiers, checked from most to least severe.

    Phrases are matched against the normalized message (lowercase,
    apostrophes removed), so they are stored in that form.
    """

    critical: list[str] = Field(
        default_factory=lambda: [
            "suicide", "kill myself", "end it all", "not worth living",
            "want to die", "suicide plan", "overdose", "hanging", "jumping",
            "gun", "razor", "goodbye forever", "final message",
            "no hope left", "better off dead", "worthless", "burden",
            "cant go on", "ending the pain",
        ],
    )
    high: list[str] = Field(
        default_factory=lambda: [
            "self harm", "cut myself", "hurt myself", "punish myself",
            "hopeless", "trapped", "desperate", "overwhelming pain",
            "no way out", "cant cope", "breaking point", "give up",
            "isolated", "alone forever", "nobody cares",
            "failed at everything",
        ],
    )
    medium: list[str] = Field(
        default_factory=lambda: [
            "depressed", "anxious", "stressed", "overwhelmed", "exhausted",
            "tired of life", "struggling", "difficult time", "dark thoughts",
            "negative thoughts", "worry", "fear", "sadness", "grief",
        ],
    )

    @field_validator("critical", "high", "medium")
    @classmethod
    def normalize_phrases(cls, v: list[str]) -> list[str]:
        phrases = [p.lower().replace("'", "").replace("’", "").strip() for p in v]
        if any(not p for p in phrases):
            raise ValueError("keyword phrases must not be empty")
        return phrases

    @model_validator(mode="after")
    def tiers_are_disjoint(self) -> "KeywordTiers":
        critical, high, medium = set(self.critical), set(self.high), set(self.medium)
        overlap = (critical & high) | (critical & medium) | (high & medium)
        if overlap:
            raise ValueError(f"keyword tiers must be disjoint; shared phrases: {sorted(overlap)}")
        return self

    def by_severity(self) -> list[tuple[RiskLevel, list[str]]]:
        """Tiers in descending severity order."""
        return [
            (RiskLevel.CRITICAL, self.critical),
            (RiskLevel.HIGH, self.high),
            (RiskLevel.MEDIUM, self.medium),
        ]


class TierCalibration(BaseModel):
    """Confidence for a tier: ``min(cap, base + step * matches)``."""

    base: float = Field(..., ge=0, le=1)
    cap: float = Field(..., ge=0, le=0.95)

    @field_validator("cap")
    @classmethod
    def cap_above_base(cls, v: float, info) -> float:
        base = info.data.get("base")
        if base is not None and v < base:
            raise ValueError(f"cap ({v}) must be >= base ({base})")
        return v


class KeywordCalibration(BaseModel):
    critical: TierCalibration = Field(default_factory=lambda: TierCalibration(base=0.70, cap=0.95))
    high: TierCalibration = Field(default_factory=lambda: TierCalibration(base=0.60, cap=0.85))
    medium: TierCalibration = Field(default_factory=lambda: TierCalibration(base=0.40, cap=0.75))
    per_match_step: float = Field(
        default=0.05,
        ge=0,
        le=1,
        description="Confidence added per matched phrase within the winning tier.",
    )
    reasoning_trigger_limit: int = Field(
        default=3,
        ge=1,
        description="Maximum number of matched phrases quoted in the reasoning text.",
    )

    def for_level(self, level: RiskLevel) -> TierCalibration:
        return {
            RiskLevel.CRITICAL: self.critical,
            RiskLevel.HIGH: self.high,
            RiskLevel.MEDIUM: self.medium,
        }[level]


# ---------------------------------------------------------------------------
# Sentiment analyzer
# ---------------------------------------------------------------------------

class SentimentSettings(BaseModel):
    severe_sentiment: float = Field(default=-0.8, ge=-1, le=1)
    moderate_sentiment: float = Field(default=-0.6, ge=-1, le=1)
    baseline_confidence: float = Field(default=0.6, ge=0, le=0.95)
    severe_confidence: float = Field(default=0.8, ge=0, le=0.95)
    moderate_confidence: float = Field(default=0.7, ge=0, le=0.95)
    extreme_emotion: float = Field(
        default=0.8,
        ge=0,
        le=1,
        description="Fear or sadness above this escalates to at least HIGH.",
    )
    combined_emotion: float = Field(
        default=0.7,
        ge=0,
        le=1,
        description="Anger and disgust both above this escalate to at least MEDIUM.",
    )
    crisis_history_flags: int = Field(
        default=2,
        ge=0,
        description="Recent crisis flags above this count add the history boost.",
    )
    crisis_history_boost: float = Field(default=0.1, ge=0, le=1)
    confidence_cap: float = Field(default=0.95, ge=0, le=0.95)

    @field_validator("moderate_sentiment")
    @classmethod
    def moderate_above_severe(cls, v: float, info) -> float:
        severe = info.data.get("severe_sentiment")
        if severe is not None and v < severe:
            raise ValueError(
                f"moderate_sentiment ({v}) must be >= severe_sentiment ({severe})"
            )
        return v


# ---------------------------------------------------------------------------
# Behavioral analyzer
# ---------------------------------------------------------------------------

class BehavioralSettings(BaseModel):
    mood_lookback_days: int = Field(default=14, gt=0)
    frequency_lookback_days: int = Field(default=7, gt=0)
    baseline_confidence: float = Field(default=0.6, ge=0, le=0.9)
    declining_avg_mood: float = Field(default=3.0, ge=0, le=10)
    declining_trend: float = Field(
        default=-0.5,
        description="Mean successive mood difference below which mood counts as declining.",
    )
    declining_confidence: float = Field(default=0.85, ge=0, le=0.9)
    low_avg_mood: float = Field(default=4.0, ge=0, le=10)
    low_mood_confidence: float = Field(default=0.7, ge=0, le=0.9)
    help_seeking_frequency: int = Field(
        default=10,
        ge=0,
        description="Sessions per week above which help-seeking is flagged.",
    )
    help_seeking_boost: float = Field(default=0.1, ge=0, le=1)
    poor_sleep_quality: float = Field(default=3.0, ge=0, le=10)
    high_risk_factors: list[str] = Field(
        default_factory=lambda: [
            "previous_attempts", "substance_abuse", "social_isolation", "recent_loss",
        ],
    )
    risk_factor_boost: float = Field(default=0.1, ge=0, le=1)
    confidence_cap: float = Field(
        default=0.9,
        ge=0,
        le=0.9,
        description="Behavioral inference is the weakest evidence, so its ceiling is lowest.",
    )


# ---------------------------------------------------------------------------
# Model-based analyzer
# ---------------------------------------------------------------------------

class AIAnalyzerSettings(BaseModel):
    default_confidence: float = Field(
        default=0.5,
        ge=0,
        le=0.95,
        description="Confidence assumed when the model omits one.",
    )
    confidence_cap: float = Field(default=0.95, ge=0, le=0.95)


# ---------------------------------------------------------------------------
# Fusion engine
# ---------------------------------------------------------------------------

class FusionSettings(BaseModel):
    source_weights: dict[str, float] = Field(
        default_factory=lambda: {
            AnalyzerSource.KEYWORD.value: 0.4,
            AnalyzerSource.AI.value: 0.3,
            AnalyzerSource.SENTIMENT.value: 0.2,
            AnalyzerSource.BEHAVIORAL.value: 0.1,
        },
    )
    default_weight: float = Field(default=0.1, gt=0)
    medium_threshold: float = Field(default=1.5, gt=0)
    high_threshold: float = Field(default=2.5, gt=0)
    critical_threshold: float = Field(default=3.5, gt=0)
    escalation_confidence: float = Field(
        default=0.85,
        ge=0,
        le=1,
        description=(
            "A single CRITICAL result with confidence above this value forces "
            "the fused level to CRITICAL."
        ),
    )
    confidence_cap: float = Field(default=0.95, ge=0, le=0.95)

    @field_validator("source_weights")
    @classmethod
    def weights_positive(cls, v: dict[str, float]) -> dict[str, float]:
        bad = {source: weight for source, weight in v.items() if weight <= 0}
        if bad:
            raise ValueError(f"source weights must be > 0, got {bad}")
        return v

    @field_validator("high_threshold")
    @classmethod
    def high_above_medium(cls, v: float, info) -> float:
        medium = info.data.get("medium_threshold")
        if medium is not None and v < medium:
            raise ValueError(f"high_threshold ({v}) must be >= medium_threshold ({medium})")
        return v

    @field_validator("critical_threshold")
    @classmethod
    def critical_above_high(cls, v: float, info) -> float:
        high = info.data.get("high_threshold")
        if high is not None and v < high:
            raise ValueError(f"critical_threshold ({v}) must be >= high_threshold ({high})")
        return v

    def weight_for(self, source: str) -> float:
        return self.source_weights.get(source, self.default_weight)


# ---------------------------------------------------------------------------
# Intervention orchestrator
# ---------------------------------------------------------------------------

def _default_actions() -> dict[RiskLevel, list[str]]:
    return {
        RiskLevel.CRITICAL: [
            "immediate_intervention", "emergency_contact", "crisis_hotline", "safety_plan",
        ],
        RiskLevel.HIGH: [
            "professional_alert", "crisis_resources", "safety_check", "follow_up_24h",
        ],
        RiskLevel.MEDIUM: [
            "provide_resources", "mood_tracking", "self_care_suggestions", "follow_up_48h",
        ],
        RiskLevel.LOW: ["wellness_tips", "routine_check_in"],
    }


class InterventionSettings(BaseModel):
    recommended_actions: dict[RiskLevel, list[str]] = Field(default_factory=_default_actions)
    trigger_actions: dict[str, str] = Field(
        default_factory=lambda: {
            "isolation": "social_connection_support",
            "sleep": "sleep_hygiene_guidance",
        },
        description="Trigger substring -> extra action appended when any trigger contains it.",
    )
    urgency_seconds: dict[RiskLevel, int] = Field(
        default_factory=lambda: {
            RiskLevel.CRITICAL: 0,
            RiskLevel.HIGH: 300,
            RiskLevel.MEDIUM: 1800,
            RiskLevel.LOW: 3600,
        },
    )
    protocol_min_level: RiskLevel = Field(
        default=RiskLevel.HIGH,
        description="Lowest fused level that runs the intervention protocol.",
    )
    professional_alert_confidence: float = Field(
        default=0.9,
        ge=0,
        le=1,
        description="Confidence above which professionals are alerted even below CRITICAL.",
    )
    imminent_danger_keywords: list[str] = Field(
        default_factory=lambda: [
            "suicide plan", "kill myself", "end it all", "overdose",
            "hanging", "jumping", "gun", "razor",
        ],
    )
    follow_up_hours: int = Field(default=24, gt=0)
    follow_up_max_attempts: int = Field(default=3, ge=1)
    crisis_resources: list[CrisisResource] = Field(
        default_factory=lambda: [
            CrisisResource(
                name="988 Suicide & Crisis Lifeline",
                resource_type="phone",
                contact="988",
                min_level=RiskLevel.HIGH,
            ),
            CrisisResource(
                name="Crisis Text Line",
                resource_type="text",
                contact="741741",
                min_level=RiskLevel.HIGH,
            ),
            CrisisResource(
                name="Emergency Services",
                resource_type="phone",
                contact="911",
                min_level=RiskLevel.CRITICAL,
            ),
        ],
    )

    @field_validator("recommended_actions", "urgency_seconds")
    @classmethod
    def covers_every_level(cls, v: dict) -> dict:
        missing = [level.value for level in RiskLevel if level not in v]
        if missing:
            raise ValueError(f"missing entries for risk levels: {missing}")
        return v


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class AnalyzerTimeouts(BaseModel):
    """Per-analyzer time budgets in seconds.  A timeout counts as a failure."""

    keyword: float = Field(default=1.0, gt=0)
    sentiment: float = Field(default=5.0, gt=0)
    behavioral: float = Field(default=5.0, gt=0)
    ai: float = Field(default=10.0, gt=0)


class DetectionPolicy(BaseModel):
    """Complete calibration for one deployment of the pipeline."""

    keyword_tiers: KeywordTiers = Field(default_factory=KeywordTiers)
    keyword_calibration: KeywordCalibration = Field(default_factory=KeywordCalibration)
    sentiment: SentimentSettings = Field(default_factory=SentimentSettings)
    behavioral: BehavioralSettings = Field(default_factory=BehavioralSettings)
    ai: AIAnalyzerSettings = Field(default_factory=AIAnalyzerSettings)
    fusion: FusionSettings = Field(default_factory=FusionSettings)
    intervention: InterventionSettings = Field(default_factory=InterventionSettings)
    timeouts: AnalyzerTimeouts = Field(default_factory=AnalyzerTimeouts)
    context_message_limit: int = Field(
        default=20,
        gt=0,
        description="Number of recent session messages loaded as conversation context.",
    )
    crisis_flag_lookback_days: int = Field(
        default=7,
        gt=0,
        description="Window for counting a user's recent crisis events.",
    )


DEFAULT_POLICY = DetectionPolicy()
"""Built-in calibration.  Deployments should review and tune it."""


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------

def load_policy_from_yaml(path: str | Path) -> DetectionPolicy:
    """Load a detection policy from a YAML file.

    The file must contain a top-level ``policy`` mapping.  Omitted fields
    keep their defaults::

        policy:
          fusion:
            escalation_confidence: 0.8
          timeouts:
            ai: 4.0

    Args:
        path: Path to the YAML file.

    Returns:
        A validated ``DetectionPolicy``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the YAML structure is invalid.
        pydantic.ValidationError: If any value fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")

    with open(path, "r") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict) or "policy" not in raw:
        raise ValueError("YAML file must contain a top-level 'policy' mapping.")

    policy_data = raw["policy"] or {}
    if not isinstance(policy_data, dict):
        raise ValueError("'policy' must be a mapping of policy fields.")

    return DetectionPolicy.model_validate(policy_data)
