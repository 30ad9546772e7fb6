"""
Lexical Analyzer -- tiered crisis phrase matching.

The fast, offline-safe signal of the pipeline.  It does no I/O and is
cheap enough to run on every message.  When the network-backed analyzers
fail, this is the signal that still carries weight in fusion.

Tiers are checked from most to least severe and the first tier with any
match decides the level, so a single critical phrase always dominates any
number of medium-tier matches.
"""

from __future__ import annotations

import functools
import re
from typing import Optional

from crisiswatch.config import DEFAULT_POLICY, DetectionPolicy
from crisiswatch.models import AnalyzerSource, ConversationContext, RiskAssessment, RiskLevel

SOURCE = AnalyzerSource.KEYWORD.value

_APOSTROPHES = re.compile(r"['’`]")


def normalize_message(message: str) -> str:
    """Lowercase, trim, and drop apostrophes (``can't`` -> ``cant``)."""
    return _APOSTROPHES.sub("", message.lower().strip())


@functools.lru_cache(maxsize=32)
def _compile_tier(phrases: tuple[str, ...]) -> tuple[tuple[str, re.Pattern], ...]:
    return tuple(
        (phrase, re.compile(r"\b" + re.escape(phrase)))
        for phrase in phrases
    )


def find_matches(normalized: str, phrases: list[str]) -> list[str]:
    """Phrases from ``phrases`` that start a word in ``normalized``.

    Only the leading edge is anchored, so inflected forms (``guns``,
    ``overdosed``) still match while ``gun`` inside ``begun`` does not.
    """
    return [
        phrase
        for phrase, pattern in _compile_tier(tuple(phrases))
        if pattern.search(normalized)
    ]


def analyze_keywords(
    message: str,
    policy: DetectionPolicy = DEFAULT_POLICY,
) -> RiskAssessment:
    """Score ``message`` against the policy's keyword tiers.

    Confidence for the winning tier is ``min(cap, base + step * matches)``.
    ``triggers`` holds every matched phrase; the reasoning quotes only the
    first few.

    Args:
        message: Raw user message.
        policy: Detection policy supplying tiers and calibration.

    Returns:
        A ``RiskAssessment`` from source ``keyword_analysis``.
    """
    normalized = normalize_message(message)
    calibration = policy.keyword_calibration

    for level, phrases in policy.keyword_tiers.by_severity():
        matches = find_matches(normalized, phrases)
        if not matches:
            continue
        tier = calibration.for_level(level)
        confidence = min(tier.cap, tier.base + calibration.per_match_step * len(matches))
        quoted = ", ".join(matches[: calibration.reasoning_trigger_limit])
        return RiskAssessment(
            level=level,
            confidence=confidence,
            triggers=tuple(matches),
            source=SOURCE,
            reasoning=f"Found {len(matches)} {level.value}-tier crisis indicators: {quoted}",
        )

    return RiskAssessment(
        level=RiskLevel.LOW,
        confidence=0.0,
        triggers=(),
        source=SOURCE,
        reasoning="Found 0 crisis indicators",
    )


class KeywordAnalyzer:
    """Async adapter so the pipeline can fan out all analyzers uniformly."""

    source = SOURCE
    failure_trigger = "keyword_analysis_failed"

    def __init__(self, policy: DetectionPolicy = DEFAULT_POLICY) -> None:
        self._policy = policy

    async def analyze(
        self,
        message: str,
        context: Optional[ConversationContext] = None,
    ) -> RiskAssessment:
        return analyze_keywords(message, self._policy)

    def failed(self, reasoning: str) -> RiskAssessment:
        return RiskAssessment.failed(self.source, self.failure_trigger, reasoning)
