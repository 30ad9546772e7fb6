"""
Model-Based (AI) Analyzer -- structured risk judgment from a generative model.

The prompt gives the model situational grounding (recent crisis flags,
current mood, conversation length) alongside the message and asks for a
JSON judgment.  The reply is parsed and validated; anything that is not a
well-formed judgment counts as an analyzer failure.  The model's own
confidence is never trusted beyond the policy cap.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from crisiswatch.collaborators import GenerativeModel
from crisiswatch.config import DEFAULT_POLICY, DetectionPolicy
from crisiswatch.models import AnalyzerSource, ConversationContext, RiskAssessment, RiskLevel

logger = logging.getLogger(__name__)


PROMPT_TEMPLATE = """\
Analyze the following message for signs of mental health crisis or suicide risk.
Consider the conversation context and provide a detailed assessment.

Message: {message}

Context:
- Recent crisis flags (last 7 days): {recent_crisis_flags}
- Current mood level: {current_mood}
- Recent message count: {message_count}

Respond with a single JSON object and nothing else:
{{
  "riskLevel": "low|medium|high|critical",
  "confidence": 0.0-1.0,
  "indicators": ["list", "of", "risk", "indicators"],
  "reasoning": "detailed reasoning"
}}
"""


class AIResponseError(ValueError):
    """Raised when a model reply does not contain a usable judgment."""


class AIJudgment(BaseModel):
    """Schema of the JSON object the model is asked to return."""

    model_config = ConfigDict(populate_by_name=True)

    risk_level: RiskLevel = Field(..., alias="riskLevel")
    confidence: Optional[float] = None
    indicators: list[str] = Field(default_factory=list)
    reasoning: str = ""

    @field_validator("risk_level", mode="before")
    @classmethod
    def normalize_level(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


def build_prompt(message: str, context: ConversationContext) -> str:
    current_mood = "unknown" if context.current_mood is None else f"{context.current_mood:g}"
    return PROMPT_TEMPLATE.format(
        message=json.dumps(message, ensure_ascii=False),
        recent_crisis_flags=context.recent_crisis_flags,
        current_mood=current_mood,
        message_count=len(context.message_history),
    )


def extract_json_object(text: str) -> dict:
    """Decode the outermost ``{...}`` span of ``text``.

    Models often wrap JSON in prose or code fences, so everything before
    the first ``{`` and after the last ``}`` is ignored.

    Raises:
        AIResponseError: If no JSON object can be decoded.
    """
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise AIResponseError("model response contains no JSON object")
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise AIResponseError(f"model response is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise AIResponseError("model response JSON is not an object")
    return data


def parse_judgment(text: str) -> AIJudgment:
    """Parse and validate a model reply.

    Raises:
        AIResponseError: If the reply is not a valid judgment.
    """
    data = extract_json_object(text)
    try:
        return AIJudgment.model_validate(data)
    except ValidationError as e:
        raise AIResponseError(f"model response does not match schema: {e}") from e


class AIAnalyzer:
    source = AnalyzerSource.AI.value
    failure_trigger = "ai_analysis_failed"

    def __init__(
        self,
        model: GenerativeModel,
        policy: DetectionPolicy = DEFAULT_POLICY,
    ) -> None:
        self._model = model
        self._policy = policy

    async def analyze(self, message: str, context: ConversationContext) -> RiskAssessment:
        """Ask the generative model for a risk judgment on ``message``.

        Never raises: call failures and malformed replies return ``failed()``.
        """
        try:
            reply = await self._model.complete(build_prompt(message, context))
            judgment = parse_judgment(reply)
        except AIResponseError as e:
            logger.warning(
                "AI_RESPONSE_MALFORMED",
                extra={"user_id": context.user_id, "error": str(e)},
            )
            return self.failed("AI analysis returned an unusable response")
        except Exception as e:
            logger.error(
                "AI_ANALYSIS_FAILED",
                extra={"user_id": context.user_id, "error": str(e)},
            )
            return self.failed("AI analysis unavailable")

        return self.to_assessment(judgment)

    def to_assessment(self, judgment: AIJudgment) -> RiskAssessment:
        settings = self._policy.ai
        confidence = judgment.confidence
        if confidence is None or not math.isfinite(confidence):
            confidence = settings.default_confidence
        # never exceed the cap, whatever the model claims
        confidence = max(0.0, min(confidence, settings.confidence_cap))
        return RiskAssessment(
            level=judgment.risk_level,
            confidence=confidence,
            triggers=tuple(dict.fromkeys(judgment.indicators)),
            source=self.source,
            reasoning=judgment.reasoning or "AI analysis completed",
        )

    def failed(self, reasoning: str) -> RiskAssessment:
        return RiskAssessment.failed(self.source, self.failure_trigger, reasoning)
