from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..errors import ReflectionInvalid
from .gemini_client import try_gemini_reflection_analysis

logger = logging.getLogger(__name__)

MIN_REFLECTION_WORDS = 50
DEFAULT_GOAL_CONTEXT = "personal development and learning"
FALLBACK_REFLECTION_FEEDBACK = (
    "Analysis temporarily unavailable. Your reflection was not saved; please try again shortly."
)


@dataclass
class ReflectionResult:
    is_valid: bool
    depth: int
    confidence_level: str
    feedback: str
    suggestions: list[str] = field(default_factory=list)
    source: str = "gemini"
    fallback_reason: str | None = None

    @property
    def provisional(self) -> bool:
        return self.source != "gemini"


def count_words(text: str) -> int:
    return len(text.split())


def prefilter(text: str) -> int:
    """Reject short reflections before any analyzer call; returns the word count."""
    word_count = count_words(text)
    if word_count < MIN_REFLECTION_WORDS:
        raise ReflectionInvalid(
            f"Reflection must be at least {MIN_REFLECTION_WORDS} words for meaningful analysis "
            f"({word_count} so far).",
            word_count=word_count,
            suggestions=[
                "Describe what you actually did toward today's goal.",
                "Note one challenge you hit and how you handled it.",
                "Say what you will do differently tomorrow.",
            ],
        )
    return word_count


def analyze_reflection(text: str, goal_text: str | None) -> ReflectionResult:
    payload, meta = try_gemini_reflection_analysis(
        reflection_text=text,
        goal_text=goal_text or DEFAULT_GOAL_CONTEXT,
    )
    if payload is not None:
        return ReflectionResult(source="gemini", **payload)

    reason = str(meta.get("reason") or "unavailable")
    logger.warning("reflection analyzer unavailable: %s", reason)
    return ReflectionResult(
        is_valid=False,
        depth=1,
        confidence_level="low",
        feedback=FALLBACK_REFLECTION_FEEDBACK,
        suggestions=[],
        source="fallback",
        fallback_reason=reason,
    )


def validate(analysis: ReflectionResult, text: str) -> ReflectionResult:
    word_count = count_words(text)
    if word_count < MIN_REFLECTION_WORDS:
        # the floor holds even when the analyzer says otherwise
        prefilter(text)
    if not analysis.is_valid:
        raise ReflectionInvalid(
            analysis.feedback or "Please improve your reflection based on the AI feedback before submitting.",
            word_count=word_count,
            suggestions=analysis.suggestions,
        )
    return analysis
