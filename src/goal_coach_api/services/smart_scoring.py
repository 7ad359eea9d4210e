from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from ..schemas import SMARTScore
from .gemini_client import try_gemini_smart_score

logger = logging.getLogger(__name__)

SMART_CRITERIA: tuple[str, ...] = ("specific", "measurable", "achievable", "realistic", "time_bound")

FALLBACK_SMART_SCORE = SMARTScore(specific=3, measurable=3, achievable=4, realistic=4, time_bound=2)
FALLBACK_FEEDBACK = "Analysis temporarily unavailable. Please refine your goal and try again."


def round_half_up(value: float) -> int:
    # half-up for non-negative values: 84.5 -> 85
    return int(math.floor(value + 0.5))


def percentage_of(score: SMARTScore) -> int:
    total = sum(getattr(score, name) for name in SMART_CRITERIA)
    return round_half_up(total / (5 * len(SMART_CRITERIA)) * 100)


@dataclass
class GoalScoreResult:
    score: SMARTScore
    feedback: str
    source: str
    model: str | None = None
    fallback_reason: str | None = None
    meta: dict = field(default_factory=dict)

    @property
    def provisional(self) -> bool:
        return self.source != "gemini"

    @property
    def percentage(self) -> int:
        return percentage_of(self.score)


def evaluate_goal(goal_text: str) -> GoalScoreResult:
    """Score a goal with the LLM, substituting the fixed fallback score when it is unavailable."""
    payload, meta = try_gemini_smart_score(goal_text=goal_text)
    if payload is not None:
        return GoalScoreResult(
            score=SMARTScore(**payload["score"]),
            feedback=payload["feedback"],
            source="gemini",
            model=meta.get("model"),
            meta=meta,
        )

    reason = str(meta.get("reason") or "unavailable")
    if meta.get("attempted"):
        logger.warning("SMART analyzer failed, using fallback score: %s", reason)
    else:
        logger.debug("SMART analyzer not attempted (%s), using fallback score", reason)
    return GoalScoreResult(
        score=FALLBACK_SMART_SCORE.model_copy(),
        feedback=FALLBACK_FEEDBACK,
        source="fallback",
        model=meta.get("model"),
        fallback_reason=reason,
        meta=meta,
    )
