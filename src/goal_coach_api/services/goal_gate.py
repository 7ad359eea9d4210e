from __future__ import annotations

from dataclasses import dataclass

from ..errors import GoalBelowThreshold
from ..schemas import SMARTScore
from .smart_scoring import percentage_of


@dataclass(frozen=True)
class GateDecision:
    accepted: bool
    percentage: int
    required_threshold: int
    message: str


def can_accept(score: SMARTScore, threshold: int) -> bool:
    return percentage_of(score) >= threshold


def check_goal(score: SMARTScore, threshold: int) -> GateDecision:
    percentage = percentage_of(score)
    if percentage >= threshold:
        return GateDecision(
            accepted=True,
            percentage=percentage,
            required_threshold=threshold,
            message=f"Goal meets the {threshold}% SMART threshold ({percentage}%).",
        )
    return GateDecision(
        accepted=False,
        percentage=percentage,
        required_threshold=threshold,
        message=(
            f"Goal quality too low! Your score: {percentage}%. Required: {threshold}%. "
            "Please improve your goal based on the AI feedback and analyze again."
        ),
    )


def enforce_goal(score: SMARTScore, threshold: int) -> GateDecision:
    decision = check_goal(score, threshold)
    if not decision.accepted:
        raise GoalBelowThreshold(decision.percentage, decision.required_threshold)
    return decision
