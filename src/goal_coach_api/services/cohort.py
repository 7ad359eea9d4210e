from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from statistics import mean

from sqlalchemy.orm import Session

from ..schemas import (
    AdminDashboardOut,
    AtRiskStudent,
    DailyEntryOut,
    EngagementPoint,
    KPIs,
    StudentRef,
)
from .gemini_client import try_gemini_weekly_summary
from .smart_scoring import round_half_up
from .store import entry_to_schema, list_all_entries, list_all_students, list_student_entries

logger = logging.getLogger(__name__)

AT_RISK_MISSED_GOALS = 2
AT_RISK_REFLECTION_DEPTH = 2
AT_RISK_CONSISTENCY = 60
AT_RISK_LIMIT = 5

# (label, goal offset, reflection multiplier, confidence multiplier)
_ENGAGEMENT_WEEKS = (
    ("Week 1", 0, 20, 0.8),
    ("Week 2", -5, 18, 0.75),
    ("Week 3", 3, 22, 0.85),
    ("Week 4", 0, 20, 0.8),
)


@dataclass
class CohortStudent:
    id: str
    name: str
    consistency_score: int
    entries: list[DailyEntryOut] = field(default_factory=list)


def _round1(value: float) -> float:
    return round_half_up(value * 10) / 10


def _depths(entries: Sequence[DailyEntryOut]) -> list[int]:
    return [entry.reflection.depth for entry in entries if entry.reflection is not None]


def _quiz_ratios(entries: Sequence[DailyEntryOut]) -> list[float]:
    return [
        entry.quiz_evaluation.score / entry.quiz_evaluation.total
        for entry in entries
        if entry.quiz_evaluation is not None and entry.quiz_evaluation.total > 0
    ]


def compute_kpis(entries: Sequence[DailyEntryOut]) -> KPIs:
    completed = sum(1 for entry in entries if entry.goal.completed)
    goal_completion = round_half_up(100 * completed / len(entries)) if entries else 0

    depths = _depths(entries)
    avg_depth = _round1(mean(depths)) if depths else 0.0

    ratios = _quiz_ratios(entries)
    avg_test = round_half_up(100 * mean(ratios)) if ratios else 0

    return KPIs(goal_completion=goal_completion, avg_reflection_depth=avg_depth, avg_test_performance=avg_test)


def classify_student(student: CohortStudent) -> AtRiskStudent | None:
    """Return the at-risk record for a student, or None when no threshold is crossed.

    A student without any reflections counts as depth 0 and is therefore flagged.
    """
    missed = sum(1 for entry in student.entries if not entry.goal.completed)
    depths = _depths(student.entries)
    avg_depth = mean(depths) if depths else 0.0
    ratios = _quiz_ratios(student.entries)
    avg_score = 100 * mean(ratios) if ratios else 0.0

    if missed > AT_RISK_MISSED_GOALS:
        reason = f"Missed {missed} goals"
    elif avg_depth < AT_RISK_REFLECTION_DEPTH:
        reason = "Low reflection depth"
    elif student.consistency_score < AT_RISK_CONSISTENCY:
        reason = "Low consistency score"
    else:
        return None

    return AtRiskStudent(
        id=student.id,
        name=student.name,
        reason=reason,
        missed_goals=missed,
        avg_reflection_depth=_round1(avg_depth),
        avg_test_score=round_half_up(avg_score),
    )


def engagement(kpis: KPIs) -> list[EngagementPoint]:
    """Four synthetic weekly bars smoothed from the current KPIs, not a stored history."""
    points = []
    for label, goal_offset, reflection_mult, confidence_mult in _ENGAGEMENT_WEEKS:
        points.append(
            EngagementPoint(
                name=label,
                goals=max(0, min(100, kpis.goal_completion + goal_offset)),
                reflections=round_half_up(kpis.avg_reflection_depth * reflection_mult),
                confidence=round_half_up(kpis.avg_test_performance * confidence_mult),
            )
        )
    return points


def aggregate(students: Sequence[CohortStudent], entries: Sequence[DailyEntryOut]) -> AdminDashboardOut:
    kpis = compute_kpis(entries)

    at_risk: list[AtRiskStudent] = []
    for student in students:
        flagged = classify_student(student)
        if flagged is not None:
            at_risk.append(flagged)

    return AdminDashboardOut(
        kpis=kpis,
        at_risk_students=at_risk[:AT_RISK_LIMIT],
        students=[StudentRef(id=s.id, name=s.name) for s in students],
        engagement_data=engagement(kpis),
    )


def load_cohort(db: Session) -> list[CohortStudent]:
    cohort = []
    for student in list_all_students(db):
        cohort.append(
            CohortStudent(
                id=student.id,
                name=student.name,
                consistency_score=student.consistency_score,
                entries=[entry_to_schema(row) for row in list_student_entries(db, student.id)],
            )
        )
    return cohort


def build_dashboard(db: Session) -> AdminDashboardOut:
    cohort = load_cohort(db)
    all_entries = [entry_to_schema(row) for row in list_all_entries(db)]
    dashboard = aggregate(cohort, all_entries)
    logger.info(
        "cohort dashboard: %s students, %s entries, %s at risk",
        len(cohort),
        len(all_entries),
        len(dashboard.at_risk_students),
    )
    return dashboard


def fallback_summary(dashboard: AdminDashboardOut) -> str:
    kpis = dashboard.kpis
    parts = [
        f"Goal completion is at {kpis.goal_completion}% with an average reflection depth of "
        f"{kpis.avg_reflection_depth} and average quiz performance of {kpis.avg_test_performance}%."
    ]
    if dashboard.at_risk_students:
        flagged = "; ".join(f"{s.name} ({s.reason})" for s in dashboard.at_risk_students)
        parts.append(f"{len(dashboard.at_risk_students)} student(s) need attention: {flagged}.")
        parts.append("Schedule a short check-in with the flagged students this week.")
    else:
        parts.append("No students are currently flagged as at risk.")
    return " ".join(parts)


def weekly_summary(dashboard: AdminDashboardOut) -> tuple[str, str]:
    """Returns (summary, source) where source is gemini or fallback."""
    text, meta = try_gemini_weekly_summary(dashboard=dashboard.model_dump())
    if text is not None:
        return text, "gemini"
    if meta.get("attempted"):
        logger.warning("weekly summary fell back to template: %s", meta.get("reason"))
    return fallback_summary(dashboard), "fallback"
