from __future__ import annotations

import logging
from collections.abc import Sequence
from statistics import mean

from sqlalchemy.orm import Session

from ..models import Student
from ..schemas import Badge, DailyEntryOut
from .smart_scoring import round_half_up
from .store import entry_to_schema, list_student_entries

logger = logging.getLogger(__name__)

BADGE_CATALOG: dict[str, Badge] = {
    badge.id: badge
    for badge in (
        Badge(
            id="streak-7",
            name="7-Day Streak",
            description="Maintained a consistent streak for 7 days in a row!",
            icon="🔥",
        ),
        Badge(
            id="consistency-90",
            name="High Achiever",
            description="Achieved a consistency score of 90% or higher.",
            icon="🏆",
        ),
        Badge(
            id="deep-thinker",
            name="Deep Thinker",
            description="Consistently provided deep, thoughtful reflections (average depth of 4+).",
            icon="🧠",
        ),
        Badge(
            id="quiz-whiz",
            name="Quiz Whiz",
            description="Mastered the daily quizzes with an average score of 90% or higher.",
            icon="🎯",
        ),
        # listed so clients can render it; no rule awards it
        Badge(
            id="perfect-week",
            name="Perfect Week",
            description="Completed every goal for a full 7 days.",
            icon="⭐",
        ),
    )
}

STREAK_BADGE_DAYS = 7
CONSISTENCY_BADGE_SCORE = 90
DEEP_THINKER_MIN_REFLECTIONS = 3
DEEP_THINKER_MIN_DEPTH = 4
QUIZ_WHIZ_MIN_QUIZZES = 1
QUIZ_WHIZ_MIN_RATIO = 0.9


def compute_consistency(entries: Sequence[DailyEntryOut]) -> int:
    if not entries:
        return 0
    completed = sum(1 for entry in entries if entry.goal.completed)
    return round_half_up(100 * completed / len(entries))


def compute_streak(entries: Sequence[DailyEntryOut]) -> int:
    """Completed goals counted from the newest entry back to the first miss."""
    streak = 0
    for entry in sorted(entries, key=lambda e: e.date_key, reverse=True):
        if not entry.goal.completed:
            break
        streak += 1
    return streak


def compute_badges(streak: int, consistency_score: int, entries: Sequence[DailyEntryOut]) -> list[Badge]:
    earned: set[str] = set()
    if streak >= STREAK_BADGE_DAYS:
        earned.add("streak-7")
    if consistency_score >= CONSISTENCY_BADGE_SCORE:
        earned.add("consistency-90")

    depths = [entry.reflection.depth for entry in entries if entry.reflection is not None]
    if len(depths) >= DEEP_THINKER_MIN_REFLECTIONS and mean(depths) >= DEEP_THINKER_MIN_DEPTH:
        earned.add("deep-thinker")

    ratios = [
        entry.quiz_evaluation.score / entry.quiz_evaluation.total
        for entry in entries
        if entry.quiz_evaluation is not None and entry.quiz_evaluation.total > 0
    ]
    if len(ratios) >= QUIZ_WHIZ_MIN_QUIZZES and mean(ratios) >= QUIZ_WHIZ_MIN_RATIO:
        earned.add("quiz-whiz")

    return [badge for badge_id, badge in BADGE_CATALOG.items() if badge_id in earned]


def badges_from_ids(badge_ids: Sequence[str]) -> list[Badge]:
    return [BADGE_CATALOG[badge_id] for badge_id in badge_ids if badge_id in BADGE_CATALOG]


def refresh_student_projection(db: Session, student: Student) -> list[Badge]:
    """Recompute consistency, streak and badges from the student's stored entries."""
    entries = [entry_to_schema(row) for row in list_student_entries(db, student.id)]
    consistency = compute_consistency(entries)
    streak = compute_streak(entries)
    badges = compute_badges(streak, consistency, entries)

    previous = set(student.badges_json or [])
    current = [badge.id for badge in badges]
    gained = [badge_id for badge_id in current if badge_id not in previous]
    if gained:
        logger.info("student %s earned badges: %s", student.id, ", ".join(gained))

    student.consistency_score = consistency
    student.streak = streak
    student.badges_json = current
    db.flush()
    return badges
