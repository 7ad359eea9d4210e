from __future__ import annotations

import datetime as dt
import logging
import threading
import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace

from sqlalchemy.orm import Session

from ..models import StudentProgress
from ..schemas import SMARTScore
from .smart_scoring import percentage_of, round_half_up

logger = logging.getLogger(__name__)

INITIAL_SMART_THRESHOLD = 40
MAX_SMART_THRESHOLD = 85
THRESHOLD_INCREMENT = 5
DAYS_BETWEEN_INCREASES = 2

_ONE_DAY = dt.timedelta(days=1)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(value: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def whole_days_between(start: dt.datetime, end: dt.datetime) -> int:
    return (as_utc(end) - as_utc(start)) // _ONE_DAY


@dataclass(frozen=True)
class ProgressState:
    current_smart_threshold: int
    goals_analyzed: int
    days_active: int
    average_smart_score: int
    last_threshold_increase: dt.datetime
    start_date: dt.datetime


def initialize_progress(now: dt.datetime | None = None) -> ProgressState:
    now = now or _utcnow()
    return ProgressState(
        current_smart_threshold=INITIAL_SMART_THRESHOLD,
        goals_analyzed=0,
        days_active=0,
        average_smart_score=0,
        last_threshold_increase=now,
        start_date=now,
    )


def record_analysis(progress: ProgressState, score: SMARTScore, now: dt.datetime | None = None) -> ProgressState:
    """Fold one SMART analysis into a student's progress.

    The average is a plain running mean over every analysis. The threshold
    rises by THRESHOLD_INCREMENT at most once per DAYS_BETWEEN_INCREASES days,
    only while below MAX_SMART_THRESHOLD and only when the updated average has
    reached the current threshold.
    """
    now = now or _utcnow()
    new_pct = percentage_of(score)
    goals_analyzed = progress.goals_analyzed + 1
    average = round_half_up(
        ((progress.average_smart_score * progress.goals_analyzed) + new_pct) / goals_analyzed
    )
    days_active = max(0, whole_days_between(progress.start_date, now))

    threshold = progress.current_smart_threshold
    last_increase = progress.last_threshold_increase
    days_since_increase = whole_days_between(last_increase, now)
    if (
        days_since_increase >= DAYS_BETWEEN_INCREASES
        and threshold < MAX_SMART_THRESHOLD
        and average >= threshold
    ):
        threshold = min(threshold + THRESHOLD_INCREMENT, MAX_SMART_THRESHOLD)
        last_increase = now

    return replace(
        progress,
        current_smart_threshold=threshold,
        goals_analyzed=goals_analyzed,
        days_active=days_active,
        average_smart_score=average,
        last_threshold_increase=last_increase,
    )


def progress_message(progress: ProgressState, now: dt.datetime | None = None) -> str:
    now = now or _utcnow()
    threshold = progress.current_smart_threshold
    if threshold >= MAX_SMART_THRESHOLD:
        return "You've mastered SMART goal setting!"

    days_until = DAYS_BETWEEN_INCREASES - whole_days_between(progress.last_threshold_increase, now)
    if days_until <= 0:
        if progress.average_smart_score >= threshold:
            next_threshold = min(threshold + THRESHOLD_INCREMENT, MAX_SMART_THRESHOLD)
            return f"Ready to level up! Threshold will increase to {next_threshold}% soon."
        return f"Keep improving! Raise your average SMART score to {threshold}% to unlock the next level."

    unit = "day" if days_until == 1 else "days"
    return f"Keep improving! {days_until} {unit} until next level-up opportunity."


def state_from_row(row: StudentProgress) -> ProgressState:
    return ProgressState(
        current_smart_threshold=row.current_smart_threshold,
        goals_analyzed=row.goals_analyzed,
        days_active=row.days_active,
        average_smart_score=row.average_smart_score,
        last_threshold_increase=as_utc(row.last_threshold_increase),
        start_date=as_utc(row.start_date),
    )


class _StudentLock:
    # threading.Lock cannot be weakly referenced, so the registry holds this wrapper
    __slots__ = ("lock", "__weakref__")

    def __init__(self) -> None:
        self.lock = threading.Lock()


_locks_guard = threading.Lock()
_student_locks: weakref.WeakValueDictionary[str, _StudentLock] = weakref.WeakValueDictionary()


@contextmanager
def progress_lock(student_id: str) -> Iterator[None]:
    """Serialize read-modify-write cycles on one student's progress row.

    A student's lock lives only while some request holds or waits on it.
    """
    with _locks_guard:
        entry = _student_locks.get(student_id)
        if entry is None:
            entry = _StudentLock()
            _student_locks[student_id] = entry
    with entry.lock:
        yield


def current_threshold(db: Session, student_id: str) -> int:
    row = db.get(StudentProgress, student_id)
    if row is None:
        return INITIAL_SMART_THRESHOLD
    return row.current_smart_threshold


def apply_analysis_to_student(
    db: Session,
    student_id: str,
    score: SMARTScore,
    *,
    now: dt.datetime | None = None,
) -> ProgressState:
    """Load (or create) the progress row, fold in one analysis and stage the update.

    Callers hold progress_lock(student_id) until the session is committed.
    """
    now = now or _utcnow()
    row = db.get(StudentProgress, student_id)
    if row is None:
        state = initialize_progress(now)
        row = StudentProgress(
            student_id=student_id,
            last_threshold_increase=state.last_threshold_increase,
            start_date=state.start_date,
        )
        db.add(row)
    else:
        state = state_from_row(row)

    updated = record_analysis(state, score, now)
    if updated.current_smart_threshold > state.current_smart_threshold:
        logger.info(
            "student %s leveled up: SMART threshold %s%% -> %s%%",
            student_id,
            state.current_smart_threshold,
            updated.current_smart_threshold,
        )

    row.current_smart_threshold = updated.current_smart_threshold
    row.goals_analyzed = updated.goals_analyzed
    row.days_active = updated.days_active
    row.average_smart_score = updated.average_smart_score
    row.last_threshold_increase = updated.last_threshold_increase
    row.start_date = updated.start_date
    row.updated_at = now
    db.flush()
    return updated
