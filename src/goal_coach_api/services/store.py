from __future__ import annotations

import datetime as dt
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import PersistenceWriteFailure, StudentNotFound
from ..models import DailyEntry, Student
from ..schemas import DailyEntryOut, Goal, QuizEvaluation, Reflection, SMARTScore

logger = logging.getLogger(__name__)

# Fields put_daily_entry may merge; None never overwrites a stored value.
_MERGE_FIELDS = (
    "goal_text",
    "goal_completed",
    "smart_score_json",
    "smart_percentage",
    "reflection_json",
    "quiz_evaluation_json",
)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def date_key(value: dt.datetime | dt.date | None = None) -> str:
    if value is None:
        value = _utcnow()
    if isinstance(value, dt.date) and not isinstance(value, dt.datetime):
        return value.isoformat()
    if value.tzinfo is not None:
        value = value.astimezone(dt.timezone.utc)
    return value.date().isoformat()


def parse_date_key(value: str) -> str:
    """Normalize a YYYY-MM-DD path value; raises ValueError when malformed."""
    return dt.date.fromisoformat(value).isoformat()


def must_get_student(db: Session, student_id: str) -> Student:
    student = db.get(Student, student_id)
    if student is None:
        raise StudentNotFound(student_id)
    return student


def get_or_create_student(db: Session, *, student_id: str | None, name: str) -> tuple[Student, bool]:
    if student_id:
        existing = db.get(Student, student_id)
        if existing is not None:
            return existing, False
    student = Student(name=name, badges_json=[])
    if student_id:
        student.id = student_id
    db.add(student)
    db.flush()
    return student, True


def get_daily_entry(db: Session, student_id: str, key: str) -> DailyEntry | None:
    return db.scalar(
        select(DailyEntry).where(DailyEntry.student_id == student_id, DailyEntry.date_key == key)
    )


def put_daily_entry(
    db: Session,
    student_id: str,
    key: str,
    *,
    now: dt.datetime | None = None,
    **fields: Any,
) -> DailyEntry:
    """Upsert the entry for one calendar day, merging only the fields that are not None."""
    unknown = set(fields) - set(_MERGE_FIELDS)
    if unknown:
        raise TypeError(f"unknown daily entry fields: {sorted(unknown)}")
    now = now or _utcnow()

    row = get_daily_entry(db, student_id, key)
    if row is None:
        row = DailyEntry(
            student_id=student_id,
            date_key=key,
            entry_time=now,
            goal_text=fields.get("goal_text") or "",
            goal_completed=False,
        )
        savepoint = db.begin_nested()
        try:
            db.add(row)
            db.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            row = get_daily_entry(db, student_id, key)
            if row is None:
                raise

    for name in _MERGE_FIELDS:
        value = fields.get(name)
        if value is not None:
            setattr(row, name, value)
    row.updated_at = now
    db.flush()
    return row


def list_all_students(db: Session) -> list[Student]:
    return list(db.scalars(select(Student).order_by(Student.created_at.asc(), Student.id.asc())).all())


def list_all_entries(db: Session) -> list[DailyEntry]:
    return list(db.scalars(select(DailyEntry).order_by(DailyEntry.date_key.desc(), DailyEntry.id.desc())).all())


def list_student_entries(db: Session, student_id: str) -> list[DailyEntry]:
    return list(
        db.scalars(
            select(DailyEntry)
            .where(DailyEntry.student_id == student_id)
            .order_by(DailyEntry.date_key.desc(), DailyEntry.id.desc())
        ).all()
    )


def commit_or_fail(db: Session, operation: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("commit failed during %s", operation)
        raise PersistenceWriteFailure(operation) from exc


def entry_to_schema(row: DailyEntry) -> DailyEntryOut:
    reflection = None
    if row.reflection_json:
        reflection = Reflection(**row.reflection_json)
    quiz = None
    if row.quiz_evaluation_json:
        quiz = QuizEvaluation(**row.quiz_evaluation_json)
    return DailyEntryOut(
        date=row.entry_time,
        date_key=row.date_key,
        goal=Goal(
            text=row.goal_text or "(no goal set)",
            smart_score=SMARTScore(**row.smart_score_json) if row.smart_score_json else None,
            smart_percentage=row.smart_percentage,
            completed=row.goal_completed,
        ),
        reflection=reflection,
        quiz_evaluation=quiz,
    )
