from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Student(Base):
    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    consistency_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    badges_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class DailyEntry(Base):
    __tablename__ = "daily_entries"
    __table_args__ = (
        UniqueConstraint("student_id", "date_key", name="uq_daily_entry_student_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(String(64), ForeignKey("students.id"), nullable=False, index=True)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False, index=True)  # YYYY-MM-DD
    entry_time: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    goal_text: Mapped[str] = mapped_column(Text, nullable=False)
    goal_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    smart_score_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    smart_percentage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reflection_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    quiz_evaluation_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class StudentProgress(Base):
    __tablename__ = "student_progress"

    student_id: Mapped[str] = mapped_column(String(64), ForeignKey("students.id"), primary_key=True)
    current_smart_threshold: Mapped[int] = mapped_column(Integer, default=40, nullable=False)
    goals_analyzed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    days_active: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_smart_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_threshold_increase: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    start_date: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class GoalAnalysis(Base):
    __tablename__ = "goal_analyses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(String(64), ForeignKey("students.id"), nullable=False, index=True)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False)
    goal_text: Mapped[str] = mapped_column(Text, nullable=False)
    score_json: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    feedback: Mapped[str] = mapped_column(Text, nullable=False, default="")
    scorer_source: Mapped[str] = mapped_column(String(20), nullable=False, default="fallback")
    scorer_model: Mapped[str | None] = mapped_column(String(80), nullable=True)
    fallback_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
    required_threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    meets_threshold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    # set once the analysis has been committed as a daily goal
    consumed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ReflectionAnalysis(Base):
    __tablename__ = "reflection_analyses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(String(64), ForeignKey("students.id"), nullable=False, index=True)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False)
    word_count: Mapped[int] = mapped_column(Integer, nullable=False)
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    depth: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    confidence_level: Mapped[str] = mapped_column(String(10), nullable=False, default="low")
    feedback: Mapped[str] = mapped_column(Text, nullable=False, default="")
    suggestions_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    scorer_source: Mapped[str] = mapped_column(String(20), nullable=False, default="fallback")
    fallback_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
