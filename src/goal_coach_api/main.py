from __future__ import annotations

import datetime as dt
import logging
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session as DBSession

from .context import SessionContext, get_session_context
from .db import Base, engine, get_db
from .errors import AnalysisAlreadyUsed, AnalysisNotFound, EntryNotFound, GoalBelowThreshold, GoalCoachError
from .logging_config import configure_logging
from .models import DailyEntry, GoalAnalysis, ReflectionAnalysis, Student, StudentProgress
from .schemas import (
    AdminDashboardOut,
    AdminSummaryOut,
    Badge,
    DailyEntryOut,
    ErrorOut,
    GoalAnalysisOut,
    GoalAnalyzeRequest,
    GoalSetRequest,
    HealthOut,
    ProgressOut,
    QuizOut,
    QuizRequest,
    QuizResultRequest,
    ReflectionAnalysisOut,
    ReflectionRequest,
    SMARTScore,
    StudentCreate,
    StudentOut,
)
from .services.badges import badges_from_ids, refresh_student_projection
from .services.cohort import build_dashboard, weekly_summary
from .services.goal_gate import check_goal, enforce_goal
from .services.progress import (
    ProgressState,
    apply_analysis_to_student,
    current_threshold,
    initialize_progress,
    progress_lock,
    progress_message,
    state_from_row,
)
from .services.quiz import evaluate_quiz, generate_quiz
from .services.reflection_gate import analyze_reflection, prefilter, validate
from .services.smart_scoring import evaluate_goal
from .services.store import (
    commit_or_fail,
    date_key,
    entry_to_schema,
    get_daily_entry,
    get_or_create_student,
    list_student_entries,
    must_get_student,
    parse_date_key,
    put_daily_entry,
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Goal Coach API",
    version="0.1.0",
    description=(
        "Daily SMART goal coaching: adaptive goal-quality gating, reflection checks, "
        "badges and cohort analytics for administrators."
    ),
)

DBDep = Annotated[DBSession, Depends(get_db)]
ContextDep = Annotated[SessionContext, Depends(get_session_context)]


@app.on_event("startup")
def on_startup() -> None:
    configure_logging()
    Base.metadata.create_all(bind=engine)


@app.exception_handler(GoalCoachError)
def handle_goal_coach_error(request: Request, exc: GoalCoachError) -> JSONResponse:
    body = ErrorOut(error=exc.code, message=exc.message, detail=exc.detail)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _progress_out(state: ProgressState, now: dt.datetime | None = None) -> ProgressOut:
    return ProgressOut(
        current_smart_threshold=state.current_smart_threshold,
        goals_analyzed=state.goals_analyzed,
        days_active=state.days_active,
        average_smart_score=state.average_smart_score,
        last_threshold_increase=state.last_threshold_increase,
        start_date=state.start_date,
        message=progress_message(state, now),
    )


def _load_progress(db: DBSession, student_id: str) -> ProgressOut | None:
    row = db.get(StudentProgress, student_id)
    if row is None:
        return None
    return _progress_out(state_from_row(row))


def _student_out(db: DBSession, student: Student) -> StudentOut:
    return StudentOut(
        student_id=student.id,
        name=student.name,
        consistency_score=student.consistency_score,
        streak=student.streak,
        entries=[entry_to_schema(row) for row in list_student_entries(db, student.id)],
        badges=badges_from_ids(student.badges_json or []),
        progress=_load_progress(db, student.id),
    )


def _must_get_today_entry(db: DBSession, student_id: str) -> DailyEntry:
    key = date_key()
    entry = get_daily_entry(db, student_id, key)
    if entry is None or not entry.goal_text:
        raise EntryNotFound(student_id, key)
    return entry


@app.get("/health", response_model=HealthOut)
def health() -> HealthOut:
    return HealthOut(ok=True, service="goal-coach-api")


@app.post("/v1/students", response_model=StudentOut, status_code=status.HTTP_201_CREATED)
def create_student(payload: StudentCreate, ctx: ContextDep, db: DBDep) -> StudentOut:
    student_id = payload.id
    if not ctx.is_admin:
        student_id = student_id or ctx.user_id
        ctx.require_student_access(student_id)

    student, created = get_or_create_student(db, student_id=student_id, name=payload.name.strip())
    commit_or_fail(db, "create_student")
    if created:
        logger.info("created student %s", student.id)
    return _student_out(db, student)


@app.get("/v1/students/{student_id}", response_model=StudentOut)
def get_student(student_id: str, ctx: ContextDep, db: DBDep) -> StudentOut:
    ctx.require_student_access(student_id)
    return _student_out(db, must_get_student(db, student_id))


@app.post("/v1/students/{student_id}/goals/analyze", response_model=GoalAnalysisOut)
def analyze_goal(
    student_id: str,
    payload: GoalAnalyzeRequest,
    ctx: ContextDep,
    db: DBDep,
) -> GoalAnalysisOut:
    ctx.require_student_access(student_id)
    must_get_student(db, student_id)
    goal_text = payload.text.strip()
    if not goal_text:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Goal text must not be blank",
        )

    result = evaluate_goal(goal_text)
    now = _utcnow()
    with progress_lock(student_id):
        state = apply_analysis_to_student(db, student_id, result.score, now=now)
        decision = check_goal(result.score, state.current_smart_threshold)
        analysis = GoalAnalysis(
            student_id=student_id,
            date_key=date_key(now),
            goal_text=goal_text,
            score_json=result.score.model_dump(),
            percentage=decision.percentage,
            feedback=result.feedback,
            scorer_source=result.source,
            scorer_model=result.model,
            fallback_reason=result.fallback_reason,
            required_threshold=decision.required_threshold,
            meets_threshold=decision.accepted,
            created_at=now,
        )
        db.add(analysis)
        commit_or_fail(db, "goal_analysis")

    return GoalAnalysisOut(
        id=analysis.id,
        goal_text=goal_text,
        score=result.score,
        percentage=decision.percentage,
        feedback=result.feedback,
        scorer_source=result.source,
        scorer_model=result.model,
        fallback_reason=result.fallback_reason,
        provisional=result.provisional,
        required_threshold=decision.required_threshold,
        meets_threshold=decision.accepted,
        progress=_progress_out(state, now),
    )


@app.post(
    "/v1/students/{student_id}/goals",
    response_model=DailyEntryOut,
    status_code=status.HTTP_201_CREATED,
)
def set_goal(student_id: str, payload: GoalSetRequest, ctx: ContextDep, db: DBDep) -> DailyEntryOut:
    ctx.require_student_access(student_id)
    student = must_get_student(db, student_id)

    now = _utcnow()
    today = date_key(now)
    with progress_lock(student_id):
        analysis = db.get(GoalAnalysis, payload.analysis_id)
        if analysis is None or analysis.student_id != student_id:
            raise AnalysisNotFound(payload.analysis_id)
        # each analysis backs exactly one goal, on the day it was made
        if analysis.consumed_at is not None:
            raise AnalysisAlreadyUsed(analysis.id, reason="consumed")
        if analysis.date_key != today:
            raise AnalysisAlreadyUsed(analysis.id, reason="stale")

        score = SMARTScore(**analysis.score_json)
        threshold = current_threshold(db, student_id)
        try:
            decision = enforce_goal(score, threshold)
        except GoalBelowThreshold as exc:
            logger.info(
                "goal rejected for student %s: %s%% < %s%%",
                student_id,
                exc.percentage,
                exc.required_threshold,
            )
            raise

        entry = put_daily_entry(
            db,
            student_id,
            today,
            goal_text=analysis.goal_text,
            goal_completed=False,
            smart_score_json=score.model_dump(),
            smart_percentage=decision.percentage,
        )
        analysis.consumed_at = now
        refresh_student_projection(db, student)
        commit_or_fail(db, "set_goal")
    return entry_to_schema(entry)


@app.post("/v1/students/{student_id}/entries/{entry_date}/complete", response_model=DailyEntryOut)
def complete_goal(student_id: str, entry_date: str, ctx: ContextDep, db: DBDep) -> DailyEntryOut:
    ctx.require_student_access(student_id)
    student = must_get_student(db, student_id)
    try:
        key = parse_date_key(entry_date)
    except ValueError as exc:
        raise HTTPException(
            status_code=422,
            detail="entry date must be YYYY-MM-DD",
        ) from exc

    entry = get_daily_entry(db, student_id, key)
    if entry is None:
        raise EntryNotFound(student_id, key)

    entry = put_daily_entry(db, student_id, key, goal_completed=True)
    refresh_student_projection(db, student)
    commit_or_fail(db, "complete_goal")
    return entry_to_schema(entry)


@app.post("/v1/students/{student_id}/reflections", response_model=ReflectionAnalysisOut)
def submit_reflection(
    student_id: str,
    payload: ReflectionRequest,
    ctx: ContextDep,
    db: DBDep,
) -> ReflectionAnalysisOut:
    ctx.require_student_access(student_id)
    student = must_get_student(db, student_id)
    text = payload.text.strip()

    key = date_key()
    entry = get_daily_entry(db, student_id, key)
    if payload.persist and (entry is None or not entry.goal_text):
        raise EntryNotFound(student_id, key)

    word_count = prefilter(text)
    analysis = analyze_reflection(text, entry.goal_text if entry is not None else None)

    db.add(
        ReflectionAnalysis(
            student_id=student_id,
            date_key=key,
            word_count=word_count,
            is_valid=analysis.is_valid,
            depth=analysis.depth,
            confidence_level=analysis.confidence_level,
            feedback=analysis.feedback,
            suggestions_json=analysis.suggestions,
            scorer_source=analysis.source,
            fallback_reason=analysis.fallback_reason,
        )
    )
    commit_or_fail(db, "reflection_analysis")

    validate(analysis, text)

    if payload.persist:
        put_daily_entry(
            db,
            student_id,
            key,
            reflection_json={
                "text": text,
                "depth": analysis.depth,
                "confidence_level": analysis.confidence_level,
            },
        )
        refresh_student_projection(db, student)
        commit_or_fail(db, "submit_reflection")

    return ReflectionAnalysisOut(
        is_valid=analysis.is_valid,
        depth=analysis.depth,
        confidence_level=analysis.confidence_level,
        feedback=analysis.feedback,
        suggestions=analysis.suggestions,
        word_count=word_count,
        scorer_source=analysis.source,
        provisional=analysis.provisional,
        persisted=payload.persist,
    )


@app.post("/v1/students/{student_id}/quizzes", response_model=QuizOut)
def create_quiz(student_id: str, payload: QuizRequest, ctx: ContextDep, db: DBDep) -> QuizOut:
    ctx.require_student_access(student_id)
    must_get_student(db, student_id)

    goal_text = payload.goal_text
    reflection_text = payload.reflection_text
    entry = get_daily_entry(db, student_id, date_key())
    if entry is not None:
        goal_text = goal_text or entry.goal_text or None
        if reflection_text is None and entry.reflection_json:
            reflection_text = entry.reflection_json.get("text")
    return generate_quiz(goal_text, reflection_text)


@app.post("/v1/students/{student_id}/quiz-results", response_model=DailyEntryOut)
def submit_quiz_result(
    student_id: str,
    payload: QuizResultRequest,
    ctx: ContextDep,
    db: DBDep,
) -> DailyEntryOut:
    ctx.require_student_access(student_id)
    student = must_get_student(db, student_id)
    if payload.correct > payload.total:
        raise HTTPException(
            status_code=422,
            detail="correct answers cannot exceed the number of questions",
        )

    entry = _must_get_today_entry(db, student_id)
    evaluation = evaluate_quiz(payload.correct, payload.total)
    entry = put_daily_entry(db, student_id, entry.date_key, quiz_evaluation_json=evaluation.model_dump())
    refresh_student_projection(db, student)
    commit_or_fail(db, "submit_quiz_result")
    return entry_to_schema(entry)


@app.get("/v1/students/{student_id}/progress", response_model=ProgressOut)
def get_progress(student_id: str, ctx: ContextDep, db: DBDep) -> ProgressOut:
    ctx.require_student_access(student_id)
    must_get_student(db, student_id)
    progress = _load_progress(db, student_id)
    if progress is None:
        # not persisted until the first analysis
        return _progress_out(initialize_progress())
    return progress


@app.get("/v1/students/{student_id}/badges", response_model=list[Badge])
def get_badges(student_id: str, ctx: ContextDep, db: DBDep) -> list[Badge]:
    ctx.require_student_access(student_id)
    student = must_get_student(db, student_id)
    return badges_from_ids(student.badges_json or [])


@app.get("/v1/admin/dashboard", response_model=AdminDashboardOut)
def admin_dashboard(ctx: ContextDep, db: DBDep) -> AdminDashboardOut:
    ctx.require_admin()
    return build_dashboard(db)


@app.get("/v1/admin/summary", response_model=AdminSummaryOut)
def admin_summary(ctx: ContextDep, db: DBDep) -> AdminSummaryOut:
    ctx.require_admin()
    dashboard = build_dashboard(db)
    summary, source = weekly_summary(dashboard)
    return AdminSummaryOut(summary=summary, source=source, dashboard=dashboard)
