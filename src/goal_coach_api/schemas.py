from __future__ import annotations

import datetime as dt
from typing import Any, Literal

from pydantic import BaseModel, Field

ConfidenceLevel = Literal["low", "medium", "high"]
Role = Literal["student", "admin"]


class APIModel(BaseModel):
    model_config = {"from_attributes": True}


class SMARTScore(BaseModel):
    specific: int = Field(ge=1, le=5)
    measurable: int = Field(ge=1, le=5)
    achievable: int = Field(ge=1, le=5)
    realistic: int = Field(ge=1, le=5)
    time_bound: int = Field(ge=1, le=5)


class Goal(BaseModel):
    text: str = Field(min_length=1)
    smart_score: SMARTScore | None = None
    smart_percentage: int | None = Field(default=None, ge=0, le=100)
    completed: bool = False


class Reflection(BaseModel):
    text: str
    depth: int = Field(ge=1, le=5)
    confidence_level: ConfidenceLevel


class QuizEvaluation(BaseModel):
    score: int = Field(ge=0)
    total: int = Field(ge=0)
    correct_answers: int = Field(ge=0)
    incorrect_answers: int = Field(ge=0)
    feedback: str


class DailyEntryOut(BaseModel):
    date: dt.datetime
    date_key: str
    goal: Goal
    reflection: Reflection | None = None
    quiz_evaluation: QuizEvaluation | None = None


class Badge(BaseModel):
    id: str
    name: str
    description: str
    icon: str


class ProgressOut(BaseModel):
    current_smart_threshold: int
    goals_analyzed: int
    days_active: int
    average_smart_score: int
    last_threshold_increase: dt.datetime
    start_date: dt.datetime
    message: str | None = None


class StudentCreate(BaseModel):
    id: str | None = Field(default=None, min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=120)


class StudentOut(BaseModel):
    student_id: str
    name: str
    consistency_score: int
    streak: int
    entries: list[DailyEntryOut]
    badges: list[Badge]
    progress: ProgressOut | None = None


class GoalAnalyzeRequest(BaseModel):
    text: str = Field(min_length=1)


class GoalAnalysisOut(APIModel):
    id: int
    goal_text: str
    score: SMARTScore
    percentage: int
    feedback: str
    scorer_source: str
    scorer_model: str | None
    fallback_reason: str | None
    provisional: bool
    required_threshold: int
    meets_threshold: bool
    progress: ProgressOut


class GoalSetRequest(BaseModel):
    analysis_id: int


class ReflectionRequest(BaseModel):
    text: str = Field(min_length=1)
    persist: bool = True


class ReflectionAnalysisOut(BaseModel):
    is_valid: bool
    depth: int
    confidence_level: ConfidenceLevel
    feedback: str
    suggestions: list[str]
    word_count: int
    scorer_source: str
    provisional: bool
    persisted: bool


class QuizRequest(BaseModel):
    goal_text: str | None = None
    reflection_text: str | None = None


class QuizQuestion(BaseModel):
    question: str
    options: list[str]
    correct_answer: str
    explanation: str | None = None


class QuizOut(BaseModel):
    title: str
    description: str
    questions: list[QuizQuestion]
    source: str


class QuizResultRequest(BaseModel):
    correct: int = Field(ge=0)
    total: int = Field(ge=1)


class AtRiskStudent(BaseModel):
    id: str
    name: str
    reason: str
    missed_goals: int
    avg_reflection_depth: float
    avg_test_score: int


class KPIs(BaseModel):
    goal_completion: int
    avg_reflection_depth: float
    avg_test_performance: int


class EngagementPoint(BaseModel):
    name: str
    goals: int
    reflections: int
    confidence: int


class StudentRef(BaseModel):
    id: str
    name: str


class AdminDashboardOut(BaseModel):
    kpis: KPIs
    at_risk_students: list[AtRiskStudent]
    students: list[StudentRef]
    engagement_data: list[EngagementPoint]


class AdminSummaryOut(BaseModel):
    summary: str
    source: str
    dashboard: AdminDashboardOut


class ErrorOut(BaseModel):
    error: str
    message: str
    detail: dict[str, Any] = Field(default_factory=dict)


class HealthOut(BaseModel):
    ok: bool
    service: str
