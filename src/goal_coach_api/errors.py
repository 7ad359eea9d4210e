from __future__ import annotations

from typing import Any


class GoalCoachError(Exception):
    """Base class for errors the API maps onto HTTP responses."""

    status_code = 400
    code = "goal_coach_error"

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class AnalyzerUnavailable(GoalCoachError):
    status_code = 503
    code = "analyzer_unavailable"

    def __init__(self, reason: str) -> None:
        super().__init__("Analysis temporarily unavailable", reason=reason)
        self.reason = reason


class GoalBelowThreshold(GoalCoachError):
    status_code = 422
    code = "goal_below_threshold"

    def __init__(self, percentage: int, required_threshold: int) -> None:
        super().__init__(
            f"Goal quality too low! Your score: {percentage}%. Required: {required_threshold}%. "
            "Please improve your goal based on the AI feedback and analyze again.",
            percentage=percentage,
            required_threshold=required_threshold,
        )
        self.percentage = percentage
        self.required_threshold = required_threshold


class ReflectionInvalid(GoalCoachError):
    status_code = 422
    code = "reflection_invalid"

    def __init__(self, feedback: str, *, word_count: int, suggestions: list[str] | None = None) -> None:
        super().__init__(feedback, word_count=word_count, suggestions=list(suggestions or []))
        self.feedback = feedback
        self.word_count = word_count
        self.suggestions = list(suggestions or [])


class StudentNotFound(GoalCoachError):
    status_code = 404
    code = "student_not_found"

    def __init__(self, student_id: str) -> None:
        super().__init__("Student not found", student_id=student_id)
        self.student_id = student_id


class EntryNotFound(GoalCoachError):
    status_code = 404
    code = "entry_not_found"

    def __init__(self, student_id: str, date_key: str) -> None:
        super().__init__(
            f"No goal has been set for {date_key}",
            student_id=student_id,
            date_key=date_key,
        )


class AnalysisNotFound(GoalCoachError):
    status_code = 404
    code = "analysis_not_found"

    def __init__(self, analysis_id: int) -> None:
        super().__init__("Goal analysis not found", analysis_id=analysis_id)


class PersistenceWriteFailure(GoalCoachError):
    status_code = 503
    code = "persistence_write_failure"

    def __init__(self, operation: str) -> None:
        super().__init__("Failed to save changes. Please try again.", operation=operation)
        self.operation = operation


class AccessDenied(GoalCoachError):
    status_code = 403
    code = "access_denied"


class AnalysisAlreadyUsed(GoalCoachError):
    status_code = 409
    code = "analysis_already_used"

    def __init__(self, analysis_id: int, *, reason: str) -> None:
        super().__init__(
            "This goal analysis can no longer be committed. Please analyze your goal again.",
            analysis_id=analysis_id,
            reason=reason,
        )
        self.reason = reason
