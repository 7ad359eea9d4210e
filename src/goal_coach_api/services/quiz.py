from __future__ import annotations

import logging

from ..schemas import QuizEvaluation, QuizOut, QuizQuestion
from .gemini_client import try_gemini_quiz
from .smart_scoring import round_half_up

logger = logging.getLogger(__name__)

QUIZ_QUESTION_COUNT = 12
DEFAULT_GOAL_TEXT = "personal development and learning"

FALLBACK_QUIZ_TITLE = "Personal Development Quiz"
FALLBACK_QUIZ_DESCRIPTION = "Test your knowledge about achieving your goals"
FALLBACK_QUESTIONS: tuple[dict, ...] = (
    {
        "question": "What makes a goal 'SMART'?",
        "options": [
            "Simple, Meaningful, Achievable, Realistic, Timely",
            "Specific, Measurable, Achievable, Relevant, Time-bound",
            "Strong, Motivating, Ambitious, Rewarding, Trackable",
            "Strategic, Manageable, Actionable, Results-focused, Targeted",
        ],
        "correct_answer": "Specific, Measurable, Achievable, Relevant, Time-bound",
        "explanation": "SMART goals are Specific, Measurable, Achievable, Relevant, and Time-bound.",
    },
    {
        "question": "What is the most effective way to build a new habit?",
        "options": [
            "Start with 30-minute sessions",
            "Begin with tiny, 2-minute actions",
            "Only practice when motivated",
            "Set multiple habits at once",
        ],
        "correct_answer": "Begin with tiny, 2-minute actions",
        "explanation": "Starting small makes it easier to be consistent and build momentum.",
    },
    {
        "question": "When facing a setback, what's the best approach?",
        "options": [
            "Give up and try something else",
            "Analyze what went wrong and adjust",
            "Push harder with the same strategy",
            "Take a long break",
        ],
        "correct_answer": "Analyze what went wrong and adjust",
        "explanation": "Setbacks are learning opportunities that help you refine your strategy.",
    },
    {
        "question": "What maintains long-term motivation best?",
        "options": [
            "Rewards and incentives",
            "Connecting goals to your values",
            "Peer pressure",
            "Fear of failure",
        ],
        "correct_answer": "Connecting goals to your values",
        "explanation": "Value-aligned goals provide sustainable, intrinsic motivation.",
    },
    {
        "question": "How should you break down large goals?",
        "options": [
            "Monthly milestones only",
            "Small, actionable daily tasks",
            "Yearly phases",
            "Keep as one big goal",
        ],
        "correct_answer": "Small, actionable daily tasks",
        "explanation": "Daily tasks make large goals manageable and less overwhelming.",
    },
    {
        "question": "Best way to overcome procrastination?",
        "options": [
            "Wait for motivation",
            "Use the 2-minute rule",
            "Set harder deadlines",
            "Punish yourself",
        ],
        "correct_answer": "Use the 2-minute rule",
        "explanation": "Starting with just 2 minutes overcomes initial resistance.",
    },
)

_FEEDBACK_TIERS = (
    (90, "Outstanding! You have excellent knowledge about goal achievement. Keep applying these principles!"),
    (
        70,
        "Great job! You understand most key concepts. Review the areas you missed to strengthen "
        "your goal-setting skills.",
    ),
    (
        50,
        "Good effort! You're on the right track. Consider studying more about SMART goals and "
        "productivity techniques.",
    ),
)
_LOW_SCORE_FEEDBACK = (
    "Keep learning! Goal achievement is a skill that improves with practice and knowledge. "
    "Review the explanations and try again."
)


def fallback_quiz() -> QuizOut:
    return QuizOut(
        title=FALLBACK_QUIZ_TITLE,
        description=FALLBACK_QUIZ_DESCRIPTION,
        questions=[QuizQuestion(**q) for q in FALLBACK_QUESTIONS],
        source="fallback",
    )


def generate_quiz(goal_text: str | None, reflection_text: str | None) -> QuizOut:
    payload, meta = try_gemini_quiz(
        goal_text=goal_text or DEFAULT_GOAL_TEXT,
        reflection_text=reflection_text,
        question_count=QUIZ_QUESTION_COUNT,
    )
    if payload is None:
        if meta.get("attempted"):
            logger.warning("quiz generation fell back to the stock quiz: %s", meta.get("reason"))
        return fallback_quiz()
    return QuizOut(
        title=payload["title"],
        description=payload["description"],
        questions=[QuizQuestion(**q) for q in payload["questions"]],
        source="gemini",
    )


def quiz_feedback(percentage: int) -> str:
    for floor, message in _FEEDBACK_TIERS:
        if percentage >= floor:
            return message
    return _LOW_SCORE_FEEDBACK


def evaluate_quiz(correct: int, total: int) -> QuizEvaluation:
    if total <= 0:
        raise ValueError("quiz total must be positive")
    if correct < 0 or correct > total:
        raise ValueError("correct answers must be between 0 and total")
    percentage = round_half_up(100 * correct / total)
    return QuizEvaluation(
        score=correct,
        total=total,
        correct_answers=correct,
        incorrect_answers=total - correct,
        feedback=quiz_feedback(percentage),
    )
