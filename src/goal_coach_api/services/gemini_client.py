from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

from ..errors import AnalyzerUnavailable


@dataclass(frozen=True)
class GeminiConfig:
    enabled: bool
    model: str
    api_key: str | None


def get_gemini_config() -> GeminiConfig:
    enabled = os.getenv("USE_GEMINI", "false").strip().lower() in {"1", "true", "yes"}
    model = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    api_key = os.getenv("GEMINI_API_KEY")
    return GeminiConfig(enabled=enabled, model=model, api_key=api_key)


def _validate_model(model: str) -> bool:
    return model.startswith("gemini-")


def extract_json(text: str) -> dict[str, Any] | None:
    candidates: list[str] = [text.strip()]
    if "```" in text:
        stripped = text.strip()
        if stripped.startswith("```"):
            first_nl = stripped.find("\n")
            last_fence = stripped.rfind("```")
            if first_nl != -1 and last_fence != -1 and last_fence > first_nl:
                candidates.append(stripped[first_nl + 1:last_fence].strip())

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        if not candidate:
            continue
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _generate_text(cfg: GeminiConfig, prompt: str) -> str:
    if not cfg.enabled:
        raise AnalyzerUnavailable("disabled")
    if not cfg.api_key:
        raise AnalyzerUnavailable("missing_api_key")
    if not _validate_model(cfg.model):
        raise AnalyzerUnavailable("invalid_model")

    try:
        from google import genai  # type: ignore
    except ImportError as exc:
        raise AnalyzerUnavailable("sdk_unavailable") from exc

    try:
        client = genai.Client(api_key=cfg.api_key)
        response = client.models.generate_content(model=cfg.model, contents=prompt)
        text = (response.text or "").strip()
    except Exception as exc:  # noqa: BLE001
        raise AnalyzerUnavailable(f"request_error:{str(exc)[:160]}") from exc

    if not text:
        raise AnalyzerUnavailable("empty_response")
    return text


def _generate_json(cfg: GeminiConfig, prompt: dict[str, Any]) -> dict[str, Any]:
    text = _generate_text(cfg, json.dumps(prompt))
    parsed = extract_json(text)
    if parsed is None:
        raise AnalyzerUnavailable("non_json_response")
    return parsed


def _rating_1_5(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        numeric = int(value)
    except (TypeError, ValueError):
        return None
    if numeric != value and not isinstance(value, str):
        # fractional ratings are rejected, not truncated
        return None
    if 1 <= numeric <= 5:
        return numeric
    return None


_SMART_KEYS = {
    "specific": ("specific",),
    "measurable": ("measurable",),
    "achievable": ("achievable",),
    "realistic": ("realistic",),
    "time_bound": ("time_bound", "timeBound"),
}


def _normalize_smart_payload(parsed: dict[str, Any]) -> dict[str, Any] | None:
    raw_score = parsed.get("score")
    if not isinstance(raw_score, dict):
        return None

    score: dict[str, int] = {}
    for field, aliases in _SMART_KEYS.items():
        rating = None
        for alias in aliases:
            if alias in raw_score:
                rating = _rating_1_5(raw_score[alias])
                break
        if rating is None:
            return None
        score[field] = rating

    feedback = parsed.get("feedback")
    if not isinstance(feedback, str) or not feedback.strip():
        feedback = "No feedback provided."
    return {"score": score, "feedback": feedback.strip()}


def try_gemini_smart_score(*, goal_text: str) -> tuple[dict[str, Any] | None, dict[str, Any]]:
    """
    Rate a goal 1-5 on each SMART criterion.
    Returns (payload, metadata); payload is None when the caller should use its fallback.
    """
    cfg = get_gemini_config()
    prompt = {
        "task": (
            "Analyze the following student goal and rate it on a scale of 1 to 5 for each SMART "
            "principle (Specific, Measurable, Achievable, Realistic, Time-bound). Provide brief, "
            "constructive feedback. Return JSON only."
        ),
        "goal": goal_text,
        "response_schema": {
            "score": {
                "specific": "int 1..5",
                "measurable": "int 1..5",
                "achievable": "int 1..5",
                "realistic": "int 1..5",
                "time_bound": "int 1..5",
            },
            "feedback": "string",
        },
    }
    try:
        parsed = _generate_json(cfg, prompt)
    except AnalyzerUnavailable as exc:
        return None, {"attempted": cfg.enabled, "model": cfg.model if cfg.enabled else None, "reason": exc.reason}

    normalized = _normalize_smart_payload(parsed)
    if normalized is None:
        return None, {"attempted": True, "model": cfg.model, "reason": "invalid_payload"}
    return normalized, {"attempted": True, "model": cfg.model, "reason": "ok"}


def _normalize_reflection_payload(parsed: dict[str, Any]) -> dict[str, Any] | None:
    is_valid = parsed.get("is_valid", parsed.get("isValid"))
    if not isinstance(is_valid, bool):
        return None
    depth = _rating_1_5(parsed.get("depth"))
    if depth is None:
        return None

    confidence = str(parsed.get("confidence_level", parsed.get("confidenceLevel", ""))).strip().lower()
    if confidence not in {"low", "medium", "high"}:
        confidence = "low"

    feedback = parsed.get("feedback")
    if not isinstance(feedback, str):
        feedback = ""

    suggestions: list[str] = []
    raw_suggestions = parsed.get("suggestions")
    if isinstance(raw_suggestions, list):
        for item in raw_suggestions:
            if isinstance(item, str) and item.strip():
                suggestions.append(item.strip())

    return {
        "is_valid": is_valid,
        "depth": depth,
        "confidence_level": confidence,
        "feedback": feedback.strip(),
        "suggestions": suggestions[:5],
    }


def try_gemini_reflection_analysis(
    *,
    reflection_text: str,
    goal_text: str,
) -> tuple[dict[str, Any] | None, dict[str, Any]]:
    cfg = get_gemini_config()
    prompt = {
        "task": (
            "Analyze this student reflection for a goal. Judge validity (a detailed, honest, "
            "goal-related reflection of at least 50 words, not generic), rate depth 1-5, classify "
            "confidence as HIGH, MEDIUM or LOW, and give feedback with concrete suggestions. "
            "Return JSON only."
        ),
        "goal": goal_text,
        "reflection": reflection_text,
        "response_schema": {
            "is_valid": "bool",
            "depth": "int 1..5",
            "confidence_level": "HIGH|MEDIUM|LOW",
            "feedback": "string",
            "suggestions": ["string"],
        },
    }
    try:
        parsed = _generate_json(cfg, prompt)
    except AnalyzerUnavailable as exc:
        return None, {"attempted": cfg.enabled, "model": cfg.model if cfg.enabled else None, "reason": exc.reason}

    normalized = _normalize_reflection_payload(parsed)
    if normalized is None:
        return None, {"attempted": True, "model": cfg.model, "reason": "invalid_payload"}
    return normalized, {"attempted": True, "model": cfg.model, "reason": "ok"}


def _normalize_quiz_payload(parsed: dict[str, Any]) -> dict[str, Any] | None:
    raw_questions = parsed.get("questions")
    if not isinstance(raw_questions, list):
        return None

    questions: list[dict[str, Any]] = []
    for item in raw_questions:
        if not isinstance(item, dict):
            continue
        question = item.get("question")
        options = item.get("options")
        correct = item.get("correct_answer", item.get("correctAnswer"))
        if not isinstance(question, str) or not isinstance(options, list) or not isinstance(correct, str):
            continue
        options = [opt for opt in options if isinstance(opt, str)]
        if len(options) < 2 or correct not in options:
            continue
        explanation = item.get("explanation")
        questions.append(
            {
                "question": question,
                "options": options,
                "correct_answer": correct,
                "explanation": explanation if isinstance(explanation, str) else None,
            }
        )
    if not questions:
        return None

    title = parsed.get("title")
    description = parsed.get("description")
    return {
        "title": title if isinstance(title, str) and title.strip() else "Personalized Quiz",
        "description": description if isinstance(description, str) else "",
        "questions": questions,
    }


def try_gemini_quiz(
    *,
    goal_text: str,
    reflection_text: str | None,
    question_count: int,
) -> tuple[dict[str, Any] | None, dict[str, Any]]:
    cfg = get_gemini_config()
    prompt = {
        "task": (
            f"Create a personalized {question_count}-question multiple-choice quiz tailored to this "
            "student's goal and reflection. Each question has 4 options with exactly one correct "
            "answer and an explanation. Return JSON only."
        ),
        "goal": goal_text,
        "reflection": reflection_text,
        "response_schema": {
            "title": "string",
            "description": "string",
            "questions": [
                {
                    "question": "string",
                    "options": ["string"],
                    "correct_answer": "string (one of options)",
                    "explanation": "string",
                }
            ],
        },
    }
    try:
        parsed = _generate_json(cfg, prompt)
    except AnalyzerUnavailable as exc:
        return None, {"attempted": cfg.enabled, "model": cfg.model if cfg.enabled else None, "reason": exc.reason}

    normalized = _normalize_quiz_payload(parsed)
    if normalized is None:
        return None, {"attempted": True, "model": cfg.model, "reason": "invalid_payload"}
    return normalized, {"attempted": True, "model": cfg.model, "reason": "ok"}


def try_gemini_weekly_summary(*, dashboard: dict[str, Any]) -> tuple[str | None, dict[str, Any]]:
    cfg = get_gemini_config()
    at_risk = ", ".join(f"{s['name']} ({s['reason']})" for s in dashboard.get("at_risk_students", []))
    prompt = (
        "You are an expert educational analyst. Based on the following weekly data for a student "
        "cohort, provide a concise, actionable summary (3-4 sentences). Highlight overall trends, "
        "identify potential areas of concern, and suggest one specific action for the administrator.\n\n"
        f"Key Performance Indicators: {json.dumps(dashboard.get('kpis', {}))}\n"
        f"At-Risk Students: {at_risk or 'none'}\n"
        f"Engagement Trend: {json.dumps(dashboard.get('engagement_data', []))}"
    )
    try:
        text = _generate_text(cfg, prompt)
    except AnalyzerUnavailable as exc:
        return None, {"attempted": cfg.enabled, "model": cfg.model if cfg.enabled else None, "reason": exc.reason}
    return text, {"attempted": True, "model": cfg.model, "reason": "ok"}
