from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from goal_coach_api.services import reflection_gate, smart_scoring
from goal_coach_api.services.store import date_key

ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}
LONG_REFLECTION = (
    "Today I worked through the second chapter of the statistics book and finished all of the "
    "practice problems on variance. The hardest part was remembering when to divide by n minus one, "
    "so I wrote a short summary card for it. Tomorrow I want to start earlier in the evening because "
    "I lost focus after nine and rushed the last two exercises."
)


def _as(student_id: str) -> dict[str, str]:
    return {"X-User-Id": student_id, "X-User-Role": "student"}


def _create_student(client: TestClient, student_id: str, name: str = "Sam") -> dict:
    resp = client.post("/v1/students", json={"name": name}, headers=_as(student_id))
    assert resp.status_code == 201
    return resp.json()


def _fake_smart(score: dict[str, int], feedback: str = "Stubbed feedback."):
    def _fake(**_: object) -> tuple[dict[str, object], dict[str, object]]:
        return {"score": score, "feedback": feedback}, {"attempted": True, "model": "gemini-2.5-flash", "reason": "ok"}

    return _fake


def _fake_reflection(calls: list[dict[str, object]], *, is_valid: bool = True, depth: int = 4):
    def _fake(**kwargs: object) -> tuple[dict[str, object], dict[str, object]]:
        calls.append(kwargs)
        return (
            {
                "is_valid": is_valid,
                "depth": depth,
                "confidence_level": "medium",
                "feedback": "Specific and honest." if is_valid else "Too vague.",
                "suggestions": [] if is_valid else ["Describe one concrete obstacle."],
            },
            {"attempted": True, "model": "gemini-2.5-flash", "reason": "ok"},
        )

    return _fake


def _set_goal(client: TestClient, student_id: str, text: str = "Finish 20 statistics exercises by 8pm") -> dict:
    analysis = client.post(f"/v1/students/{student_id}/goals/analyze", json={"text": text}, headers=_as(student_id))
    assert analysis.status_code == 200
    entry = client.post(
        f"/v1/students/{student_id}/goals",
        json={"analysis_id": analysis.json()["id"]},
        headers=_as(student_id),
    )
    assert entry.status_code == 201
    return entry.json()


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_session_headers_required(client: TestClient) -> None:
    assert client.get("/v1/students/s1").status_code == 401
    assert client.get("/v1/students/s1", headers={"X-User-Id": "s1", "X-User-Role": "guest"}).status_code == 401


def test_students_cannot_read_each_other(client: TestClient) -> None:
    _create_student(client, "s1")
    _create_student(client, "s2", name="Kai")

    resp = client.get("/v1/students/s1", headers=_as("s2"))
    assert resp.status_code == 403
    assert resp.json()["error"] == "access_denied"

    assert client.get("/v1/students/s1", headers=ADMIN).status_code == 200
    assert client.get("/v1/admin/dashboard", headers=_as("s1")).status_code == 403


def test_unknown_student(client: TestClient) -> None:
    resp = client.get("/v1/students/ghost", headers=ADMIN)
    assert resp.status_code == 404
    assert resp.json()["error"] == "student_not_found"


def test_goal_flow_with_fallback_scorer(client: TestClient) -> None:
    student = _create_student(client, "s1")
    assert student["entries"] == []
    assert student["progress"] is None

    analysis_resp = client.post(
        "/v1/students/s1/goals/analyze",
        json={"text": "Finish 20 statistics exercises by 8pm"},
        headers=_as("s1"),
    )
    assert analysis_resp.status_code == 200
    analysis = analysis_resp.json()
    assert analysis["scorer_source"] == "fallback"
    assert analysis["provisional"] is True
    assert analysis["percentage"] == 64
    assert analysis["required_threshold"] == 40
    assert analysis["meets_threshold"] is True
    assert analysis["progress"]["goals_analyzed"] == 1
    assert analysis["progress"]["average_smart_score"] == 64

    entry_resp = client.post("/v1/students/s1/goals", json={"analysis_id": analysis["id"]}, headers=_as("s1"))
    assert entry_resp.status_code == 201
    entry = entry_resp.json()
    assert entry["date_key"] == date_key()
    assert entry["goal"]["smart_percentage"] == 64
    assert entry["goal"]["completed"] is False

    complete_resp = client.post(f"/v1/students/s1/entries/{date_key()}/complete", headers=_as("s1"))
    assert complete_resp.status_code == 200
    assert complete_resp.json()["goal"]["completed"] is True

    student = client.get("/v1/students/s1", headers=_as("s1")).json()
    assert student["consistency_score"] == 100
    assert student["streak"] == 1
    assert len(student["entries"]) == 1
    assert student["progress"]["current_smart_threshold"] == 40
    assert student["progress"]["message"].startswith("Keep improving!")


def test_goal_below_threshold_is_not_persisted(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        smart_scoring,
        "try_gemini_smart_score",
        _fake_smart({"specific": 1, "measurable": 2, "achievable": 2, "realistic": 2, "time_bound": 1}),
    )
    _create_student(client, "s1")

    analysis = client.post("/v1/students/s1/goals/analyze", json={"text": "Study more"}, headers=_as("s1")).json()
    assert analysis["scorer_source"] == "gemini"
    assert analysis["percentage"] == 32
    assert analysis["meets_threshold"] is False
    assert analysis["progress"]["goals_analyzed"] == 1

    resp = client.post("/v1/students/s1/goals", json={"analysis_id": analysis["id"]}, headers=_as("s1"))
    assert resp.status_code == 422
    body = resp.json()
    assert body["error"] == "goal_below_threshold"
    assert body["detail"] == {"percentage": 32, "required_threshold": 40}

    student = client.get("/v1/students/s1", headers=_as("s1")).json()
    assert student["entries"] == []


def test_analysis_belongs_to_student(client: TestClient) -> None:
    _create_student(client, "s1")
    _create_student(client, "s2")
    analysis = client.post("/v1/students/s1/goals/analyze", json={"text": "Plan week"}, headers=_as("s1")).json()

    resp = client.post("/v1/students/s2/goals", json={"analysis_id": analysis["id"]}, headers=_as("s2"))
    assert resp.status_code == 404
    assert resp.json()["error"] == "analysis_not_found"


def test_blank_goal_text_is_rejected_before_scoring(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, object]] = []

    def _fake(**kwargs: object) -> tuple[dict[str, object], dict[str, object]]:
        calls.append(kwargs)
        return {"score": {}, "feedback": ""}, {"attempted": True, "model": "gemini-2.5-flash", "reason": "ok"}

    monkeypatch.setattr(smart_scoring, "try_gemini_smart_score", _fake)
    _create_student(client, "s1")

    resp = client.post("/v1/students/s1/goals/analyze", json={"text": " \t\n "}, headers=_as("s1"))
    assert resp.status_code == 422
    assert resp.json()["detail"] == "Goal text must not be blank"
    assert calls == []

    assert client.get("/v1/students/s1/progress", headers=_as("s1")).json()["goals_analyzed"] == 0
    assert client.get("/v1/students/s1", headers=_as("s1")).json()["entries"] == []


def test_goal_text_is_stored_stripped(client: TestClient) -> None:
    _create_student(client, "s1")
    entry = _set_goal(client, "s1", text="  Finish 20 statistics exercises by 8pm \n")
    assert entry["goal"]["text"] == "Finish 20 statistics exercises by 8pm"


def test_analysis_commits_only_once(client: TestClient) -> None:
    _create_student(client, "s1")
    analysis = client.post(
        "/v1/students/s1/goals/analyze",
        json={"text": "Finish 20 statistics exercises by 8pm"},
        headers=_as("s1"),
    ).json()

    first = client.post("/v1/students/s1/goals", json={"analysis_id": analysis["id"]}, headers=_as("s1"))
    assert first.status_code == 201

    again = client.post("/v1/students/s1/goals", json={"analysis_id": analysis["id"]}, headers=_as("s1"))
    assert again.status_code == 409
    body = again.json()
    assert body["error"] == "analysis_already_used"
    assert body["detail"] == {"analysis_id": analysis["id"], "reason": "consumed"}

    # a fresh analysis can replace today's goal
    _set_goal(client, "s1", text="Read chapter 3 and summarise it in 5 bullet points by 6pm")
    entries = client.get("/v1/students/s1", headers=_as("s1")).json()["entries"]
    assert len(entries) == 1
    assert entries[0]["goal"]["text"] == "Read chapter 3 and summarise it in 5 bullet points by 6pm"


def test_analysis_from_an_earlier_day_is_rejected(client: TestClient) -> None:
    from goal_coach_api.db import SessionLocal
    from goal_coach_api.models import GoalAnalysis

    _create_student(client, "s1")
    analysis = client.post(
        "/v1/students/s1/goals/analyze",
        json={"text": "Finish 20 statistics exercises by 8pm"},
        headers=_as("s1"),
    ).json()

    with SessionLocal() as db:
        row = db.get(GoalAnalysis, analysis["id"])
        row.date_key = "2000-01-01"
        db.commit()

    resp = client.post("/v1/students/s1/goals", json={"analysis_id": analysis["id"]}, headers=_as("s1"))
    assert resp.status_code == 409
    assert resp.json()["detail"]["reason"] == "stale"
    assert client.get("/v1/students/s1", headers=_as("s1")).json()["entries"] == []


def test_complete_requires_existing_entry(client: TestClient) -> None:
    _create_student(client, "s1")
    assert client.post("/v1/students/s1/entries/2026-01-05/complete", headers=_as("s1")).status_code == 404
    assert client.post("/v1/students/s1/entries/not-a-date/complete", headers=_as("s1")).status_code == 422


def test_short_reflection_rejected_without_analyzer_call(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, object]] = []
    monkeypatch.setattr(reflection_gate, "try_gemini_reflection_analysis", _fake_reflection(calls))
    _create_student(client, "s1")
    _set_goal(client, "s1")

    text = " ".join(["focus"] * 49)
    resp = client.post("/v1/students/s1/reflections", json={"text": text}, headers=_as("s1"))
    assert resp.status_code == 422
    body = resp.json()
    assert body["error"] == "reflection_invalid"
    assert body["detail"]["word_count"] == 49
    assert calls == []


def test_reflection_accepted_and_merged(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, object]] = []
    monkeypatch.setattr(reflection_gate, "try_gemini_reflection_analysis", _fake_reflection(calls, depth=5))
    _create_student(client, "s1")
    _set_goal(client, "s1", text="Finish 20 statistics exercises by 8pm")

    preview = client.post(
        "/v1/students/s1/reflections",
        json={"text": LONG_REFLECTION, "persist": False},
        headers=_as("s1"),
    )
    assert preview.status_code == 200
    assert preview.json()["persisted"] is False
    entry = client.get("/v1/students/s1", headers=_as("s1")).json()["entries"][0]
    assert entry["reflection"] is None

    resp = client.post("/v1/students/s1/reflections", json={"text": LONG_REFLECTION}, headers=_as("s1"))
    assert resp.status_code == 200
    body = resp.json()
    assert body["is_valid"] is True
    assert body["persisted"] is True
    assert body["provisional"] is False
    assert calls[-1]["goal_text"] == "Finish 20 statistics exercises by 8pm"

    entry = client.get("/v1/students/s1", headers=_as("s1")).json()["entries"][0]
    assert entry["reflection"] == {"text": LONG_REFLECTION, "depth": 5, "confidence_level": "medium"}
    # goal fields survive the merge
    assert entry["goal"]["smart_percentage"] == 64


def test_invalid_reflection_surfaces_suggestions(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, object]] = []
    monkeypatch.setattr(reflection_gate, "try_gemini_reflection_analysis", _fake_reflection(calls, is_valid=False))
    _create_student(client, "s1")
    _set_goal(client, "s1")

    resp = client.post("/v1/students/s1/reflections", json={"text": LONG_REFLECTION}, headers=_as("s1"))
    assert resp.status_code == 422
    assert resp.json()["message"] == "Too vague."
    assert resp.json()["detail"]["suggestions"] == ["Describe one concrete obstacle."]


def test_reflection_needs_a_goal_today(client: TestClient) -> None:
    _create_student(client, "s1")
    resp = client.post("/v1/students/s1/reflections", json={"text": LONG_REFLECTION}, headers=_as("s1"))
    assert resp.status_code == 404
    assert resp.json()["error"] == "entry_not_found"


def test_quiz_and_results(client: TestClient) -> None:
    _create_student(client, "s1")
    _set_goal(client, "s1")

    quiz = client.post("/v1/students/s1/quizzes", json={}, headers=_as("s1"))
    assert quiz.status_code == 200
    assert quiz.json()["source"] == "fallback"
    assert len(quiz.json()["questions"]) == 6

    assert client.post(
        "/v1/students/s1/quiz-results", json={"correct": 7, "total": 6}, headers=_as("s1")
    ).status_code == 422

    resp = client.post("/v1/students/s1/quiz-results", json={"correct": 6, "total": 6}, headers=_as("s1"))
    assert resp.status_code == 200
    evaluation = resp.json()["quiz_evaluation"]
    assert evaluation["score"] == 6
    assert evaluation["incorrect_answers"] == 0
    assert evaluation["feedback"].startswith("Outstanding!")

    badges = client.get("/v1/students/s1/badges", headers=_as("s1")).json()
    assert [b["id"] for b in badges] == ["quiz-whiz"]


def test_progress_before_first_analysis(client: TestClient) -> None:
    _create_student(client, "s1")
    resp = client.get("/v1/students/s1/progress", headers=_as("s1"))
    assert resp.status_code == 200
    assert resp.json()["current_smart_threshold"] == 40
    assert resp.json()["goals_analyzed"] == 0


def test_failed_commit_leaves_progress_untouched(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _create_student(client, "s1")

    def _failing_commit(self: Session) -> None:
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    with monkeypatch.context() as m:
        m.setattr(Session, "commit", _failing_commit)
        resp = client.post("/v1/students/s1/goals/analyze", json={"text": "Plan week"}, headers=_as("s1"))
    assert resp.status_code == 503
    assert resp.json()["error"] == "persistence_write_failure"

    progress = client.get("/v1/students/s1/progress", headers=_as("s1")).json()
    assert progress["goals_analyzed"] == 0


def test_admin_dashboard_and_summary(client: TestClient) -> None:
    _create_student(client, "s1", name="Ana")
    _create_student(client, "s2", name="Ben")
    _set_goal(client, "s1")
    client.post(f"/v1/students/s1/entries/{date_key()}/complete", headers=_as("s1"))
    _set_goal(client, "s2")

    resp = client.get("/v1/admin/dashboard", headers=ADMIN)
    assert resp.status_code == 200
    dashboard = resp.json()
    assert dashboard["kpis"]["goal_completion"] == 50
    assert dashboard["kpis"]["avg_reflection_depth"] == 0.0
    assert [s["id"] for s in dashboard["students"]] == ["s1", "s2"]
    reasons = {s["id"]: s["reason"] for s in dashboard["at_risk_students"]}
    assert reasons == {"s1": "Low reflection depth", "s2": "Low reflection depth"}
    assert len(dashboard["engagement_data"]) == 4

    summary = client.get("/v1/admin/summary", headers=ADMIN)
    assert summary.status_code == 200
    assert summary.json()["source"] == "fallback"
    assert "Ana (Low reflection depth)" in summary.json()["summary"]


def test_configure_logging_is_idempotent() -> None:
    from goal_coach_api.logging_config import configure_logging

    logger = configure_logging("debug")
    configure_logging("debug")
    assert len(logger.handlers) == 1
    assert logger.level == logging.DEBUG
    configure_logging("info")
