from __future__ import annotations

import datetime as dt
import json
import logging
from pathlib import Path

from goal_coach_api.db import Base, SessionLocal, engine
from goal_coach_api.logging_config import configure_logging
from goal_coach_api.services.badges import refresh_student_projection
from goal_coach_api.services.store import commit_or_fail, list_all_students

ROOT = Path(__file__).resolve().parents[1]
REPORT_PATH = ROOT / "reports" / "projection_backfill.json"

logger = logging.getLogger("goal_coach_api.scripts.recompute_projections")


def _ensure_schema() -> None:
    # Safe on a fresh SQLite file.
    Base.metadata.create_all(bind=engine)


def main() -> int:
    configure_logging()
    _ensure_schema()

    students = []
    with SessionLocal() as db:
        for student in list_all_students(db):
            badges = refresh_student_projection(db, student)
            students.append(
                {
                    "student_id": student.id,
                    "consistency_score": student.consistency_score,
                    "streak": student.streak,
                    "badges": [badge.id for badge in badges],
                }
            )
        commit_or_fail(db, "recompute_projections")

    report = {
        "generated_at": dt.datetime.now(dt.timezone.utc).isoformat(),
        "status": "PASS",
        "students_recomputed": len(students),
        "students": students,
    }
    REPORT_PATH.parent.mkdir(parents=True, exist_ok=True)
    REPORT_PATH.write_text(json.dumps(report, indent=2), encoding="utf-8")
    logger.info("recomputed projections for %s students", len(students))
    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
