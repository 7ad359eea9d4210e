from __future__ import annotations

import argparse
import datetime as dt
import json
from pathlib import Path

from goal_coach_api.db import Base, SessionLocal, engine
from goal_coach_api.logging_config import configure_logging
from goal_coach_api.services.cohort import build_dashboard, weekly_summary

ROOT = Path(__file__).resolve().parents[1]
OUT_PATH = ROOT / "reports" / "cohort_report.json"


def main() -> int:
    parser = argparse.ArgumentParser(description="Write the admin cohort dashboard as JSON.")
    parser.add_argument("--summary", action="store_true", help="include the weekly administrator summary")
    parser.add_argument("--out", type=Path, default=OUT_PATH)
    args = parser.parse_args()

    configure_logging()
    Base.metadata.create_all(bind=engine)

    with SessionLocal() as db:
        dashboard = build_dashboard(db)

    report = {
        "generated_at": dt.datetime.now(dt.timezone.utc).isoformat(),
        "dashboard": dashboard.model_dump(),
    }
    if args.summary:
        summary, source = weekly_summary(dashboard)
        report["summary"] = {"text": summary, "source": source}

    args.out.parent.mkdir(parents=True, exist_ok=True)
    args.out.write_text(json.dumps(report, indent=2), encoding="utf-8")
    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
