# scripts/complete_sessions_tick.py
"""
Completion "tick" script.

Marks every ASSIGNED / APPROVED session request whose scheduled end time has
passed as COMPLETED. Meant to run periodically (cron, Kubernetes CronJob);
each run is one synchronous pass.
"""

from __future__ import annotations

import argparse
import logging
from datetime import datetime

from tutor_sessions.db.session import SessionLocal, engine
from tutor_sessions.models import Base
from tutor_sessions.services.calendar_service import DisabledCalendarService
from tutor_sessions.services.session_request_service import complete_elapsed_sessions

logger = logging.getLogger("complete_sessions_tick")


def run_once(now: datetime | None = None) -> list[str]:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        # Completion has no calendar side effects
        completed = complete_elapsed_sessions(db, DisabledCalendarService(), now=now)
        logger.info("Completed %d session request(s)", len(completed))
        return completed
    finally:
        db.close()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--now",
        type=datetime.fromisoformat,
        default=None,
        help="Reference time in UTC (ISO format); defaults to the current time",
    )
    args = parser.parse_args()
    for request_id in run_once(now=args.now):
        print(f"[complete_sessions_tick] completed {request_id}")


if __name__ == "__main__":
    main()
