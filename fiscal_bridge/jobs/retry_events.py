from __future__ import annotations

import logging

from fiscal_bridge.app.db.session import SessionLocal
from fiscal_bridge.app.logging_setup import setup_logging
from fiscal_bridge.services.fiscal_client import fiscal_client_for
from fiscal_bridge.services.retry import retry_failed_events

logger = logging.getLogger("fiscal_bridge.jobs.retry_events")


def run_retry():
    db = SessionLocal()
    try:
        outcomes = retry_failed_events(db, fiscal_client_for)
        for outcome in outcomes:
            logger.info("event %s -> %s %s", outcome.event_id, outcome.status, outcome.message or "")
        print(f"RETRY OK: {len(outcomes)} events")
    finally:
        db.close()


if __name__ == "__main__":
    setup_logging()
    run_retry()
