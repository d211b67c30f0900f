"""Deliver pending notification outbox rows.

Transitions drain the outbox right after they commit; run this from cron to
retry rows whose delivery failed.

Usage:
  python scripts/drain_outbox.py --limit 500
"""
import argparse
import logging

from sitesupply_core.app.config import configure_logging
from sitesupply_core.app.db import SessionLocal, create_db_and_tables
from sitesupply_core.app.services.notification_service import OutboxRelay

logger = logging.getLogger("drain_outbox")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument('--limit', type=int, default=100)
    parser.add_argument('--max-attempts', type=int, default=None)
    args = parser.parse_args()

    configure_logging()
    create_db_and_tables()
    db = SessionLocal()
    try:
        result = OutboxRelay.drain(db, limit=args.limit, max_attempts=args.max_attempts)
        logger.info("Delivered %s, failed %s", result["delivered"], result["failed"])
    finally:
        db.close()


if __name__ == '__main__':
    main()
