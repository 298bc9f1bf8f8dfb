# expire_sessions.py
# Completes voting sessions whose voting duration has run out. Meant to be run
# periodically (cron, systemd timer).
import logging

from movieswipe.database import SessionLocal
from movieswipe.notifications import LoggingNotifier
from movieswipe import voting_logic


def main():
    db = SessionLocal()
    try:
        expired = voting_logic.expire_overdue_sessions(db, LoggingNotifier())
        logging.info(f"Session sweep complete, {len(expired)} sessions expired.")
    finally:
        db.close()
        logging.info("Database session closed.")


if __name__ == "__main__":
    main()
