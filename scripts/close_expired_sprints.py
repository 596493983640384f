"""
End every sprint whose countdown has run out.
Run from project root: python -m scripts.close_expired_sprints

The API process sweeps on its own (EXPIRY_SWEEP_SECONDS); this is for
deployments that disable the in-process sweep and run it from cron instead.
Pass --dry-run to only list the overdue sprints.
"""
import argparse
import logging
import sys

# Add project root so studyroom imports work
sys.path.insert(0, ".")

from studyroom.core.database import SessionLocal
from studyroom.crud import sprint_session_crud
from studyroom.service.sprint_service import SprintService
from studyroom.utils.clock import utcnow

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Expire overdue sprints")
    parser.add_argument("--dry-run", action="store_true", help="List overdue sprints without ending them")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        if args.dry_run:
            overdue = sprint_session_crud.list_overdue(db, now=utcnow())
            for session in overdue:
                logger.info("Overdue: sprint %s in room %s (ended_at %s)", session.id, session.room_id, session.ended_at)
            logger.info("Dry run: %d overdue sprint(s)", len(overdue))
            return 0
        ended = SprintService(db).sweep_expired()
        logger.info("Expired %d sprint(s)", ended)
        return 0
    except Exception as e:
        logger.exception("Expiry sweep failed: %s", e)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
