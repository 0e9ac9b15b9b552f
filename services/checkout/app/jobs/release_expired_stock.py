"""Release stock held by expired cart reservations.

Meant to be run from cron, e.g. every minute:

    release-expired-stock
"""
import sys

from shared.core import setup_logging, get_logger
from app.core_settings import get_settings
from app.infrastructure.db import SessionLocal
from app.application.reaper import ReservationReaper

logger = get_logger(__name__)

def main() -> int:
    settings = get_settings()
    setup_logging(service_name="checkout-reaper", level=settings.LOG_LEVEL)
    db = SessionLocal()
    try:
        reclaimed = ReservationReaper(db).run()
    except Exception:
        logger.error("Reservation sweep aborted", exc_info=True)
        return 1
    finally:
        db.close()
    logger.info(f"Job completed, {reclaimed} reservation(s) reclaimed")
    return 0

if __name__ == "__main__":
    sys.exit(main())
