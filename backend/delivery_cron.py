"""Deliver due daily data plans. Run from cron, e.g. hourly:

    0 * * * * cd /srv/vtuhub/backend && python delivery_cron.py >> /var/log/vtuhub/delivery-cron.log 2>&1

Exit codes: 0 on a normal run, nothing due, or another run holding the lock;
1 when the app cannot start or the database is unreachable.
"""
import logging
import sys

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger("vtuhub.delivery_cron")


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")

    from vtuhub import create_app
    from vtuhub.extensions import db
    from vtuhub.jobs.daily_data_runner import run_daily_deliveries

    try:
        app = create_app()
    except Exception:
        logger.exception("could not start application")
        return 1

    with app.app_context():
        try:
            db.session.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("database unreachable")
            return 1
        try:
            summary = run_daily_deliveries()
        except SQLAlchemyError:
            logger.exception("daily data run aborted on database error")
            return 1

    logger.info("done: %s", summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
