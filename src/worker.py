"""Standalone reconciliation worker.

    python -m src.worker

Runs the scheduler without the HTTP surface. SIGTERM / SIGINT stop the
timer and exit with status 0.
"""

import logging
import os
import time

from src.application.reconciliation_service import ReconciliationService
from src.application.scheduler import ReconciliationScheduler, install_signal_handlers
from src.infrastructure.db.models import Base
from src.infrastructure.db.session import engine, wait_for_db

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    wait_for_db()
    Base.metadata.create_all(bind=engine)

    service = ReconciliationService()
    scheduler = ReconciliationScheduler(service.run_cycle)
    scheduler.start()
    # Handlers go in after start(); stop() needs the lock start() holds.
    install_signal_handlers(scheduler)

    try:
        while scheduler.is_running:
            time.sleep(1.0)
    finally:
        service.notifications.shutdown(wait=True)


if __name__ == "__main__":
    main()
