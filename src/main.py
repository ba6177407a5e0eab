import logging
import os

from fastapi import FastAPI

from src.api.routes.routes import router
from src.application.reconciliation_service import ReconciliationService
from src.application.scheduler import ReconciliationScheduler
from src.infrastructure.db.session import engine, wait_for_db
from src.infrastructure.db.models import Base

app = FastAPI(title="Wedding Booking Lifecycle Engine")

app.include_router(router)
logger = logging.getLogger(__name__)

SCHEDULER_ENABLED = os.getenv("RECONCILIATION_SCHEDULER_ENABLED", "true").lower() == "true"

reconciliation_service = ReconciliationService()
app.state.scheduler = ReconciliationScheduler(reconciliation_service.run_cycle)


@app.on_event("startup")
def on_startup() -> None:
    wait_for_db()
    Base.metadata.create_all(bind=engine)
    if SCHEDULER_ENABLED:
        app.state.scheduler.start()
    else:
        logger.info("Reconciliation scheduler disabled for this process.")


@app.on_event("shutdown")
def on_shutdown() -> None:
    app.state.scheduler.stop()
    reconciliation_service.notifications.shutdown(wait=False)
