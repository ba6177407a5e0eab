import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from src.infrastructure.db.session import SessionLocal
from src.application.booking_service import BookingService
from src.application.scheduler import ReconciliationScheduler
from src.api.schemas.schemas import (
    CancellationQuoteResponse,
    ReconciliationRunResponse,
    SchedulerStatusResponse,
)
from src.domain.exceptions import (
    BookingNotFoundError,
    InvalidStateTransitionError,
    ReconciliationInProgressError,
)


router = APIRouter()
logger = logging.getLogger(__name__)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_scheduler(request: Request) -> ReconciliationScheduler:
    return request.app.state.scheduler


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get(
    "/bookings/{booking_id}/cancellation-quote",
    response_model=CancellationQuoteResponse,
)
def get_cancellation_quote(
    booking_id: str,
    db: Session = Depends(get_db),
):
    service = BookingService(db)

    try:
        quote = service.quote_cancellation(booking_id)
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except InvalidStateTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc

    return CancellationQuoteResponse(
        booking_id=quote.booking_id,
        status=quote.status.value,
        **asdict(quote.outcome),
    )


@router.post("/reconciliation/run", response_model=ReconciliationRunResponse)
def run_reconciliation(
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
):
    try:
        report = scheduler.run_now()
    except ReconciliationInProgressError as exc:
        logger.warning("Manual reconciliation rejected: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc

    return ReconciliationRunResponse(
        started_at=report.started_at,
        counts=report.counts,
        failed_checks=report.failed_checks,
    )


@router.get("/reconciliation/status", response_model=SchedulerStatusResponse)
def reconciliation_status(
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
):
    return SchedulerStatusResponse(
        running=scheduler.is_running,
        cycle_in_progress=scheduler.cycle_in_progress,
        interval_seconds=scheduler.interval_seconds,
    )
