from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class CancellationQuoteResponse(BaseModel):
    booking_id: str
    status: str
    fee_amount: Decimal
    fee_percentage: Decimal
    amount_paid: Decimal
    fee_difference: Decimal
    requires_payment: bool
    days_until_reserved_date: int
    tier: str
    total_booking_value: Decimal
    reason: str | None = None


class ReconciliationRunResponse(BaseModel):
    started_at: datetime
    counts: dict[str, int]
    failed_checks: list[str]


class SchedulerStatusResponse(BaseModel):
    running: bool
    cycle_in_progress: bool
    interval_seconds: float
