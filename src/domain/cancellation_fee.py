# src/domain/cancellation_fee.py
"""Cancellation fee calculation.

Pure functions only: callers pass plain values (or store records through
``calculate_for_booking``) and get back a ``CancellationOutcome``. Nothing in
here touches the database or the clock unless ``now`` is omitted.

Tier labels follow the vendor listing format:

    ">90"   days > 90
    "30-90" 30 <= days <= 90
    "<7"    0 <= days < 7

Tiers are matched from the most distant lower bound downwards and the first
tier whose lower bound is reached wins, so lower bounds are inclusive. With
``{"30-90", "7-30"}`` a booking exactly 30 days out pays the "30-90" rate.
"""

import json
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, List, Mapping, Optional, Union

from src.domain.exceptions import InvalidFeeTierError
from src.domain.state_machine import BookingStatus, PaymentType

logger = logging.getLogger(__name__)

DEFAULT_FEE_TIERS: Mapping[str, float] = {
    ">90": 0.0,
    "60-90": 0.30,
    "30-59": 0.50,
    "7-29": 0.70,
    "<7": 1.0,
}

PAST_TIER = "past"
UNCOVERED_TIER = "uncovered"

_CENT = Decimal("0.01")
_ZERO = Decimal("0")
_SECONDS_PER_DAY = 24 * 60 * 60

RawFeeTiers = Union[str, Mapping[str, Any], None]


@dataclass(frozen=True)
class FeeTier:
    label: str
    lower_bound_days: int
    rate: Decimal


@dataclass(frozen=True)
class CancellationOutcome:
    fee_amount: Decimal
    fee_percentage: Decimal
    amount_paid: Decimal
    fee_difference: Decimal
    requires_payment: bool
    days_until_reserved_date: int
    tier: str
    total_booking_value: Decimal
    reason: Optional[str] = None


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _as_utc(moment: Union[date, datetime]) -> datetime:
    if not isinstance(moment, datetime):
        moment = datetime.combine(moment, time.min)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _lower_bound(label: str) -> int:
    text = label.strip()
    try:
        if text.startswith(">"):
            return int(text[1:]) + 1
        if text.startswith("<"):
            upper = int(text[1:])
            if upper <= 0:
                raise InvalidFeeTierError(f"Empty fee tier range: {label!r}")
            return 0
        low, sep, high = text.partition("-")
        if sep:
            low_days, high_days = int(low), int(high)
            if low_days < 0 or low_days > high_days:
                raise InvalidFeeTierError(f"Invalid fee tier range: {label!r}")
            return low_days
    except ValueError as exc:
        raise InvalidFeeTierError(f"Invalid fee tier label: {label!r}") from exc

    raise InvalidFeeTierError(f"Invalid fee tier label: {label!r}")


def parse_fee_tiers(raw: Union[str, Mapping[str, Any]]) -> List[FeeTier]:
    """
    Turns a listing's fee schedule into tiers ordered from the most distant
    lower bound to the closest. Rates are forced non-decreasing as the
    reserved date approaches.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidFeeTierError("Fee schedule is not valid JSON") from exc

    if not isinstance(raw, Mapping) or not raw:
        raise InvalidFeeTierError("Fee schedule must be a non-empty mapping")

    tiers = []
    for label, rate in raw.items():
        try:
            rate_value = _to_decimal(rate)
        except (InvalidOperation, ValueError) as exc:
            raise InvalidFeeTierError(f"Invalid rate for tier {label!r}: {rate!r}") from exc
        if not rate_value.is_finite() or not _ZERO <= rate_value <= 1:
            raise InvalidFeeTierError(f"Rate for tier {label!r} must be within [0, 1]")
        tiers.append(FeeTier(str(label), _lower_bound(str(label)), rate_value))

    tiers.sort(key=lambda tier: tier.lower_bound_days, reverse=True)

    bounds = [tier.lower_bound_days for tier in tiers]
    if len(set(bounds)) != len(bounds):
        raise InvalidFeeTierError("Fee tiers share a lower bound")

    normalized = []
    floor = _ZERO
    for tier in tiers:
        floor = max(floor, tier.rate)
        normalized.append(FeeTier(tier.label, tier.lower_bound_days, floor))
    return normalized


def resolve_fee_tiers(raw: RawFeeTiers) -> List[FeeTier]:
    if raw is None:
        return parse_fee_tiers(DEFAULT_FEE_TIERS)
    try:
        return parse_fee_tiers(raw)
    except InvalidFeeTierError:
        logger.warning("Unusable cancellation fee schedule %r, using defaults", raw, exc_info=True)
        return parse_fee_tiers(DEFAULT_FEE_TIERS)


def days_until(reserved_date: Union[date, datetime], now: datetime) -> int:
    delta = _as_utc(reserved_date) - _as_utc(now)
    return math.ceil(delta.total_seconds() / _SECONDS_PER_DAY)


def select_tier(tiers: Iterable[FeeTier], days: int) -> Optional[FeeTier]:
    if days < 0:
        return None
    for tier in tiers:
        if days >= tier.lower_bound_days:
            return tier
    return None


def sum_amounts(values: Iterable[Any]) -> Decimal:
    return sum((_to_decimal(value) for value in values), _ZERO)


def compute_cancellation_outcome(
    status: BookingStatus,
    reserved_date: Union[date, datetime],
    total_booking_value: Any,
    amount_paid: Any,
    fee_tiers: RawFeeTiers = None,
    *,
    has_deposit_payment: bool = False,
    now: Optional[datetime] = None,
) -> CancellationOutcome:
    now = now or datetime.now(timezone.utc)
    total = _to_decimal(total_booking_value)
    paid = _to_decimal(amount_paid)
    days = days_until(reserved_date, now)

    if status == BookingStatus.PENDING_VENDOR_CONFIRMATION:
        return _no_penalty(
            total, paid, days, "pending_confirmation",
            "No penalty: Booking request not yet confirmed by vendor",
        )
    if status == BookingStatus.PENDING_DEPOSIT_PAYMENT and not has_deposit_payment:
        return _no_penalty(
            total, paid, days, "no_payment",
            "No penalty: Booking cancelled before any payment was made",
        )

    tier = select_tier(resolve_fee_tiers(fee_tiers), days)
    if tier is None:
        fee_percentage = _ZERO
        tier_label = PAST_TIER if days < 0 else UNCOVERED_TIER
    else:
        fee_percentage = tier.rate
        tier_label = tier.label

    fee_amount = (total * fee_percentage).quantize(_CENT, rounding=ROUND_HALF_UP)
    fee_difference = max(_ZERO, fee_amount - paid)

    return CancellationOutcome(
        fee_amount=fee_amount,
        fee_percentage=fee_percentage,
        amount_paid=paid,
        fee_difference=fee_difference,
        requires_payment=fee_difference > 0,
        days_until_reserved_date=days,
        tier=tier_label,
        total_booking_value=total,
    )


def _no_penalty(
    total: Decimal,
    paid: Decimal,
    days: int,
    tier: str,
    reason: str,
) -> CancellationOutcome:
    return CancellationOutcome(
        fee_amount=_ZERO.quantize(_CENT),
        fee_percentage=_ZERO,
        amount_paid=paid,
        fee_difference=_ZERO.quantize(_CENT),
        requires_payment=False,
        days_until_reserved_date=days,
        tier=tier,
        total_booking_value=total,
        reason=reason,
    )


def calculate_for_booking(booking, service_listing=None, now: Optional[datetime] = None) -> CancellationOutcome:
    """Reads totals and payments off a booking record and runs the calculator."""
    payments = list(booking.payments)
    return compute_cancellation_outcome(
        status=booking.status,
        reserved_date=booking.reserved_date,
        total_booking_value=sum_amounts(s.total_price for s in booking.selected_services),
        amount_paid=sum_amounts(p.amount for p in payments),
        fee_tiers=service_listing.cancellation_fee_tiers if service_listing is not None else None,
        has_deposit_payment=any(p.payment_type == PaymentType.DEPOSIT for p in payments),
        now=now,
    )
