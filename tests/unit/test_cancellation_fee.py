# tests/unit/test_cancellation_fee.py

import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from src.domain.cancellation_fee import (
    DEFAULT_FEE_TIERS,
    calculate_for_booking,
    compute_cancellation_outcome,
    days_until,
    parse_fee_tiers,
)
from src.domain.exceptions import InvalidFeeTierError
from src.domain.state_machine import BookingStatus, PaymentType

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
TIERS = {">90": 0.0, "30-90": 0.10, "7-30": 0.25, "<7": 0.50}


def _outcome(days, total="1000", paid="0", status=BookingStatus.CONFIRMED, tiers=TIERS, **kwargs):
    return compute_cancellation_outcome(
        status=status,
        reserved_date=NOW + timedelta(days=days),
        total_booking_value=Decimal(total),
        amount_paid=Decimal(paid),
        fee_tiers=tiers,
        now=NOW,
        **kwargs,
    )


# ---------------------
# NO-PENALTY CASES
# ---------------------

def test_pending_deposit_without_deposit_is_free():
    outcome = _outcome(days=3, status=BookingStatus.PENDING_DEPOSIT_PAYMENT)

    assert outcome.fee_amount == 0
    assert outcome.requires_payment is False
    assert outcome.fee_difference == 0
    assert outcome.reason is not None


def test_pending_deposit_with_deposit_is_charged():
    outcome = _outcome(
        days=3,
        paid="100",
        status=BookingStatus.PENDING_DEPOSIT_PAYMENT,
        has_deposit_payment=True,
    )

    assert outcome.fee_amount == Decimal("500.00")
    assert outcome.fee_difference == Decimal("400.00")
    assert outcome.requires_payment is True
    assert outcome.reason is None


def test_pending_vendor_confirmation_is_free():
    outcome = _outcome(days=3, status=BookingStatus.PENDING_VENDOR_CONFIRMATION)

    assert outcome.fee_amount == 0
    assert outcome.tier == "pending_confirmation"


@pytest.mark.parametrize("tiers", [TIERS, None])
def test_confirmed_more_than_ninety_days_out_is_free(tiers):
    outcome = _outcome(days=120, paid="300", tiers=tiers)

    assert outcome.fee_amount == 0
    assert outcome.requires_payment is False
    assert outcome.tier == ">90"


# ---------------------
# TIER ARITHMETIC
# ---------------------

def test_fee_covered_by_amount_paid():
    outcome = _outcome(days=50, paid="500")

    assert outcome.fee_amount == Decimal("100.00")
    assert outcome.fee_difference == 0
    assert outcome.requires_payment is False
    assert outcome.amount_paid == Decimal("500")


def test_fee_exceeding_amount_paid_requires_payment():
    outcome = _outcome(days=10, paid="200")

    assert outcome.fee_amount == Decimal("250.00")
    assert outcome.fee_difference == Decimal("50.00")
    assert outcome.requires_payment is True
    assert outcome.tier == "7-30"


@pytest.mark.parametrize(
    "days, tier, rate",
    [
        (91, ">90", "0"),
        (90, "30-90", "0.1"),
        (30, "30-90", "0.1"),
        (29, "7-30", "0.25"),
        (7, "7-30", "0.25"),
        (6, "<7", "0.5"),
        (0, "<7", "0.5"),
    ],
)
def test_tier_boundaries_are_inclusive_on_the_lower_bound(days, tier, rate):
    outcome = _outcome(days=days)

    assert outcome.days_until_reserved_date == days
    assert outcome.tier == tier
    assert outcome.fee_percentage == Decimal(rate)


def test_partial_days_round_up():
    reserved = NOW + timedelta(days=89, hours=1)

    assert days_until(reserved, NOW) == 90


def test_reserved_date_in_the_past_has_no_fee():
    outcome = _outcome(days=-2, paid="100")

    assert outcome.fee_amount == 0
    assert outcome.tier == "past"


def test_fee_rounds_half_up_to_cents():
    outcome = _outcome(days=10, total="0.50")

    # 0.50 * 0.25 = 0.125
    assert outcome.fee_amount == Decimal("0.13")


def test_default_schedule_applies_when_listing_has_none():
    outcome = _outcome(days=45, tiers=None)

    assert outcome.tier == "30-59"
    assert outcome.fee_amount == Decimal("500.00")


# ---------------------
# SCHEDULE PARSING
# ---------------------

def test_schedule_may_arrive_as_json_text():
    outcome = _outcome(days=10, tiers=json.dumps(TIERS))

    assert outcome.fee_amount == Decimal("250.00")


def test_rates_never_drop_as_the_date_approaches():
    tiers = parse_fee_tiers({">90": 0.20, "<90": 0.10})

    assert [tier.rate for tier in tiers] == [Decimal("0.2"), Decimal("0.2")]


@pytest.mark.parametrize(
    "raw",
    [
        {"soon": 0.5},
        {"<7": 1.5},
        {"30-7": 0.1},
        {"<7": "lots"},
        {">30": 0.1, "31-40": 0.2},
        {},
        "not json",
    ],
)
def test_malformed_schedules_are_rejected(raw):
    with pytest.raises(InvalidFeeTierError):
        parse_fee_tiers(raw)


def test_malformed_schedule_falls_back_to_defaults(caplog):
    with caplog.at_level(logging.WARNING):
        outcome = _outcome(days=45, tiers={"whenever": 2})

    assert outcome.fee_percentage == Decimal(str(DEFAULT_FEE_TIERS["30-59"]))
    assert "using defaults" in caplog.text


# ---------------------
# RECORD ADAPTER
# ---------------------

def test_calculate_for_booking_reads_plain_records():
    booking = SimpleNamespace(
        status=BookingStatus.CONFIRMED,
        reserved_date=NOW + timedelta(days=10),
        selected_services=[
            SimpleNamespace(total_price=Decimal("600.00")),
            SimpleNamespace(total_price=Decimal("400.00")),
        ],
        payments=[
            SimpleNamespace(payment_type=PaymentType.DEPOSIT, amount=Decimal("200.00")),
        ],
    )
    listing = SimpleNamespace(cancellation_fee_tiers=TIERS)

    outcome = calculate_for_booking(booking, listing, now=NOW)

    assert outcome.total_booking_value == Decimal("1000.00")
    assert outcome.fee_amount == Decimal("250.00")
    assert outcome.fee_difference == Decimal("50.00")
