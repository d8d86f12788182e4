"""
Contract financial terms

Derives the term (end date), billing period count and total contract value
from the negotiated per-period amount. total_contract_value is authoritative
only as computed here at creation or pre-signature edit; nothing recomputes
it later with different inputs.
"""

import math
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from dateutil.relativedelta import relativedelta

from ...exceptions import ValidationError
from ...shared.money import round_money
from ..pricing.calculator import deposit_for
from ..pricing.schemas import PriceBreakdown

ONE_TIME_TYPES = frozenset({"commercial_one_time", "general_service"})
RECURRING_TYPES = frozenset({"airbnb_long_term", "commercial_recurring", "residential_recurring"})
CONTRACT_TYPES = ONE_TIME_TYPES | RECURRING_TYPES

PERIOD_DAYS = {"weekly": 7, "bi-weekly": 14}


@dataclass(frozen=True)
class FinancialTerms:
    payment_amount_per_period: Decimal
    billing_periods: Optional[int]
    total_contract_value: Decimal
    total_value_override: bool
    override_reason: Optional[str]
    deposit_amount: Decimal
    end_date: Optional[date]
    duration_months: Optional[int]


def resolve_end_date(
    start_date: date, end_date: Optional[date], duration_months: Optional[int]
) -> Optional[date]:
    """
    Fill in end_date from duration_months, or check the two agree.

    Both "start + N months" and the day before it are accepted as the end of an
    N-month term.
    """
    if duration_months is None:
        if end_date is not None and end_date < start_date:
            raise ValidationError("end_date cannot be before start_date")
        return end_date

    expected = start_date + relativedelta(months=duration_months)
    if end_date is None:
        return expected - timedelta(days=1)
    if end_date not in (expected, expected - timedelta(days=1)):
        raise ValidationError(
            f"end_date {end_date.isoformat()} does not match a {duration_months}-month term "
            f"starting {start_date.isoformat()}"
        )
    return end_date


def term_months(start_date: date, end_date: date) -> int:
    """Whole months covered by a term; a partial month counts as one"""
    delta = relativedelta(end_date, start_date)
    months = delta.years * 12 + delta.months
    if delta.days > 0:
        months += 1
    return max(months, 1)


def count_billing_periods(
    payment_frequency: str,
    start_date: date,
    end_date: Optional[date],
    duration_months: Optional[int],
) -> Optional[int]:
    """Number of payments over the term; None for an open-ended recurring contract"""
    if payment_frequency == "one-time":
        return 1
    if end_date is None:
        return None
    if payment_frequency == "monthly":
        return duration_months or term_months(start_date, end_date)
    days = (end_date - start_date).days
    return max(1, math.ceil(days / PERIOD_DAYS[payment_frequency]))


def derive_financial_terms(
    contract_type: str,
    breakdown: PriceBreakdown,
    payment_frequency: str,
    start_date: date,
    end_date: Optional[date] = None,
    duration_months: Optional[int] = None,
    payment_amount_per_period: Optional[Decimal] = None,
    total_value_override: Optional[Decimal] = None,
    override_reason: Optional[str] = None,
) -> FinancialTerms:
    """Compute the persisted financial fields of a contract from its quote"""
    if contract_type not in CONTRACT_TYPES:
        raise ValidationError(f"Unknown contract type: {contract_type}")
    if payment_frequency == "one-time" and contract_type not in ONE_TIME_TYPES:
        raise ValidationError(f"{contract_type} contracts must have a recurring payment frequency")
    if payment_frequency != "one-time" and contract_type in ONE_TIME_TYPES:
        raise ValidationError(f"{contract_type} contracts are billed one-time")

    if payment_amount_per_period is None:
        if breakdown.requires_manual_quote:
            raise ValidationError("This job requires a manual quote; provide a negotiated amount")
        payment_amount_per_period = breakdown.total_low
    amount = round_money(payment_amount_per_period)
    if amount <= 0:
        raise ValidationError("payment_amount_per_period must be positive")

    end_date = resolve_end_date(start_date, end_date, duration_months)
    periods = count_billing_periods(payment_frequency, start_date, end_date, duration_months)

    if total_value_override is not None:
        if not override_reason or not override_reason.strip():
            raise ValidationError("override_reason is required when overriding the total contract value")
        total = round_money(total_value_override)
        if total <= 0:
            raise ValidationError("total_value_override must be positive")
        overridden = True
        override_reason = override_reason.strip()
    else:
        if periods is None:
            raise ValidationError(
                "Recurring contracts need an end date, a duration, or an explicit total value override"
            )
        total = round_money(amount * periods)
        overridden = False
        override_reason = None

    return FinancialTerms(
        payment_amount_per_period=amount,
        billing_periods=periods,
        total_contract_value=total,
        total_value_override=overridden,
        override_reason=override_reason,
        deposit_amount=deposit_for(amount),
        end_date=end_date,
        duration_months=duration_months,
    )
