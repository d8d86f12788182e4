from datetime import date
from decimal import Decimal

import pytest

from service_contracts.domain.contracts.terms import (
    count_billing_periods,
    derive_financial_terms,
    resolve_end_date,
    term_months,
)
from service_contracts.domain.pricing.calculator import calculate_quote
from service_contracts.domain.pricing.schemas import parse_service_attributes
from service_contracts.exceptions import ValidationError

START = date(2025, 3, 10)


@pytest.fixture
def breakdown():
    return calculate_quote(
        parse_service_attributes(
            {
                "category": "residential",
                "service_tier": "deep",
                "bedrooms": 3,
                "condition": "moderate",
                "timing": ["weekend"],
                "distance_km": "15",
                "recurring_frequency": "monthly",
            }
        )
    )


@pytest.fixture
def manual_breakdown():
    return calculate_quote(
        parse_service_attributes({"category": "residential", "service_tier": "deep", "bedrooms": 3, "condition": "extreme"})
    )


def test_twelve_month_residential_contract(breakdown):
    terms = derive_financial_terms(
        "residential_recurring", breakdown, "monthly", START, duration_months=12
    )
    assert terms.payment_amount_per_period == Decimal("445.63")
    assert terms.billing_periods == 12
    assert terms.total_contract_value == Decimal("5347.56")
    assert terms.deposit_amount == Decimal("111.41")
    assert terms.end_date == date(2026, 3, 9)
    assert terms.total_value_override is False
    assert terms.override_reason is None


def test_negotiated_amount_replaces_quote_low_end(breakdown):
    terms = derive_financial_terms(
        "residential_recurring",
        breakdown,
        "monthly",
        START,
        duration_months=6,
        payment_amount_per_period=Decimal("500"),
    )
    assert terms.total_contract_value == Decimal("3000.00")
    assert terms.deposit_amount == Decimal("125.00")


def test_end_date_derived_or_checked_against_duration():
    assert resolve_end_date(START, None, 12) == date(2026, 3, 9)
    assert resolve_end_date(START, date(2026, 3, 10), 12) == date(2026, 3, 10)
    assert resolve_end_date(START, date(2025, 6, 30), None) == date(2025, 6, 30)
    assert resolve_end_date(START, None, None) is None

    with pytest.raises(ValidationError):
        resolve_end_date(START, date(2026, 4, 1), 12)
    with pytest.raises(ValidationError):
        resolve_end_date(START, date(2025, 3, 1), None)


def test_billing_periods_round_partial_periods_up():
    start, end = date(2025, 1, 1), date(2025, 3, 31)
    assert count_billing_periods("weekly", start, end, None) == 13
    assert count_billing_periods("bi-weekly", start, end, None) == 7
    assert count_billing_periods("monthly", start, end, None) == 3
    assert count_billing_periods("monthly", START, date(2026, 3, 9), 12) == 12
    assert count_billing_periods("one-time", start, None, None) == 1
    assert count_billing_periods("weekly", start, None, None) is None


def test_term_months_counts_partial_month():
    assert term_months(date(2025, 1, 1), date(2025, 2, 1)) == 1
    assert term_months(date(2025, 1, 1), date(2025, 2, 2)) == 2
    assert term_months(date(2025, 1, 1), date(2025, 1, 5)) == 1


def test_override_requires_reason(breakdown):
    with pytest.raises(ValidationError):
        derive_financial_terms(
            "residential_recurring",
            breakdown,
            "monthly",
            START,
            duration_months=12,
            total_value_override=Decimal("5000"),
        )
    with pytest.raises(ValidationError):
        derive_financial_terms(
            "residential_recurring",
            breakdown,
            "monthly",
            START,
            duration_months=12,
            total_value_override=Decimal("5000"),
            override_reason="   ",
        )


def test_open_ended_recurring_contract_needs_override(breakdown):
    with pytest.raises(ValidationError):
        derive_financial_terms("residential_recurring", breakdown, "weekly", START)

    terms = derive_financial_terms(
        "residential_recurring",
        breakdown,
        "weekly",
        START,
        total_value_override=Decimal("12000"),
        override_reason=" Rolling agreement, reviewed annually ",
    )
    assert terms.billing_periods is None
    assert terms.total_contract_value == Decimal("12000.00")
    assert terms.total_value_override is True
    assert terms.override_reason == "Rolling agreement, reviewed annually"


@pytest.mark.parametrize(
    "contract_type,frequency",
    [
        ("residential_recurring", "one-time"),
        ("commercial_recurring", "one-time"),
        ("commercial_one_time", "monthly"),
        ("general_service", "weekly"),
    ],
)
def test_contract_type_must_match_payment_frequency(breakdown, contract_type, frequency):
    with pytest.raises(ValidationError):
        derive_financial_terms(contract_type, breakdown, frequency, START, duration_months=3)


def test_unknown_contract_type(breakdown):
    with pytest.raises(ValidationError):
        derive_financial_terms("hourly", breakdown, "monthly", START, duration_months=3)


def test_manual_quote_needs_negotiated_amount(manual_breakdown):
    with pytest.raises(ValidationError):
        derive_financial_terms("general_service", manual_breakdown, "one-time", START)

    terms = derive_financial_terms(
        "general_service",
        manual_breakdown,
        "one-time",
        START,
        payment_amount_per_period=Decimal("1800"),
    )
    assert terms.billing_periods == 1
    assert terms.total_contract_value == Decimal("1800.00")
    assert terms.deposit_amount == Decimal("450.00")
    assert terms.end_date is None


def test_amount_must_be_positive(breakdown):
    with pytest.raises(ValidationError):
        derive_financial_terms(
            "residential_recurring",
            breakdown,
            "monthly",
            START,
            duration_months=12,
            payment_amount_per_period=Decimal("0"),
        )
