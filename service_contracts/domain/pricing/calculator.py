"""
Quote Calculator

Pure function from validated ServiceAttributes to a PriceBreakdown.
No I/O and no clock: identical input always produces identical output.

Steps, each operating on the running (low, high) range:
1. base range lookup, plus flat amounts for rooms beyond the table row
2. condition surcharge
3. timing surcharge
4. urgency surcharge
5. travel charge (flat)
6. add-ons (flat, ranged)
7. frequency / subscription discount on the post-surcharge total
8. every delta rounded to cents, half-up
9. deposit = 25% of the low end
"""

from decimal import Decimal
from typing import Optional, Union

from ...config import BUSINESS_CURRENCY
from ...exceptions import UnknownServiceCombination
from ...shared.money import round_money
from .rules import (
    ADD_ONS,
    AIRBNB_BASE,
    AIRBNB_EXTRA_BATHROOM,
    AIRBNB_EXTRA_BEDROOM,
    AIRBNB_MAX_BEDROOM_ROW,
    COMMERCIAL_BASE,
    COMMERCIAL_VISIT_DISCOUNTS,
    CONDITION_SURCHARGES,
    DAY_TYPE_SURCHARGES,
    DEPOSIT_RATE,
    EXTREME_CONDITION_RANGE,
    INCLUDED_BATHROOMS,
    PRICING_VERSION,
    RESIDENTIAL_BASE,
    RESIDENTIAL_EXTRA_BATHROOM,
    RESIDENTIAL_EXTRA_BEDROOM,
    RESIDENTIAL_FREQUENCY_DISCOUNTS,
    RESIDENTIAL_MAX_BEDROOM_ROW,
    SUBSCRIPTION_DISCOUNT,
    TIME_OF_DAY_SURCHARGES,
    TRAVEL_FREE_RADIUS_KM,
    TRAVEL_RATE_PER_KM,
    TRAVEL_ROUND_TRIP_FACTOR,
    URGENCY_SURCHARGES,
    PriceRange,
)
from .schemas import (
    AirbnbAttributes,
    CommercialAttributes,
    LineItem,
    PriceBreakdown,
    ResidentialAttributes,
)

HUNDRED = Decimal("100")

Attributes = Union[ResidentialAttributes, CommercialAttributes, AirbnbAttributes]


def deposit_for(amount: Decimal) -> Decimal:
    """25% deposit of a single amount (low end of a range, or a negotiated total)"""
    return round_money(Decimal(amount) * DEPOSIT_RATE)


def lookup_base_range(attributes: Attributes) -> PriceRange:
    """Step 1: find the base range row or fail with UnknownServiceCombination"""
    if isinstance(attributes, ResidentialAttributes):
        row = min(max(attributes.bedrooms, 1), RESIDENTIAL_MAX_BEDROOM_ROW)
        table = RESIDENTIAL_BASE.get(attributes.service_tier, {})
        price = table.get(row)
        if price is None:
            raise UnknownServiceCombination("residential", attributes.service_tier, attributes.bedrooms)
        return price

    if isinstance(attributes, AirbnbAttributes):
        row = min(max(attributes.bedrooms, 1), AIRBNB_MAX_BEDROOM_ROW)
        price = AIRBNB_BASE.get(attributes.service_tier, {}).get(row)
        if price is None:
            raise UnknownServiceCombination("airbnb", attributes.service_tier, attributes.bedrooms)
        return price

    buckets = COMMERCIAL_BASE.get(attributes.service_tier)
    if not buckets:
        raise UnknownServiceCombination("commercial", attributes.service_tier, attributes.floor_area_m2)
    for bucket in buckets:
        if bucket.upper_bound is None or attributes.floor_area_m2 < bucket.upper_bound:
            return bucket.price
    raise UnknownServiceCombination("commercial", attributes.service_tier, attributes.floor_area_m2)


def _room_line(name: str, units: int, unit_price: Decimal) -> LineItem:
    delta = round_money(unit_price * units)
    return LineItem(
        name=name if units == 1 else f"{name} x{units}",
        kind="size",
        amount=unit_price,
        delta_low=delta,
        delta_high=delta,
    )


def size_adjustment_lines(attributes: Attributes) -> list[LineItem]:
    """Step 1b: bedrooms past the last table row and bathrooms past the first"""
    if isinstance(attributes, ResidentialAttributes):
        max_row, per_bedroom, per_bathroom = (
            RESIDENTIAL_MAX_BEDROOM_ROW,
            RESIDENTIAL_EXTRA_BEDROOM,
            RESIDENTIAL_EXTRA_BATHROOM,
        )
    elif isinstance(attributes, AirbnbAttributes):
        max_row, per_bedroom, per_bathroom = AIRBNB_MAX_BEDROOM_ROW, AIRBNB_EXTRA_BEDROOM, AIRBNB_EXTRA_BATHROOM
    else:
        return []

    lines = []
    extra_bedrooms = attributes.bedrooms - max_row
    if extra_bedrooms > 0:
        lines.append(_room_line("Extra bedroom", extra_bedrooms, per_bedroom))
    extra_bathrooms = attributes.bathrooms - INCLUDED_BATHROOMS
    if extra_bathrooms > 0:
        lines.append(_room_line("Extra bathroom", extra_bathrooms, per_bathroom))
    return lines


def resolve_timing_surcharge(timing: frozenset) -> tuple[Decimal, str]:
    """
    Step 3 rule: one time-of-day tier and one day-type tier can legitimately
    apply to the same booking window, and they add together. Within each group
    only the highest tier applies.
    """
    time_of_day = [t for t in timing if t in TIME_OF_DAY_SURCHARGES]
    day_type = [t for t in timing if t in DAY_TYPE_SURCHARGES]

    applied = []
    percentage = Decimal("0")
    if time_of_day:
        tier = max(time_of_day, key=lambda t: TIME_OF_DAY_SURCHARGES[t])
        if TIME_OF_DAY_SURCHARGES[tier]:
            applied.append(tier)
            percentage += TIME_OF_DAY_SURCHARGES[tier]
    if day_type:
        tier = max(day_type, key=lambda t: DAY_TYPE_SURCHARGES[t])
        applied.append(tier)
        percentage += DAY_TYPE_SURCHARGES[tier]

    return percentage, " + ".join(applied)


def _percentage_line(
    name: str, kind: str, percentage: Decimal, low: Decimal, high: Decimal
) -> LineItem:
    sign = Decimal("-1") if kind == "discount" else Decimal("1")
    return LineItem(
        name=name,
        kind=kind,
        percentage=percentage,
        delta_low=sign * round_money(low * percentage / HUNDRED),
        delta_high=sign * round_money(high * percentage / HUNDRED),
    )


def travel_charge(distance_km: Decimal) -> Decimal:
    """Step 5: round-trip per-km charge beyond the free radius"""
    billable_km = max(Decimal("0"), Decimal(distance_km) - TRAVEL_FREE_RADIUS_KM)
    return round_money(billable_km * TRAVEL_RATE_PER_KM * TRAVEL_ROUND_TRIP_FACTOR)


def _add_on_lines(attributes: Attributes) -> list[LineItem]:
    lines = []
    # Sorted so the breakdown is byte-identical regardless of set iteration order
    for add_on_id in sorted(attributes.add_ons):
        rule = ADD_ONS[add_on_id]
        if rule.unit == "bedroom":
            units = max(getattr(attributes, "bedrooms", 1), 1)
        else:
            units = rule.units
        name = rule.name if units == 1 else f"{rule.name} x{units}"
        lines.append(
            LineItem(
                name=name,
                kind="add_on",
                amount=rule.price.low if rule.price.low == rule.price.high else None,
                delta_low=round_money(rule.price.low * units),
                delta_high=round_money(rule.price.high * units),
            )
        )
    return lines


def _discount_percentage(attributes: Attributes) -> tuple[Decimal, Optional[str]]:
    if isinstance(attributes, ResidentialAttributes):
        if attributes.subscription:
            return SUBSCRIPTION_DISCOUNT, "One-year subscription"
        percentage = RESIDENTIAL_FREQUENCY_DISCOUNTS[attributes.recurring_frequency]
        return percentage, f"{attributes.recurring_frequency.title()} service"
    if isinstance(attributes, CommercialAttributes):
        percentage = COMMERCIAL_VISIT_DISCOUNTS[attributes.visits_per_week]
        return percentage, f"{attributes.visits_per_week}x per week"
    return Decimal("0"), None


def calculate_quote(attributes: Attributes) -> PriceBreakdown:
    """Compute the full price breakdown for validated service attributes"""
    base = lookup_base_range(attributes)
    low, high = base.low, base.high
    per = "month" if isinstance(attributes, CommercialAttributes) else "visit"

    size_adjustments = size_adjustment_lines(attributes)
    for line in size_adjustments:
        low, high = low + line.delta_low, high + line.delta_high

    surcharges: list[LineItem] = []
    add_ons = _add_on_lines(attributes)
    travel = travel_charge(attributes.distance_km)

    if attributes.condition == "extreme":
        minimum, maximum = EXTREME_CONDITION_RANGE
        surcharges.append(
            LineItem(
                name="Condition: extreme (manual quote)",
                kind="surcharge",
                percentage=minimum,
                percentage_max=maximum,
            )
        )
        return PriceBreakdown(
            pricing_version=PRICING_VERSION,
            category=attributes.category,
            service_tier=attributes.service_tier,
            currency=BUSINESS_CURRENCY,
            per=per,
            base_low=base.low,
            base_high=base.high,
            size_adjustments=size_adjustments,
            surcharges=surcharges,
            add_ons=add_ons,
            travel_charge=travel,
            requires_manual_quote=True,
        )

    # Step 2: condition
    condition_pct = CONDITION_SURCHARGES[attributes.condition]
    if condition_pct:
        line = _percentage_line(f"Condition: {attributes.condition}", "surcharge", condition_pct, low, high)
        surcharges.append(line)
        low, high = low + line.delta_low, high + line.delta_high

    # Step 3: timing
    timing_pct, timing_label = resolve_timing_surcharge(attributes.timing)
    if timing_pct:
        line = _percentage_line(f"Timing: {timing_label}", "surcharge", timing_pct, low, high)
        surcharges.append(line)
        low, high = low + line.delta_low, high + line.delta_high

    # Step 4: urgency
    urgency_pct = URGENCY_SURCHARGES[attributes.urgency]
    if urgency_pct:
        line = _percentage_line(f"Urgency: {attributes.urgency}", "surcharge", urgency_pct, low, high)
        surcharges.append(line)
        low, high = low + line.delta_low, high + line.delta_high

    # Steps 5 and 6: flat amounts
    low, high = low + travel, high + travel
    for line in add_ons:
        low, high = low + line.delta_low, high + line.delta_high

    # Step 7: discounts on the post-surcharge total
    discounts: list[LineItem] = []
    discount_pct, discount_label = _discount_percentage(attributes)
    if discount_pct:
        line = _percentage_line(f"Discount: {discount_label}", "discount", discount_pct, low, high)
        discounts.append(line)
        low, high = low + line.delta_low, high + line.delta_high

    low, high = round_money(low), round_money(high)

    return PriceBreakdown(
        pricing_version=PRICING_VERSION,
        category=attributes.category,
        service_tier=attributes.service_tier,
        currency=BUSINESS_CURRENCY,
        per=per,
        base_low=base.low,
        base_high=base.high,
        size_adjustments=size_adjustments,
        surcharges=surcharges,
        add_ons=add_ons,
        travel_charge=travel,
        discounts=discounts,
        total_low=low,
        total_high=high,
        deposit=deposit_for(low),
        requires_manual_quote=False,
    )
