"""
Pricing Rule Table

Static, versioned price data. Nothing in here is mutated at runtime, so the
table is shared freely between concurrent quote calculations. Bump
PRICING_VERSION whenever a number changes so stored breakdowns stay
traceable to the table that produced them.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

PRICING_VERSION = "2025.2"


@dataclass(frozen=True)
class PriceRange:
    low: Decimal
    high: Decimal


@dataclass(frozen=True)
class SizeBucket:
    """Commercial size bucket; upper bound is exclusive, None means open-ended"""

    name: str
    upper_bound: Optional[Decimal]
    price: PriceRange


@dataclass(frozen=True)
class AddOnRule:
    name: str
    price: PriceRange
    unit: str = "job"  # job, bedroom, window
    units: int = 1  # fixed unit estimate for non-bedroom units


def _range(low, high) -> PriceRange:
    cent = Decimal("0.01")
    return PriceRange(Decimal(str(low)).quantize(cent), Decimal(str(high)).quantize(cent))


# ============================================================================
# BASE PRICES
# ============================================================================

# Residential: per visit, keyed by bedrooms (studio shares the 1BR row; larger homes start from the 5BR row)
RESIDENTIAL_MAX_BEDROOM_ROW = 5
RESIDENTIAL_BASE: dict[str, dict[int, PriceRange]] = {
    "general": {
        1: _range(120, 160),
        2: _range(160, 220),
        3: _range(220, 300),
        4: _range(280, 380),
        5: _range(350, 500),
    },
    "deep": {
        1: _range(180, 240),
        2: _range(240, 330),
        3: _range(330, 450),
        4: _range(420, 570),
        5: _range(525, 750),
    },
    "end-of-lease": {
        1: _range(220, 300),
        2: _range(300, 420),
        3: _range(420, 580),
        4: _range(550, 750),
        5: _range(700, 1000),
    },
    "post-construction": {
        1: _range(250, 350),
        2: _range(350, 500),
        3: _range(500, 700),
        4: _range(650, 900),
        5: _range(850, 1200),
    },
}

# Airbnb turnovers: per turnover, 3BR+ share one row
AIRBNB_MAX_BEDROOM_ROW = 3
AIRBNB_BASE: dict[str, dict[int, PriceRange]] = {
    "turnover": {
        1: _range(80, 120),
        2: _range(120, 180),
        3: _range(180, 280),
    },
}

# Rooms beyond the table: flat per-room amounts added to both ends of the base range
INCLUDED_BATHROOMS = 1
RESIDENTIAL_EXTRA_BEDROOM = Decimal("50.00")  # each bedroom beyond the 5BR row
RESIDENTIAL_EXTRA_BATHROOM = Decimal("30.00")
AIRBNB_EXTRA_BEDROOM = Decimal("40.00")  # each bedroom beyond the 3BR row
AIRBNB_EXTRA_BATHROOM = Decimal("25.00")

# Commercial: per month, bucketed by floor area in m2 (strata by unit count)
COMMERCIAL_BASE: dict[str, list[SizeBucket]] = {
    "medical": [
        SizeBucket("small", Decimal("200"), _range(800, 1200)),
        SizeBucket("medium", Decimal("400"), _range(1500, 2500)),
        SizeBucket("large", None, _range(2500, 4000)),
    ],
    "office": [
        SizeBucket("small", Decimal("100"), _range(600, 1000)),
        SizeBucket("medium", Decimal("300"), _range(1200, 2200)),
        SizeBucket("large", None, _range(2500, 5000)),
    ],
    "gym": [
        SizeBucket("small", Decimal("200"), _range(1200, 1800)),
        SizeBucket("medium", Decimal("500"), _range(2000, 3500)),
        SizeBucket("large", None, _range(3500, 6000)),
    ],
    "retail": [
        SizeBucket("small", Decimal("100"), _range(500, 900)),
        SizeBucket("medium", Decimal("300"), _range(1100, 2000)),
        SizeBucket("large", None, _range(2200, 4500)),
    ],
    "strata": [
        SizeBucket("small", Decimal("20"), _range(400, 800)),
        SizeBucket("medium", Decimal("51"), _range(1000, 2000)),
        SizeBucket("large", None, _range(2500, 5000)),
    ],
}

# ============================================================================
# SURCHARGES (percent of the running range)
# ============================================================================

CONDITION_SURCHARGES: dict[str, Decimal] = {
    "standard": Decimal("0"),
    "moderate": Decimal("15"),
    "heavy": Decimal("30"),
}
# Extreme (hoarding/biohazard) is never priced automatically
EXTREME_CONDITION_RANGE = (Decimal("50"), Decimal("100"))

# Time-of-day tiers stack additively with one day-type tier; within a group the highest wins
TIME_OF_DAY_SURCHARGES: dict[str, Decimal] = {
    "weekday-daytime": Decimal("0"),
    "after-hours": Decimal("20"),
    "late-night": Decimal("30"),
}
DAY_TYPE_SURCHARGES: dict[str, Decimal] = {
    "weekend": Decimal("15"),
    "public-holiday": Decimal("50"),
}

URGENCY_SURCHARGES: dict[str, Decimal] = {
    "standard": Decimal("0"),
    "same-day": Decimal("30"),
    "emergency": Decimal("50"),
}

# ============================================================================
# TRAVEL
# ============================================================================

TRAVEL_FREE_RADIUS_KM = Decimal("10")
TRAVEL_RATE_PER_KM = Decimal("0.92")
TRAVEL_ROUND_TRIP_FACTOR = Decimal("2")

# ============================================================================
# ADD-ONS
# ============================================================================

ADD_ONS: dict[str, AddOnRule] = {
    "carpet-steam": AddOnRule("Carpet steam cleaning", _range(50, 80), unit="bedroom"),
    "window-internal": AddOnRule("Window cleaning (internal)", _range(8, 12), unit="window", units=5),
    "window-external": AddOnRule("Window cleaning (external)", _range(15, 25), unit="window", units=5),
    "oven": AddOnRule("Oven cleaning", _range(80, 120)),
    "fridge": AddOnRule("Fridge cleaning", _range(40, 60)),
    "wall-washing": AddOnRule("Wall washing", _range(120, 200), unit="bedroom"),
    "balcony": AddOnRule("Balcony/patio deep clean", _range(60, 120)),
    "garage": AddOnRule("Garage cleaning", _range(100, 180)),
    "laundry": AddOnRule("Laundry (wash/dry/fold)", _range(40, 80)),
    "cupboard-interior": AddOnRule("Cupboard interior cleaning", _range(15, 30)),
    "blinds": AddOnRule("Blinds cleaning", _range(10, 20)),
    "pressure-wash": AddOnRule("High-pressure exterior wash", _range(150, 350)),
    "restock-amenities": AddOnRule("Restock amenities", _range(20, 20)),
}

# ============================================================================
# DISCOUNTS (percent of the post-surcharge total)
# ============================================================================

RESIDENTIAL_FREQUENCY_DISCOUNTS: dict[str, Decimal] = {
    "one-time": Decimal("0"),
    "weekly": Decimal("10"),
    "fortnightly": Decimal("5"),
    "monthly": Decimal("0"),
}

# One-year Clean Up Card, residential only; replaces the frequency discount
SUBSCRIPTION_DISCOUNT = Decimal("15")

COMMERCIAL_VISIT_DISCOUNTS: dict[int, Decimal] = {
    1: Decimal("0"),
    2: Decimal("5"),
    3: Decimal("10"),
    4: Decimal("10"),
    5: Decimal("15"),
    6: Decimal("20"),
    7: Decimal("20"),
}

DEPOSIT_RATE = Decimal("0.25")
