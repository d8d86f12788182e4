"""Pricing domain schemas - closed, tagged service attribute variants and the price breakdown"""

from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from ...exceptions import ValidationError
from .rules import ADD_ONS, DAY_TYPE_SURCHARGES

ConditionTier = Literal["standard", "moderate", "heavy", "extreme"]
UrgencyTier = Literal["standard", "same-day", "emergency"]
TimingTier = Literal["weekday-daytime", "after-hours", "late-night", "weekend", "public-holiday"]
RecurringFrequency = Literal["one-time", "weekly", "fortnightly", "monthly"]


class _ServiceAttributesBase(BaseModel):
    """Fields shared by every service category"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    service_tier: str
    condition: ConditionTier = "standard"
    urgency: UrgencyTier = "standard"
    timing: frozenset[TimingTier] = frozenset({"weekday-daytime"})
    distance_km: Decimal = Field(default=Decimal("0"), ge=0, le=1000)
    add_ons: frozenset[str] = frozenset()
    recurring_frequency: RecurringFrequency = "one-time"

    @field_validator("service_tier")
    @classmethod
    def normalize_tier(cls, v: str) -> str:
        v = v.strip().lower().replace(" ", "-").replace("_", "-")
        if not v:
            raise ValueError("service_tier is required")
        return v

    @field_validator("timing")
    @classmethod
    def validate_timing(cls, v: frozenset) -> frozenset:
        if not v:
            return frozenset({"weekday-daytime"})
        day_types = v & set(DAY_TYPE_SURCHARGES)
        if "weekday-daytime" in v and day_types:
            raise ValueError("weekday-daytime cannot be combined with weekend or public-holiday")
        if {"after-hours", "late-night"} <= v:
            raise ValueError("after-hours and late-night describe different windows; pick one")
        return v

    @field_validator("add_ons")
    @classmethod
    def validate_add_ons(cls, v: frozenset) -> frozenset:
        unknown = sorted(set(v) - set(ADD_ONS))
        if unknown:
            raise ValueError(f"Unknown add-ons: {', '.join(unknown)}")
        return v


class ResidentialAttributes(_ServiceAttributesBase):
    category: Literal["residential"] = "residential"
    bedrooms: int = Field(ge=0, le=20)  # 0 = studio
    bathrooms: int = Field(default=1, ge=1, le=20)
    subscription: bool = False  # one-year Clean Up Card

    @model_validator(mode="after")
    def subscription_needs_recurring(self):
        if self.subscription and self.recurring_frequency == "one-time":
            raise ValueError("The one-year subscription only applies to recurring services")
        return self


class CommercialAttributes(_ServiceAttributesBase):
    category: Literal["commercial"] = "commercial"
    floor_area_m2: Decimal = Field(gt=0)  # unit count for strata complexes
    visits_per_week: int = Field(default=1, ge=1, le=7)

    @field_validator("add_ons")
    @classmethod
    def no_per_bedroom_add_ons(cls, v: frozenset) -> frozenset:
        per_bedroom = sorted(a for a in v if ADD_ONS[a].unit == "bedroom")
        if per_bedroom:
            raise ValueError(f"Add-ons priced per bedroom are residential only: {', '.join(per_bedroom)}")
        return v


class AirbnbAttributes(_ServiceAttributesBase):
    category: Literal["airbnb"] = "airbnb"
    service_tier: str = "turnover"
    bedrooms: int = Field(ge=0, le=20)
    bathrooms: int = Field(default=1, ge=1, le=20)


ServiceAttributes = Annotated[
    Union[ResidentialAttributes, CommercialAttributes, AirbnbAttributes],
    Field(discriminator="category"),
]

_service_attributes_adapter = TypeAdapter(ServiceAttributes)


def parse_service_attributes(data: Any):
    """Validate raw input into one of the ServiceAttributes variants"""
    if isinstance(data, (ResidentialAttributes, CommercialAttributes, AirbnbAttributes)):
        return data
    try:
        return _service_attributes_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid service attributes: {e}") from e


class LineItem(BaseModel):
    """One traceable adjustment to the running price range"""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: Literal["size", "surcharge", "discount", "add_on", "travel"]
    percentage: Optional[Decimal] = None
    percentage_max: Optional[Decimal] = None  # only for manually quoted ranges
    amount: Optional[Decimal] = None  # fixed per-unit amount when not a percentage
    delta_low: Optional[Decimal] = None
    delta_high: Optional[Decimal] = None


class PriceBreakdown(BaseModel):
    """Quote Calculator output; every total is the sum of its line items"""

    model_config = ConfigDict(frozen=True)

    pricing_version: str
    category: str
    service_tier: str
    currency: str
    per: Literal["visit", "month"]
    base_low: Decimal
    base_high: Decimal
    size_adjustments: list[LineItem] = []  # rooms beyond the base table row
    surcharges: list[LineItem] = []
    add_ons: list[LineItem] = []
    travel_charge: Decimal = Decimal("0.00")
    discounts: list[LineItem] = []
    total_low: Optional[Decimal] = None
    total_high: Optional[Decimal] = None
    deposit: Optional[Decimal] = None
    requires_manual_quote: bool = False

    def line_item_total(self) -> tuple[Decimal, Decimal]:
        """Re-add the breakdown from its parts (used to audit stored totals)"""
        low, high = self.base_low, self.base_high
        for item in [*self.size_adjustments, *self.surcharges, *self.add_ons, *self.discounts]:
            low += item.delta_low or Decimal("0")
            high += item.delta_high or Decimal("0")
        return low + self.travel_charge, high + self.travel_charge
