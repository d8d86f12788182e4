"""Contract domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ...shared.validators import validate_au_phone, validate_email
from ..pricing.schemas import ServiceAttributes

ContractType = Literal[
    "airbnb_long_term",
    "commercial_recurring",
    "commercial_one_time",
    "residential_recurring",
    "general_service",
]
ContractStatus = Literal["draft", "sent", "signed", "active", "completed", "cancelled", "expired"]
PaymentFrequency = Literal["weekly", "bi-weekly", "monthly", "one-time"]

SIGNATURE_DATA_PREFIX = "data:image/png;base64,"


class _ClientFields(BaseModel):
    @field_validator("client_email", check_fields=False)
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        return validate_email(v)

    @field_validator("client_phone", check_fields=False)
    @classmethod
    def check_phone(cls, v: Optional[str]) -> Optional[str]:
        return validate_au_phone(v)


class ContractCreate(_ClientFields):
    """Schema for creating a new contract; the total is always derived, never supplied"""

    model_config = ConfigDict(extra="forbid")

    type: ContractType
    client_name: str = Field(min_length=1, max_length=255)
    client_email: str
    client_phone: Optional[str] = None
    client_company: Optional[str] = Field(default=None, max_length=255)

    property_address: Optional[str] = Field(default=None, max_length=500)
    property_type: Optional[str] = Field(default=None, max_length=100)
    service_description: str = Field(min_length=1)
    service_frequency: Optional[str] = Field(default=None, max_length=100)
    special_requirements: Optional[str] = None

    service_attributes: ServiceAttributes
    payment_frequency: PaymentFrequency
    # Negotiated per-period amount; defaults to the low end of the quote
    payment_amount_per_period: Optional[Decimal] = Field(default=None, gt=0)
    total_value_override: Optional[Decimal] = Field(default=None, gt=0)
    override_reason: Optional[str] = Field(default=None, max_length=500)

    start_date: date
    end_date: Optional[date] = None
    duration_months: Optional[int] = Field(default=None, ge=1, le=120)
    auto_renew: bool = False

    internal_notes: Optional[str] = None


class ContractUpdate(_ClientFields):
    """
    Schema for pre-signature edits.

    Financial fields (service_attributes onward) may only change while the
    contract is still a draft; the total is re-derived when any of them change.
    """

    model_config = ConfigDict(extra="forbid")

    client_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    client_company: Optional[str] = Field(default=None, max_length=255)
    property_address: Optional[str] = Field(default=None, max_length=500)
    property_type: Optional[str] = Field(default=None, max_length=100)
    service_description: Optional[str] = Field(default=None, min_length=1)
    service_frequency: Optional[str] = Field(default=None, max_length=100)
    special_requirements: Optional[str] = None
    internal_notes: Optional[str] = None
    auto_renew: Optional[bool] = None

    service_attributes: Optional[ServiceAttributes] = None
    payment_frequency: Optional[PaymentFrequency] = None
    payment_amount_per_period: Optional[Decimal] = Field(default=None, gt=0)
    total_value_override: Optional[Decimal] = Field(default=None, gt=0)
    override_reason: Optional[str] = Field(default=None, max_length=500)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    duration_months: Optional[int] = Field(default=None, ge=1, le=120)

    @model_validator(mode="after")
    def reject_cleared_required_fields(self):
        # Omitted means unchanged; an explicit null may only clear optional fields
        cleared = [f for f in REQUIRED_UPDATE_FIELDS if f in self.model_fields_set and getattr(self, f) is None]
        if cleared:
            raise ValueError(f"These fields cannot be cleared: {', '.join(cleared)}")
        return self


REQUIRED_UPDATE_FIELDS = (
    "client_name",
    "client_email",
    "service_description",
    "auto_renew",
    "service_attributes",
    "payment_frequency",
    "payment_amount_per_period",
    "start_date",
)

FINANCIAL_FIELDS = (
    "service_attributes",
    "payment_frequency",
    "payment_amount_per_period",
    "total_value_override",
    "override_reason",
    "start_date",
    "end_date",
    "duration_months",
)


def _check_signature_data(v: str) -> str:
    if not v.startswith(SIGNATURE_DATA_PREFIX) or len(v) <= len(SIGNATURE_DATA_PREFIX):
        raise ValueError("signature_data must be a base64 PNG data URL")
    return v


class ClientSignatureRequest(BaseModel):
    """Schema for the client's one-time signature"""

    signature_data: str  # Base64 PNG data URL
    signer_name: Optional[str] = None

    @field_validator("signature_data")
    @classmethod
    def check_signature(cls, v: str) -> str:
        return _check_signature_data(v)


class BusinessSignatureRequest(BaseModel):
    """Schema for the business counter-signature"""

    signature_data: str
    signed_by: str = Field(min_length=1, max_length=255)

    @field_validator("signature_data")
    @classmethod
    def check_signature(cls, v: str) -> str:
        return _check_signature_data(v)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class ManualTransitionRequest(BaseModel):
    """Admin confirmation for activation / completion ahead of the date-based guard"""

    manual: bool = False


class ContractResponse(BaseModel):
    """Schema for contract response"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    public_id: str
    contract_number: str
    type: str
    status: str
    version: int

    client_name: str
    client_email: str
    client_phone: Optional[str] = None
    client_company: Optional[str] = None

    property_address: Optional[str] = None
    property_type: Optional[str] = None
    service_description: str
    service_frequency: Optional[str] = None
    special_requirements: Optional[str] = None

    service_attributes: dict[str, Any]
    price_breakdown: dict[str, Any]
    pricing_version: str

    payment_frequency: str
    payment_amount_per_period: Decimal
    billing_periods: Optional[int] = None
    total_contract_value: Decimal
    total_value_override: bool
    override_reason: Optional[str] = None
    deposit_amount: Decimal
    currency: str

    start_date: date
    end_date: Optional[date] = None
    duration_months: Optional[int] = None
    auto_renew: bool

    client_signed_at: Optional[datetime] = None
    client_ip_address: Optional[str] = None
    business_signed_at: Optional[datetime] = None
    business_signed_by: Optional[str] = None

    pdf_key: Optional[str] = None
    pdf_hash: Optional[str] = None
    pdf_generated_at: Optional[datetime] = None

    payment_link_url: Optional[str] = None
    payment_pending_reconciliation: bool
    external_payment_id: Optional[str] = None
    external_payment_status: Optional[str] = None
    paid_at: Optional[datetime] = None

    internal_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    last_reminded_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None


class PublicContractResponse(BaseModel):
    """Client-facing view by public UUID; no internal, audit or storage fields"""

    model_config = ConfigDict(from_attributes=True)

    public_id: str
    contract_number: str
    type: str
    status: str

    client_name: str
    client_email: str
    client_company: Optional[str] = None

    property_address: Optional[str] = None
    property_type: Optional[str] = None
    service_description: str
    service_frequency: Optional[str] = None
    special_requirements: Optional[str] = None

    payment_frequency: str
    payment_amount_per_period: Decimal
    billing_periods: Optional[int] = None
    total_contract_value: Decimal
    override_reason: Optional[str] = None
    deposit_amount: Decimal
    currency: str

    start_date: date
    end_date: Optional[date] = None
    duration_months: Optional[int] = None
    auto_renew: bool

    client_signed_at: Optional[datetime] = None
    business_signed_at: Optional[datetime] = None
    business_signed_by: Optional[str] = None
    payment_link_url: Optional[str] = None
    paid_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None


class ContractActionResponse(BaseModel):
    """Contract plus the next admin action"""

    contract: ContractResponse
    next_required_action: str


class SendContractResponse(BaseModel):
    contract: ContractResponse
    payment_link_url: Optional[str] = None
    pending_reconciliation: bool = False


class ContractStats(BaseModel):
    total: int
    by_status: dict[str, int]
    total_value: Decimal
    currency: str
