"""Invoice domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...shared.validators import validate_au_phone, validate_email

InvoiceStatus = Literal["draft", "sent", "paid", "cancelled"]


class InvoiceLineItemIn(BaseModel):
    name: str = Field(min_length=1, max_length=512)
    description: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    unit_amount: Decimal = Field(ge=0, max_digits=12, decimal_places=2)


class InvoiceCreate(BaseModel):
    """Schema for creating a one-off invoice"""

    model_config = ConfigDict(extra="forbid")

    client_name: str = Field(min_length=1, max_length=255)
    client_email: str
    client_phone: Optional[str] = None
    client_company: Optional[str] = Field(default=None, max_length=255)
    contract_id: Optional[int] = None

    line_items: list[InvoiceLineItemIn] = Field(min_length=1)
    due_date: Optional[date] = None  # Defaults to INVOICE_DUE_DAYS from today
    payment_terms: Optional[str] = None
    service_terms: Optional[str] = None
    note: Optional[str] = None
    reference_id: Optional[str] = Field(default=None, max_length=255)

    @field_validator("client_email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return validate_email(v)

    @field_validator("client_phone")
    @classmethod
    def check_phone(cls, v: Optional[str]) -> Optional[str]:
        return validate_au_phone(v)


class InvoiceUpdate(BaseModel):
    """Draft-only edits"""

    model_config = ConfigDict(extra="forbid")

    line_items: Optional[list[InvoiceLineItemIn]] = Field(default=None, min_length=1)
    due_date: Optional[date] = None
    payment_terms: Optional[str] = None
    service_terms: Optional[str] = None
    note: Optional[str] = None


class InvoiceResponse(BaseModel):
    """Schema for invoice response"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    public_id: str
    invoice_number: str
    contract_id: Optional[int] = None
    status: str

    client_name: str
    client_email: str
    client_phone: Optional[str] = None
    client_company: Optional[str] = None

    line_items: list[dict]
    total_amount: Decimal
    currency: str
    due_date: date
    payment_terms: Optional[str] = None
    service_terms: Optional[str] = None
    note: Optional[str] = None
    reference_id: Optional[str] = None

    external_invoice_id: Optional[str] = None
    external_invoice_url: Optional[str] = None
    payment_pending_reconciliation: bool
    external_payment_status: Optional[str] = None
    paid_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
