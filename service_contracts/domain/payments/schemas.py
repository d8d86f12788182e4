"""Payment domain schemas - requests sent to the payment processor and ledger views"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentLineItem(BaseModel):
    """One line on a payment link or invoice order; amounts in minor units (cents)"""

    name: str = Field(min_length=1, max_length=512)
    quantity: int = Field(default=1, ge=1)
    unit_amount_minor: int = Field(ge=0)
    description: Optional[str] = None


class PaymentLinkRequest(BaseModel):
    """Stored verbatim in the attempt ledger so an ambiguous attempt can be replayed"""

    reference_id: str
    line_items: list[PaymentLineItem] = Field(min_length=1)
    buyer_email: Optional[str] = None
    redirect_url: Optional[str] = None
    note: Optional[str] = None


class InvoiceCustomer(BaseModel):
    given_name: str
    family_name: Optional[str] = None
    email: str
    phone: Optional[str] = None
    company: Optional[str] = None


class InvoiceRequest(BaseModel):
    reference_id: str  # invoice number
    customer: InvoiceCustomer
    line_items: list[PaymentLineItem] = Field(min_length=1)
    due_date: date
    title: Optional[str] = None
    description: Optional[str] = None
    payment_terms: Optional[str] = None
    service_terms: Optional[str] = None


class PaymentAttemptResponse(BaseModel):
    """Schema for payment attempt ledger rows"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    idempotency_key: str
    operation: str
    entity_type: str
    entity_id: int
    status: str
    external_id: Optional[str] = None
    artifact_url: Optional[str] = None
    attempts: int
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReconcileResponse(BaseModel):
    resolved: int
    still_ambiguous: int
    failed: int
    attempts: list[PaymentAttemptResponse]
