import uuid
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .config import BUSINESS_CURRENCY
from .database import Base
from .shared.money import line_items_total

MONEY = Numeric(12, 2, asdecimal=True)


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    # Public UUID for client-facing links (prevents enumeration)
    public_id = Column(String(36), unique=True, nullable=False, index=True, default=generate_public_id)
    # Human-readable PREFIX-YY-NNNN, immutable once assigned
    contract_number = Column(String(20), unique=True, nullable=False, index=True)
    # airbnb_long_term, commercial_recurring, commercial_one_time, residential_recurring, general_service
    type = Column(String(50), nullable=False)
    # Status workflow: draft → sent → signed → active → completed
    # cancelled / expired are terminal and reachable from any non-terminal state
    status = Column(String(20), nullable=False, default="draft", index=True)
    # Optimistic lock; every UPDATE checks and bumps it
    version = Column(Integer, nullable=False)

    # Client party (provider identity is fixed in config)
    client_name = Column(String(255), nullable=False)
    client_email = Column(String(255), nullable=False, index=True)
    client_phone = Column(String(50), nullable=True)
    client_company = Column(String(255), nullable=True)

    # Property / service
    property_address = Column(String(500), nullable=True)
    property_type = Column(String(100), nullable=True)
    service_description = Column(Text, nullable=False)
    service_frequency = Column(String(100), nullable=True)
    special_requirements = Column(Text, nullable=True)

    # Quote the financial terms were derived from
    service_attributes = Column(JSON, nullable=False)
    price_breakdown = Column(JSON, nullable=False)
    pricing_version = Column(String(20), nullable=False)

    # Financial terms
    payment_frequency = Column(String(20), nullable=False)  # weekly, bi-weekly, monthly, one-time
    payment_amount_per_period = Column(MONEY, nullable=False)
    billing_periods = Column(Integer, nullable=True)  # None for open-ended terms with an override
    total_contract_value = Column(MONEY, nullable=False)
    total_value_override = Column(Boolean, default=False, nullable=False)
    override_reason = Column(String(500), nullable=True)
    deposit_amount = Column(MONEY, nullable=False)
    currency = Column(String(3), nullable=False, default=BUSINESS_CURRENCY)

    # Duration
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    duration_months = Column(Integer, nullable=True)
    auto_renew = Column(Boolean, default=False, nullable=False)

    # Client signature audit trail
    client_signature_data = Column(Text, nullable=True)  # Base64 PNG data URL
    client_signed_at = Column(DateTime, nullable=True)
    client_ip_address = Column(String(45), nullable=True)  # IPv4 or IPv6
    client_user_agent = Column(String(500), nullable=True)

    # Business counter-signature
    business_signature_data = Column(Text, nullable=True)
    business_signed_at = Column(DateTime, nullable=True)
    business_signed_by = Column(String(255), nullable=True)

    # Document cache (not authoritative - regenerated from the fields above)
    pdf_key = Column(String(500), nullable=True)
    pdf_hash = Column(String(64), nullable=True)  # SHA-256 of the last rendering
    pdf_generated_at = Column(DateTime, nullable=True)

    # External payment linkage
    payment_link_id = Column(String(255), nullable=True)
    payment_link_url = Column(Text, nullable=True)
    payment_order_id = Column(String(255), nullable=True, index=True)
    payment_pending_reconciliation = Column(Boolean, default=False, nullable=False)
    # Written only by the webhook reconciler
    external_payment_id = Column(String(255), nullable=True)
    external_payment_status = Column(String(50), nullable=True)  # created, pending, failed, completed, refunded
    external_payment_updated_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    payment_notified_at = Column(DateTime, nullable=True)

    internal_notes = Column(Text, nullable=True)
    cancellation_reason = Column(String(500), nullable=True)

    # Audit timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    sent_at = Column(DateTime, nullable=True)
    viewed_at = Column(DateTime, nullable=True)
    last_reminded_at = Column(DateTime, nullable=True)
    activated_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)

    invoices = relationship("Invoice", back_populates="contract")

    __mapper_args__ = {"version_id_col": version}


class Invoice(Base):
    """One-off invoice for single-payment commercial billing"""

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, nullable=False, index=True, default=generate_public_id)
    invoice_number = Column(String(20), unique=True, nullable=False, index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=True)
    status = Column(String(20), nullable=False, default="draft")  # draft, sent, paid, cancelled
    version = Column(Integer, nullable=False)

    client_name = Column(String(255), nullable=False)
    client_email = Column(String(255), nullable=False)
    client_phone = Column(String(50), nullable=True)
    client_company = Column(String(255), nullable=True)

    # Ordered [{name, description, quantity, unit_amount}] - amounts stored as strings
    line_items = Column(JSON, nullable=False, default=list)
    currency = Column(String(3), nullable=False, default=BUSINESS_CURRENCY)
    due_date = Column(Date, nullable=False)
    payment_terms = Column(Text, nullable=True)
    service_terms = Column(Text, nullable=True)
    note = Column(Text, nullable=True)
    reference_id = Column(String(255), nullable=True)  # caller-side reference, e.g. submission ID

    # External invoice linkage
    external_invoice_id = Column(String(255), nullable=True, index=True)
    external_invoice_url = Column(Text, nullable=True)
    external_order_id = Column(String(255), nullable=True, index=True)
    external_invoice_version = Column(Integer, nullable=True)
    payment_pending_reconciliation = Column(Boolean, default=False, nullable=False)
    external_payment_id = Column(String(255), nullable=True)
    external_payment_status = Column(String(50), nullable=True)
    external_payment_updated_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    payment_notified_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    sent_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    contract = relationship("Contract", back_populates="invoices")

    __mapper_args__ = {"version_id_col": version}

    @property
    def total_amount(self) -> Decimal:
        """Always recomputed from line items; there is no cached total to go stale"""
        return line_items_total(self.line_items or [])


class NumberSequence(Base):
    """Monotonic named counters backing human-readable numbers"""

    __tablename__ = "number_sequences"

    name = Column(String(100), primary_key=True)
    value = Column(Integer, nullable=False, default=0)


class PaymentAttempt(Base):
    """Saga record for one idempotent artifact creation at the payment processor"""

    __tablename__ = "payment_attempts"

    id = Column(Integer, primary_key=True, index=True)
    idempotency_key = Column(String(192), unique=True, nullable=False, index=True)
    operation = Column(String(50), nullable=False)  # payment_link, invoice
    entity_type = Column(String(20), nullable=False)  # contract, invoice
    entity_id = Column(Integer, nullable=False)
    # pending, succeeded, ambiguous, failed
    status = Column(String(20), nullable=False, default="pending", index=True)
    request_payload = Column(JSON, nullable=False)  # replayed verbatim when resolving ambiguity
    external_id = Column(String(255), nullable=True)
    artifact_url = Column(Text, nullable=True)
    order_id = Column(String(255), nullable=True)
    external_version = Column(Integer, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class WebhookEvent(Base):
    """Processed webhook deliveries, used to drop redeliveries of the same event"""

    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    outcome = Column(String(20), nullable=False)  # applied, ignored
    received_at = Column(DateTime, server_default=func.now())
