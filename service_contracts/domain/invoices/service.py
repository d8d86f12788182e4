"""Invoice service - one-off invoices issued through the payment processor"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...config import BUSINESS_CURRENCY, BUSINESS_NAME, INVOICE_DUE_DAYS, INVOICE_NUMBER_PREFIX
from ...exceptions import InvalidStateTransition, NotFound
from ...models import Contract, Invoice
from ...shared.money import to_decimal, to_minor_units
from ...shared.timeutils import utcnow
from ...shared.validators import require_text, validate_line_items
from ..contracts.numbering import NumberingService
from ..payments.gateway import PaymentGateway, customer_from_name, get_payment_gateway
from ..payments.schemas import InvoiceRequest, PaymentLineItem
from ..payments.service import PaymentService
from .repository import InvoiceRepository
from .schemas import InvoiceCreate, InvoiceUpdate

logger = logging.getLogger(__name__)

# Invoice statuses: draft → sent → paid, cancelled from draft or sent
INVOICE_TRANSITIONS: dict[str, list[str]] = {
    "draft": ["sent", "cancelled"],
    "sent": ["paid", "cancelled"],
    "paid": [],
    "cancelled": [],
}


class InvoiceService:
    """Service layer for invoice business logic"""

    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGateway] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.clock = clock or utcnow
        self.repo = InvoiceRepository()

    def get_invoice(self, invoice_id: int, for_update: bool = False) -> Invoice:
        invoice = self.repo.get(self.db, invoice_id, for_update=for_update)
        if not invoice:
            raise NotFound(f"Invoice {invoice_id} not found")
        return invoice

    def get_invoice_by_number(self, invoice_number: str) -> Invoice:
        invoice = self.repo.get_by_number(self.db, invoice_number)
        if not invoice:
            raise NotFound(f"Invoice {invoice_number} not found")
        return invoice

    def list_invoices(
        self, status: Optional[str] = None, contract_id: Optional[int] = None, limit: Optional[int] = None
    ) -> list[Invoice]:
        return self.repo.query(self.db, status=status, contract_id=contract_id, limit=limit)

    def _save(self, invoice: Invoice, action: str, previous: Optional[str] = None, **updates) -> Invoice:
        previous = previous or invoice.status
        try:
            return self.repo.update(self.db, invoice, **updates)
        except StaleDataError as e:
            self.db.rollback()
            raise InvalidStateTransition(previous, action, "invoice was modified concurrently") from e
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def create_invoice(self, data: InvoiceCreate) -> Invoice:
        """Create a draft invoice numbered INV-YY-NNNN"""
        if data.contract_id is not None:
            exists = self.db.query(Contract.id).filter(Contract.id == data.contract_id).first()
            if not exists:
                raise NotFound(f"Contract {data.contract_id} not found")

        line_items = validate_line_items([item.model_dump() for item in data.line_items])
        today = self.clock().date()

        invoice_number = NumberingService(
            self.db,
            prefix=INVOICE_NUMBER_PREFIX,
            sequence_name="invoice_number",
            clock=self.clock,
        ).allocate()

        invoice = Invoice(
            invoice_number=invoice_number,
            contract_id=data.contract_id,
            status="draft",
            client_name=require_text(data.client_name, "client_name"),
            client_email=data.client_email,
            client_phone=data.client_phone,
            client_company=data.client_company,
            line_items=line_items,
            currency=BUSINESS_CURRENCY,
            due_date=data.due_date or today + timedelta(days=INVOICE_DUE_DAYS),
            payment_terms=data.payment_terms,
            service_terms=data.service_terms,
            note=data.note,
            reference_id=data.reference_id,
        )

        try:
            invoice = self.repo.insert(self.db, invoice)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"❌ Failed to store invoice {invoice_number}")
            raise

        logger.info(f"✅ Created invoice {invoice.invoice_number} for {invoice.total_amount} {invoice.currency}")
        return invoice

    def update_invoice(self, invoice_id: int, data: InvoiceUpdate) -> Invoice:
        invoice = self.get_invoice(invoice_id, for_update=True)
        if invoice.status != "draft":
            raise InvalidStateTransition(invoice.status, "edit", "only draft invoices can be edited")

        updates = data.model_dump(exclude_unset=True)
        if "line_items" in updates:
            updates["line_items"] = validate_line_items(updates["line_items"] or [])
        if "due_date" in updates and updates["due_date"] is None:
            updates.pop("due_date")
        return self._save(invoice, "edit", **updates)

    def build_invoice_request(self, invoice: Invoice) -> InvoiceRequest:
        """Payload sent to the processor; the total comes only from the line items"""
        return InvoiceRequest(
            reference_id=invoice.invoice_number,
            customer=customer_from_name(
                invoice.client_name,
                invoice.client_email,
                phone=invoice.client_phone,
                company=invoice.client_company,
            ),
            line_items=[
                PaymentLineItem(
                    name=item["name"],
                    quantity=int(to_decimal(item["quantity"])),
                    unit_amount_minor=to_minor_units(item["unit_amount"]),
                    description=item.get("description"),
                )
                for item in invoice.line_items
            ],
            due_date=invoice.due_date,
            title=f"{BUSINESS_NAME} - Invoice {invoice.invoice_number}",
            description=invoice.note,
            payment_terms=invoice.payment_terms,
            service_terms=invoice.service_terms,
        )

    async def send_invoice(self, invoice_id: int) -> Invoice:
        """
        Issue the invoice through the processor's invoice flow.

        The invoice number is the idempotency key; the saga ledger marks the
        invoice sent once the published invoice is linked back.
        """
        invoice = self.get_invoice(invoice_id, for_update=True)
        if invoice.status == "sent" and invoice.external_invoice_id:
            logger.info(f"✅ Invoice {invoice.invoice_number} already sent")
            return invoice
        if invoice.status != "draft":
            raise InvalidStateTransition(invoice.status, "sent")

        payments = PaymentService(self.db, self.gateway or get_payment_gateway())
        await payments.create_payment_artifact(
            "invoice", "invoice", invoice.id, invoice.invoice_number, self.build_invoice_request(invoice)
        )

        self.db.refresh(invoice)
        return invoice

    async def cancel_invoice(self, invoice_id: int) -> Invoice:
        """Cancel a draft or sent invoice; the processor is told on a best-effort basis"""
        invoice = self.get_invoice(invoice_id, for_update=True)
        if "cancelled" not in INVOICE_TRANSITIONS.get(invoice.status, []):
            raise InvalidStateTransition(invoice.status, "cancelled")

        previous = invoice.status
        external_id = invoice.external_invoice_id
        version = invoice.external_invoice_version
        invoice = self._save(invoice, "cancelled", status="cancelled", cancelled_at=self.clock())
        logger.info(f"✅ Invoice {invoice.invoice_number} transitioned: {previous} → cancelled")

        if external_id:
            payments = PaymentService(self.db, self.gateway or get_payment_gateway())
            await payments.cancel_artifact("invoice", external_id, version)
        return invoice
