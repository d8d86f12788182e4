"""
Webhook reconciler - applies Square payment events to contracts and invoices

Delivery is at-least-once and unordered, so every event is checked against
the entity's current payment status before it is applied:

    created (10) < pending (20) < failed (25) < completed (30)

An event that would move a payment backwards in that order is ignored, except
refunds and cancellations which are explicit reversals. Events carrying an
event_id are recorded in webhook_events in the same commit as the entity
change, so a redelivery is dropped before it reaches the lattice.

Confirmation notifications fire at most once per entity: payment_notified_at
is set in the committing transaction and the notifier runs after commit.
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Protocol, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...exceptions import InvalidStateTransition
from ...models import Contract, Invoice, WebhookEvent
from ...shared.timeutils import utcnow
from ..contracts.repository import ContractRepository
from ..invoices.repository import InvoiceRepository

logger = logging.getLogger(__name__)

PaymentEntity = Union[Contract, Invoice]

STATUS_RANK = {
    "created": 10,
    "pending": 20,
    "failed": 25,
    "completed": 30,
}

SQUARE_PAYMENT_STATUSES = {
    "APPROVED": "pending",
    "PENDING": "pending",
    "COMPLETED": "completed",
    "FAILED": "failed",
    "CANCELED": "cancelled",
}

# Payment outcomes that end the lattice; a new payment id does not reset them
SETTLED_STATUSES = frozenset({"completed", "refunded"})

APPLIED = "applied"
IGNORED = "ignored"
DUPLICATE = "duplicate"


class Notifier(Protocol):
    async def payment_received(self, entity_type: str, entity: PaymentEntity) -> None: ...


class LoggingNotifier:
    """Default notifier; outbound email/chat channels plug in behind the same method"""

    async def payment_received(self, entity_type: str, entity: PaymentEntity) -> None:
        number = entity.contract_number if isinstance(entity, Contract) else entity.invoice_number
        logger.info(f"📧 Payment confirmation for {entity_type} {number} ({entity.client_email})")


def get_notifier() -> Notifier:
    return LoggingNotifier()


def _entity_label(entity: PaymentEntity) -> str:
    if isinstance(entity, Contract):
        return f"contract {entity.contract_number}"
    return f"invoice {entity.invoice_number}"


class WebhookReconciler:
    """Idempotent, order-tolerant application of payment events"""

    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock or utcnow
        self.contracts = ContractRepository()
        self.invoices = InvoiceRepository()
        self.handlers = {
            "payment.created": self._handle_payment,
            "payment.updated": self._handle_payment,
            "order.created": self._handle_order_created,
            "invoice.payment_made": self._handle_invoice_payment,
            "invoice.canceled": self._handle_invoice_canceled,
            "refund.created": self._handle_refund,
            "refund.updated": self._handle_refund,
        }

    async def handle(self, event: dict) -> str:
        """
        Apply one webhook event; returns "applied", "ignored" or "duplicate".

        Unknown event types are logged and ignored, never raised.
        """
        event_type = event.get("type") or ""
        event_id = event.get("event_id")
        obj = (event.get("data") or {}).get("object") or {}

        logger.info(f"📥 Received Square webhook: {event_type} ({event_id or 'no event id'})")

        if event_id and self._seen(event_id):
            logger.info(f"ℹ️ Duplicate delivery of event {event_id}, skipping")
            return DUPLICATE

        handler = self.handlers.get(event_type)

        for _ in range(2):
            if handler is None:
                logger.info(f"ℹ️ Unhandled event type: {event_type}")
                outcome, notify = IGNORED, None
            else:
                outcome, notify = handler(event_type, obj)

            if event_id:
                self.db.add(WebhookEvent(event_id=event_id, event_type=event_type or "unknown", outcome=outcome))
            try:
                self.db.commit()
            except IntegrityError:
                # Concurrent delivery of the same event committed first
                self.db.rollback()
                logger.info(f"ℹ️ Event {event_id} already processed concurrently, skipping")
                return DUPLICATE
            except StaleDataError:
                self.db.rollback()
                logger.warning(f"⚠️ Entity changed while applying {event_type}, re-evaluating")
                continue
            break
        else:
            raise InvalidStateTransition("payment", event_type, "entity kept changing while applying event")

        if notify is not None:
            entity_type, entity = notify
            try:
                await self.notifier.payment_received(entity_type, entity)
            except Exception as e:
                # Delivery channels are external; the payment state is already committed
                logger.error(f"❌ Payment notification failed for {_entity_label(entity)}: {e}")

        return outcome

    def _seen(self, event_id: str) -> bool:
        return self.db.query(WebhookEvent.id).filter(WebhookEvent.event_id == event_id).first() is not None

    # ------------------------------------------------------------------
    # Entity lookup
    # ------------------------------------------------------------------

    def _find_entity(
        self,
        order_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
    ) -> Optional[PaymentEntity]:
        contract = self.contracts.get_by_payment_reference(
            self.db, order_id=order_id, contract_number=reference_id
        )
        if contract:
            return contract
        invoice = self.invoices.get_by_payment_reference(self.db, order_id=order_id, invoice_id=invoice_id)
        if invoice:
            return invoice
        if reference_id:
            return self.invoices.get_by_number(self.db, reference_id)
        return None

    # ------------------------------------------------------------------
    # Status lattice
    # ------------------------------------------------------------------

    def _advance(self, entity: PaymentEntity, payment_id: Optional[str], new_status: str):
        """Move the payment status forward; returns (outcome, notification or None)"""
        label = _entity_label(entity)
        current = entity.external_payment_status
        now = self.clock()

        if new_status == "cancelled":
            if current in SETTLED_STATUSES:
                logger.info(f"ℹ️ Ignoring cancellation of settled payment on {label}")
                return IGNORED, None
        elif payment_id and entity.external_payment_id and payment_id != entity.external_payment_id:
            if current in SETTLED_STATUSES:
                logger.info(f"ℹ️ {label} already settled by payment {entity.external_payment_id}; ignoring {payment_id}")
                return IGNORED, None
            # A new payment attempt restarts the lattice
            current = None
        elif current is not None and STATUS_RANK.get(new_status, 0) <= STATUS_RANK.get(current, 100):
            logger.info(f"ℹ️ Ignoring {new_status} for {label}: payment already {current}")
            return IGNORED, None

        entity.external_payment_status = new_status
        entity.external_payment_updated_at = now
        if payment_id:
            entity.external_payment_id = payment_id
        logger.info(f"✅ {label} payment status updated: {current} → {new_status}")

        if new_status != "completed":
            return APPLIED, None

        entity.paid_at = entity.paid_at or now
        if isinstance(entity, Invoice):
            if entity.status in ("draft", "sent"):
                entity.status = "paid"
                logger.info(f"✅ Invoice {entity.invoice_number} transitioned: sent → paid")
            elif entity.status == "cancelled":
                logger.warning(f"⚠️ Payment completed for cancelled {label}; needs manual refund review")

        if entity.payment_notified_at is None:
            entity.payment_notified_at = now
            entity_type = "contract" if isinstance(entity, Contract) else "invoice"
            return APPLIED, (entity_type, entity)
        return APPLIED, None

    # ------------------------------------------------------------------
    # Handlers (mutate the session; the caller commits)
    # ------------------------------------------------------------------

    def _handle_payment(self, event_type: str, obj: dict):
        payment = obj.get("payment") or {}
        payment_id = payment.get("id")
        square_status = (payment.get("status") or "").upper()
        order_id = payment.get("order_id")

        logger.info(f"💳 Payment event: {payment_id} - Status: {square_status} - Order: {order_id}")

        new_status = SQUARE_PAYMENT_STATUSES.get(square_status)
        if new_status is None:
            logger.info(f"ℹ️ Payment {payment_id} has unrecognised status {square_status!r}, skipping")
            return IGNORED, None
        if event_type == "payment.created" and new_status == "pending":
            new_status = "created"

        entity = self._find_entity(order_id=order_id, reference_id=payment.get("reference_id"))
        if entity is None:
            logger.warning(f"⚠️ No contract or invoice found for payment {payment_id} (order: {order_id})")
            return IGNORED, None
        return self._advance(entity, payment_id, new_status)

    def _handle_order_created(self, event_type: str, obj: dict):
        order = obj.get("order_created") or obj.get("order") or {}
        order_id = order.get("order_id") or order.get("id")
        entity = self._find_entity(order_id=order_id)
        if entity is None:
            logger.info(f"ℹ️ Order {order_id} does not belong to a known contract or invoice")
            return IGNORED, None
        return self._advance(entity, None, "created")

    def _handle_invoice_payment(self, event_type: str, obj: dict):
        square_invoice = obj.get("invoice") or {}
        invoice_id = square_invoice.get("id")
        square_status = (square_invoice.get("status") or "").upper()

        logger.info(f"💰 Invoice payment event: {invoice_id} - Status: {square_status}")

        entity = self._find_entity(
            order_id=square_invoice.get("order_id"),
            invoice_id=invoice_id,
        )
        if entity is None:
            logger.warning(f"⚠️ No invoice found for Square invoice: {invoice_id}")
            return IGNORED, None
        if square_status != "PAID":
            logger.info(f"ℹ️ Square invoice {invoice_id} is {square_status}, not fully paid")
            return self._advance(entity, None, "pending")
        return self._advance(entity, None, "completed")

    def _handle_invoice_canceled(self, event_type: str, obj: dict):
        square_invoice = obj.get("invoice") or {}
        invoice_id = square_invoice.get("id")
        invoice = self.invoices.get_by_payment_reference(
            self.db, order_id=square_invoice.get("order_id"), invoice_id=invoice_id
        )
        if invoice is None:
            logger.warning(f"⚠️ No invoice found for cancelled Square invoice: {invoice_id}")
            return IGNORED, None
        if invoice.status in ("paid", "cancelled"):
            logger.info(f"ℹ️ Invoice {invoice.invoice_number} is {invoice.status}; ignoring cancellation")
            return IGNORED, None

        previous = invoice.status
        invoice.status = "cancelled"
        invoice.cancelled_at = self.clock()
        logger.info(f"✅ Invoice {invoice.invoice_number} transitioned: {previous} → cancelled")
        return APPLIED, None

    def _handle_refund(self, event_type: str, obj: dict):
        refund = obj.get("refund") or {}
        refund_status = (refund.get("status") or "").upper()
        payment_id = refund.get("payment_id")

        if refund_status != "COMPLETED":
            logger.info(f"ℹ️ Refund {refund.get('id')} is {refund_status}, nothing to apply yet")
            return IGNORED, None

        entity = self._find_entity(order_id=refund.get("order_id"))
        if entity is None:
            logger.warning(f"⚠️ No contract or invoice found for refund {refund.get('id')}")
            return IGNORED, None
        if entity.external_payment_status != "completed":
            logger.info(f"ℹ️ {_entity_label(entity)} is not in a refundable state ({entity.external_payment_status})")
            return IGNORED, None
        if payment_id and entity.external_payment_id and payment_id != entity.external_payment_id:
            logger.info(f"ℹ️ Refund is for payment {payment_id}, not {entity.external_payment_id}")
            return IGNORED, None

        entity.external_payment_status = "refunded"
        entity.external_payment_updated_at = self.clock()
        logger.info(f"✅ {_entity_label(entity)} payment status updated: completed → refunded")
        return APPLIED, None
