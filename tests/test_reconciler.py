import pytest

from service_contracts.domain.invoices.schemas import InvoiceCreate
from service_contracts.domain.webhooks.reconciler import WebhookReconciler
from service_contracts.models import WebhookEvent

from conftest import FakeNotifier, invoice_payload

ORDER_ID = "order-CUB-25-0001"


def payment_event(event_id, status, payment_id="PAY1", order_id=ORDER_ID, event_type="payment.updated"):
    return {
        "merchant_id": "MERCHANT",
        "type": event_type,
        "event_id": event_id,
        "created_at": "2025-03-04T10:00:00Z",
        "data": {
            "type": "payment",
            "id": payment_id,
            "object": {"payment": {"id": payment_id, "status": status, "order_id": order_id}},
        },
    }


def refund_event(event_id, status="COMPLETED", payment_id="PAY1", order_id=ORDER_ID):
    return {
        "type": "refund.updated",
        "event_id": event_id,
        "data": {
            "object": {
                "refund": {"id": "REF1", "status": status, "payment_id": payment_id, "order_id": order_id}
            }
        },
    }


def invoice_event(event_type, event_id, invoice_id, status, order_id=None):
    return {
        "type": event_type,
        "event_id": event_id,
        "data": {"object": {"invoice": {"id": invoice_id, "status": status, "order_id": order_id}}},
    }


@pytest.fixture
def reconciler(db, notifier, clock):
    return WebhookReconciler(db, notifier=notifier, clock=clock)


@pytest.fixture
async def contract(create_contract, contract_service):
    contract = create_contract()
    return await contract_service.send_contract(contract.id)


@pytest.fixture
async def invoice(invoice_service):
    invoice = invoice_service.create_invoice(InvoiceCreate.model_validate(invoice_payload()))
    return await invoice_service.send_invoice(invoice.id)


async def test_completed_payment_marks_contract_paid(reconciler, contract, notifier, db, clock):
    assert await reconciler.handle(payment_event("evt-1", "APPROVED")) == "applied"
    assert contract.external_payment_status == "pending"

    assert await reconciler.handle(payment_event("evt-2", "COMPLETED")) == "applied"

    db.refresh(contract)
    assert contract.external_payment_status == "completed"
    assert contract.external_payment_id == "PAY1"
    assert contract.paid_at == clock.now
    assert contract.payment_notified_at == clock.now
    assert contract.status == "sent"
    assert notifier.sent == [("contract", contract.id)]


async def test_redelivered_event_is_dropped(reconciler, contract, notifier, db):
    event = payment_event("evt-1", "COMPLETED")

    assert await reconciler.handle(event) == "applied"
    assert await reconciler.handle(event) == "duplicate"

    assert db.query(WebhookEvent).count() == 1
    assert notifier.sent == [("contract", contract.id)]


async def test_confirmation_is_sent_once_per_contract(reconciler, contract, notifier):
    await reconciler.handle(payment_event("evt-1", "COMPLETED"))
    assert await reconciler.handle(payment_event("evt-2", "COMPLETED")) == "ignored"
    assert notifier.sent == [("contract", contract.id)]


async def test_out_of_order_delivery_never_moves_backwards(reconciler, contract, db):
    await reconciler.handle(payment_event("evt-2", "COMPLETED"))

    assert await reconciler.handle(payment_event("evt-1", "APPROVED", event_type="payment.created")) == "ignored"
    assert await reconciler.handle(payment_event("evt-3", "FAILED")) == "ignored"

    db.refresh(contract)
    assert contract.external_payment_status == "completed"


async def test_payment_created_records_created_status(reconciler, contract):
    assert await reconciler.handle(payment_event("evt-1", "APPROVED", event_type="payment.created")) == "applied"
    assert contract.external_payment_status == "created"


async def test_failed_payment_can_be_retried_with_new_payment(reconciler, contract, notifier, db):
    await reconciler.handle(payment_event("evt-1", "FAILED"))
    assert contract.external_payment_status == "failed"
    assert contract.paid_at is None

    assert await reconciler.handle(payment_event("evt-2", "APPROVED", payment_id="PAY2")) == "applied"
    assert await reconciler.handle(payment_event("evt-3", "COMPLETED", payment_id="PAY2")) == "applied"

    db.refresh(contract)
    assert contract.external_payment_id == "PAY2"
    assert contract.external_payment_status == "completed"
    assert notifier.sent == [("contract", contract.id)]


async def test_settled_payment_ignores_other_payments(reconciler, contract, db):
    await reconciler.handle(payment_event("evt-1", "COMPLETED"))

    assert await reconciler.handle(payment_event("evt-2", "FAILED", payment_id="PAY2")) == "ignored"
    db.refresh(contract)
    assert contract.external_payment_id == "PAY1"


async def test_cancellation_is_a_reversal_unless_settled(reconciler, contract, db):
    await reconciler.handle(payment_event("evt-1", "APPROVED"))
    assert await reconciler.handle(payment_event("evt-2", "CANCELED")) == "applied"
    assert contract.external_payment_status == "cancelled"

    await reconciler.handle(payment_event("evt-3", "COMPLETED", payment_id="PAY2"))
    assert await reconciler.handle(payment_event("evt-4", "CANCELED", payment_id="PAY2")) == "ignored"
    db.refresh(contract)
    assert contract.external_payment_status == "completed"


async def test_completed_refund_reverses_payment(reconciler, contract, db):
    await reconciler.handle(payment_event("evt-1", "COMPLETED"))

    assert await reconciler.handle(refund_event("evt-2", status="PENDING")) == "ignored"
    assert await reconciler.handle(refund_event("evt-3")) == "applied"

    db.refresh(contract)
    assert contract.external_payment_status == "refunded"
    assert await reconciler.handle(payment_event("evt-4", "COMPLETED")) == "ignored"
    assert contract.external_payment_status == "refunded"


async def test_refund_for_another_payment_is_ignored(reconciler, contract):
    await reconciler.handle(payment_event("evt-1", "COMPLETED"))
    assert await reconciler.handle(refund_event("evt-2", payment_id="PAY9")) == "ignored"
    assert contract.external_payment_status == "completed"


async def test_refund_before_completion_is_ignored(reconciler, contract):
    assert await reconciler.handle(refund_event("evt-1")) == "ignored"
    assert contract.external_payment_status is None


async def test_unknown_event_type_is_recorded_and_ignored(reconciler, db):
    assert await reconciler.handle({"type": "customer.created", "event_id": "evt-x", "data": {}}) == "ignored"
    event = db.query(WebhookEvent).one()
    assert (event.event_id, event.outcome) == ("evt-x", "ignored")


async def test_payment_for_unknown_order_is_ignored(reconciler, contract):
    assert await reconciler.handle(payment_event("evt-1", "COMPLETED", order_id="order-unknown")) == "ignored"
    assert contract.external_payment_status is None


async def test_event_without_id_is_still_applied(reconciler, contract, db):
    event = payment_event(None, "COMPLETED")
    assert await reconciler.handle(event) == "applied"
    assert db.query(WebhookEvent).count() == 0


async def test_order_created(reconciler, contract):
    event = {
        "type": "order.created",
        "event_id": "evt-1",
        "data": {"object": {"order_created": {"order_id": ORDER_ID, "state": "OPEN"}}},
    }
    assert await reconciler.handle(event) == "applied"
    assert contract.external_payment_status == "created"


async def test_notifier_failure_does_not_undo_payment(db, clock, contract):
    failing = FakeNotifier(fail=True)
    reconciler = WebhookReconciler(db, notifier=failing, clock=clock)

    assert await reconciler.handle(payment_event("evt-1", "COMPLETED")) == "applied"

    db.refresh(contract)
    assert contract.external_payment_status == "completed"
    assert contract.payment_notified_at is not None
    assert failing.sent == [("contract", contract.id)]


async def test_invoice_payment_marks_invoice_paid(reconciler, invoice, notifier, db):
    assert invoice.status == "sent"
    event = invoice_event("invoice.payment_made", "evt-1", invoice.external_invoice_id, "PAID")

    assert await reconciler.handle(event) == "applied"

    db.refresh(invoice)
    assert invoice.status == "paid"
    assert invoice.external_payment_status == "completed"
    assert invoice.paid_at is not None
    assert notifier.sent == [("invoice", invoice.id)]


async def test_partial_invoice_payment_is_pending(reconciler, invoice, db):
    event = invoice_event("invoice.payment_made", "evt-1", invoice.external_invoice_id, "PARTIALLY_PAID")
    assert await reconciler.handle(event) == "applied"
    db.refresh(invoice)
    assert invoice.status == "sent"
    assert invoice.external_payment_status == "pending"


async def test_invoice_payment_found_by_order(reconciler, invoice, db):
    event = payment_event("evt-1", "COMPLETED", order_id=invoice.external_order_id)
    assert await reconciler.handle(event) == "applied"
    db.refresh(invoice)
    assert invoice.status == "paid"


async def test_invoice_canceled_at_processor(reconciler, invoice, db, clock):
    event = invoice_event("invoice.canceled", "evt-1", invoice.external_invoice_id, "CANCELED")

    assert await reconciler.handle(event) == "applied"

    db.refresh(invoice)
    assert invoice.status == "cancelled"
    assert invoice.cancelled_at == clock.now
    again = invoice_event("invoice.canceled", "evt-2", invoice.external_invoice_id, "CANCELED")
    assert await reconciler.handle(again) == "ignored"
