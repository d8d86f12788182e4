"""
Square Webhook Handler
Verifies deliveries and hands them to the reconciler
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ...database import get_db
from ...exceptions import NotFound
from ...models import Contract
from ...webhook_security import verify_square_webhook
from .reconciler import Notifier, WebhookReconciler, get_notifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/square", tags=["webhooks"])


def get_webhook_reconciler(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> WebhookReconciler:
    """Dependency injection for WebhookReconciler"""
    return WebhookReconciler(db, notifier=notifier)


@router.post("")
async def handle_square_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """
    Handle Square webhook events

    Events handled:
    - payment.created / payment.updated - payment status lattice
    - order.created - order for a payment link or invoice
    - invoice.payment_made / invoice.canceled - one-off invoices
    - refund.created / refund.updated - completed refunds

    Anything else is acknowledged and ignored so Square stops redelivering it.
    """
    body = await verify_square_webhook(request)

    try:
        payload = json.loads(body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("❌ Invalid JSON payload")
        raise HTTPException(status_code=400, detail="Invalid JSON") from None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook payload must be an object")

    outcome = await reconciler.handle(payload)
    return {"status": "success", "event_type": payload.get("type"), "outcome": outcome}


@router.get("/payment-status/{contract_id}")
async def check_payment_status(contract_id: int, db: Session = Depends(get_db)):
    """Payment state of a contract as last reported by Square (polled after redirect)"""
    contract = db.query(Contract).filter(Contract.id == contract_id).first()
    if not contract:
        raise NotFound(f"Contract {contract_id} not found")

    return {
        "contract_id": contract.id,
        "contract_number": contract.contract_number,
        "payment_status": contract.external_payment_status,
        "paid": contract.paid_at is not None,
        "paid_at": contract.paid_at.isoformat() if contract.paid_at else None,
        "pending_reconciliation": contract.payment_pending_reconciliation,
    }
