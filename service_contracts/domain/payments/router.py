"""Payments router - attempt ledger and reconciliation of ambiguous outcomes"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db
from .gateway import PaymentGateway, get_payment_gateway
from .schemas import PaymentAttemptResponse, ReconcileResponse
from .service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_payment_service(
    db: Session = Depends(get_db), gateway: PaymentGateway = Depends(get_payment_gateway)
) -> PaymentService:
    """Dependency injection for PaymentService"""
    return PaymentService(db, gateway)


@router.get("/attempts", response_model=list[PaymentAttemptResponse])
async def list_payment_attempts(
    status: Optional[str] = Query(None, description="Filter by attempt status"),
    service: PaymentService = Depends(get_payment_service),
):
    """List payment artifact creation attempts"""
    return service.list_attempts([status] if status else None)


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_payments(service: PaymentService = Depends(get_payment_service)):
    """Replay every ambiguous attempt with its original idempotency key"""
    summary = await service.resolve_ambiguous()
    return ReconcileResponse(
        resolved=summary["resolved"],
        still_ambiguous=summary["still_ambiguous"],
        failed=summary["failed"],
        attempts=[PaymentAttemptResponse.model_validate(a) for a in summary["attempts"]],
    )
