"""Invoice router - FastAPI endpoints for one-off invoices"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ...database import get_db
from ..payments.gateway import PaymentGateway, get_payment_gateway
from .schemas import InvoiceCreate, InvoiceResponse, InvoiceStatus, InvoiceUpdate
from .service import InvoiceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invoices", tags=["Invoices"])


def get_invoice_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> InvoiceService:
    """Dependency injection for InvoiceService"""
    return InvoiceService(db, gateway=gateway)


@router.get("", response_model=list[InvoiceResponse])
async def list_invoices(
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    contract_id: Optional[int] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    service: InvoiceService = Depends(get_invoice_service),
):
    return service.list_invoices(status=status_filter, contract_id=contract_id, limit=limit)


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    data: InvoiceCreate,
    service: InvoiceService = Depends(get_invoice_service),
):
    """Create a draft invoice"""
    return service.create_invoice(data)


@router.get("/number/{invoice_number}", response_model=InvoiceResponse)
async def get_invoice_by_number(invoice_number: str, service: InvoiceService = Depends(get_invoice_service)):
    return service.get_invoice_by_number(invoice_number)


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(invoice_id: int, service: InvoiceService = Depends(get_invoice_service)):
    return service.get_invoice(invoice_id)


@router.patch("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: int,
    data: InvoiceUpdate,
    service: InvoiceService = Depends(get_invoice_service),
):
    """Edit a draft invoice"""
    return service.update_invoice(invoice_id, data)


@router.post("/{invoice_id}/send", response_model=InvoiceResponse)
async def send_invoice(invoice_id: int, service: InvoiceService = Depends(get_invoice_service)):
    """Create and publish the invoice at the payment processor"""
    return await service.send_invoice(invoice_id)


@router.post("/{invoice_id}/cancel", response_model=InvoiceResponse)
async def cancel_invoice(invoice_id: int, service: InvoiceService = Depends(get_invoice_service)):
    return await service.cancel_invoice(invoice_id)
