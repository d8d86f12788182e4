"""Contract router - FastAPI endpoints for contract operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from ...database import get_db
from ..payments.gateway import PaymentGateway, get_payment_gateway
from .pdf_service import get_document_storage
from .schemas import (
    BusinessSignatureRequest,
    CancelRequest,
    ClientSignatureRequest,
    ContractActionResponse,
    ContractCreate,
    ContractResponse,
    ContractStats,
    ContractStatus,
    ContractType,
    ContractUpdate,
    ManualTransitionRequest,
    PublicContractResponse,
    SendContractResponse,
)
from .service import ContractService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contracts", tags=["Contracts"])


def get_contract_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> ContractService:
    """Dependency injection for ContractService"""
    return ContractService(db, gateway=gateway, storage=get_document_storage())


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _with_action(service: ContractService, contract) -> ContractActionResponse:
    return ContractActionResponse(
        contract=ContractResponse.model_validate(contract),
        next_required_action=service.next_required_action(contract),
    )


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.get("", response_model=list[ContractResponse])
async def list_contracts(
    status_filter: Optional[ContractStatus] = Query(None, alias="status", description="Filter by status"),
    contract_type: Optional[ContractType] = Query(None, alias="type", description="Filter by contract type"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    service: ContractService = Depends(get_contract_service),
):
    """List contracts, newest first"""
    return service.list_contracts(status=status_filter, contract_type=contract_type, limit=limit)


@router.post("", response_model=ContractActionResponse, status_code=status.HTTP_201_CREATED)
async def create_contract(
    data: ContractCreate,
    service: ContractService = Depends(get_contract_service),
):
    """Create a draft contract from a quote"""
    contract = service.create_contract(data)
    return _with_action(service, contract)


@router.get("/stats", response_model=ContractStats)
async def get_contract_stats(service: ContractService = Depends(get_contract_service)):
    """Contract counts by status and total value"""
    return service.get_stats()


@router.get("/number/{contract_number}", response_model=ContractActionResponse)
async def get_contract_by_number(
    contract_number: str,
    service: ContractService = Depends(get_contract_service),
):
    return _with_action(service, service.get_contract_by_number(contract_number))


@router.get("/{contract_id}", response_model=ContractActionResponse)
async def get_contract(
    contract_id: int,
    service: ContractService = Depends(get_contract_service),
):
    """Get a contract with its next required action"""
    return _with_action(service, service.get_contract(contract_id))


@router.patch("/{contract_id}", response_model=ContractActionResponse)
async def update_contract(
    contract_id: int,
    data: ContractUpdate,
    service: ContractService = Depends(get_contract_service),
):
    """Edit an unsigned contract"""
    return _with_action(service, service.update_contract(contract_id, data))


# ============================================================================
# LIFECYCLE
# ============================================================================


@router.post("/{contract_id}/send", response_model=SendContractResponse)
async def send_contract(
    contract_id: int,
    service: ContractService = Depends(get_contract_service),
):
    """Send the contract and create its deposit payment link"""
    contract = await service.send_contract(contract_id)
    return SendContractResponse(
        contract=ContractResponse.model_validate(contract),
        payment_link_url=contract.payment_link_url,
        pending_reconciliation=contract.payment_pending_reconciliation,
    )


@router.post("/{contract_id}/remind", response_model=ContractActionResponse)
async def remind_client(
    contract_id: int,
    service: ContractService = Depends(get_contract_service),
):
    """Record that the client was reminded to sign"""
    return _with_action(service, service.mark_reminded(contract_id))


@router.post("/{contract_id}/business-sign", response_model=ContractActionResponse)
async def business_sign_contract(
    contract_id: int,
    data: BusinessSignatureRequest,
    service: ContractService = Depends(get_contract_service),
):
    """Counter-sign as the business"""
    return _with_action(service, service.business_sign(contract_id, data))


@router.post("/{contract_id}/activate", response_model=ContractActionResponse)
async def activate_contract(
    contract_id: int,
    data: ManualTransitionRequest = ManualTransitionRequest(),
    service: ContractService = Depends(get_contract_service),
):
    return _with_action(service, service.activate_contract(contract_id, manual=data.manual))


@router.post("/{contract_id}/complete", response_model=ContractActionResponse)
async def complete_contract(
    contract_id: int,
    data: ManualTransitionRequest = ManualTransitionRequest(),
    service: ContractService = Depends(get_contract_service),
):
    return _with_action(service, service.complete_contract(contract_id, manual=data.manual))


@router.post("/{contract_id}/cancel", response_model=ContractActionResponse)
async def cancel_contract(
    contract_id: int,
    data: CancelRequest = CancelRequest(),
    service: ContractService = Depends(get_contract_service),
):
    """Cancel a contract and withdraw its unpaid payment link"""
    contract = await service.cancel_contract(contract_id, data.reason)
    return _with_action(service, contract)


# ============================================================================
# DOCUMENTS
# ============================================================================


@router.get("/{contract_id}/pdf")
async def download_contract_pdf(
    contract_id: int,
    service: ContractService = Depends(get_contract_service),
):
    """Render the contract as a PDF"""
    pdf_bytes = service.generate_pdf(contract_id)
    contract = service.get_contract(contract_id)
    headers = {"Content-Disposition": f'attachment; filename="{contract.contract_number}.pdf"'}
    return Response(content=pdf_bytes, media_type="application/pdf", headers=headers)


# ============================================================================
# PUBLIC (client-facing, by public UUID)
# ============================================================================


@router.get("/public/{public_id}", response_model=PublicContractResponse)
async def view_contract_public(
    public_id: str,
    service: ContractService = Depends(get_contract_service),
):
    """Client view of a contract; the first view of a sent contract is recorded"""
    return service.mark_viewed(public_id)


@router.post("/public/{public_id}/sign", response_model=PublicContractResponse)
async def sign_contract_public(
    public_id: str,
    data: ClientSignatureRequest,
    request: Request,
    service: ContractService = Depends(get_contract_service),
):
    """Client signature"""
    return service.sign_contract(
        public_id,
        data,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
