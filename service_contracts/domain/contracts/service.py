"""Contract service - Business logic for contract operations"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...config import BUSINESS_CURRENCY, BUSINESS_NAME, PAYMENT_REDIRECT_URL
from ...exceptions import InvalidStateTransition, NotFound
from ...models import Contract
from ...shared.money import to_minor_units
from ...shared.timeutils import utcnow
from ...shared.validators import require_text
from ..payments.gateway import PaymentGateway, get_payment_gateway
from ..payments.schemas import PaymentLineItem, PaymentLinkRequest
from ..payments.service import PaymentService
from ..pricing.calculator import calculate_quote
from ..pricing.schemas import parse_service_attributes
from .numbering import NumberingService
from .pdf_service import R2DocumentStorage, calculate_hash, render_contract_pdf
from .repository import ContractRepository
from .schemas import (
    FINANCIAL_FIELDS,
    BusinessSignatureRequest,
    ClientSignatureRequest,
    ContractCreate,
    ContractUpdate,
)
from .state_machine import (
    EXPIRABLE_STATUSES,
    get_next_required_action,
    is_expired,
    transition,
)
from .terms import derive_financial_terms

logger = logging.getLogger(__name__)

# Pre-signature edits; financial terms only while nothing has been sent
EDITABLE_STATUSES = frozenset({"draft", "sent"})
REQUIRED_TEXT_FIELDS = ("client_name", "client_email", "service_description")


class ContractService:
    """Service layer for contract business logic"""

    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGateway] = None,
        clock: Optional[Callable[[], datetime]] = None,
        storage: Optional[R2DocumentStorage] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.clock = clock or utcnow
        self.storage = storage
        self.repo = ContractRepository()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_contract(self, contract_id: int, for_update: bool = False) -> Contract:
        """Get a contract, expiring it first if its end date passed unsigned"""
        contract = self.repo.get(self.db, contract_id, for_update=for_update)
        if not contract:
            raise NotFound(f"Contract {contract_id} not found")
        return self._expire_if_due(contract)

    def get_contract_by_number(self, contract_number: str) -> Contract:
        contract = self.repo.get_by_number(self.db, contract_number)
        if not contract:
            raise NotFound(f"Contract {contract_number} not found")
        return self._expire_if_due(contract)

    def get_contract_by_public_id(self, public_id: str) -> Contract:
        """Get a contract by public UUID"""
        contract = self.repo.get_by_public_id(self.db, public_id)
        if not contract:
            raise NotFound("Contract not found")
        return self._expire_if_due(contract)

    def list_contracts(
        self,
        status: Optional[str] = None,
        contract_type: Optional[str] = None,
        order: str = "-created_at",
        limit: Optional[int] = None,
    ) -> list[Contract]:
        """List contracts, optionally filtered by status and type"""
        self.expire_overdue()
        return self.repo.query(self.db, {"status": status, "type": contract_type}, order=order, limit=limit)

    def get_stats(self) -> dict:
        """Counts by status and total value of non-cancelled contracts"""
        self.expire_overdue()
        by_status = self.repo.count_by_status(self.db)
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "total_value": self.repo.total_value(self.db),
            "currency": BUSINESS_CURRENCY,
        }

    def next_required_action(self, contract: Contract) -> str:
        return get_next_required_action(contract, self.clock().date())

    # ------------------------------------------------------------------
    # Lazy expiry
    # ------------------------------------------------------------------

    def _expire_if_due(self, contract: Contract) -> Contract:
        now = self.clock()
        if not is_expired(contract, now.date()):
            return contract
        transition(contract, "expired", now)
        try:
            self.db.commit()
        except StaleDataError:
            # Someone else moved it first; their state wins
            self.db.rollback()
            logger.info(f"⚠️ Contract {contract.id} changed while expiring, reloading")
        self.db.refresh(contract)
        return contract

    def expire_overdue(self) -> int:
        """Expire every unsigned contract whose end date has passed"""
        overdue = self.repo.overdue_unsigned(self.db, self.clock().date(), EXPIRABLE_STATUSES)
        for contract in overdue:
            self._expire_if_due(contract)
        if overdue:
            logger.info(f"📊 Expired {len(overdue)} overdue unsigned contract(s)")
        return len(overdue)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _save(self, contract: Contract, action: str, previous: Optional[str] = None, **updates) -> Contract:
        """Commit pending changes; a concurrent write surfaces as InvalidStateTransition"""
        previous = previous or contract.status
        try:
            return self.repo.update(self.db, contract, **updates)
        except StaleDataError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Contract {contract.id} was modified concurrently, rejecting {action}")
            raise InvalidStateTransition(previous, action, "contract was modified concurrently") from e
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def _transition(self, contract: Contract, target: str, manual: bool = False, **updates) -> Contract:
        """Apply field updates and a status transition as one write"""
        previous = contract.status
        try:
            for key, value in updates.items():
                setattr(contract, key, value)
            transition(contract, target, self.clock(), manual=manual)
        except InvalidStateTransition:
            self.db.rollback()
            raise
        return self._save(contract, target, previous)

    def create_contract(self, data: ContractCreate) -> Contract:
        """Create a draft contract with financial terms derived from its quote"""
        logger.info(f"📝 Creating {data.type} contract for {data.client_email}")

        breakdown = calculate_quote(data.service_attributes)
        terms = derive_financial_terms(
            contract_type=data.type,
            breakdown=breakdown,
            payment_frequency=data.payment_frequency,
            start_date=data.start_date,
            end_date=data.end_date,
            duration_months=data.duration_months,
            payment_amount_per_period=data.payment_amount_per_period,
            total_value_override=data.total_value_override,
            override_reason=data.override_reason,
        )

        contract_number = NumberingService(self.db, clock=self.clock).allocate()

        contract = Contract(
            contract_number=contract_number,
            type=data.type,
            status="draft",
            client_name=require_text(data.client_name, "client_name"),
            client_email=data.client_email,
            client_phone=data.client_phone,
            client_company=data.client_company,
            property_address=data.property_address,
            property_type=data.property_type,
            service_description=require_text(data.service_description, "service_description"),
            service_frequency=data.service_frequency,
            special_requirements=data.special_requirements,
            service_attributes=data.service_attributes.model_dump(mode="json"),
            price_breakdown=breakdown.model_dump(mode="json"),
            pricing_version=breakdown.pricing_version,
            payment_frequency=data.payment_frequency,
            payment_amount_per_period=terms.payment_amount_per_period,
            billing_periods=terms.billing_periods,
            total_contract_value=terms.total_contract_value,
            total_value_override=terms.total_value_override,
            override_reason=terms.override_reason,
            deposit_amount=terms.deposit_amount,
            currency=BUSINESS_CURRENCY,
            start_date=data.start_date,
            end_date=terms.end_date,
            duration_months=terms.duration_months,
            auto_renew=data.auto_renew,
            internal_notes=data.internal_notes,
        )

        try:
            contract = self.repo.insert(self.db, contract)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"❌ Failed to store contract {contract_number}")
            raise

        logger.info(
            f"✅ Created contract {contract.contract_number}: {contract.total_contract_value} "
            f"{contract.currency} over {contract.billing_periods or 'open-ended'} period(s)"
        )
        return contract

    def update_contract(self, contract_id: int, data: ContractUpdate) -> Contract:
        """Pre-signature edit; financial changes re-derive the total from a fresh quote"""
        contract = self.get_contract(contract_id, for_update=True)
        updates = data.model_dump(exclude_unset=True)
        if not updates:
            return contract

        if contract.status not in EDITABLE_STATUSES:
            raise InvalidStateTransition(contract.status, "edit", "only unsigned contracts can be edited")

        financial = {key: updates.pop(key) for key in FINANCIAL_FIELDS if key in updates}
        if financial and contract.status != "draft":
            raise InvalidStateTransition(contract.status, "edit", "financial terms are fixed once sent")

        for field in REQUIRED_TEXT_FIELDS:
            if field in updates:
                updates[field] = require_text(updates[field], field)

        if financial:
            updates.update(self._rederive_financials(contract, data, financial))

        return self._save(contract, "edit", **updates)

    def _rederive_financials(self, contract: Contract, data: ContractUpdate, changes: dict) -> dict:
        attributes = data.service_attributes or parse_service_attributes(contract.service_attributes)
        breakdown = calculate_quote(attributes)

        if "payment_amount_per_period" in changes:
            amount = changes["payment_amount_per_period"]
        elif "service_attributes" in changes:
            amount = None  # New quote, default to its low end again
        else:
            amount = contract.payment_amount_per_period

        if "total_value_override" in changes:
            override = changes["total_value_override"]
            reason = changes.get("override_reason", contract.override_reason)
        elif contract.total_value_override:
            override = contract.total_contract_value
            reason = changes.get("override_reason", contract.override_reason)
        else:
            override, reason = None, None

        start_date = changes.get("start_date", contract.start_date)
        duration_months = changes.get("duration_months", contract.duration_months)
        if "end_date" in changes:
            end_date = changes["end_date"]
        elif duration_months is not None and ("start_date" in changes or "duration_months" in changes):
            end_date = None  # Recomputed from the duration
        else:
            end_date = contract.end_date

        terms = derive_financial_terms(
            contract_type=contract.type,
            breakdown=breakdown,
            payment_frequency=changes.get("payment_frequency", contract.payment_frequency),
            start_date=start_date,
            end_date=end_date,
            duration_months=duration_months,
            payment_amount_per_period=amount,
            total_value_override=override,
            override_reason=reason,
        )
        logger.info(f"💰 Re-derived financial terms for contract {contract.contract_number}")

        return {
            "service_attributes": attributes.model_dump(mode="json"),
            "price_breakdown": breakdown.model_dump(mode="json"),
            "pricing_version": breakdown.pricing_version,
            "payment_frequency": changes.get("payment_frequency", contract.payment_frequency),
            "payment_amount_per_period": terms.payment_amount_per_period,
            "billing_periods": terms.billing_periods,
            "total_contract_value": terms.total_contract_value,
            "total_value_override": terms.total_value_override,
            "override_reason": terms.override_reason,
            "deposit_amount": terms.deposit_amount,
            "start_date": start_date,
            "end_date": terms.end_date,
            "duration_months": terms.duration_months,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def send_contract(self, contract_id: int) -> Contract:
        """
        Send a contract and create its deposit payment link.

        Saga: the status change is committed first, then the link is created
        under the contract number as idempotency key. Calling this again for a
        sent contract without a link resumes at the second step.
        """
        contract = self.get_contract(contract_id, for_update=True)

        if contract.status == "sent" and contract.payment_link_url:
            logger.info(f"✅ Contract {contract.contract_number} already sent with payment link")
            return contract
        if contract.status != "sent":
            contract = self._transition(contract, "sent")
        else:
            logger.info(f"🔄 Resuming payment link creation for contract {contract.contract_number}")

        request = PaymentLinkRequest(
            reference_id=contract.contract_number,
            line_items=[
                PaymentLineItem(
                    name=f"Deposit - {contract.contract_number}",
                    quantity=1,
                    unit_amount_minor=to_minor_units(contract.deposit_amount),
                    description=f"25% deposit for {BUSINESS_NAME} service agreement",
                )
            ],
            buyer_email=contract.client_email,
            redirect_url=PAYMENT_REDIRECT_URL,
            note=f"Contract {contract.contract_number} - {contract.client_name}",
        )
        payments = PaymentService(self.db, self.gateway or get_payment_gateway())
        await payments.create_payment_artifact(
            "payment_link", "contract", contract.id, contract.contract_number, request
        )

        self.db.refresh(contract)
        return contract

    def sign_contract(
        self,
        public_id: str,
        data: ClientSignatureRequest,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Contract:
        """Record the client's signature (sent -> signed)"""
        contract = self.get_contract_by_public_id(public_id)
        contract = self._transition(
            contract,
            "signed",
            client_signature_data=data.signature_data,
            client_signed_at=self.clock(),
            client_ip_address=ip_address,
            client_user_agent=user_agent[:500] if user_agent else None,
        )
        logger.info(
            f"✍️ Contract {contract.contract_number} signed by {data.signer_name or contract.client_name} "
            f"from {ip_address or 'unknown'}"
        )
        return contract

    def business_sign(self, contract_id: int, data: BusinessSignatureRequest) -> Contract:
        """Counter-sign a contract the client has already signed"""
        contract = self.get_contract(contract_id, for_update=True)
        if contract.status not in ("signed", "active"):
            raise InvalidStateTransition(contract.status, "business_signed", "client must sign first")
        if contract.business_signed_at:
            raise InvalidStateTransition(contract.status, "business_signed", "contract already counter-signed")

        contract = self._save(
            contract,
            "business_signed",
            business_signature_data=data.signature_data,
            business_signed_at=self.clock(),
            business_signed_by=data.signed_by,
        )
        logger.info(f"✍️ Contract {contract.contract_number} counter-signed by {data.signed_by}")
        return contract

    def mark_viewed(self, public_id: str) -> Contract:
        """First client view of a sent contract"""
        contract = self.get_contract_by_public_id(public_id)
        if contract.status != "sent" or contract.viewed_at:
            return contract
        try:
            return self._save(contract, "viewed", viewed_at=self.clock())
        except InvalidStateTransition:
            # View tracking is informational; a concurrent change just wins
            return self.get_contract_by_public_id(public_id)

    def mark_reminded(self, contract_id: int) -> Contract:
        contract = self.get_contract(contract_id, for_update=True)
        if contract.status != "sent":
            raise InvalidStateTransition(contract.status, "reminded", "only sent contracts await a signature")
        return self._save(contract, "reminded", last_reminded_at=self.clock())

    def activate_contract(self, contract_id: int, manual: bool = False) -> Contract:
        contract = self.get_contract(contract_id, for_update=True)
        return self._transition(contract, "active", manual=manual)

    def complete_contract(self, contract_id: int, manual: bool = False) -> Contract:
        contract = self.get_contract(contract_id, for_update=True)
        return self._transition(contract, "completed", manual=manual)

    async def cancel_contract(self, contract_id: int, reason: Optional[str] = None) -> Contract:
        """
        Cancel from any non-terminal state.

        Unpaid payment-link linkage is cleared in the same write; the
        processor is told afterwards on a best-effort basis.
        """
        contract = self.get_contract(contract_id, for_update=True)
        link_id = contract.payment_link_id
        updates = {"cancellation_reason": reason}
        if contract.paid_at is None:
            updates.update(payment_link_id=None, payment_link_url=None, payment_order_id=None)

        contract = self._transition(contract, "cancelled", **updates)

        if link_id and contract.paid_at is None:
            payments = PaymentService(self.db, self.gateway or get_payment_gateway())
            await payments.cancel_artifact("payment_link", link_id)
        return contract

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def generate_pdf(self, contract_id: int) -> bytes:
        """Render the contract and record the (non-authoritative) document cache pointer"""
        contract = self.get_contract(contract_id)
        now = self.clock()
        pdf_bytes = render_contract_pdf(contract, now)
        pdf_hash = calculate_hash(pdf_bytes)

        updates = {"pdf_hash": pdf_hash, "pdf_generated_at": now}
        if self.storage is not None:
            try:
                updates["pdf_key"] = self.storage.put_pdf(contract, pdf_bytes, pdf_hash)
            except Exception as e:
                # boto3 raises botocore/ConnectionError types; the PDF is still returned
                logger.warning(f"⚠️ Failed to store PDF for {contract.contract_number}: {e}")

        try:
            self._save(contract, "pdf", **updates)
        except InvalidStateTransition:
            logger.warning(f"⚠️ Contract {contract_id} changed during rendering; PDF cache pointer not updated")
        return pdf_bytes
