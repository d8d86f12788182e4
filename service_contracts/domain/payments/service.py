"""
Payment service - idempotent artifact creation as an explicit saga

Every creation is recorded in the payment_attempts ledger under its
idempotency key before the gateway is called:

    pending -> succeeded            artifact linked to the contract/invoice
    pending -> ambiguous            timeout; entity flagged pending_reconciliation
    pending -> failed               unavailable or rejected; safe to retry

A succeeded attempt is never sent again; its stored artifact is returned. An
ambiguous (or crashed, still pending) attempt is resolved by replaying the
stored request with the same key, which the processor answers with the
original artifact if the first request did take effect.
"""

import logging
from typing import Optional, Union

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...exceptions import (
    GatewayAmbiguous,
    GatewayError,
    GatewayRejected,
    GatewayUnavailable,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from ...models import Contract, Invoice, PaymentAttempt
from ...shared.timeutils import utcnow
from .gateway import PaymentArtifact, PaymentGateway
from .repository import PaymentAttemptRepository
from .schemas import InvoiceRequest, PaymentLinkRequest

logger = logging.getLogger(__name__)

OPERATIONS = {
    "payment_link": PaymentLinkRequest,
    "invoice": InvoiceRequest,
}
UNRESOLVED_STATUSES = ["pending", "ambiguous"]
TERMINAL_ENTITY_STATUSES = {"cancelled", "expired", "completed"}

ArtifactRequest = Union[PaymentLinkRequest, InvoiceRequest]


def _artifact_from_attempt(attempt: PaymentAttempt) -> PaymentArtifact:
    return PaymentArtifact(
        external_id=attempt.external_id,
        artifact_url=attempt.artifact_url,
        order_id=attempt.order_id,
        version=attempt.external_version,
    )


class PaymentService:
    """Service layer for creating payment links and invoices at the processor"""

    def __init__(self, db: Session, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway
        self.repo = PaymentAttemptRepository()

    async def create_payment_artifact(
        self,
        operation: str,
        entity_type: str,
        entity_id: int,
        idempotency_key: str,
        request: ArtifactRequest,
    ) -> PaymentArtifact:
        """
        Create (or return the already-created) payment artifact for a key.

        Raises GatewayUnavailable, GatewayRejected or GatewayAmbiguous; the
        ledger records which, and an ambiguous outcome flags the entity for
        reconciliation.
        """
        if operation not in OPERATIONS:
            raise ValidationError(f"Unknown payment operation: {operation}")

        attempt = self.repo.get_by_key(self.db, idempotency_key, for_update=True)

        if attempt is not None:
            if (attempt.entity_type, attempt.entity_id, attempt.operation) != (entity_type, entity_id, operation):
                raise ValidationError(
                    f"Idempotency key {idempotency_key} already belongs to "
                    f"{attempt.entity_type} {attempt.entity_id} ({attempt.operation})"
                )
            if attempt.status == "succeeded":
                logger.info(f"✅ Reusing {operation} {attempt.external_id} for key {idempotency_key}")
                return _artifact_from_attempt(attempt)
            if attempt.status in UNRESOLVED_STATUSES:
                # Outcome unknown: only the original request may be replayed under this key
                request = OPERATIONS[operation].model_validate(attempt.request_payload)
            else:
                attempt.request_payload = request.model_dump(mode="json")
        else:
            attempt = self.repo.insert(
                self.db,
                PaymentAttempt(
                    idempotency_key=idempotency_key,
                    operation=operation,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    status="pending",
                    request_payload=request.model_dump(mode="json"),
                    attempts=0,
                ),
            )

        return await self._execute(attempt, request)

    async def _execute(self, attempt: PaymentAttempt, request: ArtifactRequest) -> PaymentArtifact:
        # An attempt that may already have taken effect stays unresolved until a definite answer
        outcome_unknown = attempt.status == "ambiguous" or (attempt.status == "pending" and attempt.attempts > 0)
        attempt = self.repo.update(self.db, attempt, status="pending", attempts=attempt.attempts + 1)
        key = attempt.idempotency_key

        try:
            if attempt.operation == "payment_link":
                artifact = await self.gateway.create_payment_link(key, request)
            else:
                artifact = await self.gateway.create_invoice(key, request)
        except GatewayAmbiguous as e:
            self.repo.update(self.db, attempt, status="ambiguous", last_error=str(e))
            self._flag_pending_reconciliation(attempt, True)
            logger.warning(f"⚠️ {attempt.operation} {key} is ambiguous - pending reconciliation")
            raise
        except GatewayUnavailable as e:
            status = "ambiguous" if outcome_unknown else "failed"
            self.repo.update(self.db, attempt, status=status, last_error=str(e))
            self._flag_pending_reconciliation(attempt, outcome_unknown)
            logger.error(f"❌ {attempt.operation} {key} failed: {e}")
            raise
        except GatewayRejected as e:
            self.repo.update(self.db, attempt, status="failed", last_error=str(e))
            self._flag_pending_reconciliation(attempt, False)
            logger.error(f"❌ {attempt.operation} {key} rejected: {e}")
            raise

        self.repo.update(
            self.db,
            attempt,
            status="succeeded",
            external_id=artifact.external_id,
            artifact_url=artifact.artifact_url,
            order_id=artifact.order_id,
            external_version=artifact.version,
            last_error=None,
        )
        await self._link_artifact(attempt, artifact)
        return artifact

    def _load_entity(self, attempt: PaymentAttempt) -> Optional[Union[Contract, Invoice]]:
        model = Contract if attempt.entity_type == "contract" else Invoice
        return self.db.query(model).filter(model.id == attempt.entity_id).first()

    def _flag_pending_reconciliation(self, attempt: PaymentAttempt, pending: bool) -> None:
        entity = self._load_entity(attempt)
        if entity is not None and entity.payment_pending_reconciliation != pending:
            entity.payment_pending_reconciliation = pending
            try:
                self.db.commit()
            except StaleDataError:
                self.db.rollback()
                logger.warning(
                    f"⚠️ Could not flag {attempt.entity_type} {attempt.entity_id} "
                    f"(pending_reconciliation={pending}); it changed concurrently"
                )

    async def _link_artifact(self, attempt: PaymentAttempt, artifact: PaymentArtifact) -> None:
        """Record the artifact on its owning entity (the saga's final step)"""
        for _ in range(2):
            entity = self._load_entity(attempt)
            if entity is None:
                raise NotFound(f"{attempt.entity_type} {attempt.entity_id} not found")

            if entity.status in TERMINAL_ENTITY_STATUSES:
                # Entity was closed while the outcome was unknown; withdraw the artifact
                logger.warning(
                    f"⚠️ {attempt.entity_type} {attempt.entity_id} is {entity.status}; "
                    f"withdrawing {attempt.operation} {artifact.external_id}"
                )
                await self.cancel_artifact(attempt.operation, artifact.external_id, artifact.version)
                entity.payment_pending_reconciliation = False
            elif isinstance(entity, Contract):
                entity.payment_link_id = artifact.external_id
                entity.payment_link_url = artifact.artifact_url
                entity.payment_order_id = artifact.order_id
                entity.payment_pending_reconciliation = False
            else:
                entity.external_invoice_id = artifact.external_id
                entity.external_invoice_url = artifact.artifact_url
                entity.external_order_id = artifact.order_id
                entity.external_invoice_version = artifact.version
                entity.payment_pending_reconciliation = False
                if entity.status == "draft":
                    entity.status = "sent"
                    entity.sent_at = utcnow()

            try:
                self.db.commit()
            except StaleDataError:
                # Entity changed underneath us; reload and apply against its new state
                self.db.rollback()
                logger.warning(f"⚠️ {attempt.entity_type} {attempt.entity_id} changed concurrently, relinking")
                continue
            logger.info(f"✅ Linked {attempt.operation} {artifact.external_id} to {attempt.entity_type} {entity.id}")
            return

        raise InvalidStateTransition(entity.status, entity.status, "entity kept changing while linking payment")

    async def cancel_artifact(self, operation: str, external_id: str, version: Optional[int] = None) -> bool:
        """Best-effort cancellation notice; returns False instead of raising"""
        try:
            if operation == "payment_link":
                await self.gateway.cancel_payment_link(external_id)
            else:
                await self.gateway.cancel_invoice(external_id, version)
            return True
        except GatewayError as e:
            logger.warning(f"⚠️ Could not cancel {operation} {external_id} at processor: {e}")
            return False

    def list_attempts(self, statuses: Optional[list[str]] = None) -> list[PaymentAttempt]:
        return self.repo.query(self.db, statuses=statuses)

    async def resolve_ambiguous(self) -> dict:
        """
        Reconciliation pass: replay every unresolved attempt with its own key.

        Attempts that time out again stay ambiguous; rejected ones become failed.
        """
        summary = {"resolved": 0, "still_ambiguous": 0, "failed": 0, "attempts": []}

        for attempt in self.repo.query(self.db, statuses=UNRESOLVED_STATUSES):
            request = OPERATIONS[attempt.operation].model_validate(attempt.request_payload)
            try:
                await self._execute(attempt, request)
                summary["resolved"] += 1
                logger.info(f"✅ Resolved ambiguous {attempt.operation} {attempt.idempotency_key}")
            except (GatewayAmbiguous, GatewayUnavailable):
                summary["still_ambiguous"] += 1
            except GatewayRejected:
                summary["failed"] += 1
            summary["attempts"].append(attempt)

        logger.info(
            f"📊 Payment reconciliation: {summary['resolved']} resolved, "
            f"{summary['still_ambiguous']} still ambiguous, {summary['failed']} failed"
        )
        return summary
